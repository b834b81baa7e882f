"""Reconcilers — one per resource domain, all behind the same contract."""
