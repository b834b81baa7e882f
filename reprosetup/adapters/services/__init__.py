"""Service manager adapters."""
