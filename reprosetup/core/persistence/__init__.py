"""On-disk state and the audit ledger."""
