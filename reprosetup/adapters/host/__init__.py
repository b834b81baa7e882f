"""Host identity adapters."""
