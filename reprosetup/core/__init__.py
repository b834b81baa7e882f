"""Core engine: models, persistence, reconcilers and orchestration."""
