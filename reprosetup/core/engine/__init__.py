"""Engine primitives: fingerprints, confirmation and the orchestrator."""
