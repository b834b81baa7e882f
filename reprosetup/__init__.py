"""reprosetup — converge a single Linux host to a declared desired state."""

__version__ = "0.1.0"
