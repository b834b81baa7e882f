"""Adapters — tool bindings for external integrations.

Public re-exports for convenient access.
"""

from reprosetup.adapters.base import Adapter, ExecutionContext
from reprosetup.adapters.mock import MockAdapter
from reprosetup.adapters.registry import AdapterRegistry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "MockAdapter",
]
