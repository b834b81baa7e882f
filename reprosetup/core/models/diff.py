"""
ResourceDiff — what a reconciler must change.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ResourceDiff(BaseModel):
    """Desired vs actual for one domain.

    ``to_remove`` is always computed; whether it is ever applied is the
    reconciler's policy (package domains never apply it).  ``drift``
    lists differences that are reported but left alone.
    """

    to_add: list[Any] = Field(default_factory=list)
    to_update: list[Any] = Field(default_factory=list)
    to_remove: list[Any] = Field(default_factory=list)
    drift: list[str] = Field(default_factory=list)

    @property
    def empty(self) -> bool:
        """Nothing to apply (removals and drift are informational)."""
        return not (self.to_add or self.to_update)
