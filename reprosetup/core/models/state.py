"""
StateDocument — the persisted idempotency record.

Serialized to ~/.config/reprosetup/state.json.  It holds fingerprints
of everything the engine has successfully applied, so that a second
run can tell "already done" from "pending".

It is disposable: delete it and the next run re-evaluates everything
(non-destructive actions are simply re-applied, destructive ones are
still gated by backups and confirmation).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StateRecord(BaseModel):
    """Fingerprint of one applied unit of state."""

    fingerprint: str
    applied_at: str = Field(default_factory=_now_iso)
    metadata: dict[str, Any] = Field(default_factory=dict)


class StateDocument(BaseModel):
    """Root state model — serialized to state.json."""

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    # ── Records ──────────────────────────────────────────────────
    # "dotfile:<path>", "container:<name>", "command:<sha>", "unit:<scope>:<unit>"
    records: dict[str, StateRecord] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()
