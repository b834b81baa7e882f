"""
Status use case — what the state store and audit ledger remember.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from reprosetup.core.persistence.audit import AuditEntry, AuditWriter
from reprosetup.core.persistence.state_file import StateStore

# Record kinds, by key prefix
KINDS = ("container", "dotfile", "unit", "command", "file")


@dataclass
class StatusResult:
    """State store summary plus the most recent runs."""

    state_path: Path | None = None
    exists: bool = False
    updated_at: str = ""
    counts: dict[str, int] = field(default_factory=dict)
    recent: list[AuditEntry] = field(default_factory=list)

    @property
    def last_run(self) -> AuditEntry | None:
        return self.recent[-1] if self.recent else None

    def to_dict(self) -> dict:
        return {
            "state_path": str(self.state_path) if self.state_path else None,
            "exists": self.exists,
            "updated_at": self.updated_at,
            "counts": self.counts,
            "recent": [e.model_dump(mode="json") for e in self.recent],
        }


def get_status(state_path: Path | None = None, recent: int = 5) -> StatusResult:
    """Summarize the state store.

    Args:
        state_path: Optional state file override.
        recent: How many audit entries to include.
    """
    store = StateStore.open(state_path, read_only=True)
    data = store.to_dict()

    result = StatusResult(state_path=store.path, exists=store.path.is_file())
    result.updated_at = data["updated_at"] if result.exists else ""
    result.counts = {kind: len(store.keys(f"{kind}:")) for kind in KINDS}
    result.recent = AuditWriter(state_dir=store.path.parent).read_recent(recent)
    return result
