"""
Outcome and RunReport — what a run did, resource by resource.

Reconcilers turn adapter Receipts into Outcomes.  The Orchestrator only
ever sees Outcomes; it accumulates them into the RunReport, the
terminal artifact of a run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel

from reprosetup.core.models.action import Receipt


class Outcome(BaseModel):
    """Result of converging one resource."""

    domain: str
    resource: str
    status: Literal["applied", "skipped", "failed"]
    message: str = ""
    error: str | None = None

    command: str = ""
    return_code: int | None = None

    warning: bool = False
    drift: bool = False

    @property
    def applied(self) -> bool:
        return self.status == "applied"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def ok(cls, domain: str, resource: str, message: str = "", **kwargs: Any) -> Outcome:
        """Create an applied outcome."""
        return cls(domain=domain, resource=resource, status="applied", message=message, **kwargs)

    @classmethod
    def skip(cls, domain: str, resource: str, reason: str = "", **kwargs: Any) -> Outcome:
        """Create a skipped outcome."""
        return cls(domain=domain, resource=resource, status="skipped", message=reason, **kwargs)

    @classmethod
    def fail(cls, domain: str, resource: str, error: str, **kwargs: Any) -> Outcome:
        """Create a failed outcome."""
        return cls(domain=domain, resource=resource, status="failed", error=error, **kwargs)

    @classmethod
    def from_failed_receipt(
        cls,
        domain: str,
        resource: str,
        receipt: Receipt,
        **kwargs: Any,
    ) -> Outcome:
        """Wrap a failed tool invocation, keeping the command and stderr."""
        return cls(
            domain=domain,
            resource=resource,
            status="failed",
            error=receipt.error or "unknown error",
            command=receipt.command,
            return_code=receipt.return_code,
            **kwargs,
        )


@dataclass
class RunReport:
    """Ordered outcomes of one run, plus per-domain drift."""

    operation_id: str = ""
    outcomes: list[Outcome] = field(default_factory=list)
    drift: dict[str, list[str]] = field(default_factory=dict)

    def add(self, outcome: Outcome) -> None:
        self.outcomes.append(outcome)

    def extend(self, outcomes: list[Outcome]) -> None:
        self.outcomes.extend(outcomes)

    def add_drift(self, domain: str, items: list[str]) -> None:
        if items:
            self.drift.setdefault(domain, []).extend(items)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def applied(self) -> int:
        return sum(1 for o in self.outcomes if o.applied)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.failed)

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "ok"
        if self.applied > 0 or self.skipped > 0:
            return "partial"
        return "failed"

    @property
    def exit_code(self) -> int:
        """Non-zero only when at least one resource failed."""
        return 1 if self.failed else 0

    def for_domain(self, domain: str) -> list[Outcome]:
        return [o for o in self.outcomes if o.domain == domain]

    def by_domain(self) -> dict[str, list[Outcome]]:
        """Outcomes grouped by domain, in first-seen order."""
        grouped: dict[str, list[Outcome]] = {}
        for outcome in self.outcomes:
            grouped.setdefault(outcome.domain, []).append(outcome)
        return grouped

    def errors(self) -> list[str]:
        return [
            f"{o.domain}:{o.resource}: {o.error}"
            for o in self.outcomes
            if o.failed
        ]

    def to_dict(self) -> dict:
        return {
            "operation_id": self.operation_id,
            "status": self.status,
            "total": self.total,
            "applied": self.applied,
            "skipped": self.skipped,
            "failed": self.failed,
            "drift": self.drift,
            "outcomes": [o.model_dump(mode="json") for o in self.outcomes],
        }
