"""
Reconciler contract — query actual, diff, apply.

Every resource domain implements the same three steps.  What differs
between domains is declared as data in a ReconcilerPolicy and enforced
here and in the Orchestrator, never by domain name:

    additive_only         to_remove is turned into drift before apply
    confirms_destructive  when False, the domain's confirmer declines
                          without ever prompting
    tracks_state          the Orchestrator flushes the StateStore after
                          the domain's pass

Nothing escapes ``Reconciler.run``: tool failures arrive as failed
Receipts and become failed Outcomes, and any unexpected exception
becomes one failed Outcome for the domain.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, ClassVar

from reprosetup.core.context import RunContext
from reprosetup.core.engine.confirm import Confirmer
from reprosetup.core.models.action import Receipt
from reprosetup.core.models.diff import ResourceDiff
from reprosetup.core.models.outcome import Outcome
from reprosetup.core.models.policy import ConfirmationPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcilerPolicy:
    """Capability table of a domain."""

    additive_only: bool = False
    confirms_destructive: bool = False
    tracks_state: bool = False


class QueryFailed(Exception):
    """A live-state probe failed; carries the failed receipt."""

    def __init__(self, resource: str, receipt: Receipt):
        super().__init__(receipt.error or "query failed")
        self.resource = resource
        self.receipt = receipt


class Reconciler(ABC):
    """Base class of every domain reconciler.

    Subclasses set ``section`` (the configuration section, also the
    name accepted by ``--only``) and ``policy``, and implement
    query_actual / diff / apply.
    """

    section: ClassVar[str] = ""
    policy: ClassVar[ReconcilerPolicy] = ReconcilerPolicy()

    @property
    def domain(self) -> str:
        """Label used on outcomes and drift."""
        return self.section

    @abstractmethod
    def query_actual(self, ctx: RunContext) -> Any:
        """Read live state.  Only non-mutating adapter actions."""

    @abstractmethod
    def diff(self, actual: Any) -> ResourceDiff:
        """Compare the declaration against ``actual``."""

    @abstractmethod
    def apply(self, diff: ResourceDiff, ctx: RunContext) -> list[Outcome]:
        """Converge.  An empty diff yields no outcomes."""

    def enforce_policy(self, diff: ResourceDiff, ctx: RunContext) -> tuple[ResourceDiff, RunContext]:
        """Apply the capability table to a computed diff and the run context."""
        if self.policy.additive_only and diff.to_remove:
            drift = list(diff.drift)
            drift.extend(str(item) for item in diff.to_remove if str(item) not in drift)
            diff = diff.model_copy(update={"to_remove": [], "drift": drift})
        if not self.policy.confirms_destructive:
            ctx = replace(ctx, confirmer=Confirmer(ConfirmationPolicy.NO, dry_run=ctx.dry_run))
        return diff, ctx

    def run(self, ctx: RunContext) -> list[Outcome]:
        """query → diff → apply, with drift recorded on the run report."""
        try:
            actual = self.query_actual(ctx)
            diff, ctx = self.enforce_policy(self.diff(actual), ctx)
            ctx.report.add_drift(self.domain, diff.drift)
            if diff.drift:
                logger.info("%s: %d drifted item(s)", self.domain, len(diff.drift))
            if diff.empty:
                logger.debug("%s: nothing to do", self.domain)
                return []
            return self.apply(diff, ctx)
        except QueryFailed as e:
            logger.warning("%s: cannot query %s: %s", self.domain, e.resource, e)
            return [Outcome.from_failed_receipt(self.domain, e.resource, e.receipt)]
        except Exception as e:
            logger.exception("%s reconciler crashed", self.domain)
            return [Outcome.fail(self.domain, "*", f"Unexpected error: {e}")]

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} domain={self.domain!r}>"


def query_or_raise(ctx: RunContext, resource: str, adapter: str, operation: str, **params: Any) -> Receipt:
    """Run a probe; raise QueryFailed when it fails."""
    receipt = ctx.query(adapter, operation, **params)
    if receipt.failed:
        raise QueryFailed(resource, receipt)
    return receipt
