"""
Orchestrator — the central convergence loop.

Takes the DesiredState, builds the reconcilers in dependency order,
runs each one against the shared RunContext, flushes the StateStore
after every pass and accumulates the RunReport.

Flow:
    desired state → build reconcilers → run each → flush → report → audit

Order: host → packages (system, flatpak, pip, npm, cargo) → services
→ containers → dotfiles → commands.  A reconciler that fails, or even
crashes, never stops the ones after it.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime

from reprosetup.core.context import RunContext
from reprosetup.core.models.desired import DesiredState
from reprosetup.core.models.outcome import Outcome, RunReport
from reprosetup.core.persistence.audit import AuditEntry, AuditWriter
from reprosetup.core.persistence.state_file import StateStoreError
from reprosetup.core.reconcilers.base import Reconciler
from reprosetup.core.reconcilers.commands import CommandExecutor
from reprosetup.core.reconcilers.containers import ContainerReconciler
from reprosetup.core.reconcilers.dotfiles import DotfilesReconciler
from reprosetup.core.reconcilers.host import HostReconciler
from reprosetup.core.reconcilers.packages import PackageReconciler
from reprosetup.core.reconcilers.services import ServiceReconciler

logger = logging.getLogger(__name__)

SECTIONS = ("host", "packages", "services", "containers", "dotfiles", "commands")

STATE_DOMAIN = "state"


def build_reconcilers(desired: DesiredState, only: Iterable[str] | None = None) -> list[Reconciler]:
    """Reconcilers for everything declared, in dependency order.

    Args:
        desired: The loaded declaration.
        only: Optional section names to restrict the run to.
    """
    packages = desired.packages
    reconcilers: list[Reconciler] = [
        HostReconciler(desired.host),
        PackageReconciler(desired.system_manager, packages.system, upgrade=packages.upgrade),
        PackageReconciler("flatpak", packages.flatpak, remotes=packages.flatpak_remotes),
        PackageReconciler("pip", packages.pip),
        PackageReconciler("npm", packages.npm),
        PackageReconciler("cargo", packages.cargo),
        ServiceReconciler(desired.services),
        ContainerReconciler(desired.containers),
        DotfilesReconciler(desired.dotfiles),
        CommandExecutor(desired.custom_commands),
    ]

    if only:
        wanted = set(only)
        reconcilers = [
            r for r in reconcilers if r.section in wanted or r.domain in wanted
        ]
    return reconcilers


def flush_state(ctx: RunContext) -> Outcome | None:
    """Persist the store; a write failure becomes a failed outcome."""
    try:
        ctx.store.flush()
    except StateStoreError as e:
        logger.error("State flush failed: %s", e)
        return Outcome.fail(STATE_DOMAIN, str(ctx.store.path), str(e))
    return None


def run_reconcilers(reconcilers: list[Reconciler], ctx: RunContext) -> RunReport:
    """Run every reconciler in order, flushing state after each pass."""
    report = ctx.report
    for reconciler in reconcilers:
        logger.info("Reconciling %s", reconciler.domain)
        start = time.monotonic()
        try:
            outcomes = reconciler.run(ctx)
        except Exception as e:
            # run() already guards; this catches a broken subclass
            logger.exception("Reconciler %s escaped its boundary", reconciler.domain)
            outcomes = [Outcome.fail(reconciler.domain, "*", f"Unexpected error: {e}")]
        report.extend(outcomes)

        for outcome in outcomes:
            marker = "✓" if outcome.applied else "✗" if outcome.failed else "⊘"
            logger.info("%s %s:%s → %s", marker, outcome.domain, outcome.resource, outcome.status)

        if reconciler.policy.tracks_state:
            flush_failure = flush_state(ctx)
            if flush_failure is not None:
                report.add(flush_failure)
        logger.debug(
            "%s done in %dms", reconciler.domain, int((time.monotonic() - start) * 1000)
        )
    return report


def write_audit_entry(
    report: RunReport,
    audit_writer: AuditWriter,
    operation_type: str,
    domains: list[str],
    dry_run: bool = False,
    duration_ms: int = 0,
) -> None:
    """Write one run to the audit ledger."""
    entry = AuditEntry(
        operation_id=report.operation_id,
        operation_type=operation_type,
        domains=domains,
        dry_run=dry_run,
        status=report.status,
        outcomes_total=report.total,
        outcomes_applied=report.applied,
        outcomes_skipped=report.skipped,
        outcomes_failed=report.failed,
        duration_ms=duration_ms,
        errors=report.errors(),
        context={"drift": {domain: len(items) for domain, items in report.drift.items()}},
    )
    audit_writer.write(entry)


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"
