"""
Command executor — always-run and run-once shell commands.

``commands`` run every time, in declared order; their authors assert
they are idempotent.  ``run_once`` commands are keyed by the SHA-256 of
their literal text and recorded only after a zero exit status, so a
failed one is retried on the next run.
"""

from __future__ import annotations

import logging

from reprosetup.core.context import RunContext
from reprosetup.core.engine.fingerprint import fingerprint_text
from reprosetup.core.models.desired import CustomCommandsConfig
from reprosetup.core.models.diff import ResourceDiff
from reprosetup.core.models.outcome import Outcome
from reprosetup.core.reconcilers.base import Reconciler, ReconcilerPolicy

logger = logging.getLogger(__name__)


class CommandExecutor(Reconciler):
    section = "commands"
    policy = ReconcilerPolicy(tracks_state=True)

    def __init__(self, config: CustomCommandsConfig):
        self.config = config

    def query_actual(self, ctx: RunContext) -> set[str]:
        """Hashes of the run-once commands already executed."""
        return {
            fingerprint_text(command)
            for command in self.config.run_once
            if ctx.store.has_executed(fingerprint_text(command))
        }

    def diff(self, actual: set[str]) -> ResourceDiff:
        pending = []
        for command in dict.fromkeys(self.config.run_once):
            if fingerprint_text(command) not in actual:
                pending.append(command)
        return ResourceDiff(to_add=pending, to_update=list(self.config.commands))

    def apply(self, diff: ResourceDiff, ctx: RunContext) -> list[Outcome]:
        outcomes = []
        for command in diff.to_update:
            outcomes.append(self._run(command, ctx))

        for command in diff.to_add:
            outcome = self._run(command, ctx)
            if outcome.applied:
                ctx.store.mark_executed(fingerprint_text(command))
            outcomes.append(outcome)
        return outcomes

    def _run(self, command: str, ctx: RunContext) -> Outcome:
        receipt = ctx.dispatch("shell", "run", command=command)
        if receipt.skipped:
            return Outcome.skip(self.domain, command, f"[dry-run] Would run: {command}")
        if receipt.failed:
            logger.warning("Command failed: %s", command)
            return Outcome.from_failed_receipt(self.domain, command, receipt)
        return Outcome.ok(self.domain, command, "Ran", command=receipt.command)
