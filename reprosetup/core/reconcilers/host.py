"""Host reconciler — static hostname."""

from __future__ import annotations

import logging

from reprosetup.core.context import RunContext
from reprosetup.core.models.desired import HostConfig
from reprosetup.core.models.diff import ResourceDiff
from reprosetup.core.models.outcome import Outcome
from reprosetup.core.reconcilers.base import Reconciler, ReconcilerPolicy, query_or_raise

logger = logging.getLogger(__name__)


class HostReconciler(Reconciler):
    section = "host"
    policy = ReconcilerPolicy()

    def __init__(self, config: HostConfig):
        self.config = config

    def query_actual(self, ctx: RunContext) -> str | None:
        if not self.config.hostname:
            return None
        receipt = query_or_raise(ctx, "hostname", "hostname", "get")
        return receipt.metadata.get("hostname", receipt.output.strip())

    def diff(self, actual: str | None) -> ResourceDiff:
        desired = self.config.hostname
        if not desired or actual == desired:
            return ResourceDiff()
        return ResourceDiff(to_update=[desired])

    def apply(self, diff: ResourceDiff, ctx: RunContext) -> list[Outcome]:
        outcomes = []
        for hostname in diff.to_update:
            receipt = ctx.dispatch("hostname", "set", hostname=hostname)
            if receipt.skipped:
                outcomes.append(Outcome.skip(self.domain, "hostname", receipt.output))
                continue
            if receipt.failed:
                outcomes.append(Outcome.from_failed_receipt(self.domain, "hostname", receipt))
                continue

            check = ctx.query("hostname", "get")
            if check.failed:
                outcomes.append(Outcome.from_failed_receipt(self.domain, "hostname", check))
                continue
            now = check.metadata.get("hostname")
            if now is not None and now != hostname:
                outcomes.append(Outcome.fail(
                    self.domain,
                    "hostname",
                    f"Hostname is still '{now}' after setting '{hostname}'",
                    command=receipt.command,
                ))
                continue

            logger.info("Hostname set to %s", hostname)
            outcomes.append(Outcome.ok(
                self.domain, "hostname", f"Set to {hostname}", command=receipt.command,
            ))
        return outcomes
