"""
Package reconciler — additive convergence, one instance per manager.

    desired  = declared names (flatpak: optionally ``remote:appid``)
    actual   = the manager's list-installed primitive
    to_add   = desired − actual, declared order kept
    drift    = actual − desired, reported and never removed

Installs are batched: one invocation per manager (per remote for
flatpak).  A failed batch fails every package in it with the tool's
error text.  After a successful batch the listing is re-queried and
anything still missing is reported failed.
"""

from __future__ import annotations

import logging

from reprosetup.adapters.packages import package_key, split_ref
from reprosetup.core.context import RunContext
from reprosetup.core.models.diff import ResourceDiff
from reprosetup.core.models.outcome import Outcome
from reprosetup.core.reconcilers.base import (
    QueryFailed,
    Reconciler,
    ReconcilerPolicy,
    query_or_raise,
)

logger = logging.getLogger(__name__)

UPGRADE = "system-upgrade"

# Upgrade output meaning "nothing changed"
_UP_TO_DATE_MARKERS = ("Nothing to do.", "0 upgraded, 0 newly installed")


class PackageReconciler(Reconciler):
    """Install declared packages that are missing.

    Args:
        manager: Adapter name ('dnf', 'apt', 'flatpak', 'pip', 'npm', 'cargo').
        packages: Declared package specs.
        upgrade: Run the manager's full upgrade first (system managers).
        remotes: Flatpak remote name → URL, ensured before installing.
    """

    section = "packages"
    policy = ReconcilerPolicy(additive_only=True)

    def __init__(
        self,
        manager: str,
        packages: list[str],
        upgrade: bool = False,
        remotes: dict[str, str] | None = None,
    ):
        self.manager = manager
        self.packages = list(dict.fromkeys(p.strip() for p in packages if p.strip()))
        self.upgrade = upgrade
        self.remotes = dict(remotes or {})
        self.default_remote = next(iter(self.remotes), "flathub")

    @property
    def domain(self) -> str:
        return f"packages.{self.manager}"

    def key(self, spec: str) -> str:
        """Name a declared spec shows up as in the installed listing."""
        if self.manager == "flatpak":
            return split_ref(spec, self.default_remote)[1]
        return package_key(self.manager, spec)

    # ── Query / diff ────────────────────────────────────────────

    def _list_installed(self, ctx: RunContext) -> set[str] | None:
        receipt = query_or_raise(ctx, self.manager, self.manager, "list_installed")
        packages = receipt.metadata.get("packages")
        # mock runs return no listing
        return None if packages is None else {self.key(p) for p in packages}

    def query_actual(self, ctx: RunContext) -> set[str]:
        if not self.packages:
            return set()
        return self._list_installed(ctx) or set()

    def diff(self, actual: set[str]) -> ResourceDiff:
        desired_keys = {self.key(p) for p in self.packages}
        to_add = [p for p in self.packages if self.key(p) not in actual]
        to_remove = sorted(actual - desired_keys)
        return ResourceDiff(
            to_add=to_add,
            to_update=[UPGRADE] if self.upgrade else [],
            to_remove=to_remove,
            drift=to_remove,
        )

    # ── Apply ───────────────────────────────────────────────────

    def apply(self, diff: ResourceDiff, ctx: RunContext) -> list[Outcome]:
        outcomes: list[Outcome] = []
        if UPGRADE in diff.to_update:
            outcomes.append(self._upgrade(ctx))

        for remote, batch in self._batches(diff.to_add):
            outcomes.extend(self._install_batch(ctx, remote, batch))
        return outcomes

    def _batches(self, specs: list[str]) -> list[tuple[str | None, list[str]]]:
        if not specs:
            return []
        if self.manager != "flatpak":
            return [(None, specs)]
        by_remote: dict[str, list[str]] = {}
        for spec in specs:
            remote, _app_id = split_ref(spec, self.default_remote)
            by_remote.setdefault(remote, []).append(spec)
        return list(by_remote.items())

    def _upgrade(self, ctx: RunContext) -> Outcome:
        receipt = ctx.dispatch(self.manager, "upgrade")
        if receipt.skipped:
            return Outcome.skip(self.domain, UPGRADE, receipt.output)
        if receipt.failed:
            return Outcome.from_failed_receipt(self.domain, UPGRADE, receipt)
        if any(marker in receipt.output for marker in _UP_TO_DATE_MARKERS):
            return Outcome.skip(self.domain, UPGRADE, "Already up to date", command=receipt.command)
        return Outcome.ok(self.domain, UPGRADE, "System upgraded", command=receipt.command)

    def _install_batch(self, ctx: RunContext, remote: str | None, specs: list[str]) -> list[Outcome]:
        params: dict = {}
        if remote is not None:
            url = self.remotes.get(remote)
            if url:
                ensured = ctx.dispatch(self.manager, "ensure_remote", remote=remote, url=url)
                if ensured.failed:
                    return [Outcome.from_failed_receipt(self.domain, s, ensured) for s in specs]
            params["remote"] = remote
            names = [self.key(s) for s in specs]
        else:
            names = specs

        logger.info("%s: installing %s", self.domain, ", ".join(names))
        receipt = ctx.dispatch(self.manager, "install", packages=names, **params)
        if receipt.skipped:
            return [Outcome.skip(self.domain, s, f"[dry-run] Would install {s}") for s in specs]
        if receipt.failed:
            return [Outcome.from_failed_receipt(self.domain, s, receipt) for s in specs]

        try:
            installed = self._list_installed(ctx)
        except QueryFailed as e:
            return [Outcome.from_failed_receipt(self.domain, s, e.receipt) for s in specs]

        outcomes = []
        for spec in specs:
            if installed is not None and self.key(spec) not in installed:
                outcomes.append(Outcome.fail(
                    self.domain,
                    spec,
                    f"{spec} is not installed after a successful {self.manager} install",
                    command=receipt.command,
                    return_code=receipt.return_code,
                ))
            else:
                outcomes.append(Outcome.ok(self.domain, spec, "Installed", command=receipt.command))
        return outcomes
