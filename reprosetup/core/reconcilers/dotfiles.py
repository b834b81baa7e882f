"""
Dotfiles reconciler — hash-gated, backup-protected migration into $HOME.

Targets come from the payload directory:

    <source>/.bashrc          → ~/.bashrc           (setup_bashrc)
    <source>/.config/<dir>/   → ~/.config/<dir>/    (setup_config_dirs)

The source fingerprint is compared with the one recorded under
``dotfile:<destination>``.  Equal means done, with no prompt.  Otherwise
the destination is written directly when absent, recorded only when it
already holds the source content, and replaced after confirmation and a
``<path>.backup`` copy when it differs.  A declined overwrite leaves the
record untouched, so the next run asks again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from reprosetup.core.context import RunContext
from reprosetup.core.models.desired import DotfilesConfig
from reprosetup.core.models.diff import ResourceDiff
from reprosetup.core.models.outcome import Outcome
from reprosetup.core.reconcilers.base import Reconciler, ReconcilerPolicy

logger = logging.getLogger(__name__)


def dotfile_key(path: Path) -> str:
    return f"dotfile:{path}"


@dataclass
class DotfileTarget:
    source: Path
    destination: Path

    @property
    def key(self) -> str:
        return dotfile_key(self.destination)


@dataclass
class DotfileChange:
    target: DotfileTarget
    source_fp: str | None = None
    dest_exists: bool = False
    dest_fp: str | None = None
    missing_source: bool = False
    error: str = ""


class DotfilesReconciler(Reconciler):
    section = "dotfiles"
    policy = ReconcilerPolicy(confirms_destructive=True, tracks_state=True)

    def __init__(self, config: DotfilesConfig):
        self.config = config

    def targets(self, ctx: RunContext) -> list[DotfileTarget]:
        source = Path(self.config.source).expanduser()
        if not source.is_absolute():
            source = ctx.working_dir / source
        home = Path(self.config.home).expanduser() if self.config.home else ctx.home

        targets = []
        if self.config.setup_bashrc:
            targets.append(DotfileTarget(source / ".bashrc", home / ".bashrc"))
        if self.config.setup_config_dirs:
            config_dir = source / ".config"
            if config_dir.is_dir():
                for entry in sorted(config_dir.iterdir()):
                    if entry.is_dir():
                        targets.append(DotfileTarget(entry, home / ".config" / entry.name))
            else:
                logger.warning("No .config directory in dotfiles payload %s", source)
        return targets

    # ── Query / diff ────────────────────────────────────────────

    def query_actual(self, ctx: RunContext) -> list[DotfileChange]:
        states = []
        for target in self.targets(ctx):
            src = ctx.query("filesystem", "fingerprint", path=str(target.source))
            dst = ctx.query("filesystem", "fingerprint", path=str(target.destination))
            if src.failed or dst.failed:
                states.append(DotfileChange(target, error=(src.error or dst.error or "")))
                continue
            change = DotfileChange(
                target,
                source_fp=src.metadata.get("fingerprint"),
                dest_exists=bool(dst.metadata.get("exists", False)),
                dest_fp=dst.metadata.get("fingerprint"),
                missing_source=src.metadata.get("exists") is False,
            )
            if change.missing_source or ctx.store.get(target.key) != change.source_fp:
                states.append(change)
        return states

    def diff(self, actual: list[DotfileChange]) -> ResourceDiff:
        return ResourceDiff(to_update=actual)

    # ── Apply ───────────────────────────────────────────────────

    def apply(self, diff: ResourceDiff, ctx: RunContext) -> list[Outcome]:
        outcomes = []
        for change in diff.to_update:
            outcome = self._converge(change, ctx)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    def _converge(self, change: DotfileChange, ctx: RunContext) -> Outcome | None:
        target = change.target
        resource = str(target.destination)

        if change.error:
            return Outcome.fail(self.domain, resource, change.error)
        if change.missing_source:
            logger.warning("Dotfile source %s does not exist", target.source)
            return Outcome.skip(
                self.domain, resource, f"Source {target.source} not found", warning=True,
            )

        if change.dest_exists and change.dest_fp is not None and change.dest_fp == change.source_fp:
            ctx.store.put(target.key, change.source_fp, source=str(target.source))
            return None

        backup = None
        if change.dest_exists:
            if not ctx.confirm(f"{resource} differs from {target.source}. Back it up and replace it?"):
                return Outcome.skip(self.domain, resource, "Overwrite declined")
            backed_up = ctx.dispatch("filesystem", "backup", path=resource)
            if backed_up.skipped:
                return Outcome.skip(self.domain, resource, f"[dry-run] Would back up and replace {resource}")
            if backed_up.failed:
                return Outcome.from_failed_receipt(self.domain, resource, backed_up)
            backup = backed_up.metadata.get("backup")

        installed = ctx.dispatch("filesystem", "install", path=resource, source=str(target.source))
        if installed.skipped:
            return Outcome.skip(self.domain, resource, f"[dry-run] Would install {resource}")
        if installed.failed:
            return Outcome.from_failed_receipt(self.domain, resource, installed)

        check = ctx.query("filesystem", "fingerprint", path=resource)
        written = check.metadata.get("fingerprint") if check.ok else None
        if change.source_fp is not None and written is not None and written != change.source_fp:
            return Outcome.fail(self.domain, resource, f"{resource} does not match its source after install")

        ctx.store.put(target.key, change.source_fp or "", source=str(target.source))
        message = f"Installed (previous version at {backup})" if backup else "Installed"
        logger.info("Dotfile %s: %s", resource, message)
        return Outcome.ok(self.domain, resource, message)
