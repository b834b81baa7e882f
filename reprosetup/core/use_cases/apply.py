"""
Apply use case — converge the host to reprosetup.yml.

This is the full vertical slice from user intent to audited
convergence: load the declaration, open the state store, build the
registry and run context, run the reconcilers, write the audit entry.
``plan`` is the same slice in dry-run mode.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from reprosetup.adapters.registry import AdapterRegistry
from reprosetup.core.config.loader import ConfigError, find_config_file, load_desired_state
from reprosetup.core.context import RunContext
from reprosetup.core.engine.confirm import Confirmer
from reprosetup.core.engine.orchestrator import (
    SECTIONS,
    build_reconcilers,
    generate_operation_id,
    run_reconcilers,
    write_audit_entry,
)
from reprosetup.core.models.desired import DesiredState
from reprosetup.core.models.outcome import RunReport
from reprosetup.core.models.policy import ConfirmationPolicy, RunModes
from reprosetup.core.persistence.audit import AuditWriter
from reprosetup.core.persistence.state_file import StateStore

logger = logging.getLogger(__name__)

PACKAGE_MANAGERS = ("dnf", "apt", "flatpak", "pip", "npm", "cargo")


@dataclass
class ApplyResult:
    """Result of an apply (or plan) run."""

    report: RunReport | None = None
    desired: DesiredState | None = None
    config_path: Path | None = None
    state_path: Path | None = None
    domains: list[str] = field(default_factory=list)
    dry_run: bool = False
    mock: bool = False
    error: str | None = None

    @property
    def exit_code(self) -> int:
        if self.error:
            return 1
        return self.report.exit_code if self.report else 0

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["config_path"] = str(self.config_path)
        result["state_path"] = str(self.state_path)
        result["domains"] = self.domains
        result["dry_run"] = self.dry_run
        result["mock"] = self.mock
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def default_registry(mock_mode: bool = False) -> AdapterRegistry:
    """A registry with every real adapter registered."""
    from reprosetup.adapters.containers.podman import PodmanAdapter
    from reprosetup.adapters.host.hostname import HostnameAdapter
    from reprosetup.adapters.packages import (
        AptAdapter,
        CargoAdapter,
        DnfAdapter,
        FlatpakAdapter,
        NpmAdapter,
        PipAdapter,
    )
    from reprosetup.adapters.services.systemd import SystemdAdapter
    from reprosetup.adapters.shell.command import ShellCommandAdapter
    from reprosetup.adapters.shell.filesystem import FilesystemAdapter

    registry = AdapterRegistry(mock_mode=mock_mode)
    for adapter in (
        ShellCommandAdapter(),
        FilesystemAdapter(),
        HostnameAdapter(),
        DnfAdapter(),
        AptAdapter(),
        FlatpakAdapter(),
        PipAdapter(),
        NpmAdapter(),
        CargoAdapter(),
        SystemdAdapter(),
        PodmanAdapter(),
    ):
        registry.register(adapter)
    return registry


def validate_only(only: list[str] | None) -> None:
    """Reject unknown ``--only`` names.

    Raises:
        ConfigError: If a name is neither a section nor ``packages.<manager>``.
    """
    valid = set(SECTIONS) | {f"packages.{m}" for m in PACKAGE_MANAGERS}
    unknown = sorted(set(only or []) - valid)
    if unknown:
        raise ConfigError(
            f"Unknown domain(s): {', '.join(unknown)}. Valid: {', '.join(sorted(valid))}"
        )


def run_apply(
    config_path: Path | None = None,
    state_path: Path | None = None,
    policy: ConfirmationPolicy = ConfirmationPolicy.INTERACTIVE,
    modes: RunModes | None = None,
    only: list[str] | None = None,
    mock_mode: bool = False,
    registry: AdapterRegistry | None = None,
    prompt: Callable[[str], bool] | None = None,
    home: Path | None = None,
) -> ApplyResult:
    """Converge the host to the declared state.

    Args:
        config_path: Optional explicit path to reprosetup.yml.
        state_path: Optional state file override.
        policy: Confirmation policy for destructive actions.
        modes: Run modes (container recreation, dry run).
        only: Optional section names to restrict the run to.
        mock_mode: If True, every adapter action succeeds without running.
        registry: Optional pre-configured adapter registry.
        prompt: Optional prompt function (tests script the answers).
        home: Home directory override for dotfiles and user files.

    Returns:
        ApplyResult with the run report.
    """
    modes = modes or RunModes()
    result = ApplyResult(dry_run=modes.dry_run, mock=mock_mode)

    # ── Load configuration ───────────────────────────────────────
    try:
        validate_only(only)
        if config_path is None:
            config_path = find_config_file()
        desired = load_desired_state(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.desired = desired
    result.config_path = config_path

    # ── Open state ───────────────────────────────────────────────
    store = StateStore.open(state_path, read_only=modes.dry_run or mock_mode)
    result.state_path = store.path

    # ── Set up adapter registry ──────────────────────────────────
    if registry is None:
        registry = default_registry(mock_mode=mock_mode)
    elif mock_mode:
        registry.set_mock_mode(True)

    # ── Run ──────────────────────────────────────────────────────
    operation_id = generate_operation_id()
    ctx = RunContext(
        registry=registry,
        store=store,
        confirmer=Confirmer(policy, prompt=prompt, dry_run=modes.dry_run),
        modes=modes,
        working_dir=Path(desired.base_dir),
        home=home or Path.home(),
        report=RunReport(operation_id=operation_id),
    )
    reconcilers = build_reconcilers(desired, only)
    result.domains = [r.domain for r in reconcilers]

    logger.info(
        "Operation %s: %d reconciler(s)%s",
        operation_id,
        len(reconcilers),
        " [dry-run]" if modes.dry_run else "",
    )
    start = time.monotonic()
    report = run_reconcilers(reconcilers, ctx)
    duration_ms = int((time.monotonic() - start) * 1000)
    result.report = report

    # ── Audit ────────────────────────────────────────────────────
    if not mock_mode:
        write_audit_entry(
            report,
            AuditWriter(state_dir=store.path.parent),
            operation_type="plan" if modes.dry_run else "apply",
            domains=result.domains,
            dry_run=modes.dry_run,
            duration_ms=duration_ms,
        )

    return result
