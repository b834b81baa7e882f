"""
Service reconciler — unit files and enabled/started state.

Three kinds of declaration converge here:

    built-in units   services.system / services.user: enabled and started
                     toggled independently; ``null`` leaves a flag alone
    custom services  unit (and timer) text written verbatim, flags applied
                     to the timer when there is one
    applications     one generated user unit per application

Unit text is fingerprinted under ``unit:<scope>:<unit>``.  A file is
written only when the declared text differs from the recorded one or
from what is on disk; after writing, the scope is daemon-reloaded and
the unit re-enabled.  A running unit is not restarted after a rewrite.

Overwriting a file this tool did not write (on-disk fingerprint not the
recorded one) needs confirmation.

When the daemon-reload after a write fails, the unit is recorded with
``reloaded=False``.  The next run reloads that scope again before
touching the unit's flags, and until then the flags are left alone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from reprosetup.core.context import RunContext
from reprosetup.core.engine.fingerprint import fingerprint_text
from reprosetup.core.models.action import Receipt
from reprosetup.core.models.desired import ServicesConfig
from reprosetup.core.models.diff import ResourceDiff
from reprosetup.core.models.outcome import Outcome
from reprosetup.core.models.state import StateRecord
from reprosetup.core.reconcilers.base import Reconciler, ReconcilerPolicy
from reprosetup.core.reconcilers.units import is_session_unit, render_app_unit

logger = logging.getLogger(__name__)


def unit_key(scope: str, unit: str) -> str:
    return f"unit:{scope}:{unit}"


@dataclass
class UnitFile:
    """Declared text of one unit file."""

    scope: str
    unit: str
    content: str

    @property
    def fingerprint(self) -> str:
        return fingerprint_text(self.content)

    @property
    def resource(self) -> str:
        return f"{self.scope}:{self.unit}"


@dataclass
class UnitToggle:
    """Declared enabled/started flags of one unit (``None`` = unmanaged)."""

    scope: str
    unit: str
    enabled: bool | None = None
    started: bool | None = None
    file: UnitFile | None = None

    @property
    def resource(self) -> str:
        return f"{self.scope}:{self.unit}"


@dataclass
class FileChange:
    file: UnitFile
    path: str = ""
    on_disk: str | None = None
    recorded: str | None = None
    pending_reload: bool = False
    probe_error: Receipt | None = None

    @property
    def foreign(self) -> bool:
        """On disk, but not the content this tool last wrote."""
        return self.on_disk is not None and self.on_disk != self.recorded


@dataclass
class ToggleChange:
    toggle: UnitToggle
    enabled: bool | None = None
    active: bool | None = None
    reenable: bool = False
    probe_error: Receipt | None = None
    notes: list[str] = field(default_factory=list)


def _desired_units(config: ServicesConfig) -> tuple[list[UnitFile], list[UnitToggle]]:
    files: list[UnitFile] = []
    toggles: list[UnitToggle] = []

    for scope, units in (("system", config.system), ("user", config.user)):
        for unit, state in units.items():
            if is_session_unit(unit):
                logger.debug("Ignoring session unit %s", unit)
                continue
            if state.enabled is None and state.started is None:
                continue
            toggles.append(UnitToggle(scope, unit, state.enabled, state.started))

    for custom in config.custom:
        if is_session_unit(custom.service_unit):
            continue
        service = UnitFile(custom.scope, custom.service_unit, custom.service_definition)
        files.append(service)
        target_file = service
        if custom.timer_definition:
            target_file = UnitFile(custom.scope, custom.timer_unit, custom.timer_definition)
            files.append(target_file)
        toggles.append(UnitToggle(
            custom.scope, custom.target_unit, custom.enabled, custom.started, file=target_file,
        ))

    for app in config.applications:
        if is_session_unit(app.name) or is_session_unit(app.unit_name):
            logger.debug("Ignoring session application %s", app.name)
            continue
        unit_file = UnitFile("user", app.unit_name, render_app_unit(app))
        files.append(unit_file)
        toggles.append(UnitToggle("user", app.unit_name, app.enabled, None, file=unit_file))

    return files, toggles


class ServiceReconciler(Reconciler):
    section = "services"
    policy = ReconcilerPolicy(confirms_destructive=True, tracks_state=True)

    def __init__(self, config: ServicesConfig):
        self.config = config
        self.files, self.toggles = _desired_units(config)
        self._records: dict[str, StateRecord | None] = {}

    # ── Query / diff ────────────────────────────────────────────

    def query_actual(self, ctx: RunContext) -> dict:
        files = {}
        for unit_file in self.files:
            receipt = ctx.query("systemd", "unit_file", scope=unit_file.scope, unit=unit_file.unit)
            files[unit_file.resource] = receipt
            self._records[unit_file.resource] = ctx.store.record(
                unit_key(unit_file.scope, unit_file.unit)
            )

        states = {}
        for toggle in self.toggles:
            states[toggle.resource] = ctx.query(
                "systemd", "state", scope=toggle.scope, unit=toggle.unit,
            )
        return {"files": files, "states": states}

    def diff(self, actual: dict) -> ResourceDiff:
        file_changes: list[FileChange] = []
        changed: set[str] = set()
        for unit_file in self.files:
            receipt: Receipt = actual["files"][unit_file.resource]
            record = self._records.get(unit_file.resource)
            recorded = record.fingerprint if record else None
            if receipt.failed:
                file_changes.append(FileChange(unit_file, probe_error=receipt))
                continue
            on_disk = receipt.metadata.get("fingerprint")
            in_place = on_disk == unit_file.fingerprint and recorded == unit_file.fingerprint
            pending = in_place and record.metadata.get("reloaded") is False
            if in_place and not pending:
                continue
            file_changes.append(FileChange(
                unit_file,
                path=str(receipt.metadata.get("path", unit_file.unit)),
                on_disk=on_disk,
                recorded=recorded,
                pending_reload=pending,
            ))
            if pending or on_disk != unit_file.fingerprint:
                changed.add(unit_file.resource)

        toggle_changes: list[ToggleChange] = []
        for toggle in self.toggles:
            receipt = actual["states"][toggle.resource]
            if receipt.failed:
                toggle_changes.append(ToggleChange(toggle, probe_error=receipt))
                continue
            enabled = receipt.metadata.get("enabled")
            active = receipt.metadata.get("active")
            reenable = toggle.file is not None and toggle.file.resource in changed
            mismatch = (
                (toggle.enabled is not None and toggle.enabled != enabled)
                or (toggle.started is not None and toggle.started != active)
            )
            if mismatch or reenable:
                toggle_changes.append(ToggleChange(toggle, enabled, active, reenable=reenable))

        return ResourceDiff(to_add=file_changes, to_update=toggle_changes)

    # ── Apply ───────────────────────────────────────────────────

    def apply(self, diff: ResourceDiff, ctx: RunContext) -> list[Outcome]:
        outcomes: list[Outcome] = []
        declined: set[str] = set()
        unreloaded: set[str] = set()
        outcomes.extend(self._apply_files(diff.to_add, ctx, declined, unreloaded))

        for change in diff.to_update:
            if change.probe_error is not None:
                outcomes.append(Outcome.from_failed_receipt(
                    self.domain, change.toggle.resource, change.probe_error,
                ))
                continue
            if change.toggle.file is not None and change.toggle.file.resource in unreloaded:
                outcomes.append(Outcome.skip(
                    self.domain, change.toggle.resource, "Left alone until daemon-reload succeeds",
                ))
                continue
            if change.reenable and change.toggle.file.resource in declined:
                change.reenable = False
                if not self._mismatched(change):
                    continue
            outcomes.append(self._apply_toggle(change, ctx))
        return outcomes

    def _apply_files(
        self,
        changes: list[FileChange],
        ctx: RunContext,
        declined: set[str],
        unreloaded: set[str],
    ) -> list[Outcome]:
        outcomes: list[Outcome] = []
        written: dict[str, list[UnitFile]] = {}
        pending: set[str] = set()

        for change in changes:
            unit_file = change.file
            if change.probe_error is not None:
                outcomes.append(Outcome.from_failed_receipt(
                    self.domain, unit_file.resource, change.probe_error,
                ))
                declined.add(unit_file.resource)
                continue

            if change.pending_reload:
                pending.add(unit_file.resource)
                written.setdefault(unit_file.scope, []).append(unit_file)
                continue

            if change.on_disk == unit_file.fingerprint:
                # already in place; only the record was missing
                ctx.store.put(unit_key(unit_file.scope, unit_file.unit), unit_file.fingerprint)
                continue

            if change.foreign and not ctx.confirm(
                f"Unit file {change.path} was changed outside reprosetup. Overwrite it?"
            ):
                declined.add(unit_file.resource)
                outcomes.append(Outcome.skip(
                    self.domain, unit_file.resource, "Overwrite of modified unit file declined",
                ))
                continue

            receipt = ctx.dispatch(
                "systemd", "write_unit",
                scope=unit_file.scope, unit=unit_file.unit, content=unit_file.content,
            )
            if receipt.skipped:
                outcomes.append(Outcome.skip(
                    self.domain, unit_file.resource, f"[dry-run] Would write {unit_file.unit}",
                ))
            elif receipt.failed:
                declined.add(unit_file.resource)
                outcomes.append(Outcome.from_failed_receipt(self.domain, unit_file.resource, receipt))
            else:
                written.setdefault(unit_file.scope, []).append(unit_file)

        for scope, unit_files in written.items():
            reload = ctx.dispatch("systemd", "daemon_reload", scope=scope)
            for unit_file in unit_files:
                key = unit_key(unit_file.scope, unit_file.unit)
                if reload.skipped:
                    outcomes.append(Outcome.skip(
                        self.domain, unit_file.resource, f"[dry-run] Would reload {scope} units",
                    ))
                elif reload.failed:
                    ctx.store.put(key, unit_file.fingerprint, reloaded=False)
                    unreloaded.add(unit_file.resource)
                    outcomes.append(Outcome.from_failed_receipt(
                        self.domain, unit_file.resource, reload,
                    ))
                else:
                    ctx.store.put(key, unit_file.fingerprint)
                    message = "Unit reloaded" if unit_file.resource in pending else "Unit file written"
                    outcomes.append(Outcome.ok(self.domain, unit_file.resource, message))
        return outcomes

    @staticmethod
    def _mismatched(change: ToggleChange) -> bool:
        toggle = change.toggle
        return (
            (toggle.enabled is not None and toggle.enabled != change.enabled)
            or (toggle.started is not None and toggle.started != change.active)
        )

    def _apply_toggle(self, change: ToggleChange, ctx: RunContext) -> Outcome:
        toggle = change.toggle
        steps: list[str] = []
        if toggle.enabled is not None and (toggle.enabled != change.enabled or change.reenable):
            steps.append("enable" if toggle.enabled else "disable")
        if toggle.started is not None and toggle.started != change.active:
            steps.append("start" if toggle.started else "stop")
        if not steps:
            return Outcome.skip(self.domain, toggle.resource, "Already in the declared state")

        done = []
        for step in steps:
            receipt = ctx.dispatch("systemd", step, scope=toggle.scope, unit=toggle.unit)
            if receipt.skipped:
                return Outcome.skip(
                    self.domain, toggle.resource, f"[dry-run] Would {', '.join(steps)}",
                )
            if receipt.failed:
                return Outcome.from_failed_receipt(self.domain, toggle.resource, receipt)
            done.append(step)

        check = ctx.query("systemd", "state", scope=toggle.scope, unit=toggle.unit)
        if check.failed:
            return Outcome.from_failed_receipt(self.domain, toggle.resource, check)
        mismatches = []
        enabled = check.metadata.get("enabled")
        active = check.metadata.get("active")
        if toggle.enabled is not None and enabled is not None and enabled != toggle.enabled:
            mismatches.append(f"enabled={enabled}")
        if toggle.started is not None and active is not None and active != toggle.started:
            mismatches.append(f"active={active}")
        if mismatches:
            return Outcome.fail(
                self.domain,
                toggle.resource,
                f"Still {', '.join(mismatches)} after {', '.join(done)}",
            )
        return Outcome.ok(self.domain, toggle.resource, ", ".join(done))
