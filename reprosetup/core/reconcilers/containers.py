"""
Container reconciler — fingerprint-based container convergence.

A container's fingerprint is ``sha256(image \\0 flags)``, recorded
under ``container:<name>`` together with the image id it was created
from.  Per declared container:

    exists  fingerprint  mode                    action
    no      -            any                     create
    yes     match        default / no-recreate   ensure running only
    yes     differs      default / update        recreate (confirmed)
    yes     differs      no-recreate             leave, report drift
    yes     match        force-recreate          recreate
    yes     match        update-images           pull; recreate if the
                                                 image id changed

``no_recreate`` overrides the other two modes.  Recreations asked for
by a mode flag are not confirmed; a recreation caused by a changed
declaration is.

An ``autostart`` container also owns a user unit
``container-<name>.service``, tracked under its own ``unit:`` key.  The
unit is checked on every run whatever happened to the container, so a
failed install, a newly enabled ``autostart`` or a deleted unit file
converge on the next run.

Before the definitions, the registries file is written (when changed)
and the pre-setup commands run, every time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from reprosetup.core.context import RunContext
from reprosetup.core.engine.fingerprint import fingerprint_container, fingerprint_text
from reprosetup.core.models.action import Receipt
from reprosetup.core.models.desired import ContainersConfig, ContainerSpec
from reprosetup.core.models.diff import ResourceDiff
from reprosetup.core.models.outcome import Outcome
from reprosetup.core.reconcilers.base import Reconciler, ReconcilerPolicy
from reprosetup.core.reconcilers.units import container_unit_name, render_container_unit

logger = logging.getLogger(__name__)

STOP_TIMEOUT = 10
REGISTRIES_FILE = ".config/containers/registries.conf"

CREATE = "create"
RECREATE = "recreate"
CHECK_IMAGE = "check_image"
ENSURE_RUNNING = "ensure_running"
ENSURE_UNIT = "ensure_unit"
DRIFT = "drift"
ERROR = "error"


def container_key(name: str) -> str:
    return f"container:{name}"


def autostart_unit_key(name: str) -> str:
    return f"unit:user:{container_unit_name(name)}"


def render_registries(registries: list[str]) -> str:
    quoted = ", ".join(f'"{r}"' for r in registries)
    return f"unqualified-search-registries = [{quoted}]\n"


@dataclass
class ContainerChange:
    spec: ContainerSpec
    action: str
    fingerprint: str
    running: bool = False
    confirm: bool = False
    reason: str = ""
    probe_error: Receipt | None = None


class ContainerReconciler(Reconciler):
    section = "containers"
    policy = ReconcilerPolicy(confirms_destructive=True, tracks_state=True)

    def __init__(self, config: ContainersConfig):
        self.config = config
        self.runtime = config.runtime
        self._stored: dict[str, str | None] = {}

    # ── Query / diff ────────────────────────────────────────────

    def query_actual(self, ctx: RunContext) -> dict:
        live = {}
        units = {}
        for spec in self.config.definitions:
            self._stored[spec.name] = ctx.store.get(container_key(spec.name))
            live[spec.name] = ctx.query(self.runtime, "exists", name=spec.name)
            if spec.autostart:
                units[spec.name] = {
                    "probe": ctx.query(
                        "systemd", "unit_file", scope="user", unit=container_unit_name(spec.name),
                    ),
                    "recorded": ctx.store.get(autostart_unit_key(spec.name)),
                }

        registries = None
        if self.config.registries:
            path = ctx.home / REGISTRIES_FILE
            registries = {
                "path": path,
                "probe": ctx.query("filesystem", "fingerprint", path=str(path)),
                "recorded": ctx.store.get(f"file:{path}"),
            }
        return {"live": live, "units": units, "registries": registries, "modes": ctx.modes}

    @staticmethod
    def _unit_in_place(name: str, unit: dict | None) -> bool:
        if unit is None:
            return True
        wanted = fingerprint_text(render_container_unit(name, STOP_TIMEOUT))
        probe: Receipt = unit["probe"]
        return probe.ok and probe.metadata.get("fingerprint") == wanted and unit["recorded"] == wanted

    def diff(self, actual: dict) -> ResourceDiff:
        modes = actual["modes"]
        changes: list[ContainerChange] = []
        drift: list[str] = []

        for spec in self.config.definitions:
            desired = fingerprint_container(spec.image, spec.flags)
            probe: Receipt = actual["live"][spec.name]
            if probe.failed:
                changes.append(ContainerChange(spec, ERROR, desired, probe_error=probe))
                continue

            exists = bool(probe.metadata.get("exists", False))
            running = bool(probe.metadata.get("running", False))
            matches = self._stored.get(spec.name) == desired

            if not exists:
                changes.append(ContainerChange(spec, CREATE, desired))
            elif matches and modes.forcing:
                changes.append(ContainerChange(
                    spec, RECREATE, desired, running, reason="--force-recreate",
                ))
            elif matches and modes.updating_images:
                changes.append(ContainerChange(spec, CHECK_IMAGE, desired, running))
            elif matches:
                if spec.start_after_creation and not running:
                    changes.append(ContainerChange(spec, ENSURE_RUNNING, desired, running))
                elif not self._unit_in_place(spec.name, actual["units"].get(spec.name)):
                    changes.append(ContainerChange(spec, ENSURE_UNIT, desired, running))
            elif modes.no_recreate:
                drift.append(spec.name)
                changes.append(ContainerChange(spec, DRIFT, desired, running))
            else:
                changes.append(ContainerChange(
                    spec, RECREATE, desired, running,
                    confirm=True, reason="its definition changed",
                ))

        setup = []
        registries = actual["registries"]
        if registries is not None:
            content = render_registries(self.config.registries)
            probe = registries["probe"]
            on_disk = probe.metadata.get("fingerprint") if probe.ok else None
            wanted = fingerprint_text(content)
            if probe.failed or on_disk != wanted or registries["recorded"] != wanted:
                setup.append({**registries, "content": content, "on_disk": on_disk})

        return ResourceDiff(
            to_add=setup + list(self.config.pre_setup),
            to_update=changes,
            drift=drift,
        )

    # ── Apply ───────────────────────────────────────────────────

    def apply(self, diff: ResourceDiff, ctx: RunContext) -> list[Outcome]:
        outcomes: list[Outcome] = []
        for item in diff.to_add:
            if isinstance(item, dict):
                outcome = self._write_registries(item, ctx)
            else:
                outcome = self._run_setup(item, ctx)
            if outcome is not None:
                outcomes.append(outcome)

        for change in diff.to_update:
            outcomes.extend(self._converge(change, ctx))
        return outcomes

    def _converge(self, change: ContainerChange, ctx: RunContext) -> list[Outcome]:
        if change.action == ERROR:
            return [Outcome.from_failed_receipt(self.domain, change.spec.name, change.probe_error)]
        outcomes = self._converge_container(change, ctx)
        if change.spec.autostart and not any(o.failed for o in outcomes):
            unit_outcome = self._ensure_autostart_unit(change.spec.name, ctx)
            if unit_outcome is not None:
                outcomes.append(unit_outcome)
        return outcomes

    def _converge_container(self, change: ContainerChange, ctx: RunContext) -> list[Outcome]:
        name = change.spec.name
        if change.action == ENSURE_UNIT:
            return []
        if change.action == DRIFT:
            return [Outcome.skip(
                self.domain, name,
                "Definition changed; left in place (--no-recreate)",
                drift=True,
            )]
        if change.action == CREATE:
            return self._create(change, ctx, pull=ctx.modes.updating_images)
        if change.action == ENSURE_RUNNING:
            return [self._start(change, ctx)]
        if change.action == CHECK_IMAGE:
            return self._check_image(change, ctx)
        return self._recreate(change, ctx)

    # ── Actions ─────────────────────────────────────────────────

    def _create(self, change: ContainerChange, ctx: RunContext, pull: bool = False) -> list[Outcome]:
        spec = change.spec
        name = spec.name

        if not pull:
            image = ctx.query(self.runtime, "image_id", image=spec.image)
            if image.failed:
                return [Outcome.from_failed_receipt(self.domain, name, image)]
            pull = image.metadata.get("exists") is False
        if pull:
            pulled = ctx.dispatch(self.runtime, "pull", image=spec.image)
            if pulled.skipped:
                return [Outcome.skip(self.domain, name, f"[dry-run] Would create {name}")]
            if pulled.failed:
                return [Outcome.from_failed_receipt(self.domain, name, pulled)]

        run = ctx.dispatch(
            self.runtime, "run",
            name=name, image=spec.image, flags=spec.flags, detach=spec.start_after_creation,
        )
        if run.skipped:
            return [Outcome.skip(self.domain, name, f"[dry-run] Would create {name}")]
        if run.failed:
            return [Outcome.from_failed_receipt(self.domain, name, run)]

        check = ctx.query(self.runtime, "exists", name=name)
        if check.failed:
            return [Outcome.from_failed_receipt(self.domain, name, check)]
        if check.metadata.get("exists") is False:
            return [Outcome.fail(self.domain, name, f"{name} does not exist after create", command=run.command)]
        if spec.start_after_creation and check.metadata.get("running") is False:
            return [Outcome.fail(self.domain, name, f"{name} is not running after create", command=run.command)]

        image = ctx.query(self.runtime, "image_id", image=spec.image)
        ctx.store.put(
            container_key(name),
            change.fingerprint,
            image=spec.image,
            image_id=image.metadata.get("image_id") if image.ok else None,
        )
        logger.info("Container %s created", name)
        return [Outcome.ok(self.domain, name, "Created", command=run.command)]

    def _recreate(self, change: ContainerChange, ctx: RunContext) -> list[Outcome]:
        name = change.spec.name
        if change.confirm and not ctx.confirm(
            f"Container {name} must be recreated because {change.reason}; "
            "its ephemeral state will be lost. Recreate?"
        ):
            return [Outcome.skip(self.domain, name, "Recreation declined")]

        outcomes: list[Outcome] = []
        stop = ctx.dispatch(self.runtime, "stop", name=name, timeout=STOP_TIMEOUT)
        if stop.skipped:
            return [Outcome.skip(self.domain, name, f"[dry-run] Would recreate {name} ({change.reason})")]

        force = stop.failed
        if force:
            logger.warning("Could not stop %s: %s — forcing removal", name, stop.error)
            outcomes.append(Outcome.ok(
                self.domain, name,
                f"Stop failed ({stop.error}); removed with --force",
                command=stop.command,
                return_code=stop.return_code,
                warning=True,
            ))
        removed = ctx.dispatch(self.runtime, "remove", name=name, force=force)
        if removed.failed:
            outcomes.append(Outcome.from_failed_receipt(self.domain, name, removed))
            return outcomes

        outcomes.extend(self._create(change, ctx, pull=ctx.modes.updating_images))
        return outcomes

    def _check_image(self, change: ContainerChange, ctx: RunContext) -> list[Outcome]:
        spec = change.spec
        pulled = ctx.dispatch(self.runtime, "pull", image=spec.image)
        if pulled.skipped:
            return [Outcome.skip(self.domain, spec.name, f"[dry-run] Would pull {spec.image}")]
        if pulled.failed:
            return [Outcome.from_failed_receipt(self.domain, spec.name, pulled)]

        image = ctx.query(self.runtime, "image_id", image=spec.image)
        if image.failed:
            return [Outcome.from_failed_receipt(self.domain, spec.name, image)]

        record = ctx.store.record(container_key(spec.name))
        recorded_id = record.metadata.get("image_id") if record else None
        current_id = image.metadata.get("image_id")
        if current_id and current_id != recorded_id:
            change.reason = "its image was updated"
            change.confirm = False
            return self._recreate(change, ctx)

        if spec.start_after_creation and not change.running:
            return [self._start(change, ctx)]
        return [Outcome.skip(self.domain, spec.name, "Image unchanged")]

    def _start(self, change: ContainerChange, ctx: RunContext) -> Outcome:
        name = change.spec.name
        started = ctx.dispatch(self.runtime, "start", name=name)
        if started.skipped:
            return Outcome.skip(self.domain, name, f"[dry-run] Would start {name}")
        if started.failed:
            return Outcome.from_failed_receipt(self.domain, name, started)
        check = ctx.query(self.runtime, "exists", name=name)
        if check.ok and check.metadata.get("running") is False:
            return Outcome.fail(self.domain, name, f"{name} is not running after start", command=started.command)
        return Outcome.ok(self.domain, name, "Started", command=started.command)

    def _ensure_autostart_unit(self, name: str, ctx: RunContext) -> Outcome | None:
        unit = container_unit_name(name)
        resource = f"{name} ({unit})"
        content = render_container_unit(name, STOP_TIMEOUT)
        fingerprint = fingerprint_text(content)
        key = autostart_unit_key(name)

        probe = ctx.query("systemd", "unit_file", scope="user", unit=unit)
        if probe.failed:
            return Outcome.from_failed_receipt(self.domain, resource, probe)
        on_disk = probe.metadata.get("fingerprint")
        recorded = ctx.store.get(key)
        if on_disk == fingerprint and recorded == fingerprint:
            return None
        if on_disk is not None and on_disk not in (fingerprint, recorded) and not ctx.confirm(
            f"Unit file {probe.metadata.get('path', unit)} was changed outside reprosetup. Overwrite it?"
        ):
            return Outcome.skip(self.domain, resource, "Overwrite of modified unit file declined")

        for operation, params in (
            ("write_unit", {"content": content}),
            ("daemon_reload", {}),
            ("enable", {}),
        ):
            if operation != "daemon_reload":
                params = {**params, "unit": unit}
            receipt = ctx.dispatch("systemd", operation, scope="user", **params)
            if receipt.skipped:
                return Outcome.skip(self.domain, resource, f"[dry-run] Would install {unit}")
            if receipt.failed:
                return Outcome.from_failed_receipt(self.domain, resource, receipt)

        ctx.store.put(key, fingerprint)
        return Outcome.ok(self.domain, resource, "Autostart unit installed")

    def _write_registries(self, item: dict, ctx: RunContext) -> Outcome | None:
        path = item["path"]
        resource = str(path)
        probe: Receipt = item["probe"]
        if probe.failed:
            return Outcome.from_failed_receipt(self.domain, resource, probe)

        fingerprint = fingerprint_text(item["content"])
        if item["on_disk"] == fingerprint:
            ctx.store.put(f"file:{path}", fingerprint)
            return None
        if item["on_disk"] is not None and item["on_disk"] != item["recorded"] and not ctx.confirm(
            f"{path} was changed outside reprosetup. Overwrite it?"
        ):
            return Outcome.skip(self.domain, resource, "Overwrite declined")

        receipt = ctx.dispatch("filesystem", "write", path=str(path), content=item["content"])
        if receipt.skipped:
            return Outcome.skip(self.domain, resource, f"[dry-run] Would write {path}")
        if receipt.failed:
            return Outcome.from_failed_receipt(self.domain, resource, receipt)
        ctx.store.put(f"file:{path}", fingerprint)
        return Outcome.ok(self.domain, resource, "Registries written")

    def _run_setup(self, setup, ctx: RunContext) -> Outcome:
        resource = setup.description or setup.command
        receipt = ctx.dispatch("shell", "run", command=setup.command)
        if receipt.skipped:
            return Outcome.skip(self.domain, resource, f"[dry-run] Would run: {setup.command}")
        if receipt.failed:
            return Outcome.from_failed_receipt(self.domain, resource, receipt)
        return Outcome.ok(self.domain, resource, "Setup command ran", command=receipt.command)
