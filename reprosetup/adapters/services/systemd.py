"""
systemd adapter — unit state, toggles and unit files, per scope.

Scope ``system`` talks to the system manager (``sudo systemctl``, units
in /etc/systemd/system); scope ``user`` talks to the user manager
(``systemctl --user``, units in ~/.config/systemd/user).
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from reprosetup.adapters.base import Adapter, ExecutionContext
from reprosetup.adapters.shell.command import run_process
from reprosetup.core.engine.fingerprint import fingerprint_path
from reprosetup.core.models.action import Receipt
from reprosetup.core.persistence.state_file import config_home

logger = logging.getLogger(__name__)

SYSTEM_UNIT_DIR = Path("/etc/systemd/system")

_ENABLED_STATES = frozenset({"enabled", "enabled-runtime", "alias"})
_ACTIVE_STATES = frozenset({"active", "activating", "reloading"})
# is-enabled / is-active report state through non-zero exit codes too
_QUERY_CODES = (0, 1, 2, 3, 4)


def user_unit_dir() -> Path:
    return config_home() / "systemd" / "user"


def parse_unit_state(is_enabled: Receipt, is_active: Receipt) -> dict:
    """Combine ``is-enabled`` and ``is-active`` receipts into one state."""
    unit_file_state = is_enabled.output.strip().splitlines()[-1] if is_enabled.output.strip() else ""
    if not unit_file_state:
        stderr = str(is_enabled.metadata.get("stderr", "")).lower()
        if "no such file" in stderr or "not found" in stderr or "not loaded" in stderr:
            unit_file_state = "not-found"
    active_state = is_active.output.strip().splitlines()[-1] if is_active.output.strip() else "unknown"
    return {
        "unit_file_state": unit_file_state,
        "active_state": active_state,
        "exists": unit_file_state not in ("", "not-found"),
        "enabled": unit_file_state in _ENABLED_STATES,
        "active": active_state in _ACTIVE_STATES,
    }


class SystemdAdapter(Adapter):
    """systemd service-manager operations.

    Action params:
        operation (str): One of 'state', 'enable', 'disable', 'start',
            'stop', 'daemon_reload', 'unit_file', 'write_unit'.
        unit (str): Unit name, e.g. 'sshd.service'.
        scope (str): 'system' or 'user' (default: 'user').
        content (str): Unit text (for 'write_unit').
    """

    operations = frozenset(
        {"state", "enable", "disable", "start", "stop", "daemon_reload", "unit_file", "write_unit"}
    )

    def __init__(
        self,
        user_dir: Path | None = None,
        system_dir: Path = SYSTEM_UNIT_DIR,
        use_sudo: bool = True,
    ):
        self._user_dir = user_dir
        self._system_dir = system_dir
        self._use_sudo = use_sudo

    @property
    def name(self) -> str:
        return "systemd"

    def is_available(self) -> bool:
        return shutil.which("systemctl") is not None

    def unit_dir(self, scope: str) -> Path:
        if scope == "system":
            return self._system_dir
        return self._user_dir or user_unit_dir()

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        valid, msg = super().validate(context)
        if not valid:
            return valid, msg

        scope = context.params.get("scope", "user")
        if scope not in ("system", "user"):
            return False, f"Invalid scope '{scope}'. Valid: system, user"
        if context.operation != "daemon_reload" and not context.params.get("unit"):
            return False, "Missing required param: 'unit'"
        if context.operation == "write_unit" and "content" not in context.params:
            return False, "Missing required param: 'content' for write_unit"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        operation = context.operation
        scope = context.params.get("scope", "user")
        unit = context.params.get("unit", "")
        try:
            if operation == "state":
                return self._state(context, scope, unit)
            elif operation in ("enable", "disable", "start", "stop"):
                return self._systemctl(context, scope, [operation, unit])
            elif operation == "daemon_reload":
                return self._systemctl(context, scope, ["daemon-reload"])
            elif operation == "unit_file":
                return self._unit_file(context, scope, unit)
            elif operation == "write_unit":
                return self._write_unit(context, scope, unit, context.params["content"])
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Unknown operation: {operation}",
            )
        except Exception as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"systemd error: {e}",
            )

    # ── Operations ──────────────────────────────────────────────

    def _state(self, ctx: ExecutionContext, scope: str, unit: str) -> Receipt:
        is_enabled = self._systemctl(ctx, scope, ["is-enabled", unit], ok_codes=_QUERY_CODES, query=True)
        if not is_enabled.ok:
            return is_enabled
        is_active = self._systemctl(ctx, scope, ["is-active", unit], ok_codes=_QUERY_CODES, query=True)
        if not is_active.ok:
            return is_active

        state = parse_unit_state(is_enabled, is_active)
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=f"{state['unit_file_state']}/{state['active_state']}",
            metadata={"unit": unit, "scope": scope, **state},
        )

    def _unit_file(self, ctx: ExecutionContext, scope: str, unit: str) -> Receipt:
        path = self.unit_dir(scope) / unit
        fingerprint = fingerprint_path(path)
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=str(path),
            metadata={
                "path": str(path),
                "exists": fingerprint is not None,
                "fingerprint": fingerprint,
            },
        )

    def _write_unit(self, ctx: ExecutionContext, scope: str, unit: str, content: str) -> Receipt:
        path = self.unit_dir(scope) / unit
        if scope == "system" and self._needs_sudo():
            receipt = run_process(
                self.name,
                ctx.action.id,
                ["sudo", "tee", str(path)],
                input_text=content,
            )
            if receipt.ok:
                receipt.output = f"Written {len(content)} bytes to {path}"
            receipt.metadata["path"] = str(path)
            return receipt

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.debug("Wrote unit %s", path)
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=f"Written {len(content)} bytes to {path}",
            metadata={"path": str(path), "command": f"write {path}"},
        )

    # ── Helpers ─────────────────────────────────────────────────

    def _needs_sudo(self) -> bool:
        return self._use_sudo and os.geteuid() != 0

    def _systemctl(
        self,
        ctx: ExecutionContext,
        scope: str,
        args: list[str],
        ok_codes: tuple[int, ...] = (0,),
        query: bool = False,
    ) -> Receipt:
        if scope == "user":
            cmd = ["systemctl", "--user", *args]
        else:
            cmd = ["systemctl", *args]
            if not query and self._needs_sudo():
                cmd = ["sudo", *cmd]
        return run_process(self.name, ctx.action.id, cmd, ok_codes=ok_codes)
