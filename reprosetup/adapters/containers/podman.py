"""
Podman adapter — rootless container lifecycle.

Uses the podman CLI, never its API socket.  Declared flags are a
flattened argument string, so ``run``/``create`` go through ``sh -c``
and keep the author's quoting.
"""

from __future__ import annotations

import logging
import shlex
import shutil

from reprosetup.adapters.base import Adapter, ExecutionContext
from reprosetup.adapters.shell.command import run_process
from reprosetup.core.models.action import Receipt

logger = logging.getLogger(__name__)

DEFAULT_STOP_TIMEOUT = 10


def run_command_line(name: str, image: str, flags: str, detach: bool = True) -> str:
    """The ``podman run -d`` (or ``podman create``) line for a definition."""
    verb = "run -d" if detach else "create"
    parts = [f"podman {verb}", f"--name={shlex.quote(name)}"]
    if flags.strip():
        parts.append(flags.strip())
    parts.append(shlex.quote(image))
    return " ".join(parts)


class PodmanAdapter(Adapter):
    """Podman container operations.

    Action params:
        operation (str): One of 'exists', 'image_id', 'pull', 'run',
            'start', 'stop', 'remove'.
        name (str): Container name.
        image (str): Image reference (for 'image_id', 'pull', 'run').
        flags (str): Flattened run flags (for 'run').
        detach (bool): Start immediately (for 'run'; default: True).
        timeout (int): Graceful stop timeout in seconds (for 'stop').
        force (bool): Force removal (for 'remove').
    """

    operations = frozenset({"exists", "image_id", "pull", "run", "start", "stop", "remove"})

    _NEEDS_NAME = frozenset({"exists", "run", "start", "stop", "remove"})
    _NEEDS_IMAGE = frozenset({"image_id", "pull", "run"})

    @property
    def name(self) -> str:
        return "podman"

    def is_available(self) -> bool:
        return shutil.which("podman") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        valid, msg = super().validate(context)
        if not valid:
            return valid, msg
        if context.operation in self._NEEDS_NAME and not context.params.get("name"):
            return False, "Missing required param: 'name'"
        if context.operation in self._NEEDS_IMAGE and not context.params.get("image"):
            return False, "Missing required param: 'image'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        operation = context.operation
        params = context.params
        try:
            if operation == "exists":
                return self._exists(context, params["name"])
            elif operation == "image_id":
                return self._image_id(context, params["image"])
            elif operation == "pull":
                return self._podman(context, ["pull", params["image"]])
            elif operation == "run":
                line = run_command_line(
                    params["name"],
                    params["image"],
                    params.get("flags", ""),
                    detach=params.get("detach", True),
                )
                return run_process(self.name, context.action.id, line, shell=True)
            elif operation == "start":
                return self._podman(context, ["start", params["name"]])
            elif operation == "stop":
                timeout = params.get("timeout", DEFAULT_STOP_TIMEOUT)
                return self._podman(context, ["stop", "-t", str(timeout), params["name"]])
            elif operation == "remove":
                args = ["rm", "-f", params["name"]] if params.get("force") else ["rm", params["name"]]
                return self._podman(context, args)
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Unknown operation: {operation}",
            )
        except Exception as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Podman error: {e}",
            )

    # ── Operations ──────────────────────────────────────────────

    def _exists(self, ctx: ExecutionContext, name: str) -> Receipt:
        # exit 1 means "no such container", anything else is a real error
        probe = self._podman(ctx, ["container", "exists", name], ok_codes=(0, 1))
        if not probe.ok:
            return probe
        exists = probe.return_code == 0
        running = False
        if exists:
            inspect = self._podman(ctx, ["inspect", "--format", "{{.State.Running}}", name])
            if not inspect.ok:
                return inspect
            running = inspect.output.strip().lower() == "true"
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output="running" if running else ("stopped" if exists else "absent"),
            metadata={"command": probe.command, "exists": exists, "running": running},
        )

    def _image_id(self, ctx: ExecutionContext, image: str) -> Receipt:
        probe = self._podman(ctx, ["image", "exists", image], ok_codes=(0, 1))
        if not probe.ok:
            return probe
        if probe.return_code != 0:
            return Receipt.success(
                adapter=self.name,
                action_id=ctx.action.id,
                output="",
                metadata={"command": probe.command, "exists": False, "image_id": None},
            )
        inspect = self._podman(ctx, ["image", "inspect", "--format", "{{.Id}}", image])
        if not inspect.ok:
            return inspect
        image_id = inspect.output.strip()
        inspect.metadata.update({"exists": True, "image_id": image_id})
        return inspect

    # ── Helpers ─────────────────────────────────────────────────

    def _podman(
        self,
        ctx: ExecutionContext,
        args: list[str],
        ok_codes: tuple[int, ...] = (0,),
    ) -> Receipt:
        return run_process(
            self.name,
            ctx.action.id,
            ["podman", *args],
            timeout=ctx.params.get("command_timeout"),
            ok_codes=ok_codes,
        )
