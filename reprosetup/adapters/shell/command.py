"""
Shell command adapter — execute user-declared shell commands.

This is the most fundamental adapter: it runs commands and captures
their output.  ``run_process`` is the subprocess primitive every other
adapter is built on.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import time
from collections.abc import Sequence
from pathlib import Path

from reprosetup.adapters.base import Adapter, ExecutionContext
from reprosetup.core.models.action import Receipt

logger = logging.getLogger(__name__)


def _display(cmd: Sequence[str] | str) -> str:
    return cmd if isinstance(cmd, str) else shlex.join(cmd)


def run_process(
    adapter: str,
    action_id: str,
    cmd: Sequence[str] | str,
    *,
    shell: bool = False,
    cwd: str | None = None,
    timeout: float | None = None,
    input_text: str | None = None,
    ok_codes: Sequence[int] = (0,),
) -> Receipt:
    """Run a command and wrap the result in a Receipt.

    No timeout is imposed unless the caller asks for one: package
    resolution and image pulls take as long as the tool needs.

    Returns:
        Receipt. ``metadata`` always carries ``command``; it carries
        ``return_code`` and ``stderr`` whenever the process ran.
    """
    command = _display(cmd)
    logger.debug("Executing: %s (cwd=%s)", command, cwd)
    start = time.monotonic()

    try:
        result = subprocess.run(
            cmd if not shell else command,
            shell=shell,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input_text,
        )
    except subprocess.TimeoutExpired:
        return Receipt.failure(
            adapter=adapter,
            action_id=action_id,
            error=f"Command timed out after {timeout}s",
            metadata={"command": command, "timeout": timeout},
        )
    except FileNotFoundError as e:
        return Receipt.failure(
            adapter=adapter,
            action_id=action_id,
            error=f"Command not found: {e.filename or command}",
            metadata={"command": command, "return_code": 127},
        )
    except Exception as e:
        return Receipt.failure(
            adapter=adapter,
            action_id=action_id,
            error=f"Command execution error: {e}",
            metadata={"command": command},
        )

    elapsed_ms = int((time.monotonic() - start) * 1000)
    output = result.stdout.strip()
    stderr = result.stderr.strip()

    if result.returncode in ok_codes:
        return Receipt.success(
            adapter=adapter,
            action_id=action_id,
            output=output,
            duration_ms=elapsed_ms,
            metadata={
                "command": command,
                "return_code": result.returncode,
                "stderr": stderr,
            },
        )

    return Receipt.failure(
        adapter=adapter,
        action_id=action_id,
        error=stderr or f"Command exited with code {result.returncode}",
        duration_ms=elapsed_ms,
        metadata={
            "command": command,
            "return_code": result.returncode,
            "stdout": output,
        },
    )


class ShellCommandAdapter(Adapter):
    """Execute shell commands and capture output.

    Commands run through ``sh -c`` so that declared commands can use
    pipes, redirections and environment variables.

    Action params:
        command (str): The command to execute.
        timeout (int): Timeout in seconds (default: none).
        cwd (str): Override working directory (default: context.working_dir).
    """

    @property
    def name(self) -> str:
        return "shell"

    def is_available(self) -> bool:
        # Shell is always available on Unix systems
        return shutil.which("sh") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        command = context.params.get("command", "")
        if not command:
            return False, "Missing required param: 'command'"

        cwd = context.params.get("cwd", context.working_dir)
        if cwd and not Path(cwd).is_dir():
            return False, f"Working directory does not exist: {cwd}"

        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        return run_process(
            self.name,
            context.action.id,
            context.params["command"],
            shell=True,
            cwd=context.params.get("cwd", context.working_dir),
            timeout=context.params.get("timeout"),
        )
