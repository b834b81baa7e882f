"""
Package manager adapter base — list-installed and batched install.

Every package manager exposes the same two primitives to the engine:

    list_installed → Receipt(metadata={"packages": [...]})
    install        → Receipt for one batched invocation

Subclasses only describe their command lines and how to parse the
listing; running, sudo and receipt handling live here.
"""

from __future__ import annotations

import logging
import os
import shutil
from abc import abstractmethod
from typing import ClassVar

from reprosetup.adapters.base import Adapter, ExecutionContext
from reprosetup.adapters.shell.command import run_process
from reprosetup.core.models.action import Receipt

logger = logging.getLogger(__name__)


class PackageManagerAdapter(Adapter):
    """Common behavior of every package manager adapter.

    Action params:
        operation (str): 'list_installed' or 'install' (plus any
            manager-specific operations a subclass adds).
        packages (list[str]): Package names (for 'install').
        timeout (int): Timeout in seconds (default: none).
    """

    operations: ClassVar[frozenset[str]] = frozenset({"list_installed", "install"})

    #: Executable probed by is_available().
    binary: ClassVar[str] = ""
    #: Whether install needs root.
    privileged: ClassVar[bool] = False
    #: Exit codes of the listing command that still produce a usable listing.
    list_ok_codes: ClassVar[tuple[int, ...]] = (0,)

    def __init__(self, use_sudo: bool = True):
        self._use_sudo = use_sudo

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        valid, msg = super().validate(context)
        if not valid:
            return valid, msg
        if context.operation == "install" and not context.params.get("packages"):
            return False, "Missing required param: 'packages'"
        return True, ""

    # ── Subclass hooks ──────────────────────────────────────────

    @abstractmethod
    def list_command(self) -> list[str]:
        """Command that prints the installed packages."""

    @abstractmethod
    def install_command(self, packages: list[str], params: dict) -> list[str]:
        """Command that installs a batch of packages."""

    @abstractmethod
    def parse_installed(self, stdout: str) -> list[str]:
        """Installed package names from the listing output."""

    # ── Dispatch ────────────────────────────────────────────────

    def execute(self, context: ExecutionContext) -> Receipt:
        operation = context.operation
        try:
            if operation == "list_installed":
                return self._list_installed(context)
            elif operation == "install":
                packages = list(context.params["packages"])
                cmd = self.install_command(packages, context.params)
                if self.privileged:
                    cmd = self._sudo(cmd)
                return self._run(context, cmd)
            return self.execute_extra(context)
        except Exception as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"{self.name} error: {e}",
            )

    def execute_extra(self, context: ExecutionContext) -> Receipt:
        """Handle subclass-specific operations."""
        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=f"Unknown operation: {context.operation}",
        )

    def _list_installed(self, ctx: ExecutionContext) -> Receipt:
        receipt = self._run(ctx, self.list_command(), ok_codes=self.list_ok_codes)
        if not receipt.ok:
            return receipt
        packages = self.parse_installed(receipt.output)
        receipt.metadata["packages"] = packages
        receipt.output = "\n".join(packages)
        return receipt

    # ── Helpers ─────────────────────────────────────────────────

    def _sudo(self, cmd: list[str]) -> list[str]:
        if self._use_sudo and os.geteuid() != 0:
            return ["sudo", *cmd]
        return cmd

    def _run(
        self,
        ctx: ExecutionContext,
        cmd: list[str],
        ok_codes: tuple[int, ...] = (0,),
    ) -> Receipt:
        return run_process(
            self.name,
            ctx.action.id,
            cmd,
            cwd=ctx.working_dir,
            timeout=ctx.params.get("timeout"),
            ok_codes=ok_codes,
        )
