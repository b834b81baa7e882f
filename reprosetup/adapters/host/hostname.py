"""
Hostname adapter — static hostname through hostnamectl.
"""

from __future__ import annotations

import os
import shutil

from reprosetup.adapters.base import Adapter, ExecutionContext
from reprosetup.adapters.shell.command import run_process
from reprosetup.core.models.action import Receipt


class HostnameAdapter(Adapter):
    """Read and set the static hostname.

    Action params:
        operation (str): 'get' or 'set'.
        hostname (str): New hostname (for 'set').
    """

    operations = frozenset({"get", "set"})

    def __init__(self, use_sudo: bool = True):
        self._use_sudo = use_sudo

    @property
    def name(self) -> str:
        return "hostname"

    def is_available(self) -> bool:
        return shutil.which("hostnamectl") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        valid, msg = super().validate(context)
        if not valid:
            return valid, msg
        if context.operation == "set" and not context.params.get("hostname"):
            return False, "Missing required param: 'hostname'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        if context.operation == "get":
            receipt = run_process(self.name, context.action.id, ["hostnamectl", "--static"])
            if receipt.ok:
                receipt.metadata["hostname"] = receipt.output.strip()
            return receipt

        cmd = ["hostnamectl", "set-hostname", context.params["hostname"]]
        if self._use_sudo and os.geteuid() != 0:
            cmd = ["sudo", *cmd]
        return run_process(self.name, context.action.id, cmd)
