"""
System package managers — dnf (Fedora) and apt (Debian/Ubuntu).

Which one is used is decided by the declared ``distro``; the engine
never probes the running distribution.
"""

from __future__ import annotations

from typing import ClassVar

from reprosetup.adapters.base import ExecutionContext
from reprosetup.adapters.packages.base import PackageManagerAdapter
from reprosetup.core.models.action import Receipt


class DnfAdapter(PackageManagerAdapter):
    """dnf: ``rpm -qa`` listing, ``dnf install -y`` batches.

    ``--skip-unavailable`` keeps one unknown name from sinking the
    whole batch; the reconciler's post-install listing catches it.
    """

    operations: ClassVar[frozenset[str]] = frozenset({"list_installed", "install", "upgrade"})
    binary = "dnf"
    privileged = True

    @property
    def name(self) -> str:
        return "dnf"

    def list_command(self) -> list[str]:
        return ["rpm", "-qa", "--queryformat", "%{NAME}\\n"]

    def install_command(self, packages: list[str], params: dict) -> list[str]:
        return ["dnf", "install", "-y", "--skip-unavailable", *packages]

    def parse_installed(self, stdout: str) -> list[str]:
        return sorted({line.strip() for line in stdout.splitlines() if line.strip()})

    def execute_extra(self, context: ExecutionContext) -> Receipt:
        if context.operation == "upgrade":
            return self._run(context, self._sudo(["dnf", "upgrade", "-y"]))
        return super().execute_extra(context)


class AptAdapter(PackageManagerAdapter):
    """apt: ``dpkg-query`` listing, ``apt-get install -y`` batches."""

    operations: ClassVar[frozenset[str]] = frozenset({"list_installed", "install", "upgrade"})
    binary = "apt-get"
    privileged = True

    @property
    def name(self) -> str:
        return "apt"

    def list_command(self) -> list[str]:
        return ["dpkg-query", "-W", "-f", "${db:Status-Abbrev} ${Package}\\n"]

    def install_command(self, packages: list[str], params: dict) -> list[str]:
        return ["apt-get", "install", "-y", *packages]

    def parse_installed(self, stdout: str) -> list[str]:
        # "ii  vim" — only fully installed packages count
        names = set()
        for line in stdout.splitlines():
            parts = line.split()
            if len(parts) >= 2 and parts[0] == "ii":
                names.add(parts[1].split(":", 1)[0])
        return sorted(names)

    def execute_extra(self, context: ExecutionContext) -> Receipt:
        if context.operation == "upgrade":
            update = self._run(context, self._sudo(["apt-get", "update"]))
            if not update.ok:
                return update
            return self._run(context, self._sudo(["apt-get", "upgrade", "-y"]))
        return super().execute_extra(context)
