"""
Flatpak adapter — application installs from configured remotes.

Declared ids may be remote-qualified (``flathub:org.gimp.GIMP``).  A
``flatpak install`` invocation targets exactly one remote, so batches
are per remote.
"""

from __future__ import annotations

from typing import ClassVar

from reprosetup.adapters.base import ExecutionContext
from reprosetup.adapters.packages.base import PackageManagerAdapter
from reprosetup.core.models.action import Receipt


def split_ref(ref: str, default_remote: str) -> tuple[str, str]:
    """``remote:appid`` → (remote, appid); bare ids use the default remote."""
    if ":" in ref:
        remote, app_id = ref.split(":", 1)
        if remote and app_id:
            return remote, app_id
    return default_remote, ref


class FlatpakAdapter(PackageManagerAdapter):
    """Flatpak application installs.

    Action params:
        remote (str): Remote to install from (for 'install').
        url (str): Remote repository URL (for 'ensure_remote').
    """

    operations: ClassVar[frozenset[str]] = frozenset(
        {"list_installed", "install", "ensure_remote"}
    )
    binary = "flatpak"

    @property
    def name(self) -> str:
        return "flatpak"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        valid, msg = super().validate(context)
        if not valid:
            return valid, msg
        if context.operation in ("install", "ensure_remote") and not context.params.get("remote"):
            return False, "Missing required param: 'remote'"
        if context.operation == "ensure_remote" and not context.params.get("url"):
            return False, "Missing required param: 'url'"
        return True, ""

    def list_command(self) -> list[str]:
        return ["flatpak", "list", "--app", "--columns=application"]

    def install_command(self, packages: list[str], params: dict) -> list[str]:
        return ["flatpak", "install", "-y", "--noninteractive", params["remote"], *packages]

    def parse_installed(self, stdout: str) -> list[str]:
        names = {line.strip() for line in stdout.splitlines()}
        names.discard("")
        names.discard("Application ID")
        return sorted(names)

    def execute_extra(self, context: ExecutionContext) -> Receipt:
        if context.operation == "ensure_remote":
            return self._run(
                context,
                [
                    "flatpak",
                    "remote-add",
                    "--if-not-exists",
                    context.params["remote"],
                    context.params["url"],
                ],
            )
        return super().execute_extra(context)
