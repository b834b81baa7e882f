"""
Language package managers — pip, npm and cargo.

All three install per user: ``pip install --user``, ``npm install -g``
(into the user's npm prefix) and ``cargo install`` (into ~/.cargo/bin).
None of them needs sudo.
"""

from __future__ import annotations

import json
import re
import shutil
from typing import ClassVar

from reprosetup.adapters.packages.base import PackageManagerAdapter

_PIP_SPEC_END = re.compile(r"[\s<>=!~;\[@(]")


def pip_key(spec: str) -> str:
    """Canonical distribution name of a pip requirement (PEP 503).

    ``Black==24.1`` → ``black``; ``ruamel.yaml`` → ``ruamel-yaml``.
    """
    name = _PIP_SPEC_END.split(spec.strip(), 1)[0]
    return re.sub(r"[-_.]+", "-", name).lower()


def npm_key(spec: str) -> str:
    """``@scope/pkg@1.2`` → ``@scope/pkg``; ``typescript@5`` → ``typescript``."""
    spec = spec.strip()
    if not spec:
        return spec
    head, sep, _version = spec[1:].partition("@")
    return spec[0] + head if sep else spec


def cargo_key(spec: str) -> str:
    """``ripgrep@14.1.0`` → ``ripgrep``."""
    return spec.strip().split("@", 1)[0]


class PipAdapter(PackageManagerAdapter):
    """pip user installs.

    The listing covers every distribution the interpreter can import, not
    only user installs: ``pip install --user`` accepts a system-wide copy
    as already satisfied, so that copy counts as installed.
    """

    binary = "python3"
    python = "python3"

    @property
    def name(self) -> str:
        return "pip"

    def is_available(self) -> bool:
        return shutil.which(self.python) is not None

    def list_command(self) -> list[str]:
        return [self.python, "-m", "pip", "list", "--format=json"]

    def install_command(self, packages: list[str], params: dict) -> list[str]:
        return [self.python, "-m", "pip", "install", "--user", *packages]

    def parse_installed(self, stdout: str) -> list[str]:
        if not stdout.strip():
            return []
        entries = json.loads(stdout)
        return sorted({pip_key(entry["name"]) for entry in entries})


class NpmAdapter(PackageManagerAdapter):
    """npm global installs, listed through ``npm ls -g --json``.

    ``npm ls`` exits 1 when the tree has problems (extraneous or
    missing peers) but still prints a complete listing.
    """

    binary = "npm"
    list_ok_codes: ClassVar[tuple[int, ...]] = (0, 1)

    @property
    def name(self) -> str:
        return "npm"

    def list_command(self) -> list[str]:
        return ["npm", "ls", "-g", "--depth=0", "--json"]

    def install_command(self, packages: list[str], params: dict) -> list[str]:
        return ["npm", "install", "-g", *packages]

    def parse_installed(self, stdout: str) -> list[str]:
        if not stdout.strip():
            return []
        data = json.loads(stdout)
        return sorted(data.get("dependencies", {}).keys())


class CargoAdapter(PackageManagerAdapter):
    """cargo binary installs, listed through ``cargo install --list``."""

    binary = "cargo"

    @property
    def name(self) -> str:
        return "cargo"

    def list_command(self) -> list[str]:
        return ["cargo", "install", "--list"]

    def install_command(self, packages: list[str], params: dict) -> list[str]:
        return ["cargo", "install", *packages]

    def parse_installed(self, stdout: str) -> list[str]:
        # "ripgrep v14.1.0:" followed by indented binary names
        names = set()
        for line in stdout.splitlines():
            if line and not line[0].isspace():
                names.add(line.split()[0])
        return sorted(names)
