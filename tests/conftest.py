"""
Shared test fixtures and configuration.

The fakes below stand in for the host's tools.  They keep their own
in-memory state (installed packages, unit files, containers) so a
second run sees what the first one did, which is what the idempotence
tests need.
"""

from __future__ import annotations

import itertools
from pathlib import Path

import pytest

from reprosetup.adapters.base import Adapter, ExecutionContext
from reprosetup.adapters.registry import AdapterRegistry
from reprosetup.adapters.shell.filesystem import FilesystemAdapter
from reprosetup.core.context import RunContext
from reprosetup.core.engine.confirm import Confirmer
from reprosetup.core.engine.fingerprint import fingerprint_text
from reprosetup.core.models.action import Receipt
from reprosetup.core.models.outcome import RunReport
from reprosetup.core.models.policy import ConfirmationPolicy, RunModes
from reprosetup.core.persistence.state_file import StateStore


class _Fake(Adapter):
    """Records every context and fails operations on request."""

    def __init__(self, name: str):
        self._name = name
        self.calls: list[ExecutionContext] = []
        self.failing: dict[str, str] = {}

    @property
    def name(self) -> str:
        return self._name

    def is_available(self) -> bool:
        return True

    def ops(self, operation: str) -> list[dict]:
        return [c.params for c in self.calls if c.operation == operation]

    def fail(self, operation: str, error: str = "boom") -> None:
        self.failing[operation] = error

    def execute(self, context: ExecutionContext) -> Receipt:
        self.calls.append(context)
        if context.operation in self.failing:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=self.failing[context.operation],
                metadata={"command": f"{self.name} {context.operation}", "return_code": 1},
            )
        return self.handle(context)

    def handle(self, context: ExecutionContext) -> Receipt:
        raise NotImplementedError

    def ok(self, context: ExecutionContext, output: str = "", **metadata) -> Receipt:
        metadata.setdefault("command", f"{self.name} {context.operation}")
        metadata.setdefault("return_code", 0)
        return Receipt.success(
            adapter=self.name, action_id=context.action.id, output=output, metadata=metadata,
        )


class FakePackageManager(_Fake):
    """A package manager with an installed set.

    ``unavailable`` names are accepted by install but never show up in
    the listing, like dnf with --skip-unavailable.
    """

    def __init__(self, name: str, installed=(), unavailable=(), upgrade_output: str = "Complete!"):
        super().__init__(name)
        self.installed = set(installed)
        self.unavailable = set(unavailable)
        self.upgrade_output = upgrade_output

    def handle(self, context: ExecutionContext) -> Receipt:
        op = context.operation
        if op == "list_installed":
            return self.ok(context, packages=sorted(self.installed))
        if op == "install":
            for name in context.params["packages"]:
                if name not in self.unavailable:
                    self.installed.add(name)
            return self.ok(context, "installed")
        if op == "upgrade":
            return self.ok(context, self.upgrade_output)
        if op == "ensure_remote":
            return self.ok(context)
        raise AssertionError(f"unexpected operation {op}")


class FakeSystemd(_Fake):
    """Unit files and enabled/active flags keyed by (scope, unit)."""

    def __init__(self):
        super().__init__("systemd")
        self.files: dict[tuple[str, str], str] = {}
        self.enabled: dict[tuple[str, str], bool] = {}
        self.active: dict[tuple[str, str], bool] = {}
        self.stuck: set[tuple[str, str]] = set()

    def handle(self, context: ExecutionContext) -> Receipt:
        op = context.operation
        key = (context.params.get("scope", "user"), context.params.get("unit", ""))
        if op == "state":
            return self.ok(
                context,
                enabled=self.enabled.get(key, False),
                active=self.active.get(key, False),
                exists=True,
            )
        if op == "unit_file":
            content = self.files.get(key)
            return self.ok(
                context,
                path=f"/units/{key[0]}/{key[1]}",
                exists=content is not None,
                fingerprint=fingerprint_text(content) if content is not None else None,
            )
        if op == "write_unit":
            self.files[key] = context.params["content"]
            return self.ok(context)
        if op == "daemon_reload":
            return self.ok(context)
        if key not in self.stuck:
            if op in ("enable", "disable"):
                self.enabled[key] = op == "enable"
            elif op in ("start", "stop"):
                self.active[key] = op == "start"
        return self.ok(context)


class FakePodman(_Fake):
    """Containers by name, images by reference."""

    def __init__(self):
        super().__init__("podman")
        self.containers: dict[str, dict] = {}
        self.images: dict[str, str] = {}
        self.pull_ids: dict[str, str] = {}
        self.broken: set[str] = set()
        self._ids = itertools.count(1)

    def handle(self, context: ExecutionContext) -> Receipt:
        op = context.operation
        p = context.params
        if p.get("name") in self.broken:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"cannot inspect {p['name']}",
                metadata={"command": f"podman {op} {p['name']}", "return_code": 125},
            )
        if op == "exists":
            container = self.containers.get(p["name"])
            return self.ok(
                context,
                exists=container is not None,
                running=bool(container and container["running"]),
            )
        if op == "image_id":
            image_id = self.images.get(p["image"])
            return self.ok(context, image_id or "", exists=image_id is not None, image_id=image_id)
        if op == "pull":
            self.images[p["image"]] = self.pull_ids.get(p["image"]) or self.images.get(
                p["image"], f"sha256:{next(self._ids)}"
            )
            return self.ok(context)
        if op == "run":
            self.images.setdefault(p["image"], f"sha256:{next(self._ids)}")
            self.containers[p["name"]] = {
                "image": p["image"],
                "flags": p.get("flags", ""),
                "running": p.get("detach", True),
            }
            return self.ok(context, command=f"podman run -d --name={p['name']} {p['image']}")
        if op == "start":
            self.containers[p["name"]]["running"] = True
            return self.ok(context)
        if op == "stop":
            self.containers[p["name"]]["running"] = False
            return self.ok(context)
        if op == "remove":
            self.containers.pop(p["name"], None)
            return self.ok(context)
        raise AssertionError(f"unexpected operation {op}")


class FakeShell(_Fake):
    """Shell commands; ``failing_commands`` exit 1."""

    def __init__(self):
        super().__init__("shell")
        self.failing_commands: set[str] = set()

    @property
    def commands(self) -> list[str]:
        return [c.params["command"] for c in self.calls]

    def handle(self, context: ExecutionContext) -> Receipt:
        command = context.params["command"]
        if command in self.failing_commands:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"{command}: failed",
                metadata={"command": command, "return_code": 1},
            )
        return self.ok(context, command=command)


class FakeHostname(_Fake):
    def __init__(self, hostname: str = "localhost"):
        super().__init__("hostname")
        self.hostname = hostname

    def handle(self, context: ExecutionContext) -> Receipt:
        if context.operation == "set":
            self.hostname = context.params["hostname"]
            return self.ok(context)
        return self.ok(context, self.hostname, hostname=self.hostname)


class Host:
    """Every fake tool of one simulated host."""

    def __init__(self):
        self.packages = {
            name: FakePackageManager(name)
            for name in ("dnf", "apt", "flatpak", "pip", "npm", "cargo")
        }
        self.systemd = FakeSystemd()
        self.podman = FakePodman()
        self.shell = FakeShell()
        self.hostname = FakeHostname()

    def registry(self) -> AdapterRegistry:
        registry = AdapterRegistry()
        for adapter in (
            *self.packages.values(),
            self.systemd,
            self.podman,
            self.shell,
            self.hostname,
            FilesystemAdapter(),
        ):
            registry.register(adapter)
        return registry


@pytest.fixture
def host() -> Host:
    """A fresh simulated host."""
    return Host()


@pytest.fixture
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "state.json"


@pytest.fixture
def make_ctx(host: Host, home: Path, workdir: Path, state_path: Path):
    """Build a RunContext against the simulated host.

    Each call reopens the state file, like a fresh process would.
    """

    def _make(
        policy: ConfirmationPolicy = ConfirmationPolicy.YES,
        modes: RunModes | None = None,
        answers: list[bool] | None = None,
    ) -> RunContext:
        modes = modes or RunModes()
        prompt = None
        if answers is not None:
            replies = iter(answers)

            def prompt(message: str) -> bool:
                return next(replies)

        return RunContext(
            registry=host.registry(),
            store=StateStore.open(state_path, read_only=modes.dry_run),
            confirmer=Confirmer(policy, prompt=prompt, dry_run=modes.dry_run),
            modes=modes,
            working_dir=workdir,
            home=home,
            report=RunReport(operation_id="op-test"),
        )

    return _make


def converge(reconciler, ctx: RunContext):
    """Run one reconciler and flush, the way the orchestrator does."""
    outcomes = reconciler.run(ctx)
    ctx.store.flush()
    return outcomes


@pytest.fixture
def run():
    return converge
