"""
Tests for adapters — registry dispatch, shell, filesystem and tool parsers.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from reprosetup.adapters import AdapterRegistry, MockAdapter
from reprosetup.adapters.base import Adapter, ExecutionContext
from reprosetup.adapters.containers.podman import run_command_line
from reprosetup.adapters.packages import (
    AptAdapter,
    CargoAdapter,
    DnfAdapter,
    FlatpakAdapter,
    NpmAdapter,
    PipAdapter,
    package_key,
    split_ref,
)
from reprosetup.adapters.services.systemd import SystemdAdapter, parse_unit_state
from reprosetup.adapters.shell.command import ShellCommandAdapter, run_process
from reprosetup.adapters.shell.filesystem import FilesystemAdapter
from reprosetup.core.engine.fingerprint import fingerprint_text
from reprosetup.core.models.action import Action, Receipt


def _action(adapter: str, operation: str, mutating: bool = True, **params) -> Action:
    return Action(id=f"{adapter}:{operation}", adapter=adapter, operation=operation,
                  params=params, mutating=mutating)


def _ctx(operation: str, working_dir: Path, **params) -> ExecutionContext:
    return ExecutionContext(
        action=_action("x", operation, **params), working_dir=str(working_dir), params=params,
    )


class _Exploding(Adapter):
    @property
    def name(self) -> str:
        return "boom"

    def is_available(self) -> bool:
        return True

    def execute(self, context: ExecutionContext) -> Receipt:
        raise RuntimeError("kaput")


class _Missing(_Exploding):
    @property
    def name(self) -> str:
        return "cargo"

    def is_available(self) -> bool:
        return False


class TestRegistry:
    def test_unknown_adapter_fails(self):
        receipt = AdapterRegistry().execute_action(_action("dnf", "install", packages=["x"]))
        assert receipt.failed
        assert "No adapter registered" in receipt.error

    def test_mock_mode_succeeds_without_running(self):
        receipt = AdapterRegistry(mock_mode=True).execute_action(_action("dnf", "install"))
        assert receipt.ok
        assert receipt.metadata["mock"] is True
        assert receipt.adapter == "dnf"
        assert receipt.output == "[mock] dnf:install executed"

    def test_mock_mode_still_honours_dry_run(self):
        registry = AdapterRegistry(mock_mode=True)
        assert registry.execute_action(_action("dnf", "install"), dry_run=True).skipped
        assert registry.execute_action(_action("dnf", "list_installed", mutating=False), dry_run=True).ok

    def test_missing_tool_fails_without_executing(self):
        registry = AdapterRegistry()
        registry.register(_Missing())
        receipt = registry.execute_action(_action("cargo", "install"))
        assert receipt.failed
        assert receipt.error == "'cargo' is not available on this host"

    def test_dry_run_skips_before_checking_the_tool(self):
        registry = AdapterRegistry()
        registry.register(_Missing())
        assert registry.execute_action(_action("cargo", "install"), dry_run=True).skipped

    def test_custom_mock_adapter(self):
        mock = MockAdapter()
        mock.set_operation_response("list_installed", Receipt.success(
            adapter="mock", action_id="x", metadata={"packages": ["vim"]},
        ))
        registry = AdapterRegistry()
        registry.set_mock_mode(True, mock)
        receipt = registry.execute_action(_action("dnf", "list_installed"))
        assert receipt.metadata["packages"] == ["vim"]
        assert mock.call_count == 1

    def test_dry_run_skips_mutating_actions(self):
        mock = MockAdapter(adapter_name="dnf")
        registry = AdapterRegistry()
        registry.register(mock)

        skipped = registry.execute_action(_action("dnf", "install"), dry_run=True)
        listed = registry.execute_action(_action("dnf", "list_installed", mutating=False), dry_run=True)

        assert skipped.skipped
        assert listed.ok
        assert [c.operation for c in mock.call_log] == ["list_installed"]

    def test_validation_failure(self):
        registry = AdapterRegistry()
        registry.register(DnfAdapter())
        receipt = registry.execute_action(_action("dnf", "install"))
        assert receipt.failed
        assert "packages" in receipt.error

    def test_adapter_exception_becomes_receipt(self):
        registry = AdapterRegistry()
        registry.register(_Exploding())
        receipt = registry.execute_action(_action("boom", "anything"))
        assert receipt.failed
        assert "kaput" in receipt.error


class TestRunProcess:
    def test_success_keeps_command_and_code(self):
        receipt = run_process("shell", "a", ["echo", "hello"])
        assert receipt.ok
        assert receipt.output == "hello"
        assert receipt.return_code == 0
        assert receipt.command == "echo hello"

    def test_failure_keeps_stderr(self):
        receipt = run_process("shell", "a", "echo oops >&2; exit 3", shell=True)
        assert receipt.failed
        assert receipt.error == "oops"
        assert receipt.return_code == 3

    def test_ok_codes(self):
        assert run_process("shell", "a", "exit 1", shell=True, ok_codes=(0, 1)).ok

    def test_missing_binary(self):
        receipt = run_process("shell", "a", ["definitely-not-a-binary-xyz"])
        assert receipt.failed
        assert receipt.return_code == 127

    def test_shell_adapter_runs_in_working_dir(self, tmp_path: Path):
        adapter = ShellCommandAdapter()
        context = _ctx("run", tmp_path, command="pwd")
        assert adapter.validate(context) == (True, "")
        assert adapter.execute(context).output == str(tmp_path)

    def test_shell_adapter_requires_command(self, tmp_path: Path):
        valid, msg = ShellCommandAdapter().validate(_ctx("run", tmp_path))
        assert not valid
        assert "command" in msg


class TestFilesystem:
    def test_only_reconciler_operations_are_accepted(self, tmp_path: Path):
        valid, msg = FilesystemAdapter().validate(_ctx("read", tmp_path, path="f"))
        assert not valid
        assert "backup, fingerprint, install, write" in msg

    def test_fingerprint_missing(self, tmp_path: Path):
        receipt = FilesystemAdapter().execute(_ctx("fingerprint", tmp_path, path="nope"))
        assert receipt.metadata["exists"] is False
        assert receipt.metadata["fingerprint"] is None

    def test_fingerprint_file(self, tmp_path: Path):
        (tmp_path / "f").write_text("abc")
        receipt = FilesystemAdapter().execute(_ctx("fingerprint", tmp_path, path="f"))
        assert receipt.metadata["fingerprint"] == fingerprint_text("abc")

    def test_backup_file_is_a_copy(self, tmp_path: Path):
        (tmp_path / ".bashrc").write_text("old")
        receipt = FilesystemAdapter().execute(_ctx("backup", tmp_path, path=".bashrc"))
        assert receipt.metadata["backup"] == str(tmp_path / ".bashrc.backup")
        assert (tmp_path / ".bashrc").read_text() == "old"
        assert (tmp_path / ".bashrc.backup").read_text() == "old"

    def test_backup_overwrites_previous_backup(self, tmp_path: Path):
        (tmp_path / ".bashrc.backup").write_text("older")
        (tmp_path / ".bashrc").write_text("old")
        FilesystemAdapter().execute(_ctx("backup", tmp_path, path=".bashrc"))
        assert (tmp_path / ".bashrc.backup").read_text() == "old"

    def test_backup_of_nothing(self, tmp_path: Path):
        receipt = FilesystemAdapter().execute(_ctx("backup", tmp_path, path="absent"))
        assert receipt.ok
        assert receipt.metadata["backup"] is None

    def test_install_directory_replaces_target(self, tmp_path: Path):
        src = tmp_path / "src"
        src.mkdir()
        (src / "a").write_text("a")
        dst = tmp_path / "dst"
        dst.mkdir()
        (dst / "stale").write_text("x")

        receipt = FilesystemAdapter().execute(_ctx("install", tmp_path, path="dst", source="src"))
        assert receipt.ok
        assert sorted(p.name for p in dst.iterdir()) == ["a"]

    def test_install_missing_source(self, tmp_path: Path):
        receipt = FilesystemAdapter().execute(_ctx("install", tmp_path, path="dst", source="nope"))
        assert receipt.failed

    def test_write_creates_parents(self, tmp_path: Path):
        FilesystemAdapter().execute(_ctx("write", tmp_path, path="a/b/c.conf", content="x=1\n"))
        assert (tmp_path / "a" / "b" / "c.conf").read_text() == "x=1\n"

    def test_unknown_operation_is_invalid(self, tmp_path: Path):
        valid, _ = FilesystemAdapter().validate(_ctx("chmod", tmp_path, path="x"))
        assert not valid


class TestPackageParsers:
    def test_keys(self):
        assert package_key("pip", "Black==24.1") == "black"
        assert package_key("pip", "ruamel.yaml>=0.18") == "ruamel-yaml"
        assert package_key("npm", "@scope/pkg@1.2") == "@scope/pkg"
        assert package_key("npm", "typescript@5") == "typescript"
        assert package_key("npm", "@angular/cli") == "@angular/cli"
        assert package_key("cargo", "ripgrep@14.1.0") == "ripgrep"
        assert package_key("dnf", " vim ") == "vim"

    def test_split_ref(self):
        assert split_ref("fedora:org.gnome.Maps", "flathub") == ("fedora", "org.gnome.Maps")
        assert split_ref("org.gimp.GIMP", "flathub") == ("flathub", "org.gimp.GIMP")

    def test_dnf(self):
        assert DnfAdapter().parse_installed("vim\ngit\n\nvim\n") == ["git", "vim"]

    def test_apt_only_counts_installed(self):
        out = "ii  vim\nrc  emacs\nii  libc6:amd64\n"
        assert AptAdapter().parse_installed(out) == ["libc6", "vim"]

    def test_flatpak_skips_header(self):
        assert FlatpakAdapter().parse_installed("Application ID\norg.gimp.GIMP\n") == ["org.gimp.GIMP"]

    def test_pip(self):
        out = json.dumps([{"name": "Black", "version": "24.1"}, {"name": "ruamel.yaml", "version": "1"}])
        assert PipAdapter().parse_installed(out) == ["black", "ruamel-yaml"]

    def test_npm(self):
        out = json.dumps({"dependencies": {"typescript": {}, "@angular/cli": {}}})
        assert NpmAdapter().parse_installed(out) == ["@angular/cli", "typescript"]

    def test_cargo(self):
        out = "ripgrep v14.1.0:\n    rg\nfd-find v9.0.0:\n    fd\n"
        assert CargoAdapter().parse_installed(out) == ["fd-find", "ripgrep"]

    def test_install_commands(self):
        assert DnfAdapter().install_command(["git"], {}) == [
            "dnf", "install", "-y", "--skip-unavailable", "git",
        ]
        assert FlatpakAdapter().install_command(["org.gimp.GIMP"], {"remote": "flathub"})[-2:] == [
            "flathub", "org.gimp.GIMP",
        ]
        assert PipAdapter().install_command(["black"], {})[-3:] == ["install", "--user", "black"]


class TestSystemd:
    def _receipt(self, output: str, **metadata) -> Receipt:
        return Receipt.success(adapter="systemd", action_id="a", output=output, metadata=metadata)

    def test_parse_enabled_active(self):
        state = parse_unit_state(self._receipt("enabled"), self._receipt("active"))
        assert state["enabled"] and state["active"] and state["exists"]

    def test_parse_missing_unit(self):
        state = parse_unit_state(
            self._receipt("", stderr="Failed to get unit file state: No such file or directory"),
            self._receipt("inactive"),
        )
        assert state["exists"] is False
        assert state["enabled"] is False
        assert state["active"] is False

    def test_static_unit_is_not_enabled(self):
        state = parse_unit_state(self._receipt("static"), self._receipt("inactive"))
        assert state["exists"] and not state["enabled"]

    def test_user_unit_file_roundtrip(self, tmp_path: Path):
        adapter = SystemdAdapter(user_dir=tmp_path / "user")
        write = adapter.execute(_ctx("write_unit", tmp_path, scope="user", unit="a.service", content="[Unit]\n"))
        assert write.ok

        found = adapter.execute(_ctx("unit_file", tmp_path, scope="user", unit="a.service"))
        assert found.metadata["exists"] is True
        assert found.metadata["fingerprint"] == fingerprint_text("[Unit]\n")

    def _sudo_write(self, tmp_path: Path, monkeypatch, tee: Receipt) -> tuple[Receipt, list]:
        import reprosetup.adapters.services.systemd as systemd

        commands = []
        monkeypatch.setattr(systemd.os, "geteuid", lambda: 1000)
        monkeypatch.setattr(systemd, "run_process", lambda *a, **kw: commands.append(a[2]) or tee)
        adapter = SystemdAdapter(system_dir=tmp_path)
        context = _ctx("write_unit", tmp_path, scope="system", unit="a.service", content="[Unit]\n")
        return adapter.execute(context), commands

    def test_system_unit_written_through_sudo(self, tmp_path: Path, monkeypatch):
        tee = Receipt.success(adapter="systemd", action_id="a", output="[Unit]\n")
        receipt, commands = self._sudo_write(tmp_path, monkeypatch, tee)

        assert commands == [["sudo", "tee", str(tmp_path / "a.service")]]
        assert receipt.output == f"Written 7 bytes to {tmp_path / 'a.service'}"
        assert receipt.metadata["path"] == str(tmp_path / "a.service")

    def test_failed_sudo_write_keeps_its_error(self, tmp_path: Path, monkeypatch):
        tee = Receipt.failure(adapter="systemd", action_id="a", error="sudo: a password is required")
        receipt, _ = self._sudo_write(tmp_path, monkeypatch, tee)

        assert receipt.failed
        assert receipt.error == "sudo: a password is required"
        assert receipt.output == ""
        assert receipt.metadata["path"] == str(tmp_path / "a.service")

    def test_system_dir(self, tmp_path: Path):
        adapter = SystemdAdapter(system_dir=tmp_path)
        assert adapter.unit_dir("system") == tmp_path

    @pytest.mark.parametrize("params, message", [
        ({"scope": "global", "unit": "a.service"}, "scope"),
        ({"scope": "user"}, "unit"),
    ])
    def test_validation(self, tmp_path: Path, params, message):
        valid, msg = SystemdAdapter().validate(_ctx("enable", tmp_path, **params))
        assert not valid
        assert message in msg

    def test_daemon_reload_needs_no_unit(self, tmp_path: Path):
        assert SystemdAdapter().validate(_ctx("daemon_reload", tmp_path, scope="user"))[0]


class TestPodman:
    def test_run_line(self):
        line = run_command_line("web", "docker.io/library/nginx:latest", "-p 8080:80 -v data:/data")
        assert line == "podman run -d --name=web -p 8080:80 -v data:/data docker.io/library/nginx:latest"

    def test_create_line_without_flags(self):
        assert run_command_line("web", "nginx", "  ", detach=False) == "podman create --name=web nginx"
