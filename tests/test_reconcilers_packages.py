"""
Tests for the package reconciler — additive convergence per manager.
"""

from __future__ import annotations

import textwrap

from reprosetup.adapters.packages import PipAdapter
from reprosetup.core.models.policy import RunModes
from reprosetup.core.reconcilers.packages import UPGRADE, PackageReconciler


class TestDiff:
    def test_to_add_keeps_declared_order(self):
        reconciler = PackageReconciler("dnf", ["zsh", "vim", "git"])
        diff = reconciler.diff({"vim"})
        assert diff.to_add == ["zsh", "git"]

    def test_undeclared_installed_is_drift_not_removal(self):
        reconciler = PackageReconciler("dnf", ["vim"])
        diff = reconciler.diff({"vim", "emacs", "nano"})
        assert diff.to_add == []
        assert diff.drift == ["emacs", "nano"]
        assert diff.empty

    def test_duplicates_collapse(self):
        reconciler = PackageReconciler("dnf", ["vim", "vim", " vim "])
        assert reconciler.packages == ["vim"]

    def test_pip_specs_compare_by_distribution_name(self):
        reconciler = PackageReconciler("pip", ["Black==24.1", "ruamel.yaml"])
        diff = reconciler.diff({"black", "ruamel-yaml"})
        assert diff.to_add == []

    def test_flatpak_remote_prefix_is_not_part_of_the_id(self):
        reconciler = PackageReconciler(
            "flatpak", ["flathub:org.gimp.GIMP"], remotes={"flathub": "https://x"},
        )
        assert reconciler.diff({"org.gimp.GIMP"}).to_add == []

    def test_upgrade_is_an_update(self):
        reconciler = PackageReconciler("dnf", [], upgrade=True)
        assert reconciler.diff(set()).to_update == [UPGRADE]


class TestConvergence:
    def test_installs_missing_in_one_batch(self, host, make_ctx, run):
        dnf = host.packages["dnf"]
        dnf.installed = {"vim"}
        outcomes = run(PackageReconciler("dnf", ["vim", "git", "tmux"]), make_ctx())

        assert [o.resource for o in outcomes] == ["git", "tmux"]
        assert all(o.applied for o in outcomes)
        assert dnf.ops("install") == [{"packages": ["git", "tmux"]}]

    def test_second_run_is_a_no_op(self, host, make_ctx, run):
        reconciler = PackageReconciler("dnf", ["git", "tmux"])
        run(reconciler, make_ctx())
        ctx = make_ctx()
        assert run(reconciler, ctx) == []
        assert len(host.packages["dnf"].ops("install")) == 1

    def test_extra_installed_packages_are_reported_not_removed(self, host, make_ctx, run):
        dnf = host.packages["dnf"]
        dnf.installed = {"vim", "emacs"}
        ctx = make_ctx()
        outcomes = run(PackageReconciler("dnf", ["vim"]), ctx)

        assert outcomes == []
        assert ctx.report.drift == {"packages.dnf": ["emacs"]}
        assert "emacs" in dnf.installed

    def test_failed_batch_fails_every_package(self, host, make_ctx, run):
        host.packages["npm"].fail("install", "npm ERR! 404")
        outcomes = run(PackageReconciler("npm", ["typescript", "eslint"]), make_ctx())

        assert [o.status for o in outcomes] == ["failed", "failed"]
        assert all("404" in o.error for o in outcomes)
        assert outcomes[0].return_code == 1

    def test_package_missing_after_install_fails(self, host, make_ctx, run):
        host.packages["dnf"].unavailable = {"nosuchpkg"}
        outcomes = run(PackageReconciler("dnf", ["git", "nosuchpkg"]), make_ctx())

        by_name = {o.resource: o for o in outcomes}
        assert by_name["git"].applied
        assert by_name["nosuchpkg"].failed
        assert "not installed" in by_name["nosuchpkg"].error

    def test_listing_failure_fails_the_manager(self, host, make_ctx, run):
        host.packages["cargo"].fail("list_installed", "cargo: not found")
        outcomes = run(PackageReconciler("cargo", ["ripgrep"]), make_ctx())

        assert len(outcomes) == 1
        assert outcomes[0].failed
        assert outcomes[0].resource == "cargo"

    def test_nothing_declared_does_not_query(self, host, make_ctx, run):
        assert run(PackageReconciler("pip", []), make_ctx()) == []
        assert host.packages["pip"].calls == []

    def test_flatpak_batches_per_remote(self, host, make_ctx, run):
        flatpak = host.packages["flatpak"]
        reconciler = PackageReconciler(
            "flatpak",
            ["org.gimp.GIMP", "fedora:org.gnome.Maps", "org.videolan.VLC"],
            remotes={"flathub": "https://flathub", "fedora": "oci+https://fedora"},
        )
        outcomes = run(reconciler, make_ctx())

        assert all(o.applied for o in outcomes)
        installs = flatpak.ops("install")
        assert {"packages": ["org.gimp.GIMP", "org.videolan.VLC"], "remote": "flathub"} in installs
        assert {"packages": ["org.gnome.Maps"], "remote": "fedora"} in installs
        assert len(flatpak.ops("ensure_remote")) == 2


class TestUpgrade:
    def test_upgrade_runs_before_installs(self, host, make_ctx, run):
        dnf = host.packages["dnf"]
        run(PackageReconciler("dnf", ["git"], upgrade=True), make_ctx())
        assert [c.operation for c in dnf.calls if c.operation != "list_installed"] == [
            "upgrade", "install",
        ]

    def test_up_to_date_upgrade_is_skipped(self, host, make_ctx, run):
        host.packages["dnf"].upgrade_output = "Dependencies resolved.\nNothing to do.\nComplete!"
        outcomes = run(PackageReconciler("dnf", [], upgrade=True), make_ctx())
        assert len(outcomes) == 1
        assert outcomes[0].skipped

    def test_real_upgrade_is_applied(self, host, make_ctx, run):
        outcomes = run(PackageReconciler("apt", [], upgrade=True), make_ctx())
        assert outcomes[0].applied


class TestDryRun:
    def test_dry_run_installs_nothing(self, host, make_ctx, run):
        dnf = host.packages["dnf"]
        outcomes = run(PackageReconciler("dnf", ["git"]), make_ctx(modes=RunModes(dry_run=True)))

        assert [o.status for o in outcomes] == ["skipped"]
        assert dnf.ops("install") == []
        assert dnf.installed == set()


class TestPipListing:
    def test_system_wide_distribution_counts_as_installed(self, host, make_ctx, run, tmp_path):
        # pip answers like a host where attrs is installed for all users only
        python = tmp_path / "python3"
        python.write_text(textwrap.dedent("""\
            #!/bin/sh
            case "$*" in
              *list*--user*) echo '[]' ;;
              *list*) echo '[{"name": "attrs", "version": "23.2.0"}]' ;;
              *) echo "Requirement already satisfied: attrs" ;;
            esac
        """))
        python.chmod(0o755)
        pip = PipAdapter()
        pip.python = str(python)
        host.packages["pip"] = pip

        reconciler = PackageReconciler("pip", ["attrs"])
        assert run(reconciler, make_ctx()) == []
        assert run(reconciler, make_ctx()) == []
