"""
Tests for the container reconciler — the fingerprint/mode decision table.
"""

from __future__ import annotations

import pytest

from reprosetup.core.engine.fingerprint import fingerprint_container
from reprosetup.core.models.desired import ContainersConfig
from reprosetup.core.models.policy import ConfirmationPolicy, RunModes
from reprosetup.core.reconcilers.containers import (
    REGISTRIES_FILE,
    ContainerReconciler,
    autostart_unit_key,
    container_key,
    render_registries,
)

WEB = {"name": "web", "image": "docker.io/library/nginx:latest", "flags": "-p 8080:80"}
WEB_AUTOSTART = {**WEB, "autostart": True}
WEB_UNIT = ("user", "container-web.service")


def _reconciler(*definitions, **kwargs) -> ContainerReconciler:
    return ContainerReconciler(ContainersConfig.model_validate(
        {"definitions": list(definitions), **kwargs}
    ))


@pytest.fixture
def created(host, make_ctx, run):
    """``web`` created by a first run."""
    run(_reconciler(WEB), make_ctx())
    host.podman.calls.clear()
    return host


class TestCreate:
    def test_missing_container_is_created_and_recorded(self, host, make_ctx, run):
        ctx = make_ctx()
        outcomes = run(_reconciler(WEB), ctx)

        assert [o.status for o in outcomes] == ["applied"]
        assert host.podman.containers["web"]["running"] is True
        assert host.podman.ops("pull") == [{"image": WEB["image"]}]
        record = ctx.store.record(container_key("web"))
        assert record.fingerprint == fingerprint_container(WEB["image"], WEB["flags"])
        assert record.metadata["image_id"] == host.podman.images[WEB["image"]]

    def test_present_image_is_not_pulled(self, host, make_ctx, run):
        host.podman.images[WEB["image"]] = "sha256:local"
        run(_reconciler(WEB), make_ctx())
        assert host.podman.ops("pull") == []

    def test_second_run_is_a_no_op(self, created, make_ctx, run):
        assert run(_reconciler(WEB), make_ctx()) == []
        assert created.podman.ops("run") == []

    def test_create_without_start(self, host, make_ctx, run):
        run(_reconciler({**WEB, "start_after_creation": False}), make_ctx())
        assert host.podman.ops("run")[0]["detach"] is False
        assert host.podman.containers["web"]["running"] is False

    def test_failed_run_is_not_recorded(self, host, make_ctx, run):
        host.podman.fail("run", "Error: port 8080 already in use")
        ctx = make_ctx()
        outcomes = run(_reconciler(WEB), ctx)

        assert outcomes[0].failed
        assert "8080" in outcomes[0].error
        assert ctx.store.get(container_key("web")) is None

    def test_autostart_installs_user_unit(self, host, make_ctx, run):
        ctx = make_ctx()
        outcomes = run(_reconciler({**WEB, "autostart": True}), ctx)

        unit = host.systemd.files[("user", "container-web.service")]
        assert "podman start -a web" in unit
        assert host.systemd.enabled[("user", "container-web.service")] is True
        assert [o.resource for o in outcomes] == ["web", "web (container-web.service)"]
        assert ctx.store.get("unit:user:container-web.service") is not None


class TestExisting:
    def test_stopped_container_is_started(self, created, make_ctx, run):
        created.podman.containers["web"]["running"] = False
        outcomes = run(_reconciler(WEB), make_ctx())

        assert outcomes[0].applied
        assert outcomes[0].message == "Started"
        assert created.podman.ops("run") == []

    def test_changed_definition_recreates_after_confirmation(self, created, make_ctx, run):
        changed = {**WEB, "flags": "-p 9090:80"}
        ctx = make_ctx(policy=ConfirmationPolicy.INTERACTIVE, answers=[True])
        outcomes = run(_reconciler(changed), ctx)

        assert len(ctx.confirmer.asked) == 1
        assert outcomes[-1].applied
        assert created.podman.containers["web"]["flags"] == "-p 9090:80"
        assert [c.operation for c in created.podman.calls if c.action.mutating] == [
            "stop", "remove", "run",
        ]

    def test_declined_recreation_leaves_container(self, created, make_ctx, run):
        changed = {**WEB, "flags": "-p 9090:80"}
        ctx = make_ctx(policy=ConfirmationPolicy.NO)
        outcomes = run(_reconciler(changed), ctx)

        assert outcomes[0].skipped
        assert created.podman.containers["web"]["flags"] == "-p 8080:80"
        # the old fingerprint stays, so the next run asks again
        assert ctx.store.get(container_key("web")) == fingerprint_container(WEB["image"], WEB["flags"])

    def test_no_recreate_reports_drift(self, created, make_ctx, run):
        changed = {**WEB, "image": "docker.io/library/nginx:1.27"}
        ctx = make_ctx(modes=RunModes(no_recreate=True, force_recreate=True))
        outcomes = run(_reconciler(changed), ctx)

        assert outcomes[0].skipped
        assert outcomes[0].drift
        assert ctx.report.drift == {"containers": ["web"]}
        assert created.podman.ops("stop") == []

    def test_force_recreate_does_not_ask(self, created, make_ctx, run):
        ctx = make_ctx(
            policy=ConfirmationPolicy.INTERACTIVE,
            modes=RunModes(force_recreate=True),
            answers=[],
        )
        outcomes = run(_reconciler(WEB), ctx)

        assert ctx.confirmer.asked == []
        assert outcomes[-1].applied
        assert len(created.podman.ops("run")) == 1

    def test_lost_state_counts_as_changed(self, created, make_ctx, run, state_path):
        state_path.unlink()
        ctx = make_ctx(policy=ConfirmationPolicy.NO)
        outcomes = run(_reconciler(WEB), ctx)
        assert outcomes[0].message == "Recreation declined"

    def test_stop_failure_forces_removal_with_warning(self, created, make_ctx, run):
        created.podman.fail("stop", "timed out")
        outcomes = run(_reconciler({**WEB, "flags": "-p 9090:80"}), make_ctx())

        assert outcomes[0].warning
        assert "timed out" in outcomes[0].message
        assert created.podman.ops("remove") == [{"name": "web", "force": True}]
        assert outcomes[-1].applied

    def test_query_failure_is_isolated(self, host, make_ctx, run):
        db = {"name": "db", "image": "docker.io/library/postgres:16"}
        host.podman.containers["db"] = {"image": db["image"], "flags": "", "running": True}
        host.podman.broken.add("db")

        outcomes = run(_reconciler(WEB, db), make_ctx())
        by_name = {o.resource: o for o in outcomes}
        assert by_name["web"].applied
        assert by_name["db"].failed


class TestUpdateImages:
    def test_changed_image_recreates_without_asking(self, created, make_ctx, run):
        created.podman.pull_ids[WEB["image"]] = "sha256:newer"
        ctx = make_ctx(
            policy=ConfirmationPolicy.INTERACTIVE,
            modes=RunModes(update_images=True),
            answers=[],
        )
        outcomes = run(_reconciler(WEB), ctx)

        assert ctx.confirmer.asked == []
        assert outcomes[-1].applied
        assert ctx.store.record(container_key("web")).metadata["image_id"] == "sha256:newer"

    def test_unchanged_image_is_skipped(self, created, make_ctx, run):
        outcomes = run(_reconciler(WEB), make_ctx(modes=RunModes(update_images=True)))
        assert [o.message for o in outcomes] == ["Image unchanged"]
        assert created.podman.ops("stop") == []


class TestSetup:
    def test_registries_file_is_written_once(self, host, make_ctx, run, home):
        reconciler = _reconciler(registries=["docker.io", "quay.io"])
        run(reconciler, make_ctx())

        path = home / REGISTRIES_FILE
        assert path.read_text() == render_registries(["docker.io", "quay.io"])
        assert 'unqualified-search-registries = ["docker.io", "quay.io"]' in path.read_text()
        assert run(reconciler, make_ctx()) == []

    def test_hand_edited_registries_need_confirmation(self, host, make_ctx, run, home):
        path = home / REGISTRIES_FILE
        path.parent.mkdir(parents=True)
        path.write_text("# mine\n")
        outcomes = run(_reconciler(registries=["docker.io"]), make_ctx(policy=ConfirmationPolicy.NO))

        assert outcomes[0].skipped
        assert path.read_text() == "# mine\n"

    def test_pre_setup_runs_every_time(self, host, make_ctx, run):
        reconciler = _reconciler(pre_setup=[{"description": "network", "command": "podman network create lan || true"}])
        run(reconciler, make_ctx())
        outcomes = run(reconciler, make_ctx())

        assert host.shell.commands == ["podman network create lan || true"] * 2
        assert outcomes[0].resource == "network"
        assert outcomes[0].applied


class TestDryRun:
    def test_dry_run_creates_nothing(self, host, make_ctx, run, state_path):
        outcomes = run(_reconciler(WEB), make_ctx(modes=RunModes(dry_run=True)))

        assert [o.status for o in outcomes] == ["skipped"]
        assert host.podman.containers == {}
        assert not state_path.exists()


class TestAutostartUnit:
    def test_failed_unit_install_is_retried(self, host, make_ctx, run):
        host.systemd.fail("daemon_reload", "Failed to connect to bus")
        first = run(_reconciler(WEB_AUTOSTART), make_ctx())
        assert [(o.resource, o.status) for o in first] == [
            ("web", "applied"), ("web (container-web.service)", "failed"),
        ]

        host.systemd.failing.clear()
        ctx = make_ctx()
        second = run(_reconciler(WEB_AUTOSTART), ctx)

        assert [(o.resource, o.status) for o in second] == [("web (container-web.service)", "applied")]
        assert host.systemd.enabled[WEB_UNIT] is True
        assert ctx.store.get(autostart_unit_key("web")) is not None
        assert len(host.podman.ops("run")) == 1
        assert run(_reconciler(WEB_AUTOSTART), make_ctx()) == []

    def test_enabling_autostart_on_existing_container(self, created, make_ctx, run):
        outcomes = run(_reconciler(WEB_AUTOSTART), make_ctx())

        assert [o.resource for o in outcomes] == ["web (container-web.service)"]
        assert "podman start -a web" in created.systemd.files[WEB_UNIT]
        assert created.systemd.enabled[WEB_UNIT] is True
        assert created.podman.ops("run") == []

    def test_deleted_unit_is_restored(self, host, make_ctx, run):
        run(_reconciler(WEB_AUTOSTART), make_ctx())
        del host.systemd.files[WEB_UNIT]

        outcomes = run(_reconciler(WEB_AUTOSTART), make_ctx())

        assert [(o.resource, o.status) for o in outcomes] == [("web (container-web.service)", "applied")]
        assert WEB_UNIT in host.systemd.files
        assert len(host.podman.ops("run")) == 1

    def test_hand_edited_unit_needs_confirmation(self, host, make_ctx, run):
        run(_reconciler(WEB_AUTOSTART), make_ctx())
        host.systemd.files[WEB_UNIT] = "[Service]\nExecStart=/bin/true\n"

        outcomes = run(_reconciler(WEB_AUTOSTART), make_ctx(policy=ConfirmationPolicy.NO))

        assert outcomes[0].skipped
        assert host.systemd.files[WEB_UNIT] == "[Service]\nExecStart=/bin/true\n"
