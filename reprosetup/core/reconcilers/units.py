"""
Generated systemd units — application autostart and container units.

The generated text is deterministic for a given declaration, so its
fingerprint only changes when the declaration does.
"""

from __future__ import annotations

import fnmatch

from reprosetup.core.models.desired import Application

# Units owned by the desktop session; not manageable from here
SESSION_UNIT_PATTERNS = (
    "gnome-*",
    "org.gnome.*",
    "xdg-desktop-portal*",
    "at-spi*",
    "dbus*",
    "gvfs-*",
    "pipewire*",
    "wireplumber*",
)

_RESTART = {"never": "no", "on-failure": "on-failure", "always": "always"}


def is_session_unit(name: str) -> bool:
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in SESSION_UNIT_PATTERNS)


def render_app_unit(app: Application) -> str:
    lines = [
        "[Unit]",
        f"Description={app.name} (autostart)",
        "After=graphical-session.target",
        "",
        "[Service]",
        "Type=simple",
    ]
    if app.delay_seconds > 0:
        lines.append(f"ExecStartPre=/bin/sleep {app.delay_seconds}")
    lines += [
        f"ExecStart={app.exec_command}",
        f"Restart={_RESTART[app.restart_policy]}",
        "",
        "[Install]",
        "WantedBy=default.target",
        "",
    ]
    return "\n".join(lines)


def container_unit_name(container: str) -> str:
    return f"container-{container}.service"


def render_container_unit(container: str, stop_timeout: int = 10) -> str:
    return "\n".join([
        "[Unit]",
        f"Description=Podman container {container}",
        "Wants=network-online.target",
        "After=network-online.target",
        "",
        "[Service]",
        "Restart=on-failure",
        f"ExecStart=/usr/bin/podman start -a {container}",
        f"ExecStop=/usr/bin/podman stop -t {stop_timeout} {container}",
        "",
        "[Install]",
        "WantedBy=default.target",
        "",
    ])
