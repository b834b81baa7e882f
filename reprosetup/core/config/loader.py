"""
Configuration loader — reads reprosetup.yml into a DesiredState.

This is the single entry point for loading the declaration.  It reads
YAML, maps the older desktop-setup layout onto the current one,
validates against the pydantic models and returns a frozen
DesiredState.  Everything that is wrong with the file surfaces here as
a ConfigError, before the engine starts.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from reprosetup.core.models.desired import DesiredState

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "reprosetup.yml"

# Sections of the older layout that have no counterpart here
_UNSUPPORTED_SECTIONS = ("wireguard",)

_RPM_FUSION = (
    "sudo dnf install -y"
    " https://download1.rpmfusion.org/free/fedora/rpmfusion-free-release-$(rpm -E %fedora).noarch.rpm"
    " https://download1.rpmfusion.org/nonfree/fedora/rpmfusion-nonfree-release-$(rpm -E %fedora).noarch.rpm"
)

_DEBIAN_REPOS = [
    "sudo apt-add-repository -y contrib",
    "sudo apt-add-repository -y non-free",
    "sudo apt update",
]

_AMD_GPU_PACKAGES = {
    "fedora": ["rocm-opencl", "rocm-clinfo", "mesa-dri-drivers"],
    "debian": ["mesa-vulkan-drivers", "libvulkan1", "mesa-opencl-icd"],
}

_AMD_GPU_COMMANDS = [
    "sudo usermod -aG render \"$USER\"",
    "printf '%s\\n' 'KERNEL==\"kfd\", GROUP=\"render\", MODE=\"0666\"'"
    " 'SUBSYSTEM==\"drm\", GROUP=\"render\", MODE=\"0666\"'"
    " | sudo tee /etc/udev/rules.d/70-kfd.rules > /dev/null",
    "sudo udevadm control --reload-rules",
    "sudo udevadm trigger",
]


class ConfigError(Exception):
    """Raised when the configuration is invalid or missing."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for reprosetup.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to reprosetup.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def _append(section: dict, key: str, items: Any) -> None:
    if items:
        section.setdefault(key, [])
        section[key] = list(section[key]) + list(items)


def normalize_legacy(data: dict[str, Any]) -> dict[str, Any]:
    """Map the older desktop-setup layout onto the current sections.

    ``system``  hostname / system_packages → host / packages.system;
                enable_rpm_fusion / enable_amd_gpu → run_once commands
                (plus the GPU driver packages)
    ``podman``  pre_container_setup / containers → containers
    ``gnome``   flatpak_applications / dnf_extension_packages → packages;
                the desktop-specific rest is dropped with a warning
    """
    data = dict(data)

    legacy_system = data.pop("system", None)
    if isinstance(legacy_system, dict):
        host = dict(data.get("host") or {})
        if legacy_system.get("hostname") and "hostname" not in host:
            host["hostname"] = legacy_system["hostname"]
        data["host"] = host
        packages = dict(data.get("packages") or {})
        _append(packages, "system", legacy_system.get("system_packages"))
        fedora = data.get("distro", "fedora") == "fedora"
        commands = dict(data.get("custom_commands") or {})
        if legacy_system.get("enable_rpm_fusion"):
            _append(commands, "run_once", [_RPM_FUSION] if fedora else _DEBIAN_REPOS)
        if legacy_system.get("enable_amd_gpu"):
            _append(packages, "system", _AMD_GPU_PACKAGES["fedora" if fedora else "debian"])
            _append(commands, "run_once", _AMD_GPU_COMMANDS)
            logger.warning("AMD GPU setup takes effect after a reboot")
        if commands:
            data["custom_commands"] = commands
        data["packages"] = packages
        ignored = sorted(
            set(legacy_system)
            - {"hostname", "system_packages", "enable_rpm_fusion", "enable_amd_gpu"}
        )
        if ignored:
            logger.warning("Ignoring unsupported system settings: %s", ", ".join(ignored))

    gnome = data.pop("gnome", None)
    if isinstance(gnome, dict):
        packages = dict(data.get("packages") or {})
        apps = gnome.get("flatpak_applications") or []
        _append(packages, "flatpak", [a["id"] if isinstance(a, dict) else a for a in apps])
        _append(packages, "system", gnome.get("dnf_extension_packages"))
        data["packages"] = packages
        logger.warning("Desktop environment settings in 'gnome' are not applied")

    podman = data.pop("podman", None)
    if isinstance(podman, dict):
        containers = dict(data.get("containers") or {})
        for key, value in podman.items():
            containers.setdefault(key, value)
        data["containers"] = containers

    for section in _UNSUPPORTED_SECTIONS:
        if data.pop(section, None) is not None:
            logger.warning("Ignoring unsupported section '%s'", section)

    return data


def load_desired_state(path: Path | None = None) -> DesiredState:
    """Load and validate the declaration.

    Args:
        path: Explicit path to reprosetup.yml. If None, searches upward.

    Returns:
        Validated, frozen DesiredState whose ``base_dir`` is the config
        file's directory.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if path is None:
        path = find_config_file()

    if path is None:
        raise ConfigError(f"No {CONFIG_FILE} found. Create one, or specify --config.")

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading configuration from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    data = normalize_legacy(data)
    data["base_dir"] = str(config_dir(path))

    try:
        desired = DesiredState.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}:\n{_format_errors(e)}") from e

    logger.info(
        "Loaded %s (distro=%s, %d container(s))",
        path,
        desired.distro,
        len(desired.containers.definitions),
    )
    return desired


def _format_errors(error: ValidationError) -> str:
    lines = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "(root)"
        lines.append(f"  {location}: {item['msg']}")
    return "\n".join(lines)


def config_dir(config_path: Path) -> Path:
    """Directory relative paths in the configuration resolve against."""
    return config_path.parent.resolve()
