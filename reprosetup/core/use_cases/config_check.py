"""
Config check use case — validate reprosetup.yml and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from reprosetup.core.config.loader import ConfigError, find_config_file, load_desired_state
from reprosetup.core.models.desired import DesiredState


@dataclass
class ConfigCheckResult:
    """Result of configuration validation."""

    valid: bool = False
    desired: DesiredState | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def summary(self) -> dict[str, int]:
        if self.desired is None:
            return {}
        d = self.desired
        return {
            "packages": sum(
                len(items)
                for items in (d.packages.system, d.packages.flatpak, d.packages.pip,
                              d.packages.npm, d.packages.cargo)
            ),
            "units": len(d.services.system) + len(d.services.user),
            "custom_services": len(d.services.custom),
            "applications": len(d.services.applications),
            "containers": len(d.containers.definitions),
            "commands": len(d.custom_commands.commands),
            "run_once": len(d.custom_commands.run_once),
        }

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "distro": self.desired.distro if self.desired else None,
            "summary": self.summary(),
        }


def _duplicates(names: list[str]) -> list[str]:
    return sorted({n for n in names if names.count(n) > 1})


def check_config(config_path: Path | None = None) -> ConfigCheckResult:
    """Validate the configuration and report issues.

    Args:
        config_path: Optional explicit path to reprosetup.yml.

    Returns:
        ConfigCheckResult with validation status and any issues.
    """
    result = ConfigCheckResult()

    if config_path is None:
        config_path = find_config_file()
    if config_path is None:
        result.errors.append("No reprosetup.yml found.")
        return result
    result.config_path = config_path

    # Load and validate
    try:
        desired = load_desired_state(config_path)
        result.desired = desired
    except ConfigError as e:
        result.errors.append(str(e))
        return result

    # Semantic checks
    containers = [c.name for c in desired.containers.definitions]
    dupes = _duplicates(containers)
    if dupes:
        result.errors.append(f"Duplicate container names: {', '.join(dupes)}")

    units = [c.service_unit for c in desired.services.custom] + [
        a.unit_name for a in desired.services.applications
    ]
    dupes = _duplicates(units)
    if dupes:
        result.errors.append(f"Duplicate generated units: {', '.join(dupes)}")

    if desired.containers.runtime != "podman":
        result.errors.append(
            f"Unsupported container runtime '{desired.containers.runtime}' (only podman)"
        )

    if desired.packages.flatpak and not desired.packages.flatpak_remotes:
        result.warnings.append("Flatpak packages declared but no flatpak_remotes configured.")

    dotfiles = desired.dotfiles
    if dotfiles.setup_bashrc or dotfiles.setup_config_dirs:
        source = Path(dotfiles.source).expanduser()
        if not source.is_absolute():
            source = Path(desired.base_dir) / source
        if not source.is_dir():
            result.warnings.append(f"Dotfiles source does not exist: {source}")

    if len(set(desired.custom_commands.run_once)) != len(desired.custom_commands.run_once):
        result.warnings.append("Duplicate run_once commands run only once.")

    result.valid = len(result.errors) == 0
    return result
