"""Package manager adapters and name normalization."""

from reprosetup.adapters.packages.base import PackageManagerAdapter
from reprosetup.adapters.packages.flatpak import FlatpakAdapter, split_ref
from reprosetup.adapters.packages.languages import (
    CargoAdapter,
    NpmAdapter,
    PipAdapter,
    cargo_key,
    npm_key,
    pip_key,
)
from reprosetup.adapters.packages.system import AptAdapter, DnfAdapter

_KEYS = {
    "pip": pip_key,
    "npm": npm_key,
    "cargo": cargo_key,
}


def package_key(manager: str, spec: str) -> str:
    """The name a declared package spec shows up as in the manager's listing."""
    key = _KEYS.get(manager)
    return key(spec) if key else spec.strip()


__all__ = [
    "AptAdapter",
    "CargoAdapter",
    "DnfAdapter",
    "FlatpakAdapter",
    "NpmAdapter",
    "PackageManagerAdapter",
    "PipAdapter",
    "package_key",
    "split_ref",
]
