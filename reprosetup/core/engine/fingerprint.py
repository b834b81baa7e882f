"""
Fingerprints — SHA-256 content hashes used as equality proxies.

Two equal fingerprints mean "no action needed".  Every hash here is
deterministic across runs and hosts.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

_CHUNK = 1024 * 1024


def fingerprint_text(text: str) -> str:
    """Fingerprint a literal string (command text, unit text)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def fingerprint_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def fingerprint_container(image: str, flags: str) -> str:
    """Fingerprint a container's resolved image and flag string."""
    return fingerprint_text(f"{image}\0{flags}")


def fingerprint_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def fingerprint_tree(root: Path) -> str:
    """Fingerprint a directory: sorted relative paths plus file bytes.

    Symlinks are hashed by their target string, not followed.
    """
    digest = hashlib.sha256()
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root).as_posix()
        if path.is_symlink():
            digest.update(f"L {rel} -> {path.readlink()}\n".encode())
        elif path.is_dir():
            digest.update(f"D {rel}\n".encode())
        else:
            digest.update(f"F {rel}\n".encode())
            digest.update(fingerprint_file(path).encode())
    return digest.hexdigest()


def fingerprint_path(path: Path) -> str | None:
    """Fingerprint a file or directory; None when it does not exist."""
    if path.is_dir() and not path.is_symlink():
        return fingerprint_tree(path)
    if path.is_file():
        return fingerprint_file(path)
    return None
