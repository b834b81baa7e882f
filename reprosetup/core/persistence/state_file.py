"""
State file persistence — the StateStore.

State is stored as JSON in ~/.config/reprosetup/state.json.  It is read
fully into memory at open and written atomically (write to temp file,
then rename) on flush, so a crash mid-write never truncates it.

Reading is fail-open: a missing or corrupt file yields an empty store.
Writing is not: a failed flush raises StateStoreError and the caller
decides what that means for the current pass.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from reprosetup.core.models.state import StateDocument, StateRecord

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = "reprosetup"
DEFAULT_STATE_FILE = "state.json"

COMMAND_PREFIX = "command:"


class StateStoreError(Exception):
    """Raised when the state file cannot be written."""


def config_home() -> Path:
    """The user's configuration directory ($XDG_CONFIG_HOME or ~/.config)."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    return Path(xdg) if xdg else Path.home() / ".config"


def default_state_path() -> Path:
    """Get the default state file path."""
    override = os.environ.get("REPROSETUP_STATE_FILE")
    if override:
        return Path(override).expanduser()
    return config_home() / DEFAULT_STATE_DIR / DEFAULT_STATE_FILE


def load_state(path: Path) -> StateDocument:
    """Load the state document from a JSON file.

    Returns:
        StateDocument. If the file doesn't exist or is unreadable,
        returns a fresh, empty document.
    """
    if not path.is_file():
        logger.info("No state file at %s — starting fresh", path)
        return StateDocument()

    try:
        raw = path.read_text(encoding="utf-8")
        data = json.loads(raw)
        state = StateDocument.model_validate(data)
        logger.debug("Loaded state from %s (%d records)", path, len(state.records))
        return state
    except json.JSONDecodeError as e:
        logger.warning("Corrupt state file %s: %s — starting fresh", path, e)
        return StateDocument()
    except Exception as e:
        logger.warning("Cannot load state from %s: %s — starting fresh", path, e)
        return StateDocument()


def save_state(state: StateDocument, path: Path) -> None:
    """Save the state document to a JSON file (atomic write).

    Raises:
        StateStoreError: If the file cannot be written.
    """
    state.touch()

    data = state.model_dump(mode="json")
    content = json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True) + "\n"

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=".state_",
            suffix=".tmp",
        )
        tmp = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp, path)
            logger.debug("State saved to %s", path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise
    except OSError as e:
        logger.error("Failed to save state to %s: %s", path, e)
        raise StateStoreError(f"Cannot write state file {path}: {e}") from e


class StateStore:
    """In-memory view of the state file, flushed explicitly.

    Usage:
        store = StateStore.open(path)
        if store.get("dotfile:/home/me/.bashrc") != fp:
            ...apply...
            store.put("dotfile:/home/me/.bashrc", fp)
        store.flush()

    Keys are only ever written after the corresponding action
    succeeded; the store itself does not enforce that, callers do.
    """

    def __init__(
        self,
        path: Path,
        document: StateDocument | None = None,
        read_only: bool = False,
    ):
        self._path = path
        self._doc = document or StateDocument()
        self._dirty = False
        self._read_only = read_only

    @classmethod
    def open(cls, path: Path | None = None, read_only: bool = False) -> StateStore:
        """Read the state file (or start empty) and return a store.

        A read-only store (dry runs, mock runs) takes changes in memory
        and never writes them.
        """
        path = path or default_state_path()
        return cls(path, load_state(path), read_only=read_only)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def read_only(self) -> bool:
        return self._read_only

    @property
    def dirty(self) -> bool:
        """Whether there are unflushed changes."""
        return self._dirty

    def get(self, key: str) -> str | None:
        """Stored fingerprint for a key, or None."""
        record = self._doc.records.get(key)
        return record.fingerprint if record else None

    def record(self, key: str) -> StateRecord | None:
        return self._doc.records.get(key)

    def put(self, key: str, fingerprint: str, **metadata: Any) -> None:
        """Record the fingerprint of a successfully applied unit of state."""
        self._doc.records[key] = StateRecord(fingerprint=fingerprint, metadata=metadata)
        self._dirty = True

    def forget(self, key: str) -> bool:
        """Drop a key; returns whether it existed."""
        if self._doc.records.pop(key, None) is None:
            return False
        self._dirty = True
        return True

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._doc.records if k.startswith(prefix))

    def has_executed(self, command_hash: str) -> bool:
        """Whether a run-once command with this hash already succeeded."""
        return f"{COMMAND_PREFIX}{command_hash}" in self._doc.records

    def mark_executed(self, command_hash: str) -> None:
        """Record a run-once command as successfully executed."""
        self.put(f"{COMMAND_PREFIX}{command_hash}", command_hash)

    def flush(self) -> None:
        """Persist pending changes.  Idempotent; a no-op when clean.

        Raises:
            StateStoreError: If the state file cannot be written.  The
                changes stay pending, so a later flush retries them.
        """
        if not self._dirty or self._read_only:
            return
        save_state(self._doc, self._path)
        self._dirty = False

    def to_dict(self) -> dict:
        return {
            "path": str(self._path),
            "updated_at": self._doc.updated_at,
            "records": {
                key: record.model_dump(mode="json")
                for key, record in sorted(self._doc.records.items())
            },
        }
