"""
Filesystem adapter — file and directory operations.

Provides a safe, receipt-returning interface for the file operations
the reconcilers perform (dotfiles, registries.conf), so they can be
dry-run and never raise.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from reprosetup.adapters.base import Adapter, ExecutionContext
from reprosetup.core.engine.fingerprint import fingerprint_path
from reprosetup.core.models.action import Receipt

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"


def backup_path_for(path: Path) -> Path:
    """``<original>.backup`` — a single backup slot, overwritten each time."""
    return path.with_name(path.name + BACKUP_SUFFIX)


class FilesystemAdapter(Adapter):
    """File and directory operations with receipts.

    Action params:
        operation (str): One of 'fingerprint', 'write', 'backup',
            'install'.
        path (str): Target path (relative to working_dir or absolute).
        content (str): Content to write (for 'write').
        source (str): Source file or directory (for 'install').
    """

    operations = frozenset({"fingerprint", "write", "backup", "install"})

    @property
    def name(self) -> str:
        return "filesystem"

    def is_available(self) -> bool:
        return True  # filesystem is always available

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        valid, msg = super().validate(context)
        if not valid:
            return valid, msg

        if not context.params.get("path", ""):
            return False, "Missing required param: 'path'"

        operation = context.operation
        if operation == "write" and "content" not in context.params:
            return False, "Missing required param: 'content' for write operation"
        if operation == "install" and not context.params.get("source"):
            return False, "Missing required param: 'source' for install operation"

        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        operation = context.operation
        target = self._resolve(context, context.params["path"])

        try:
            if operation == "fingerprint":
                return self._fingerprint(context, target)
            elif operation == "write":
                return self._write(context, target)
            elif operation == "backup":
                return self._backup(context, target)
            elif operation == "install":
                source = self._resolve(context, context.params["source"])
                return self._install(context, source, target)
            else:
                return Receipt.failure(
                    adapter=self.name,
                    action_id=context.action.id,
                    error=f"Unknown operation: {operation}",
                )
        except Exception as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Filesystem error: {e}",
                metadata={"operation": operation, "path": str(target)},
            )

    @staticmethod
    def _resolve(ctx: ExecutionContext, raw_path: str) -> Path:
        target = Path(raw_path).expanduser()
        if not target.is_absolute():
            target = Path(ctx.working_dir) / target
        return target

    def _fingerprint(self, ctx: ExecutionContext, target: Path) -> Receipt:
        fingerprint = fingerprint_path(target)
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=fingerprint or "",
            metadata={
                "path": str(target),
                "exists": fingerprint is not None,
                "is_dir": target.is_dir(),
                "fingerprint": fingerprint,
            },
        )

    def _write(self, ctx: ExecutionContext, target: Path) -> Receipt:
        content = ctx.params["content"]
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=f"Written {len(content)} bytes to {target}",
            metadata={"path": str(target), "size": len(content)},
        )

    def _backup(self, ctx: ExecutionContext, target: Path) -> Receipt:
        if not target.exists():
            return Receipt.success(
                adapter=self.name,
                action_id=ctx.action.id,
                output=f"Nothing to back up at {target}",
                metadata={"path": str(target), "backup": None},
            )

        backup = backup_path_for(target)
        if backup.is_dir() and not backup.is_symlink():
            shutil.rmtree(backup)
        elif backup.exists() or backup.is_symlink():
            backup.unlink()

        if target.is_dir() and not target.is_symlink():
            # Directories are moved aside so the install starts clean
            target.rename(backup)
        else:
            shutil.copy2(target, backup)

        logger.info("Backed up %s → %s", target, backup)
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=f"Backed up {target} to {backup}",
            metadata={"path": str(target), "backup": str(backup)},
        )

    def _install(self, ctx: ExecutionContext, source: Path, target: Path) -> Receipt:
        if not source.exists():
            return Receipt.failure(
                adapter=self.name,
                action_id=ctx.action.id,
                error=f"Source not found: {source}",
            )

        target.parent.mkdir(parents=True, exist_ok=True)
        if source.is_dir():
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            elif target.exists() or target.is_symlink():
                target.unlink()
            shutil.copytree(source, target, symlinks=True)
        else:
            shutil.copy2(source, target)

        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=f"Installed {source} to {target}",
            metadata={"path": str(target), "source": str(source)},
        )
