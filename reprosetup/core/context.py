"""
Run context — everything one run shares, passed explicitly.

The confirmation policy, the open StateStore, the adapter registry, the
run modes and the accumulating RunReport live here instead of in module
globals, so every reconciler call (and every test) works against its
own isolated context:

    ctx = RunContext(registry=registry, store=store)
    outcomes = PackageReconciler("dnf", ["vim"]).run(ctx)
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from reprosetup.adapters.registry import AdapterRegistry
from reprosetup.core.engine.confirm import Confirmer
from reprosetup.core.models.action import Action, Receipt
from reprosetup.core.models.outcome import RunReport
from reprosetup.core.models.policy import RunModes
from reprosetup.core.persistence.state_file import StateStore


@dataclass
class RunContext:
    """Mutable per-run state shared by the Orchestrator and reconcilers."""

    registry: AdapterRegistry
    store: StateStore
    confirmer: Confirmer = field(default_factory=Confirmer)
    modes: RunModes = field(default_factory=RunModes)
    working_dir: Path = field(default_factory=Path.cwd)
    home: Path = field(default_factory=Path.home)
    report: RunReport = field(default_factory=RunReport)

    _ids: Any = field(default_factory=itertools.count, repr=False)

    @property
    def dry_run(self) -> bool:
        return self.modes.dry_run

    def confirm(self, message: str) -> bool:
        return self.confirmer.confirm(message)

    def dispatch(
        self,
        adapter: str,
        operation: str,
        mutating: bool = True,
        **params: Any,
    ) -> Receipt:
        """Build an Action and execute it through the registry."""
        action = Action(
            id=f"{adapter}:{operation}:{next(self._ids)}",
            adapter=adapter,
            operation=operation,
            params=params,
            mutating=mutating,
        )
        return self.registry.execute_action(
            action,
            working_dir=str(self.working_dir),
            dry_run=self.dry_run,
        )

    def query(self, adapter: str, operation: str, **params: Any) -> Receipt:
        """Dispatch a read-only probe (runs even in a dry run)."""
        return self.dispatch(adapter, operation, mutating=False, **params)
