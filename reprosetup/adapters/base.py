"""
Adapter base — the protocol contract between reconcilers and tools.

This defines the abstract interface that every adapter must implement.
Reconcilers only talk to adapters through this protocol (via the
registry), never directly to package managers, systemd or podman.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from reprosetup.core.models.action import Action, Receipt


class ExecutionContext(BaseModel):
    """Everything an adapter needs to execute an action.

    This is the adapter's view of the world: the action to perform,
    the working directory and the resolved parameters.
    """

    action: Action
    working_dir: str = "."
    dry_run: bool = False
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def operation(self) -> str:
        return self.action.operation or self.params.get("operation", "")


class Adapter(ABC):
    """Abstract base class for all adapters.

    Adapters perform external side effects and return receipts.
    They NEVER raise exceptions — failures are captured in the Receipt.

    To create a new adapter:
        1. Subclass Adapter
        2. Implement name, is_available, validate, execute
        3. Register it in the AdapterRegistry
    """

    #: Operations this adapter understands.  Used by the default
    #: validate(); adapters with free-form actions leave it empty.
    operations: ClassVar[frozenset[str]] = frozenset()

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'dnf', 'systemd', 'podman')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this adapter's underlying tool is available.

        Should be fast and never raise.
        """

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the action can be executed.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """
        operation = context.operation
        if not operation:
            return False, "Missing required param: 'operation'"
        if self.operations and operation not in self.operations:
            valid = ", ".join(sorted(self.operations))
            return False, f"Unknown operation '{operation}'. Valid: {valid}"
        return True, ""

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Execute the action and return a receipt.

        MUST never raise exceptions. All failures are captured
        in the Receipt with status='failed'.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
