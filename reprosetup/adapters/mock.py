"""
Mock adapter — stands in for every tool when ``--mock`` is given.

The registry routes all actions here in mock mode.  Every action
succeeds under the name of the adapter it was addressed to, unless a
response has been configured for its operation.
"""

from __future__ import annotations

from reprosetup.adapters.base import Adapter, ExecutionContext
from reprosetup.core.models.action import Receipt


class MockAdapter(Adapter):
    """Answers every action without running anything."""

    def __init__(self, adapter_name: str = "mock"):
        self._name = adapter_name
        self._operation_responses: dict[str, Receipt] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def is_available(self) -> bool:
        return True

    def set_operation_response(self, operation: str, receipt: Receipt) -> None:
        """Set a custom response for every action of one operation."""
        self._operation_responses[operation] = receipt

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)
        if context.operation in self._operation_responses:
            return self._operation_responses[context.operation]

        action = context.action
        return Receipt.success(
            adapter=action.adapter,
            action_id=action.id,
            output=f"[mock] {action.adapter}:{action.operation} executed",
            metadata={"mock": True, "dry_run": context.dry_run},
        )
