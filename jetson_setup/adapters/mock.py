"""
Mock adapter — universal test double for all adapter operations.

Used in mock mode to simulate adapter behavior without touching the
system. Configurable to succeed, fail always, or fail a fixed number
of times before succeeding (to exercise retry paths).
"""

from __future__ import annotations

from jetson_setup.adapters.base import Adapter, ExecutionContext
from jetson_setup.core.models.action import Receipt


class MockAdapter(Adapter):
    """Universal mock adapter for testing.

    By default, returns success for everything. Can be configured
    with custom responses per action ID.
    """

    def __init__(
        self,
        adapter_name: str = "mock",
        available: bool = True,
        default_output: str = "[mock] executed",
    ):
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._responses: dict[str, Receipt] = {}
        self._failures_left: dict[str, int] = {}
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
        """Number of times execute has been called."""
        return len(self._call_log)

    def calls_for(self, action_id: str) -> int:
        """Number of executions of one action."""
        return sum(1 for c in self._call_log if c.action.id == action_id)

    def is_available(self) -> bool:
        return self._available

    def set_response(self, action_id: str, receipt: Receipt) -> None:
        """Set a custom response for a specific action ID."""
        self._responses[action_id] = receipt

    def set_failure(self, action_id: str, error: str = "Mock failure") -> None:
        """Configure a specific action to always fail."""
        self._responses[action_id] = Receipt.failure(
            adapter=self._name,
            action_id=action_id,
            error=error,
            return_code=100,
        )

    def fail_times(self, action_id: str, count: int) -> None:
        """Fail the first ``count`` executions of an action, then succeed."""
        self._failures_left[action_id] = count

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)
        action_id = context.action.id

        if self._failures_left.get(action_id, 0) > 0:
            self._failures_left[action_id] -= 1
            return Receipt.failure(
                adapter=self._name,
                action_id=action_id,
                error="E: Could not get lock /var/lib/dpkg/lock-frontend",
                return_code=100,
            )

        if action_id in self._responses:
            return self._responses[action_id]

        return Receipt.success(
            adapter=self._name,
            action_id=action_id,
            output=self._default_output,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and configured responses."""
        self._call_log.clear()
        self._responses.clear()
        self._failures_left.clear()
