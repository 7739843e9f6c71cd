"""
Adapter registry — dispatches each action attempt to its package manager.

The retrying executor never talks to apt, flatpak, snap, or pip adapters
directly. It hands every attempt to ``execute_action``, which resolves
the adapter, validates, honours dry-run, and converts anything an
adapter raises into a failed Receipt.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping

from jetson_setup.adapters.base import Adapter, ExecutionContext
from jetson_setup.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Adapters by name, plus an optional stand-in that receives every action."""

    def __init__(self, mock: Adapter | None = None):
        self._adapters: dict[str, Adapter] = {}
        self._mock = mock

    @property
    def mock(self) -> Adapter | None:
        return self._mock

    def use_mock(self, adapter: Adapter | None) -> None:
        """Route every action to ``adapter`` (None restores normal dispatch)."""
        self._mock = adapter

    def register(self, adapter: Adapter) -> None:
        """Register an adapter under its name."""
        name = adapter.name
        if name in self._adapters:
            logger.warning("Overwriting existing adapter: %s", name)
        self._adapters[name] = adapter
        logger.debug("Registered adapter: %s", name)

    def get(self, name: str) -> Adapter | None:
        """Look up an adapter by name."""
        return self._adapters.get(name)

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Availability of every registered package tool."""
        status = {}
        for name, adapter in self._adapters.items():
            try:
                available = adapter.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "type": adapter.__class__.__name__,
            }
        return status

    def unavailable(self) -> list[str]:
        """Names of registered adapters whose tool is not installed."""
        return sorted(name for name, s in self.adapter_status().items() if not s["available"])

    def execute_action(
        self,
        action: Action,
        dry_run: bool = False,
        env: Mapping[str, str] | None = None,
        attempt: int = 1,
        max_attempts: int = 1,
    ) -> Receipt:
        """Execute one attempt of an action. Never raises.

        Args:
            action: The action to execute.
            dry_run: Validate and describe the command, but don't run it.
            env: Extra environment for the command.
            attempt: 1-based attempt index within the retry budget.
            max_attempts: The action's retry budget.
        """
        start_time = time.monotonic()

        context = ExecutionContext(
            action=action,
            attempt=attempt,
            max_attempts=max(attempt, max_attempts),
            dry_run=dry_run,
            env=dict(env or {}),
        )

        adapter = self._mock or self._adapters.get(action.adapter)
        if adapter is None:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"No adapter registered for '{action.adapter}'",
            )

        try:
            is_valid, error_msg = adapter.validate(context)
            if not is_valid:
                return Receipt.failure(
                    adapter=action.adapter,
                    action_id=action.id,
                    error=f"Validation failed: {error_msg}",
                )
        except Exception as e:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Validation error: {e}",
            )

        if dry_run:
            return Receipt.skip(
                adapter=action.adapter,
                action_id=action.id,
                reason=f"[dry-run] Would run: {adapter.describe(context)}",
                metadata={"dry_run": True},
            )

        try:
            receipt = adapter.execute(context)
        except Exception as e:
            logger.error("Adapter %s raised during execution: %s", action.adapter, e)
            receipt = Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Unexpected error: {e}",
            )

        receipt.duration_ms = int((time.monotonic() - start_time) * 1000)
        receipt.metadata.setdefault("attempt", attempt)
        return receipt
