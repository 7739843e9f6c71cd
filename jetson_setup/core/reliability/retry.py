"""
Retrying action executor — run one mutating action to a terminal outcome.

Each attempt waits for the action's lock resources, executes through the
adapter registry, and captures output to the run log. On failure, the
executor sleeps, doubles the delay (4, 8, 16, 32, ...), and reclaims stale
locks before trying again. It stops at the first success and never runs
more than ``max_attempts`` attempts.

The executor returns an ActionResult either way. Escalating an exhausted
required action is the caller's decision, via ``ActionExhaustedError``.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Mapping

from jetson_setup.adapters.registry import AdapterRegistry
from jetson_setup.core.models.action import Action, ActionResult, Attempt
from jetson_setup.core.persistence.run_log import RunLog
from jetson_setup.core.reliability.locks import LockWaiter
from jetson_setup.core.reliability.reclaim import StaleLockReclaimer

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_INITIAL_DELAY = 4.0


class ActionExhaustedError(RuntimeError):
    """A required action failed on every attempt of its retry budget."""

    def __init__(self, result: ActionResult):
        self.result = result
        self.action = result.action
        message = f"{result.action.label} failed after {result.attempt_count} attempts"
        if result.last_error:
            message += f": {result.last_error.splitlines()[-1]}"
        super().__init__(message)


def backoff_delays(initial_delay: float, count: int) -> list[float]:
    """The first ``count`` backoff delays: initial, 2x, 4x, ..."""
    return [initial_delay * (2 ** i) for i in range(count)]


class RetryingExecutor:
    """Execute actions with lock waiting, bounded retries, and backoff.

    Args:
        registry: Adapter dispatch.
        lock_waiter: Blocks until the action's resources are free.
        reclaimer: Clears stale locks between attempts.
        run_log: Receives attempt outcomes and captured output.
        max_attempts: Default attempt budget per action.
        initial_delay: Delay after the first failure, in seconds.
        sleep: Blocking sleep function.
        dry_run: Validate actions without executing them.
        env: Extra environment for every action.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        lock_waiter: LockWaiter,
        reclaimer: StaleLockReclaimer,
        run_log: RunLog,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        dry_run: bool = False,
        env: Mapping[str, str] | None = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._registry = registry
        self._lock_waiter = lock_waiter
        self._reclaimer = reclaimer
        self._run_log = run_log
        self._max_attempts = max_attempts
        self._initial_delay = initial_delay
        self._sleep = sleep
        self._dry_run = dry_run
        self._env = dict(env or {})

    def run(
        self,
        action: Action,
        max_attempts: int | None = None,
        initial_delay: float | None = None,
    ) -> ActionResult:
        """Run an action until it succeeds or its attempts are exhausted.

        The attempt budget is, in order of precedence: the ``max_attempts``
        argument, the action's own ``max_attempts``, the executor default.
        """
        budget = max_attempts or action.max_attempts or self._max_attempts
        delay = self._initial_delay if initial_delay is None else initial_delay
        result = ActionResult(action=action)

        for n in range(1, budget + 1):
            if action.resources:
                self._lock_waiter.wait_until_free(action.resources)

            receipt = self._registry.execute_action(
                action,
                dry_run=self._dry_run,
                env=self._env,
                attempt=n,
                max_attempts=budget,
            )
            self._run_log.capture(receipt.output)

            if not receipt.failed:
                result.attempts.append(Attempt(index=n, receipt=receipt))
                suffix = f" after {n} attempts" if n > 1 else ""
                self._run_log.info(f"{action.label} ok{suffix}")
                return result

            if receipt.error and receipt.error != receipt.output:
                self._run_log.capture(receipt.error)

            if n == budget:
                result.attempts.append(Attempt(index=n, receipt=receipt))
                self._run_log.warning(f"{action.label} failed (try {n}/{budget})")
                break

            result.attempts.append(Attempt(index=n, receipt=receipt, delay_before_retry=delay))
            self._run_log.warning(
                f"{action.label} failed (try {n}/{budget}). retry in {delay:g}s..."
            )
            self._sleep(delay)
            delay *= 2
            self._reclaimer.reclaim(action.resources)

        self._run_log.error(f"{action.label} exhausted after {budget} attempts")
        return result
