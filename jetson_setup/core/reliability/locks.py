"""
Lock waiter — block until package-database locks are free.

The locks belong to the package manager, not to us: there is no
acquire/release pairing. We only ask "is anyone holding resource R?"
and poll until the answer is no for every resource.

There is no timeout here. The caller's retry budget bounds total time.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Protocol

from jetson_setup.adapters.shell.command import CommandRunner
from jetson_setup.core.persistence.run_log import RunLog

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 3.0


class LockProbe(Protocol):
    """Answers whether a lock resource currently has a holder."""

    def is_held(self, resource: str) -> bool:
        ...


class FuserLockProbe:
    """Probe lock files with ``fuser``: exit 0 means some process has it open.

    A missing ``fuser`` binary (exit 127) reads as "not held"; so does a
    dry run, where nothing is executed.
    """

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    def is_held(self, resource: str) -> bool:
        result = self._runner.run(["fuser", resource], elevated=True, quiet=True)
        if result.dry_run:
            return False
        return result.returncode == 0


def _unique(resources: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for r in resources:
        if r not in seen:
            seen.append(r)
    return seen


class LockWaiter:
    """Poll a set of lock resources until none is held.

    Args:
        probe: Lock holder probe.
        run_log: Receives one entry per poll that finds a lock held.
        poll_interval: Seconds between polls.
        sleep: Blocking sleep function.
    """

    def __init__(
        self,
        probe: LockProbe,
        run_log: RunLog,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._probe = probe
        self._run_log = run_log
        self._poll_interval = poll_interval
        self._sleep = sleep

    @property
    def probe(self) -> LockProbe:
        return self._probe

    def held(self, resources: Iterable[str]) -> list[str]:
        """Resources that currently have a holder."""
        return [r for r in _unique(resources) if self._probe.is_held(r)]

    def wait_until_free(self, resources: Iterable[str]) -> int:
        """Block until no resource is held.

        Returns:
            Number of polls that found a lock still held.
        """
        names = _unique(resources)
        busy_polls = 0
        while True:
            held = self.held(names)
            if not held:
                if busy_polls:
                    logger.debug("Locks free after %d busy polls", busy_polls)
                return busy_polls
            busy_polls += 1
            self._run_log.info(f"Waiting for apt/dpkg lock ({', '.join(held)})...")
            self._sleep(self._poll_interval)
