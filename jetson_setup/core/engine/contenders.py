"""
Background contenders — package daemons that fight us for the dpkg lock.

``BackgroundContenders`` is a guard: entering it stops packagekit and the
apt-daily services and timers; leaving it restarts the timers and
packagekit. The restart runs on every exit path, including fatal step
failures, KeyboardInterrupt, and SystemExit.

    with BackgroundContenders(runner, run_log, policy):
        ...  # required and optional steps

Every systemctl/pkill call is best-effort: a unit that does not exist
on this image must not abort the run.
"""

from __future__ import annotations

import logging
from types import TracebackType

from jetson_setup.adapters.shell.command import CommandRunner
from jetson_setup.core.models.config import ContenderPolicy
from jetson_setup.core.persistence.run_log import RunLog

logger = logging.getLogger(__name__)


class BackgroundContenders:
    """Suspend background package management for the guarded block."""

    def __init__(self, runner: CommandRunner, run_log: RunLog, policy: ContenderPolicy | None = None):
        self._runner = runner
        self._run_log = run_log
        self._policy = policy or ContenderPolicy()
        self._suspended = False

    @property
    def suspended(self) -> bool:
        return self._suspended

    def _best_effort(self, argv: list[str]) -> bool:
        result = self._runner.run(argv, elevated=True)
        if not result.ok:
            logger.debug("Ignoring failure of %s: exit %d", argv, result.returncode)
        return result.ok

    def suspend(self) -> None:
        """Stop packagekit and the apt-daily services and timers.

        An interrupt part-way through restarts whatever may already be
        stopped before it propagates.
        """
        policy = self._policy
        self._suspended = True
        self._run_log.info("Suspending background package updaters...")
        try:
            if policy.services:
                self._best_effort(["systemctl", "stop", *policy.services])
            if policy.timers:
                self._best_effort(["systemctl", "stop", *policy.timers])
            for unit in policy.kill_units:
                self._best_effort(["systemctl", "kill", "--kill-who=all", unit])
            for process in policy.kill_processes:
                self._best_effort(["pkill", "-9", process])
        except BaseException:
            self.resume()
            raise

    def resume(self) -> None:
        """Restart the timers and packagekit. Safe to call more than once."""
        if not self._suspended:
            return
        self._suspended = False
        policy = self._policy
        if policy.timers:
            self._best_effort(["systemctl", "start", *policy.timers])
        if policy.resume_services:
            self._best_effort(["systemctl", "start", *policy.resume_services])
        self._run_log.info("Background package updaters resumed.")

    def __enter__(self) -> BackgroundContenders:
        self.suspend()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.resume()
