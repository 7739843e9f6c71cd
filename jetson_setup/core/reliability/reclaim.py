"""
Stale-lock reclaimer — leave the package database in a retriable state.

Used at start-up and after a failed attempt, when waiting alone has not
helped. Each sub-step is independent and best-effort:

    kill_contenders   pkill -9 leftover apt/apt-get/dpkg processes
    remove_lock       rm stale lock files nobody holds
    dpkg_configure    dpkg --configure -a
    apt_fix_broken    apt-get -y -f install

Every sub-step reports its own outcome (succeeded, attempted, skipped)
and is logged individually. Nothing here raises to the caller.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import StrEnum
from typing import Callable, Iterable, Mapping, Sequence

from jetson_setup.adapters.shell.command import CommandResult, CommandRunner
from jetson_setup.core.persistence.run_log import RunLog
from jetson_setup.core.reliability.locks import LockProbe

logger = logging.getLogger(__name__)

DEFAULT_KILL_PROCESSES = ("apt", "apt-get", "dpkg")


class ReclaimStatus(StrEnum):
    """Outcome of one reclaim sub-step."""

    SUCCEEDED = "succeeded"
    ATTEMPTED = "attempted"   # ran, but did not succeed
    SKIPPED = "skipped"       # nothing to do


@dataclass(frozen=True)
class ReclaimStep:
    """Record of one reclaim sub-step."""

    name: str
    status: ReclaimStatus
    detail: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "status": self.status.value, "detail": self.detail}


def _from_result(name: str, result: CommandResult) -> ReclaimStep:
    if result.ok:
        return ReclaimStep(name, ReclaimStatus.SUCCEEDED)
    return ReclaimStep(name, ReclaimStatus.ATTEMPTED, f"exit {result.returncode}")


class StaleLockReclaimer:
    """Best-effort clearing of stuck package-manager locks.

    Args:
        runner: Command runner (elevated commands).
        probe: Lock probe, used to avoid deleting a lock someone holds.
        run_log: Receives one entry per sub-step.
        kill_processes: Process names treated as contenders.
        repair: Whether to run the dpkg/apt repair pass.
        env: Environment for the repair commands (non-interactive mode).
        exists: Path existence check.
    """

    def __init__(
        self,
        runner: CommandRunner,
        probe: LockProbe,
        run_log: RunLog,
        kill_processes: Sequence[str] = DEFAULT_KILL_PROCESSES,
        repair: bool = True,
        env: Mapping[str, str] | None = None,
        exists: Callable[[str], bool] = os.path.exists,
    ):
        self._runner = runner
        self._probe = probe
        self._run_log = run_log
        self._kill_processes = tuple(kill_processes)
        self._repair = repair
        self._env = dict(env or {})
        self._exists = exists

    def reclaim(self, resources: Iterable[str]) -> list[ReclaimStep]:
        """Run every sub-step; return their outcomes in order."""
        resources = list(resources)
        steps: list[ReclaimStep] = []

        steps.append(self._guard("kill_contenders", self._kill_contenders))
        for resource in resources:
            steps.append(self._guard(f"remove_lock {resource}", lambda r=resource: self._remove_lock(r)))
        steps.append(self._guard("dpkg_configure", self._dpkg_configure))
        steps.append(self._guard("apt_fix_broken", self._apt_fix_broken))

        for step in steps:
            detail = f" ({step.detail})" if step.detail else ""
            self._run_log.info(f"Reclaim {step.name}: {step.status.value}{detail}")
        return steps

    def _guard(self, name: str, fn: Callable[[], ReclaimStep]) -> ReclaimStep:
        try:
            return fn()
        except Exception as e:
            logger.warning("Reclaim step %s raised: %s", name, e)
            return ReclaimStep(name, ReclaimStatus.ATTEMPTED, str(e))

    def _running(self, process: str) -> bool:
        result = self._runner.run(["pgrep", "-x", process], quiet=True)
        return result.ok and not result.dry_run

    def _kill_contenders(self) -> ReclaimStep:
        running = [p for p in self._kill_processes if self._running(p)]
        if not running:
            return ReclaimStep("kill_contenders", ReclaimStatus.SKIPPED, "no contending processes")

        failed = []
        for process in running:
            result = self._runner.run(["pkill", "-9", "-x", process], elevated=True)
            # pkill exits 1 when the process vanished before the signal.
            if result.returncode not in (0, 1):
                failed.append(process)
        if failed:
            return ReclaimStep("kill_contenders", ReclaimStatus.ATTEMPTED, f"could not kill {', '.join(failed)}")
        return ReclaimStep("kill_contenders", ReclaimStatus.SUCCEEDED, ", ".join(running))

    def _remove_lock(self, resource: str) -> ReclaimStep:
        name = f"remove_lock {resource}"
        if not self._exists(resource):
            return ReclaimStep(name, ReclaimStatus.SKIPPED, "absent")
        if self._probe.is_held(resource):
            return ReclaimStep(name, ReclaimStatus.SKIPPED, "still held")
        return _from_result(name, self._runner.run(["rm", "-f", resource], elevated=True))

    def _dpkg_configure(self) -> ReclaimStep:
        if not self._repair:
            return ReclaimStep("dpkg_configure", ReclaimStatus.SKIPPED, "repair disabled")
        result = self._runner.run(["dpkg", "--configure", "-a"], elevated=True, env=self._env)
        self._run_log.capture(result.output)
        return _from_result("dpkg_configure", result)

    def _apt_fix_broken(self) -> ReclaimStep:
        if not self._repair:
            return ReclaimStep("apt_fix_broken", ReclaimStatus.SKIPPED, "repair disabled")
        result = self._runner.run(["apt-get", "-y", "-f", "install"], elevated=True, env=self._env)
        self._run_log.capture(result.output)
        return _from_result("apt_fix_broken", result)
