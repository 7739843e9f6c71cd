"""
Run use case — execute a full Jetson setup run.

This is the top-level orchestrator: it loads config, builds the plan,
wires the runner, lock waiter, reclaimer, executor, and contenders guard
together, executes the plan, and finally offers a reboot. The full
vertical slice from ``jetson-setup run`` to a logged, resumed system.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence, TextIO

from jetson_setup.adapters.packages.apt import AptAdapter
from jetson_setup.adapters.packages.flatpak import FlatpakAdapter
from jetson_setup.adapters.packages.pip import PipAdapter
from jetson_setup.adapters.packages.snap import SnapAdapter
from jetson_setup.adapters.registry import AdapterRegistry
from jetson_setup.adapters.shell.command import CommandRunner, ShellCommandAdapter
from jetson_setup.core.config.loader import ConfigError, load_config
from jetson_setup.core.engine.contenders import BackgroundContenders
from jetson_setup.core.engine.executor import (
    RunReport,
    SetupPlan,
    execute_run,
    generate_operation_id,
)
from jetson_setup.core.engine.optional import OptionalStepInvoker
from jetson_setup.core.models.config import SetupConfig
from jetson_setup.core.persistence.run_log import RunLog
from jetson_setup.core.reliability.locks import FuserLockProbe, LockProbe, LockWaiter
from jetson_setup.core.reliability.reclaim import StaleLockReclaimer
from jetson_setup.core.reliability.retry import RetryingExecutor
from jetson_setup.core.services.plan import build_plan
from jetson_setup.core.services.reboot import offer_reboot

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Result of a setup run."""

    report: RunReport | None = None
    plan: SetupPlan | None = None
    config: SetupConfig | None = None
    log_path: Path | None = None
    rebooted: bool = False
    error: str | None = None  # could not start: config or log file problems

    @property
    def ok(self) -> bool:
        return self.error is None and self.report is not None and self.report.ok

    @property
    def exit_code(self) -> int:
        if self.error:
            return 2
        return self.report.exit_code if self.report else 1

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.error:
            result["error"] = self.error
            return result

        result["log_path"] = str(self.log_path) if self.log_path else None
        result["steps_planned"] = self.plan.total_steps if self.plan else 0
        result["rebooted"] = self.rebooted
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def build_default_registry(runner: CommandRunner) -> AdapterRegistry:
    """Registry with every package-manager adapter bound to ``runner``."""
    registry = AdapterRegistry()
    registry.register(AptAdapter(runner))
    registry.register(FlatpakAdapter(runner))
    registry.register(SnapAdapter(runner))
    registry.register(PipAdapter(runner))
    registry.register(ShellCommandAdapter(runner))
    return registry


def _never(prompt: str) -> bool:
    return False


def run_setup(
    config_path: Path | None = None,
    config: SetupConfig | None = None,
    extra_args: Sequence[str] = (),
    dry_run: bool = False,
    log_dir: Path | None = None,
    reboot_prompt: bool = True,
    confirm: Callable[[str], bool] = _never,
    runner: CommandRunner | None = None,
    registry: AdapterRegistry | None = None,
    probe: LockProbe | None = None,
    sleep: Callable[[float], None] = time.sleep,
    stream: TextIO | None = None,
    env: Mapping[str, str] | None = None,
) -> RunResult:
    """Execute a complete setup run.

    Args:
        config_path: Optional explicit path to jetson-setup.yml.
        config: Pre-loaded configuration (skips loading).
        extra_args: Positional CLI arguments for the optional scripts.
        dry_run: Log every command but execute none.
        log_dir: Override for the run log directory.
        reboot_prompt: Whether to offer a reboot after a successful run.
        confirm: Yes/no prompt used for the reboot question.
        runner: Command runner (default: built from config).
        registry: Adapter registry (default: all package-manager adapters).
        probe: Lock probe (default: fuser).
        sleep: Blocking sleep used for lock polls and retry backoff.
        stream: Console stream for the run log (default: stdout).
        env: Environment for config overrides (default: os.environ).

    Returns:
        RunResult with the run report.
    """
    result = RunResult()

    # ── Load config ──────────────────────────────────────────────
    if config is None:
        try:
            config = load_config(config_path, env=env)
        except ConfigError as e:
            result.error = str(e)
            return result
    if log_dir is not None:
        config.log_dir = str(log_dir)
    result.config = config

    # ── Build plan ───────────────────────────────────────────────
    try:
        plan = build_plan(config, extra_args)
    except KeyError as e:
        result.error = str(e.args[0]) if e.args else str(e)
        return result
    result.plan = plan

    # ── Run log ──────────────────────────────────────────────────
    try:
        run_log = RunLog.create(config.log_path, config.log_prefix, stream=stream)
    except OSError as e:
        result.error = f"Cannot create run log in {config.log_path}: {e}"
        return result
    result.log_path = run_log.path

    # ── Wire components ──────────────────────────────────────────
    if runner is None:
        runner = CommandRunner(
            use_sudo=config.use_sudo,
            dry_run=dry_run,
            timeout=config.command_timeout,
        )
    if registry is None:
        registry = build_default_registry(runner)
    if probe is None:
        probe = FuserLockProbe(runner)

    package_env = config.package_env
    waiter = LockWaiter(probe, run_log, poll_interval=config.locks.poll_interval, sleep=sleep)
    reclaimer = StaleLockReclaimer(
        runner,
        probe,
        run_log,
        kill_processes=config.reclaim.kill_processes,
        repair=config.reclaim.repair,
        env=package_env,
    )
    executor = RetryingExecutor(
        registry,
        waiter,
        reclaimer,
        run_log,
        max_attempts=config.retry.max_attempts,
        initial_delay=config.retry.initial_delay,
        sleep=sleep,
        dry_run=dry_run,
        env=package_env,
    )

    # ── Execute ──────────────────────────────────────────────────
    operation_id = generate_operation_id()
    logger.info("Starting run %s (%d steps)", operation_id, plan.total_steps)
    report = execute_run(
        plan,
        executor=executor,
        reclaimer=reclaimer,
        invoker=OptionalStepInvoker(runner, run_log),
        contenders=BackgroundContenders(runner, run_log, config.contenders),
        run_log=run_log,
        lock_resources=config.locks.resources,
        operation_id=operation_id,
    )
    result.report = report

    # ── Reboot ───────────────────────────────────────────────────
    if report.ok and reboot_prompt and not dry_run:
        result.rebooted = offer_reboot(
            runner=runner,
            run_log=run_log,
            confirm=confirm,
            sentinel=config.reboot_sentinel,
        )

    return result
