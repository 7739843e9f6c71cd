"""
Engine executor — the run loop.

The engine takes a setup plan and drives it through the run states:

    INIT → SUSPEND → REQUIRED* → OPTIONAL* → RESUME → DONE

Required steps go through the retrying executor in plan order. The first
required step that exhausts its retries (and its fallbacks) stops the
run: later steps are not started. Best-effort steps and optional scripts
only ever warn. Background contenders are resumed on every exit path.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from jetson_setup.core.engine.contenders import BackgroundContenders
from jetson_setup.core.engine.optional import OptionalStepInvoker
from jetson_setup.core.models.action import Action, ActionResult
from jetson_setup.core.persistence.run_log import RunLog
from jetson_setup.core.reliability.reclaim import StaleLockReclaimer
from jetson_setup.core.reliability.retry import ActionExhaustedError, RetryingExecutor

logger = logging.getLogger(__name__)


class RunPhase(StrEnum):
    """States of a setup run."""

    INIT = "init"
    SUSPEND = "suspend_background_contenders"
    REQUIRED = "required_steps"
    OPTIONAL = "optional_steps"
    RESUME = "resume_background_contenders"
    DONE = "done"


# ── Plan ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RequiredStep:
    """A mutating action, with alternatives tried if it is exhausted.

    ``required=False`` makes the step best-effort: exhaustion is a
    warning instead of ending the run.
    """

    action: Action
    fallbacks: tuple[Action, ...] = ()
    required: bool = True

    @property
    def label(self) -> str:
        return self.action.label


@dataclass(frozen=True)
class OptionalStep:
    """An auxiliary helper script."""

    label: str
    script: Path
    args: tuple[str, ...] = ()
    elevated: bool = True


@dataclass
class SetupPlan:
    """Ordered steps for one run."""

    steps: list[RequiredStep] = field(default_factory=list)
    optional: list[OptionalStep] = field(default_factory=list)

    @property
    def total_steps(self) -> int:
        return len(self.steps) + len(self.optional)

    def to_dict(self) -> dict[str, Any]:
        return {
            "steps": [
                {
                    "id": s.action.id,
                    "label": s.label,
                    "adapter": s.action.adapter,
                    "verb": s.action.verb,
                    "args": list(s.action.args),
                    "required": s.required,
                    "fallbacks": [f.label for f in s.fallbacks],
                }
                for s in self.steps
            ],
            "optional": [
                {"label": o.label, "script": str(o.script), "args": list(o.args)}
                for o in self.optional
            ],
        }


# ── Report ───────────────────────────────────────────────────────────


@dataclass
class StepOutcome:
    """What happened to one step."""

    label: str
    kind: str                 # required, best_effort, optional
    status: str               # ok, failed, skipped, exhausted
    attempts: int = 0
    fallback: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "kind": self.kind,
            "status": self.status,
            "attempts": self.attempts,
            "fallback": self.fallback,
        }


@dataclass
class RunReport:
    """Result of executing a plan."""

    operation_id: str = ""
    log_path: Path | None = None
    phases: list[RunPhase] = field(default_factory=list)
    outcomes: list[StepOutcome] = field(default_factory=list)
    error: ActionExhaustedError | None = None

    def enter(self, phase: RunPhase) -> None:
        self.phases.append(phase)
        logger.debug("Run %s → %s", self.operation_id, phase.value)

    @property
    def phase(self) -> RunPhase:
        return self.phases[-1] if self.phases else RunPhase.INIT

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def warnings(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "failed")

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "status": "ok" if self.ok else "failed",
            "log_path": str(self.log_path) if self.log_path else None,
            "phases": [p.value for p in self.phases],
            "warnings": self.warnings,
            "error": str(self.error) if self.error else None,
            "steps": [o.to_dict() for o in self.outcomes],
        }


# ── Execution ────────────────────────────────────────────────────────


def _run_required(
    step: RequiredStep,
    executor: RetryingExecutor,
    run_log: RunLog,
) -> tuple[ActionResult, str | None]:
    """Run a step's action, then its fallbacks while exhausted."""
    result = executor.run(step.action)
    if result.ok:
        return result, None

    for fallback in step.fallbacks:
        run_log.info(f"Falling back to {fallback.label}")
        fb_result = executor.run(fallback)
        if fb_result.ok:
            return fb_result, fallback.label
        result = fb_result

    return result, None


def execute_run(
    plan: SetupPlan,
    *,
    executor: RetryingExecutor,
    reclaimer: StaleLockReclaimer,
    invoker: OptionalStepInvoker,
    contenders: BackgroundContenders,
    run_log: RunLog,
    lock_resources: list[str] | tuple[str, ...] = (),
    operation_id: str | None = None,
) -> RunReport:
    """Execute a setup plan.

    Returns a RunReport. An exhausted required step is recorded in
    ``report.error`` rather than raised; KeyboardInterrupt and SystemExit
    propagate, after background contenders have been resumed.
    """
    report = RunReport(
        operation_id=operation_id or generate_operation_id(),
        log_path=run_log.path,
    )
    report.enter(RunPhase.INIT)
    run_log.info(f"Starting Jetson setup. Log: {run_log.path or '(console only)'}")

    try:
        report.enter(RunPhase.SUSPEND)
        with contenders:
            try:
                reclaimer.reclaim(lock_resources)

                report.enter(RunPhase.REQUIRED)
                for step in plan.steps:
                    result, fallback = _run_required(step, executor, run_log)
                    kind = "required" if step.required else "best_effort"

                    if result.ok:
                        report.outcomes.append(
                            StepOutcome(step.label, kind, "ok", result.attempt_count, fallback)
                        )
                        continue

                    if step.required:
                        report.outcomes.append(
                            StepOutcome(step.label, kind, "exhausted", result.attempt_count)
                        )
                        report.error = ActionExhaustedError(result)
                        run_log.error(f"Required step failed, stopping: {report.error}")
                        return report

                    report.outcomes.append(
                        StepOutcome(step.label, kind, "failed", result.attempt_count)
                    )
                    run_log.warning(f"{step.label} failed; continuing")

                report.enter(RunPhase.OPTIONAL)
                for opt in plan.optional:
                    receipt = invoker.run_if_present(
                        opt.label, opt.script, opt.args, elevated=opt.elevated
                    )
                    report.outcomes.append(StepOutcome(opt.label, "optional", receipt.status))
            finally:
                report.enter(RunPhase.RESUME)
        report.enter(RunPhase.DONE)
        return report
    finally:
        if report.phase is RunPhase.DONE:
            run_log.info("Finished.")
        elif report.error is not None:
            run_log.error("Finished with errors.")
        else:
            run_log.warning("Run interrupted.")


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"
