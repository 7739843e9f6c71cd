"""
Action, Receipt, and Attempt models — the execution contract.

Actions represent requested mutating operations ("install these packages").
Receipts represent the result of executing an action once. Attempts wrap
receipts with their position in a retry sequence, and an ActionResult is
the single terminal outcome of an action after all of its attempts.

Adapters return Receipts. Never exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Action(BaseModel):
    """A named mutating operation: verb + argument list.

    Actions are immutable once constructed. The adapter named here
    turns (verb, args) into a concrete command.
    """

    model_config = ConfigDict(frozen=True)

    id: str                                  # unique within a plan
    name: str = ""                           # human-readable label
    adapter: str                             # which adapter handles this
    verb: str = ""                           # e.g. "install", "update"
    args: tuple[str, ...] = ()               # e.g. package names
    resources: tuple[str, ...] = ()          # lock resources the action touches
    max_attempts: int | None = Field(default=None, ge=1)  # overrides policy
    elevated: bool = True                    # run with root privileges

    @property
    def label(self) -> str:
        """Label used in log entries."""
        if self.name:
            return self.name
        parts = [self.adapter, self.verb, *self.args]
        return " ".join(p for p in parts if p)


class Receipt(BaseModel):
    """Result of a single adapter execution.

    Receipts capture the full outcome of one execution. The adapter
    NEVER raises exceptions — failures are captured here.
    """

    adapter: str
    action_id: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    return_code: int | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the action succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the action failed."""
        return self.status == "failed"

    @classmethod
    def success(
        cls,
        adapter: str,
        action_id: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="ok",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        adapter: str,
        action_id: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="failed",
            error=error,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        adapter: str,
        action_id: str,
        reason: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a skip receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="skipped",
            output=reason,
            **kwargs,
        )


@dataclass(frozen=True)
class Attempt:
    """One execution of an action within its retry budget."""

    index: int                      # 1-based, strictly increasing
    receipt: Receipt
    delay_before_retry: float = 0.0  # seconds slept after this attempt

    @property
    def ok(self) -> bool:
        return not self.receipt.failed

    @property
    def outcome(self) -> str:
        return "success" if self.ok else "failure"

    @property
    def output(self) -> str:
        return self.receipt.output


@dataclass
class ActionResult:
    """Terminal outcome of an action: success, or retries exhausted."""

    action: Action
    attempts: list[Attempt] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.attempts) and self.attempts[-1].ok

    @property
    def status(self) -> str:
        return "ok" if self.ok else "exhausted"

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def total_delay(self) -> float:
        """Cumulative backoff slept across all attempts."""
        return sum(a.delay_before_retry for a in self.attempts)

    @property
    def output(self) -> str:
        """Captured output of the final attempt."""
        return self.attempts[-1].output if self.attempts else ""

    @property
    def last_error(self) -> str:
        if not self.attempts:
            return ""
        return self.attempts[-1].receipt.error or ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_id": self.action.id,
            "label": self.action.label,
            "status": self.status,
            "attempts": self.attempt_count,
            "total_delay": self.total_delay,
            "last_error": self.last_error,
        }
