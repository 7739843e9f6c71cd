"""
Adapter base — how a package-manager action reaches a tool.

The retrying executor hands each attempt of an action to the registry,
which builds an ``ExecutionContext`` and passes it to the adapter named by
``action.adapter``. Adapters never raise on tool failure; a failed install
comes back as a failed Receipt so the executor can decide whether to retry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from jetson_setup.core.models.action import Action, Receipt


class ExecutionContext(BaseModel):
    """One attempt of one action, as the adapter sees it."""

    action: Action
    attempt: int = Field(default=1, ge=1)
    max_attempts: int = Field(default=1, ge=1)
    dry_run: bool = False
    env: dict[str, str] = Field(default_factory=dict)  # e.g. DEBIAN_FRONTEND

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts


class Adapter(ABC):
    """Abstract base class for package-manager and shell adapters.

    Subclass ``CommandAdapter`` for tools driven by one command per
    action; subclass this directly only for test doubles.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The value of ``Action.adapter`` this adapter serves ('apt', 'snap', ...)."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the underlying tool is installed on this image."""

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Check the action is well-formed (e.g. an install names packages).

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Run the action once. MUST NOT raise on tool failure."""

    def describe(self, context: ExecutionContext) -> str:
        """What a dry run reports it would do."""
        return context.action.label

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
