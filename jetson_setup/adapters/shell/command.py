"""
Shell command layer — the single place subprocesses are spawned.

``CommandRunner`` runs an argv list with consistent privilege elevation,
environment overrides, logging, and dry-run support. It never raises on
command failure: a missing binary, a timeout, or a non-zero exit all come
back as a ``CommandResult``.

``CommandAdapter`` builds on the runner: subclasses turn an Action into
an argv and get Receipt handling for free. ``ShellCommandAdapter`` runs
an action's args verbatim.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import time
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from jetson_setup.adapters.base import Adapter, ExecutionContext
from jetson_setup.core.models.action import Receipt

logger = logging.getLogger(__name__)

# Conventional shell exit codes for failures that never reach the command.
EXIT_TIMEOUT = 124
EXIT_CANNOT_EXECUTE = 126
EXIT_NOT_FOUND = 127

_OUTPUT_TAIL = 4000


def format_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        return "\n".join(s for s in (self.stdout.strip(), self.stderr.strip()) if s)


@dataclass
class CommandRunner:
    """Run commands with sudo, env, and dry-run handling.

    Args:
        use_sudo: Prefix elevated commands with sudo when not already root.
        env: Extra environment applied to every command.
        dry_run: Log commands but don't execute them.
        timeout: Default per-command timeout in seconds (None = no limit).
    """

    use_sudo: bool = True
    env: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False
    timeout: float | None = None

    def is_root(self) -> bool:
        return os.geteuid() == 0

    def which(self, name: str) -> bool:
        return shutil.which(name) is not None

    def build_argv(
        self,
        argv: Sequence[str],
        *,
        elevated: bool = False,
        sudo_flags: Sequence[str] = ("-E",),
    ) -> list[str]:
        """Apply privilege elevation to an argv."""
        cmd = list(argv)
        if elevated and self.use_sudo and not self.is_root():
            cmd = ["sudo", *sudo_flags, *cmd]
        return cmd

    def run(
        self,
        argv: Sequence[str],
        *,
        elevated: bool = False,
        sudo_flags: Sequence[str] = ("-E",),
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        timeout: float | None = None,
        quiet: bool = False,
    ) -> CommandResult:
        """Run a command and capture its output.

        ``quiet`` logs the command at DEBUG instead of INFO, for probes
        that run on every poll.
        """
        cmd = self.build_argv(argv, elevated=elevated, sudo_flags=sudo_flags)
        logger.log(logging.DEBUG if quiet else logging.INFO, "CMD %s", format_argv(cmd))

        if self.dry_run:
            return CommandResult(argv=cmd, returncode=0, dry_run=True)

        merged_env = os.environ.copy()
        merged_env.update(self.env)
        if env:
            merged_env.update(env)

        effective_timeout = timeout if timeout is not None else self.timeout
        start = time.monotonic()
        try:
            p = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                cwd=cwd,
                env=merged_env,
                timeout=effective_timeout,
            )
        except FileNotFoundError:
            return CommandResult(
                argv=cmd,
                returncode=EXIT_NOT_FOUND,
                stderr=f"command not found: {cmd[0]}",
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                argv=cmd,
                returncode=EXIT_TIMEOUT,
                stderr=f"Command timed out after {effective_timeout}s",
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except OSError as e:
            return CommandResult(argv=cmd, returncode=EXIT_CANNOT_EXECUTE, stderr=str(e))

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if p.stdout:
            logger.debug("STDOUT %s", p.stdout.strip()[-_OUTPUT_TAIL:])
        if p.stderr:
            logger.debug("STDERR %s", p.stderr.strip()[-_OUTPUT_TAIL:])

        return CommandResult(
            argv=cmd,
            returncode=p.returncode,
            stdout=p.stdout or "",
            stderr=p.stderr or "",
            duration_ms=elapsed_ms,
        )


class CommandAdapter(Adapter):
    """Base for adapters that execute one command per action.

    Subclasses set ``tool`` (the binary checked for availability) and
    implement ``build_command``. ``env`` and ``sudo_flags`` customise how
    the command is run.
    """

    tool: str = ""
    sudo_flags: tuple[str, ...] = ("-E",)

    def __init__(self, runner: CommandRunner, env: Mapping[str, str] | None = None):
        self._runner = runner
        self._env = dict(env or {})

    @property
    def runner(self) -> CommandRunner:
        return self._runner

    def is_available(self) -> bool:
        return bool(self.tool) and self._runner.which(self.tool)

    @abstractmethod
    def build_command(self, context: ExecutionContext) -> list[str]:
        """Translate the context's action into an argv."""

    def describe(self, context: ExecutionContext) -> str:
        return format_argv(self.build_command(context))

    def execute(self, context: ExecutionContext) -> Receipt:
        action = context.action
        argv = self.build_command(context)
        env = {**self._env, **context.env}
        if context.attempt > 1:
            logger.debug("%s: attempt %d/%d", action.id, context.attempt, context.max_attempts)

        result = self._runner.run(
            argv,
            elevated=action.elevated,
            sudo_flags=self.sudo_flags,
            env=env,
        )

        metadata = {"command": format_argv(result.argv), "dry_run": result.dry_run}
        if result.ok:
            return Receipt.success(
                adapter=self.name,
                action_id=action.id,
                output=result.output,
                return_code=result.returncode,
                duration_ms=result.duration_ms,
                metadata=metadata,
            )

        stderr = result.stderr.strip()
        return Receipt.failure(
            adapter=self.name,
            action_id=action.id,
            error=stderr[-_OUTPUT_TAIL:] or f"Command exited with code {result.returncode}",
            output=result.output,
            return_code=result.returncode,
            duration_ms=result.duration_ms,
            metadata=metadata,
        )


class ShellCommandAdapter(CommandAdapter):
    """Run an action's args as a command, verbatim.

    Action fields:
        args: The argv to execute (args[0] is the program).
        elevated: Whether to run with root privileges.
    """

    tool = "sh"

    @property
    def name(self) -> str:
        return "shell"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if not context.action.args:
            return False, "Missing command: action args are empty"
        return True, ""

    def build_command(self, context: ExecutionContext) -> list[str]:
        return list(context.action.args)
