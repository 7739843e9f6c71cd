"""
Shared test fixtures and fakes.

Nothing in the test suite spawns real processes or sleeps: commands go
through ``FakeRunner``, lock polls through ``FakeProbe``, and backoff
through ``FakeSleep``.
"""

import io
from datetime import datetime
from pathlib import Path
from typing import Sequence

import pytest

from jetson_setup.adapters.shell.command import CommandResult, CommandRunner
from jetson_setup.core.persistence.run_log import RunLog

FIXED_NOW = datetime(2026, 3, 14, 9, 26, 53)


class FakeRunner(CommandRunner):
    """CommandRunner that records argv lists instead of running them.

    Responses are matched by argv prefix; the most recently added rule
    wins. Anything unmatched exits 0, except ``pgrep`` and ``fuser``,
    which default to "nothing running / not held".
    """

    def __init__(self, dry_run: bool = False, available: bool = True):
        super().__init__(use_sudo=False, dry_run=dry_run)
        self.available = available
        self.calls: list[list[str]] = []
        self.elevated: list[bool] = []
        self.envs: list[dict[str, str]] = []
        self._rules: list[tuple[tuple[str, ...], CommandResult | BaseException]] = []
        self.respond(["pgrep"], returncode=1)
        self.respond(["fuser"], returncode=1)

    def respond(
        self,
        prefix: Sequence[str],
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Always answer commands starting with ``prefix`` this way."""
        result = CommandResult(argv=list(prefix), returncode=returncode, stdout=stdout, stderr=stderr)
        self._rules.append((tuple(prefix), result))

    def raise_on(self, prefix: Sequence[str], exc: BaseException) -> None:
        self._rules.append((tuple(prefix), exc))

    def run(
        self,
        argv,
        *,
        elevated=False,
        sudo_flags=("-E",),
        env=None,
        cwd=None,
        timeout=None,
        quiet=False,
    ) -> CommandResult:
        cmd = list(argv)
        self.calls.append(cmd)
        self.elevated.append(elevated)
        self.envs.append(dict(env or {}))
        if self.dry_run:
            return CommandResult(argv=cmd, returncode=0, dry_run=True)
        for prefix, response in reversed(self._rules):
            if tuple(cmd[: len(prefix)]) == prefix:
                if isinstance(response, BaseException):
                    raise response
                return CommandResult(
                    argv=cmd,
                    returncode=response.returncode,
                    stdout=response.stdout,
                    stderr=response.stderr,
                )
        return CommandResult(argv=cmd, returncode=0)

    def which(self, name: str) -> bool:
        return self.available

    def ran(self, *prefix: str) -> list[list[str]]:
        """Recorded commands starting with ``prefix``."""
        return [c for c in self.calls if tuple(c[: len(prefix)]) == prefix]


class FakeProbe:
    """Lock probe where each resource is held for a set number of polls."""

    def __init__(self, busy: dict[str, int] | None = None, forever: Sequence[str] = ()):
        self.busy = dict(busy or {})
        self.forever = set(forever)
        self.calls: list[str] = []

    def is_held(self, resource: str) -> bool:
        self.calls.append(resource)
        if resource in self.forever:
            return True
        left = self.busy.get(resource, 0)
        if left > 0:
            self.busy[resource] = left - 1
            return True
        return False


class FakeSleep:
    """Records requested sleeps instead of blocking."""

    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def console() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def run_log(tmp_path: Path, console: io.StringIO) -> RunLog:
    """A run log writing to a temp file and an in-memory console."""
    return RunLog.create(tmp_path / "logs", stream=console, clock=lambda: FIXED_NOW)
