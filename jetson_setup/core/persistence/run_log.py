"""
Run log — append-only, timestamped record of every step outcome.

Every entry is written synchronously to the console and to a per-run
plain-text file. Raw command output is captured to the file only, so
the console stays readable while the file keeps everything.

The log is append-only: entries are never modified, reordered, or
deleted during a run, and the file is never removed by the tool.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Literal, TextIO

logger = logging.getLogger(__name__)

LogLevel = Literal["info", "warning", "error"]

LOG_FILE_MODE = 0o640  # owner read/write, group read

_LEVEL_PREFIX = {"info": "", "warning": "WARN: ", "error": "ERROR: "}


@dataclass(frozen=True)
class RunLogEntry:
    """A single run log entry."""

    timestamp: datetime
    message: str
    level: LogLevel = "info"

    def render(self) -> str:
        stamp = self.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        return f"[{stamp}] {_LEVEL_PREFIX[self.level]}{self.message}"


def log_file_name(prefix: str, when: datetime) -> str:
    """File name for a run started at ``when``."""
    return f"{prefix}_{when.strftime('%Y%m%d_%H%M%S')}.log"


class RunLog:
    """Append-only run log writer.

    Args:
        path: Log file. None keeps the log in memory and on the console only.
        stream: Console stream. None resolves ``sys.stdout`` at write time.
        echo: Whether entries are written to the console at all.
        clock: Timestamp source.
    """

    def __init__(
        self,
        path: Path | None = None,
        stream: TextIO | None = None,
        echo: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._path = path
        self._stream = stream
        self._echo = echo
        self._clock = clock
        self._entries: list[RunLogEntry] = []

    @classmethod
    def create(
        cls,
        log_dir: Path,
        prefix: str = "setup_jetson",
        **kwargs,
    ) -> RunLog:
        """Create the run's log file and return a writer for it."""
        clock = kwargs.get("clock", datetime.now)
        log_dir.mkdir(parents=True, exist_ok=True)
        path = log_dir / log_file_name(prefix, clock())
        path.touch(exist_ok=True)
        os.chmod(path, LOG_FILE_MODE)
        logger.debug("Run log created at %s", path)
        return cls(path=path, **kwargs)

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def entries(self) -> list[RunLogEntry]:
        """All entries appended so far, oldest first."""
        return list(self._entries)

    def messages(self, level: LogLevel | None = None) -> list[str]:
        """Entry messages, optionally filtered by level."""
        return [e.message for e in self._entries if level is None or e.level == level]

    def append(self, message: str, level: LogLevel = "info") -> RunLogEntry:
        """Append a timestamped entry to the console and the log file."""
        entry = RunLogEntry(timestamp=self._clock(), message=message, level=level)
        self._entries.append(entry)
        line = entry.render()

        if self._echo:
            stream = self._stream or sys.stdout
            try:
                stream.write(line + "\n")
                stream.flush()
            except (OSError, ValueError):
                # Console gone (closed pipe, detached terminal); the file still records it.
                pass

        self._write_file(line + "\n")
        logger.debug("run log [%s] %s", level, message)
        return entry

    def info(self, message: str) -> RunLogEntry:
        return self.append(message, "info")

    def warning(self, message: str) -> RunLogEntry:
        return self.append(message, "warning")

    def error(self, message: str) -> RunLogEntry:
        return self.append(message, "error")

    def capture(self, text: str) -> None:
        """Append raw command output to the log file (not the console)."""
        if not text:
            return
        if not text.endswith("\n"):
            text += "\n"
        self._write_file(text)

    def _write_file(self, text: str) -> None:
        if self._path is None:
            return
        try:
            with self._path.open("a", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            logger.error("Failed to write run log %s: %s", self._path, e)
