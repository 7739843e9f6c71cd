"""
Optional step invoker — run an auxiliary helper script if it exists.

Optional steps are cosmetic: a missing script is an informational skip,
and a failing script is a warning. Neither ever aborts the run.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import Sequence

from jetson_setup.adapters.shell.command import CommandRunner
from jetson_setup.core.models.action import Receipt
from jetson_setup.core.persistence.run_log import RunLog

logger = logging.getLogger(__name__)

_EXEC_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


class OptionalStepInvoker:
    """Run helper scripts with bash, elevated by default, never escalating."""

    def __init__(self, runner: CommandRunner, run_log: RunLog):
        self._runner = runner
        self._run_log = run_log

    def run_if_present(
        self,
        label: str,
        path: Path,
        args: Sequence[str] = (),
        elevated: bool = True,
    ) -> Receipt:
        """Run ``path`` with ``args`` if it is a file; skip otherwise."""
        if not path.is_file():
            self._run_log.info(f"{label} script not found ({path}). Skipping.")
            return Receipt.skip(adapter="script", action_id=label, reason="script not found")

        self._make_executable(path)
        self._run_log.info(f"Running {label}: {path}")
        result = self._runner.run(["bash", str(path), *args], elevated=elevated)
        self._run_log.capture(result.output)

        if not result.ok:
            self._run_log.warning(f"{label} failed (exit {result.returncode})")
            return Receipt.failure(
                adapter="script",
                action_id=label,
                error=result.stderr.strip() or f"exit {result.returncode}",
                output=result.output,
                return_code=result.returncode,
            )

        return Receipt.success(
            adapter="script",
            action_id=label,
            output=result.output,
            return_code=result.returncode,
        )

    def _make_executable(self, path: Path) -> None:
        try:
            mode = path.stat().st_mode
            if mode & _EXEC_BITS != _EXEC_BITS:
                os.chmod(path, mode | _EXEC_BITS)
        except OSError as e:
            # Not fatal: the script is run through bash, not exec'd.
            logger.debug("Could not mark %s executable: %s", path, e)
