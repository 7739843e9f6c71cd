"""
Reboot prompt — the run's only interactive decision.

After the run, if the OS left its reboot sentinel (/var/run/reboot-required),
ask whether to reboot now. Answering yes issues ``reboot``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from jetson_setup.adapters.shell.command import CommandRunner
from jetson_setup.core.persistence.run_log import RunLog

logger = logging.getLogger(__name__)

DEFAULT_SENTINEL = "/var/run/reboot-required"


def reboot_required(sentinel: str | Path = DEFAULT_SENTINEL) -> bool:
    return Path(sentinel).exists()


def offer_reboot(
    *,
    runner: CommandRunner,
    run_log: RunLog,
    confirm: Callable[[str], bool],
    sentinel: str | Path = DEFAULT_SENTINEL,
) -> bool:
    """Prompt for a reboot if one is required.

    Args:
        runner: Used to issue ``reboot``.
        run_log: Records the decision.
        confirm: Yes/no prompt; returns True for yes.
        sentinel: Reboot-required marker file.

    Returns:
        True if a reboot was issued.
    """
    if not reboot_required(sentinel):
        run_log.info("Setup complete. Reboot recommended.")
        return False

    run_log.info("Reboot required.")
    if not confirm("Reboot now?"):
        run_log.info("Reboot postponed.")
        return False

    run_log.info("Rebooting...")
    result = runner.run(["reboot"], elevated=True)
    if not result.ok:
        run_log.warning(f"reboot failed (exit {result.returncode})")
        return False
    return True
