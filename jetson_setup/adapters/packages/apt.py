"""
Apt adapter — Debian package operations via apt-get.

Every apt action touches the dpkg frontend lock and the lists lock, so
actions built for this adapter carry those as their resources and the
executor waits on them before each attempt.
"""

from __future__ import annotations

import logging

from jetson_setup.adapters.base import ExecutionContext
from jetson_setup.adapters.shell.command import CommandAdapter

logger = logging.getLogger(__name__)

# Verbs that operate on the whole system and take no package names.
SYSTEM_VERBS = frozenset({"update", "upgrade", "dist-upgrade", "autoremove", "autoclean", "clean"})
# Verbs that require at least one package name.
PACKAGE_VERBS = frozenset({"install", "remove", "purge", "reinstall"})


class AptAdapter(CommandAdapter):
    """apt-get operations, always non-interactive (-y).

    Action fields:
        verb (str): An apt-get subcommand (install, update, dist-upgrade, ...).
        args (tuple[str]): Package names (required for install/remove/purge).
    """

    tool = "apt-get"

    @property
    def name(self) -> str:
        return "apt"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        verb = context.action.verb
        if verb in SYSTEM_VERBS:
            return True, ""
        if verb in PACKAGE_VERBS:
            if not context.action.args:
                return False, f"apt {verb} needs at least one package"
            return True, ""
        valid = ", ".join(sorted(SYSTEM_VERBS | PACKAGE_VERBS))
        return False, f"Unknown apt verb '{verb}'. Valid: {valid}"

    def build_command(self, context: ExecutionContext) -> list[str]:
        action = context.action
        return ["apt-get", "-y", action.verb, *action.args]
