"""
Snap adapter — snap package installs.
"""

from __future__ import annotations

from jetson_setup.adapters.base import ExecutionContext
from jetson_setup.adapters.shell.command import CommandAdapter


class SnapAdapter(CommandAdapter):
    """snap install/remove.

    Action fields:
        verb (str): 'install' or 'remove'.
        args (tuple[str]): Snap names.
    """

    tool = "snap"

    @property
    def name(self) -> str:
        return "snap"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if context.action.verb not in ("install", "remove"):
            return False, f"Unknown snap verb '{context.action.verb}'. Valid: install, remove"
        if not context.action.args:
            return False, f"snap {context.action.verb} needs at least one snap name"
        return True, ""

    def build_command(self, context: ExecutionContext) -> list[str]:
        return ["snap", context.action.verb, *context.action.args]
