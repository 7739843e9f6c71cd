"""
Flatpak adapter — remotes and application installs.
"""

from __future__ import annotations

from jetson_setup.adapters.base import ExecutionContext
from jetson_setup.adapters.shell.command import CommandAdapter


class FlatpakAdapter(CommandAdapter):
    """flatpak operations.

    Action fields:
        verb (str): 'remote-add' or 'install'.
        args (tuple[str]): For remote-add: (name, url). For install: (remote, app_id, ...).
    """

    tool = "flatpak"

    @property
    def name(self) -> str:
        return "flatpak"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        verb = context.action.verb
        args = context.action.args
        if verb == "remote-add":
            if len(args) != 2:
                return False, "flatpak remote-add needs (name, url)"
            return True, ""
        if verb == "install":
            if len(args) < 2:
                return False, "flatpak install needs (remote, app_id)"
            return True, ""
        return False, f"Unknown flatpak verb '{verb}'. Valid: install, remote-add"

    def build_command(self, context: ExecutionContext) -> list[str]:
        action = context.action
        if action.verb == "remote-add":
            return ["flatpak", "remote-add", "--if-not-exists", *action.args]
        return ["flatpak", "install", "-y", "--noninteractive", *action.args]
