"""
Pip adapter — system-wide Python package installs (e.g. jetson-stats).

Runs ``pip3 install -U`` under ``sudo -H`` so pip's cache lands in
root's home rather than the invoking user's.
"""

from __future__ import annotations

from jetson_setup.adapters.base import ExecutionContext
from jetson_setup.adapters.shell.command import CommandAdapter


class PipAdapter(CommandAdapter):
    """pip3 install --upgrade.

    Action fields:
        verb (str): 'install'.
        args (tuple[str]): Distribution names.
    """

    tool = "pip3"
    sudo_flags = ("-H",)

    @property
    def name(self) -> str:
        return "pip"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if context.action.verb != "install":
            return False, f"Unknown pip verb '{context.action.verb}'. Valid: install"
        if not context.action.args:
            return False, "pip install needs at least one package"
        return True, ""

    def build_command(self, context: ExecutionContext) -> list[str]:
        return ["pip3", "install", "-U", *context.action.args]
