"""Adapters — tool bindings for package managers and shell commands.

Public re-exports for convenient access.
"""

from jetson_setup.adapters.base import Adapter, ExecutionContext
from jetson_setup.adapters.mock import MockAdapter
from jetson_setup.adapters.registry import AdapterRegistry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "MockAdapter",
]
