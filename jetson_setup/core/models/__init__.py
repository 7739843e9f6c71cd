"""
Domain models — Pydantic types for the setup run.

All models are re-exported here for convenient access:

    from jetson_setup.core.models import Action, Receipt, SetupConfig
"""

from jetson_setup.core.models.action import Action, ActionResult, Attempt, Receipt
from jetson_setup.core.models.config import (
    BrowserConfig,
    ContenderPolicy,
    LockPolicy,
    OptionalStepConfig,
    ReclaimPolicy,
    RetryPolicy,
    SetupConfig,
)

__all__ = [
    # action.py
    "Action",
    "ActionResult",
    "Attempt",
    "Receipt",
    # config.py
    "BrowserConfig",
    "ContenderPolicy",
    "LockPolicy",
    "OptionalStepConfig",
    "ReclaimPolicy",
    "RetryPolicy",
    "SetupConfig",
]
