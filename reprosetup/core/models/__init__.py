"""
Domain models — Pydantic types for the convergence engine.

All models are re-exported here for convenient access:

    from reprosetup.core.models import DesiredState, Action, Receipt, Outcome
"""

from reprosetup.core.models.action import Action, Receipt
from reprosetup.core.models.desired import (
    Application,
    ContainerSpec,
    ContainersConfig,
    CustomCommandsConfig,
    CustomService,
    DesiredState,
    DotfilesConfig,
    HostConfig,
    PackagesConfig,
    ServicesConfig,
    SetupCommand,
    UnitState,
)
from reprosetup.core.models.diff import ResourceDiff
from reprosetup.core.models.outcome import Outcome, RunReport
from reprosetup.core.models.policy import ConfirmationPolicy, RunModes
from reprosetup.core.models.state import StateDocument, StateRecord

__all__ = [
    # action.py
    "Action",
    "Receipt",
    # desired.py
    "Application",
    "ContainerSpec",
    "ContainersConfig",
    "CustomCommandsConfig",
    "CustomService",
    "DesiredState",
    "DotfilesConfig",
    "HostConfig",
    "PackagesConfig",
    "ServicesConfig",
    "SetupCommand",
    "UnitState",
    # diff.py
    "ResourceDiff",
    # outcome.py
    "Outcome",
    "RunReport",
    # policy.py
    "ConfirmationPolicy",
    "RunModes",
    # state.py
    "StateDocument",
    "StateRecord",
]
