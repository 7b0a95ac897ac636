"""Data models for SetupDeck."""

from .catalog import (
    Catalog,
    CommandKind,
    Precondition,
    PreconditionKind,
    SetupUnit,
    Tab,
    UnitCommand,
)
from .execution_state import (
    AlreadyRunning,
    ExecutionOutcome,
    ExecutionState,
    Lease,
    UnitStatus,
)
from .progress_event import ProgressEvent
from .run_request import PlanResult, PlanState, RunPlan, RunRequest, RunScope

__all__ = [
    "Catalog",
    "CommandKind",
    "Precondition",
    "PreconditionKind",
    "SetupUnit",
    "Tab",
    "UnitCommand",
    "AlreadyRunning",
    "ExecutionOutcome",
    "ExecutionState",
    "Lease",
    "UnitStatus",
    "ProgressEvent",
    "PlanResult",
    "PlanState",
    "RunPlan",
    "RunRequest",
    "RunScope",
]
