"""Run request, run plan and plan result models."""

import uuid
from enum import Enum
from typing import Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .execution_state import ExecutionState, UnitStatus


class RunScope(str, Enum):
    """What a run request targets."""
    UNIT = "unit"
    UNITS = "units"
    TAB = "tab"
    CATALOG = "catalog"


class RunRequest(BaseModel):
    """What the orchestrator should attempt."""

    model_config = ConfigDict(frozen=True)

    scope: RunScope
    targets: Tuple[str, ...] = Field(default=(), description="Unit ids or a single tab id")
    force: bool = Field(default=False, description="Re-run succeeded non-idempotent units")
    include_prerequisites: bool = Field(
        default=True,
        description="Pull prerequisites that have not succeeded into the plan"
    )

    @model_validator(mode="after")
    def validate_targets(self) -> "RunRequest":
        """Target count must match the scope."""
        if self.scope in (RunScope.UNIT, RunScope.TAB) and len(self.targets) != 1:
            raise ValueError(f"{self.scope.value} requests take exactly one target")
        if self.scope == RunScope.UNITS and not self.targets:
            raise ValueError("units requests need at least one target")
        if self.scope == RunScope.CATALOG and self.targets:
            raise ValueError("catalog requests take no targets")
        return self

    @classmethod
    def for_unit(cls, unit_id: str, **options) -> "RunRequest":
        return cls(scope=RunScope.UNIT, targets=(unit_id,), **options)

    @classmethod
    def for_units(cls, unit_ids: List[str], **options) -> "RunRequest":
        if len(unit_ids) == 1:
            return cls.for_unit(unit_ids[0], **options)
        return cls(scope=RunScope.UNITS, targets=tuple(unit_ids), **options)

    @classmethod
    def for_tab(cls, tab_id: str, **options) -> "RunRequest":
        return cls(scope=RunScope.TAB, targets=(tab_id,), **options)

    @classmethod
    def for_catalog(cls, **options) -> "RunRequest":
        return cls(scope=RunScope.CATALOG, **options)


class RunPlan(BaseModel):
    """Dependency-ordered units resolved from a run request."""

    model_config = ConfigDict(frozen=True)

    plan_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    request: RunRequest
    unit_ids: Tuple[str, ...] = Field(default=(), description="Units in execution order")
    lanes: int = Field(default=1, ge=1, description="Maximum units running at once")
    rejected: Dict[str, str] = Field(
        default_factory=dict,
        description="Units refused from the selection, with the reason"
    )
    satisfied: Tuple[str, ...] = Field(
        default=(),
        description="Non-idempotent units left out because they already succeeded"
    )

    def __len__(self) -> int:
        return len(self.unit_ids)

    @property
    def is_empty(self) -> bool:
        return not self.unit_ids


class PlanState(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (PlanState.COMPLETED, PlanState.CANCELLED)


class PlanResult(BaseModel):
    """Per-unit outcome of an executed plan."""

    plan_id: str
    state: PlanState
    states: Dict[str, ExecutionState] = Field(default_factory=dict)
    executed: List[str] = Field(default_factory=list, description="Units whose executor was invoked")

    def _with_status(self, status: UnitStatus) -> List[str]:
        return [unit_id for unit_id, state in self.states.items() if state.status == status]

    @property
    def succeeded(self) -> List[str]:
        return self._with_status(UnitStatus.SUCCEEDED)

    @property
    def failed(self) -> List[str]:
        return self._with_status(UnitStatus.FAILED)

    @property
    def skipped(self) -> List[str]:
        return self._with_status(UnitStatus.SKIPPED)

    @property
    def cancelled(self) -> List[str]:
        return self._with_status(UnitStatus.CANCELLED)

    @property
    def not_run(self) -> List[str]:
        return self._with_status(UnitStatus.NOT_RUN)

    @property
    def ok(self) -> bool:
        """Completed without failed, skipped or cancelled units."""
        return self.state == PlanState.COMPLETED and not (
            self.failed or self.skipped or self.cancelled
        )
