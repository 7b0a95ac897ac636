"""Execution state models: unit status, transition table, leases and outcomes."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field


class UnitStatus(str, Enum):
    NOT_RUN = "not_run"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether the unit has finished its latest attempt in some way."""
        return self in TERMINAL_STATUSES

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


TERMINAL_STATUSES: FrozenSet[UnitStatus] = frozenset({
    UnitStatus.SUCCEEDED,
    UnitStatus.FAILED,
    UnitStatus.SKIPPED,
    UnitStatus.CANCELLED,
})

_RESTARTABLE = frozenset({
    UnitStatus.QUEUED,
    UnitStatus.RUNNING,
    UnitStatus.SKIPPED,
    UnitStatus.NOT_RUN,
})

# Every status has an entry; anything not listed is rejected.
TRANSITIONS: Dict[UnitStatus, FrozenSet[UnitStatus]] = {
    UnitStatus.NOT_RUN: frozenset({UnitStatus.QUEUED, UnitStatus.RUNNING, UnitStatus.SKIPPED}),
    UnitStatus.QUEUED: frozenset({UnitStatus.RUNNING, UnitStatus.SKIPPED, UnitStatus.NOT_RUN}),
    UnitStatus.RUNNING: frozenset({UnitStatus.SUCCEEDED, UnitStatus.FAILED, UnitStatus.CANCELLED}),
    UnitStatus.SUCCEEDED: _RESTARTABLE,
    UnitStatus.FAILED: _RESTARTABLE,
    UnitStatus.SKIPPED: _RESTARTABLE,
    UnitStatus.CANCELLED: _RESTARTABLE,
}


def can_transition(current: UnitStatus, requested: UnitStatus) -> bool:
    """Check a status change against the transition table."""
    return requested in TRANSITIONS[current]


class ExecutionState(BaseModel):
    """Last-known execution record of one unit."""

    model_config = ConfigDict(use_enum_values=False)

    unit_id: str = Field(..., description="Unit identifier")
    status: UnitStatus = Field(default=UnitStatus.NOT_RUN)
    exit_code: Optional[int] = Field(default=None, description="Exit code of the last attempt")
    output_excerpt: str = Field(default="", description="Tail of captured stdout")
    error_excerpt: str = Field(default="", description="Tail of captured stderr")
    output_truncated: bool = Field(default=False)
    error: Optional[str] = Field(default=None, description="Executor error message")
    skip_reason: Optional[str] = Field(default=None)
    blocked_by: Optional[str] = Field(default=None, description="Prerequisite that caused a skip")
    attempt_count: int = Field(default=0, ge=0)
    last_attempt_at: Optional[datetime] = Field(default=None)
    started_at: Optional[datetime] = Field(default=None)
    finished_at: Optional[datetime] = Field(default=None)
    duration: Optional[float] = Field(default=None, ge=0.0)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def summary(self) -> str:
        """One-line description for listings."""
        if self.status == UnitStatus.FAILED:
            if self.error:
                return f"failed: {self.error}"
            return f"failed (exit {self.exit_code})"
        if self.status == UnitStatus.SKIPPED and self.skip_reason:
            return f"skipped: {self.skip_reason}"
        if self.status == UnitStatus.SUCCEEDED and self.duration is not None:
            return f"succeeded in {self.duration:.1f}s"
        return self.status.label.lower()


class Lease(BaseModel):
    """Exclusive token proving a unit was moved to running by its holder."""

    model_config = ConfigDict(frozen=True)

    unit_id: str
    token: str = Field(default_factory=lambda: uuid.uuid4().hex)
    acquired_at: datetime


class AlreadyRunning(BaseModel):
    """Returned by try_begin when the unit is already running."""

    model_config = ConfigDict(frozen=True)

    unit_id: str
    since: Optional[datetime] = None

    def __bool__(self) -> bool:
        return False


class ExecutionOutcome(BaseModel):
    """Result of one executor invocation."""

    exit_status: Optional[int] = Field(default=None, description="Raw exit code, negative for signals")
    stdout_tail: str = Field(default="")
    stderr_tail: str = Field(default="")
    stdout_truncated: bool = Field(default=False)
    stderr_truncated: bool = Field(default=False)
    duration: float = Field(default=0.0, ge=0.0)
    cancelled: bool = Field(default=False)
    timed_out: bool = Field(default=False)
    error: Optional[str] = Field(default=None, description="Absorbed executor error")

    @property
    def succeeded(self) -> bool:
        return self.exit_status == 0 and not (self.cancelled or self.timed_out or self.error)

    @property
    def resulting_status(self) -> UnitStatus:
        """Terminal status this outcome maps to."""
        if self.cancelled:
            return UnitStatus.CANCELLED
        if self.succeeded:
            return UnitStatus.SUCCEEDED
        return UnitStatus.FAILED

    @classmethod
    def from_error(cls, message: str, duration: float = 0.0) -> "ExecutionOutcome":
        """Failed outcome for a unit whose process never produced a result."""
        return cls(error=message, duration=duration)
