"""Execution state tracker: the single owner of per-unit execution records."""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Union

from setupdeck.lib.exceptions import InvalidLeaseError, InvalidTransitionError
from setupdeck.models.execution_state import (
    AlreadyRunning,
    ExecutionOutcome,
    ExecutionState,
    Lease,
    UnitStatus,
    can_transition,
)
from setupdeck.models.progress_event import ProgressEvent

from .event_bus import EventBus

logger = logging.getLogger(__name__)


class ExecutionStateTracker:
    """Owns ExecutionState records and applies every status transition.

    All operations serialize on one re-entrant lock; ``try_begin`` is the
    only way into ``running``, which guarantees at most one concurrent
    execution per unit. Events are published while the lock is held, so the
    events of a unit are delivered in the order its transitions happened.
    Listeners therefore must not wait on other threads that use the tracker.
    """

    def __init__(
        self,
        bus: Optional[EventBus] = None,
        tab_resolver: Optional[Callable[[str], Optional[str]]] = None,
    ):
        """Initialize tracker.

        Args:
            bus: Event bus receiving a ProgressEvent per transition
            tab_resolver: Maps a unit id to its owning tab id for events
        """
        self._states: Dict[str, ExecutionState] = {}
        self._leases: Dict[str, Lease] = {}
        self._lock = threading.RLock()
        self._last_timestamp: Optional[datetime] = None
        self.bus = bus
        self.tab_resolver = tab_resolver
        if bus is not None:
            bus.bind_snapshot(self.snapshot)

    def _now(self) -> datetime:
        """Strictly increasing timestamps, so ordering survives clock ties."""
        now = datetime.now()
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def _record(self, unit_id: str) -> ExecutionState:
        state = self._states.get(unit_id)
        if state is None:
            state = ExecutionState(unit_id=unit_id)
            self._states[unit_id] = state
        return state

    def _transition(
        self,
        unit_id: str,
        new_status: UnitStatus,
        plan_id: Optional[str] = None,
        message: Optional[str] = None,
        **changes,
    ) -> ExecutionState:
        current = self._record(unit_id)
        if not can_transition(current.status, new_status):
            raise InvalidTransitionError(unit_id, current.status.value, new_status.value)

        timestamp = changes.pop("timestamp", None) or self._now()
        updated = current.model_copy(update={"status": new_status, **changes})
        self._states[unit_id] = updated
        logger.debug(f"{unit_id}: {current.status.value} -> {new_status.value}")

        if self.bus is not None:
            self.bus.publish(ProgressEvent(
                unit_id=unit_id,
                tab_id=self.tab_resolver(unit_id) if self.tab_resolver else None,
                old_status=current.status,
                new_status=new_status,
                timestamp=timestamp,
                plan_id=plan_id,
                message=message,
            ))
        return updated.model_copy()

    def get(self, unit_id: str) -> ExecutionState:
        """Copy of the unit's state (a not_run record for unseen units)."""
        with self._lock:
            state = self._states.get(unit_id)
            return state.model_copy() if state else ExecutionState(unit_id=unit_id)

    def status(self, unit_id: str) -> UnitStatus:
        with self._lock:
            state = self._states.get(unit_id)
            return state.status if state else UnitStatus.NOT_RUN

    def try_begin(self, unit_id: str, plan_id: Optional[str] = None) -> Union[Lease, AlreadyRunning]:
        """Atomically move a unit to running and hand out its lease.

        Returns:
            The exclusive lease, or AlreadyRunning if another holder has it
        """
        with self._lock:
            current = self._record(unit_id)
            if current.status == UnitStatus.RUNNING:
                return AlreadyRunning(unit_id=unit_id, since=current.started_at)

            started = self._now()
            self._transition(
                unit_id,
                UnitStatus.RUNNING,
                plan_id=plan_id,
                timestamp=started,
                attempt_count=current.attempt_count + 1,
                last_attempt_at=started,
                started_at=started,
                finished_at=None,
                duration=None,
                exit_code=None,
                output_excerpt="",
                error_excerpt="",
                output_truncated=False,
                error=None,
                skip_reason=None,
                blocked_by=None,
            )
            lease = Lease(unit_id=unit_id, acquired_at=started)
            self._leases[unit_id] = lease
            return lease

    def complete(
        self,
        lease: Lease,
        outcome: ExecutionOutcome,
        plan_id: Optional[str] = None,
    ) -> ExecutionState:
        """Record the outcome of a running unit and invalidate its lease.

        Raises:
            InvalidLeaseError: The lease is stale or was never issued
        """
        with self._lock:
            active = self._leases.get(lease.unit_id)
            if active is None or active.token != lease.token:
                raise InvalidLeaseError(lease.unit_id)

            new_status = outcome.resulting_status
            message = None
            if new_status == UnitStatus.FAILED:
                message = outcome.error or f"exit code {outcome.exit_status}"

            finished = self._now()
            state = self._transition(
                lease.unit_id,
                new_status,
                plan_id=plan_id,
                message=message,
                timestamp=finished,
                exit_code=outcome.exit_status,
                output_excerpt=outcome.stdout_tail,
                error_excerpt=outcome.stderr_tail,
                output_truncated=outcome.stdout_truncated or outcome.stderr_truncated,
                error=outcome.error,
                finished_at=finished,
                duration=outcome.duration,
            )
            del self._leases[lease.unit_id]
            return state

    def skip(
        self,
        unit_id: str,
        reason: str,
        blocked_by: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> Union[ExecutionState, AlreadyRunning]:
        """Mark a unit skipped without executing it.

        Returns:
            The skipped state, or AlreadyRunning if another holder is
            running the unit (its state is left untouched)
        """
        with self._lock:
            current = self._record(unit_id)
            if current.status == UnitStatus.RUNNING:
                return AlreadyRunning(unit_id=unit_id, since=current.started_at)

            finished = self._now()
            return self._transition(
                unit_id,
                UnitStatus.SKIPPED,
                plan_id=plan_id,
                message=reason,
                timestamp=finished,
                skip_reason=reason,
                blocked_by=blocked_by,
                finished_at=finished,
                exit_code=None,
                error=None,
            )

    def enqueue(self, unit_id: str, plan_id: Optional[str] = None) -> ExecutionState:
        """Mark a unit as waiting in a plan."""
        with self._lock:
            return self._transition(unit_id, UnitStatus.QUEUED, plan_id=plan_id)

    def dequeue(self, unit_id: str, plan_id: Optional[str] = None) -> Optional[ExecutionState]:
        """Return a queued unit to not_run; no-op for any other status."""
        with self._lock:
            if self.status(unit_id) != UnitStatus.QUEUED:
                return None
            return self._transition(unit_id, UnitStatus.NOT_RUN, plan_id=plan_id)

    def reset(self, unit_id: str) -> ExecutionState:
        """Explicit user reset back to not_run, clearing the last attempt.

        Raises:
            InvalidTransitionError: The unit is currently running
        """
        with self._lock:
            current = self._record(unit_id)
            if current.status == UnitStatus.NOT_RUN:
                return current.model_copy()
            cleared = ExecutionState(unit_id=unit_id).model_dump(exclude={"unit_id", "status"})
            return self._transition(unit_id, UnitStatus.NOT_RUN, **cleared)

    def reset_all(self) -> List[str]:
        """Reset every unit that is not running; returns the reset ids."""
        with self._lock:
            reset = []
            for unit_id, state in list(self._states.items()):
                if state.status not in (UnitStatus.NOT_RUN, UnitStatus.RUNNING):
                    self.reset(unit_id)
                    reset.append(unit_id)
            return reset

    def snapshot(self) -> Dict[str, ExecutionState]:
        """Copy of all known records keyed by unit id."""
        with self._lock:
            return {unit_id: state.model_copy() for unit_id, state in self._states.items()}

    def running(self) -> List[str]:
        with self._lock:
            return list(self._leases)

    def load(self, records: Iterable[ExecutionState]) -> int:
        """Seed records from persisted state without emitting events.

        Records persisted as running or queued belonged to a process that is
        gone, so they are loaded as not_run.
        """
        with self._lock:
            count = 0
            for record in records:
                if record.unit_id in self._leases:
                    continue
                if record.status in (UnitStatus.RUNNING, UnitStatus.QUEUED):
                    record = ExecutionState(unit_id=record.unit_id, attempt_count=record.attempt_count)
                self._states[record.unit_id] = record.model_copy()
                count += 1
            return count
