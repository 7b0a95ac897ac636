"""Unit tests for the execution state tracker and its transition table."""

import threading

import pytest

from setupdeck.lib.exceptions import InvalidLeaseError, InvalidTransitionError
from setupdeck.models.execution_state import (
    TRANSITIONS,
    AlreadyRunning,
    ExecutionOutcome,
    ExecutionState,
    Lease,
    UnitStatus,
    can_transition,
)
from setupdeck.services.event_bus import EventBus
from setupdeck.services.state_tracker import ExecutionStateTracker


pytestmark = pytest.mark.unit


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def tracker(bus):
    return ExecutionStateTracker(bus, tab_resolver=lambda unit_id: "network")


class TestTransitionTable:
    """Test the closed status enumeration and its table."""

    def test_every_status_has_an_entry(self):
        """Test that the table is total."""
        assert set(TRANSITIONS) == set(UnitStatus)

    @pytest.mark.parametrize("current,requested", [
        (UnitStatus.NOT_RUN, UnitStatus.SUCCEEDED),
        (UnitStatus.NOT_RUN, UnitStatus.FAILED),
        (UnitStatus.RUNNING, UnitStatus.RUNNING),
        (UnitStatus.RUNNING, UnitStatus.NOT_RUN),
        (UnitStatus.RUNNING, UnitStatus.SKIPPED),
        (UnitStatus.QUEUED, UnitStatus.SUCCEEDED),
        (UnitStatus.SUCCEEDED, UnitStatus.FAILED),
    ])
    def test_illegal_transitions(self, current, requested):
        """Test moves outside the table."""
        assert not can_transition(current, requested)

    @pytest.mark.parametrize("current", [
        UnitStatus.NOT_RUN, UnitStatus.SUCCEEDED, UnitStatus.FAILED,
        UnitStatus.CANCELLED, UnitStatus.SKIPPED, UnitStatus.QUEUED,
    ])
    def test_running_reachable_from_non_running(self, current):
        """Test that any non-running status may start again."""
        assert can_transition(current, UnitStatus.RUNNING)

    def test_terminal_statuses(self):
        """Test which statuses count as terminal."""
        terminal = {status for status in UnitStatus if status.is_terminal}
        assert terminal == {
            UnitStatus.SUCCEEDED, UnitStatus.FAILED, UnitStatus.SKIPPED, UnitStatus.CANCELLED,
        }


class TestTryBegin:
    """Test lease acquisition."""

    def test_unknown_unit_starts_not_run(self, tracker):
        """Test that unseen units read as not_run."""
        state = tracker.get("dns")

        assert state.status == UnitStatus.NOT_RUN
        assert state.attempt_count == 0

    def test_try_begin_returns_lease(self, tracker):
        """Test the first try_begin hands out a lease."""
        lease = tracker.try_begin("dns")

        assert isinstance(lease, Lease)
        assert lease.unit_id == "dns"
        state = tracker.get("dns")
        assert state.status == UnitStatus.RUNNING
        assert state.attempt_count == 1
        assert state.started_at == lease.acquired_at
        assert state.last_attempt_at == lease.acquired_at

    def test_second_try_begin_is_already_running(self, tracker):
        """Test mutual exclusion before complete."""
        first = tracker.try_begin("dns")
        second = tracker.try_begin("dns")

        assert isinstance(second, AlreadyRunning)
        assert not second
        assert second.since == first.acquired_at
        assert tracker.get("dns").attempt_count == 1

    def test_concurrent_try_begin_single_winner(self, tracker):
        """Test that only one of many racing threads gets the lease."""
        results = []
        barrier = threading.Barrier(8)

        def contend():
            barrier.wait()
            results.append(tracker.try_begin("dns"))

        threads = [threading.Thread(target=contend) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(isinstance(r, Lease) for r in results) == 1
        assert sum(isinstance(r, AlreadyRunning) for r in results) == 7

    def test_restart_clears_previous_result(self, tracker):
        """Test that a new attempt forgets the previous output."""
        lease = tracker.try_begin("dns")
        tracker.complete(lease, ExecutionOutcome(exit_status=3, stdout_tail="old", error=None))

        tracker.try_begin("dns")
        state = tracker.get("dns")

        assert state.attempt_count == 2
        assert state.exit_code is None
        assert state.output_excerpt == ""
        assert state.finished_at is None


class TestComplete:
    """Test recording outcomes."""

    def test_complete_success(self, tracker):
        """Test running to succeeded."""
        lease = tracker.try_begin("dns")
        state = tracker.complete(lease, ExecutionOutcome(exit_status=0, stdout_tail="ok\n", duration=0.5))

        assert state.status == UnitStatus.SUCCEEDED
        assert state.exit_code == 0
        assert state.output_excerpt == "ok\n"
        assert state.duration == 0.5
        assert state.finished_at > state.started_at

    def test_complete_failure_keeps_exit_code(self, tracker):
        """Test running to failed with the raw exit code."""
        lease = tracker.try_begin("dns")
        state = tracker.complete(lease, ExecutionOutcome(exit_status=2, stderr_tail="boom"))

        assert state.status == UnitStatus.FAILED
        assert state.exit_code == 2
        assert state.error_excerpt == "boom"

    def test_complete_cancelled(self, tracker):
        """Test that a cancelled outcome is not a failure."""
        lease = tracker.try_begin("dns")
        state = tracker.complete(lease, ExecutionOutcome(exit_status=-15, cancelled=True))

        assert state.status == UnitStatus.CANCELLED

    def test_lease_is_single_use(self, tracker):
        """Test that a lease cannot complete twice."""
        lease = tracker.try_begin("dns")
        tracker.complete(lease, ExecutionOutcome(exit_status=0))

        with pytest.raises(InvalidLeaseError):
            tracker.complete(lease, ExecutionOutcome(exit_status=0))

    def test_foreign_lease_rejected(self, tracker):
        """Test a lease that was never issued."""
        tracker.try_begin("dns")
        forged = Lease(unit_id="dns", acquired_at=tracker.get("dns").started_at)

        with pytest.raises(InvalidLeaseError):
            tracker.complete(forged, ExecutionOutcome(exit_status=0))
        assert tracker.status("dns") == UnitStatus.RUNNING


class TestSkipQueueReset:
    """Test the remaining transitions."""

    def test_skip_records_reason(self, tracker):
        """Test skipping with the blocking prerequisite."""
        state = tracker.skip("firewall", "prerequisite 'dns' did not succeed (failed)", blocked_by="dns")

        assert state.status == UnitStatus.SKIPPED
        assert state.blocked_by == "dns"
        assert "dns" in state.skip_reason

    def test_skip_running_unit_left_untouched(self, tracker):
        """Test that skipping a running unit reports AlreadyRunning."""
        lease = tracker.try_begin("dns")

        result = tracker.skip("dns", "no")

        assert isinstance(result, AlreadyRunning)
        assert result.since == lease.acquired_at
        assert tracker.status("dns") == UnitStatus.RUNNING
        assert tracker.get("dns").skip_reason is None

    def test_enqueue_and_dequeue(self, tracker):
        """Test queued units returning to not_run."""
        tracker.enqueue("dns")
        assert tracker.status("dns") == UnitStatus.QUEUED

        tracker.dequeue("dns")
        assert tracker.status("dns") == UnitStatus.NOT_RUN

    def test_dequeue_ignores_other_statuses(self, tracker):
        """Test that dequeue leaves non-queued units alone."""
        lease = tracker.try_begin("dns")
        tracker.complete(lease, ExecutionOutcome(exit_status=0))

        assert tracker.dequeue("dns") is None
        assert tracker.status("dns") == UnitStatus.SUCCEEDED

    def test_reset_clears_state(self, tracker):
        """Test explicit reset back to not_run."""
        lease = tracker.try_begin("dns")
        tracker.complete(lease, ExecutionOutcome(exit_status=1, stdout_tail="x"))

        state = tracker.reset("dns")

        assert state.model_dump() == ExecutionState(unit_id="dns").model_dump()

    def test_reset_running_unit_rejected(self, tracker):
        """Test that a running unit cannot be reset."""
        tracker.try_begin("dns")

        with pytest.raises(InvalidTransitionError):
            tracker.reset("dns")

    def test_reset_all_skips_running(self, tracker):
        """Test reset_all only touches settled units."""
        tracker.complete(tracker.try_begin("a"), ExecutionOutcome(exit_status=0))
        tracker.skip("b", "blocked")
        tracker.try_begin("c")

        assert sorted(tracker.reset_all()) == ["a", "b"]
        assert tracker.status("c") == UnitStatus.RUNNING
        assert tracker.running() == ["c"]


class TestEventsAndPersistence:
    """Test published events, snapshots and loading."""

    def test_every_transition_publishes_one_event(self, tracker, bus):
        """Test event contents and order."""
        subscription = bus.subscribe()
        lease = tracker.try_begin("dns", plan_id="p1")
        tracker.complete(lease, ExecutionOutcome(exit_status=1), plan_id="p1")

        events = subscription.drain()

        assert [(e.old_status, e.new_status) for e in events] == [
            (UnitStatus.NOT_RUN, UnitStatus.RUNNING),
            (UnitStatus.RUNNING, UnitStatus.FAILED),
        ]
        assert all(e.tab_id == "network" and e.plan_id == "p1" for e in events)
        assert events[1].message == "exit code 1"
        assert events[0].timestamp < events[1].timestamp

    def test_rejected_transition_publishes_nothing(self, tracker, bus):
        """Test that a failed transition leaves no event behind."""
        tracker.try_begin("dns")
        subscription = bus.subscribe()

        with pytest.raises(InvalidTransitionError):
            tracker.enqueue("dns")

        assert subscription.drain() == []

    def test_snapshot_is_a_copy(self, tracker, bus):
        """Test that snapshots cannot mutate tracker state."""
        tracker.skip("dns", "blocked")

        snapshot = bus.snapshot()
        snapshot.pop("dns")

        assert tracker.status("dns") == UnitStatus.SKIPPED

    def test_load_seeds_without_events(self, tracker, bus):
        """Test loading persisted records."""
        subscription = bus.subscribe()
        count = tracker.load([
            ExecutionState(unit_id="dns", status=UnitStatus.SUCCEEDED, exit_code=0, attempt_count=2),
            ExecutionState(unit_id="vpn", status=UnitStatus.RUNNING, attempt_count=1),
        ])

        assert count == 2
        assert tracker.status("dns") == UnitStatus.SUCCEEDED
        assert tracker.status("vpn") == UnitStatus.NOT_RUN
        assert tracker.get("vpn").attempt_count == 1
        assert subscription.drain() == []
