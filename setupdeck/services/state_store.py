"""Persist execution state across restarts as a unit_id -> state mapping."""

import json
import logging
import threading
from pathlib import Path
from typing import Dict

from pydantic import ValidationError

from setupdeck.models.execution_state import ExecutionState, UnitStatus
from setupdeck.models.progress_event import ProgressEvent

from .state_tracker import ExecutionStateTracker

logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = 1


class StateStore:
    """JSON file holding the last-known ExecutionState of every unit.

    Loaded records are trusted as-is: a unit recorded as succeeded stays
    succeeded until it is re-run or reset.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._write_lock = threading.Lock()

    def load(self) -> Dict[str, ExecutionState]:
        """Read persisted records; a missing file yields an empty mapping.

        Raises:
            ValueError: The file exists but is not a valid state file
        """
        if not self.path.exists():
            return {}

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ValueError(f"Cannot read state file {self.path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("units"), dict):
            raise ValueError(f"State file {self.path} must contain a 'units' mapping")

        records: Dict[str, ExecutionState] = {}
        for unit_id, raw in data["units"].items():
            try:
                records[unit_id] = ExecutionState.model_validate({**raw, "unit_id": unit_id})
            except ValidationError as e:
                logger.warning(f"Ignoring invalid persisted state for {unit_id}: {e}")
        return records

    def save(self, states: Dict[str, ExecutionState]) -> None:
        """Atomically rewrite the state file."""
        payload = {
            "version": STATE_FORMAT_VERSION,
            "units": {
                unit_id: state.model_dump(mode="json", exclude={"unit_id"})
                for unit_id, state in sorted(states.items())
            },
        }
        with self._write_lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
            tmp.replace(self.path)

    def restore_into(self, tracker: ExecutionStateTracker) -> int:
        """Seed a tracker from disk; returns the number of records loaded."""
        count = tracker.load(self.load().values())
        logger.info(f"Restored {count} execution records from {self.path}")
        return count

    def attach(self, tracker: ExecutionStateTracker) -> None:
        """Rewrite the file after every settled transition published by the tracker."""
        if tracker.bus is None:
            raise ValueError("Tracker has no event bus to persist from")

        def persist(event: ProgressEvent) -> None:
            if event.new_status.is_terminal or event.new_status == UnitStatus.NOT_RUN:
                self.save(tracker.snapshot())

        tracker.bus.add_listener(persist)
