"""Event bus and query interface exposed to presentation layers."""

import logging
import queue
import threading
from typing import Callable, Dict, Iterator, List, Optional

from setupdeck.models.execution_state import ExecutionState
from setupdeck.models.progress_event import ProgressEvent

logger = logging.getLogger(__name__)

Listener = Callable[[ProgressEvent], None]

_CLOSED = object()


class Subscription:
    """Infinite, non-restartable stream of events published after subscribing.

    Iteration blocks until the next event arrives and only ends once the
    subscription is closed.
    """

    def __init__(self, bus: "EventBus"):
        self._bus = bus
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._closed = False

    def __iter__(self) -> Iterator[ProgressEvent]:
        return self

    def __next__(self) -> ProgressEvent:
        if self._closed and self._queue.empty():
            raise StopIteration
        item = self._queue.get()
        if item is _CLOSED:
            raise StopIteration
        return item

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """Next event, or None if none arrived within ``timeout`` seconds."""
        if self._closed and self._queue.empty():
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        return None if item is _CLOSED else item

    def drain(self) -> List[ProgressEvent]:
        """All events already delivered, without blocking."""
        events = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return events
            if item is not _CLOSED:
                events.append(item)

    def close(self) -> None:
        """Stop receiving events; pending ones can still be read."""
        if self._closed:
            return
        self._closed = True
        self._bus._unsubscribe(self)
        self._queue.put(_CLOSED)

    def _deliver(self, event: ProgressEvent) -> None:
        if not self._closed:
            self._queue.put(event)


class EventBus:
    """Fans progress events out to subscriptions and listeners."""

    def __init__(self, snapshot_provider: Optional[Callable[[], Dict[str, ExecutionState]]] = None):
        """Initialize event bus.

        Args:
            snapshot_provider: Callable returning the current state mapping
                (normally ``ExecutionStateTracker.snapshot``)
        """
        self._snapshot_provider = snapshot_provider
        self._subscriptions: List[Subscription] = []
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def bind_snapshot(self, provider: Callable[[], Dict[str, ExecutionState]]) -> None:
        self._snapshot_provider = provider

    def subscribe(self) -> Subscription:
        """Create a subscription that sees events from now on."""
        subscription = Subscription(self)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def add_listener(self, listener: Listener) -> None:
        """Register a callback invoked synchronously for every event."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, event: ProgressEvent) -> None:
        """Deliver an event to every subscription and listener."""
        with self._lock:
            subscriptions = list(self._subscriptions)
            listeners = list(self._listeners)

        for subscription in subscriptions:
            subscription._deliver(event)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Progress listener {listener!r} failed on {event.describe()}: {e}")

    def snapshot(self) -> Dict[str, ExecutionState]:
        """Current unit_id -> ExecutionState mapping for late subscribers."""
        if self._snapshot_provider is None:
            return {}
        return self._snapshot_provider()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)
