"""Services module for SetupDeck."""

from .catalog_store import CatalogStore, load_catalog
from .event_bus import EventBus, Subscription
from .orchestrator import Orchestrator, PlanHandle
from .state_store import StateStore
from .state_tracker import ExecutionStateTracker
from .unit_executor import CancelToken, UnitExecutor

__all__ = [
    "CatalogStore",
    "load_catalog",
    "EventBus",
    "Subscription",
    "Orchestrator",
    "PlanHandle",
    "StateStore",
    "ExecutionStateTracker",
    "CancelToken",
    "UnitExecutor",
]
