"""Exception hierarchy for catalog loading, execution and state transitions."""

from typing import Any, Dict, List, Optional


class SetupDeckError(Exception):
    """Base exception for all SetupDeck errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize SetupDeck error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for reporting."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


# Catalog errors (fatal, raised by CatalogStore.load)

class CatalogLoadError(SetupDeckError):
    """Raised when the catalog descriptor cannot be loaded or validated."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """Initialize catalog load error."""
        details = dict(details or {})
        if source:
            details["source"] = source
        super().__init__(message, details)
        self.source = source


class MalformedCatalogError(CatalogLoadError):
    """Raised when the descriptor is unreadable or has an invalid shape."""


class DuplicateIdError(CatalogLoadError):
    """Raised when a tab or unit identifier is declared more than once."""

    def __init__(self, identifier: str, kind: str = "unit", source: Optional[str] = None):
        """Initialize duplicate id error."""
        super().__init__(
            f"Duplicate {kind} id '{identifier}'",
            source=source,
            details={"id": identifier, "kind": kind}
        )
        self.identifier = identifier
        self.kind = kind


class UnknownUnitError(CatalogLoadError):
    """Raised when a tab or prerequisite references an undefined unit."""

    def __init__(self, unit_id: str, referenced_by: str, source: Optional[str] = None):
        """Initialize unknown unit error."""
        super().__init__(
            f"Unknown unit '{unit_id}' referenced by '{referenced_by}'",
            source=source,
            details={"unit_id": unit_id, "referenced_by": referenced_by}
        )
        self.unit_id = unit_id
        self.referenced_by = referenced_by


class CyclicDependencyError(CatalogLoadError):
    """Raised when the prerequisite graph contains a cycle."""

    def __init__(self, cycle: List[str], source: Optional[str] = None):
        """Initialize cyclic dependency error.

        Args:
            cycle: Unit ids along the cycle, first id repeated at the end
        """
        super().__init__(
            f"Cyclic prerequisite chain: {' -> '.join(cycle)}",
            source=source,
            details={"cycle": cycle}
        )
        self.cycle = cycle


# Execution errors (per unit, absorbed into execution state)

class ExecutionError(SetupDeckError):
    """Raised by the unit executor when a unit cannot be run to completion."""

    def __init__(self, message: str, unit_id: str, details: Optional[Dict[str, Any]] = None):
        """Initialize execution error."""
        details = dict(details or {})
        details["unit_id"] = unit_id
        super().__init__(message, details)
        self.unit_id = unit_id


class SpawnFailedError(ExecutionError):
    """Raised when the unit's child process could not be started."""


class ExecutionTimeoutError(ExecutionError):
    """Raised when a unit exceeded its timeout and was terminated."""

    def __init__(self, unit_id: str, timeout: float, outcome: Any = None):
        """Initialize timeout error.

        Args:
            unit_id: Unit that timed out
            timeout: Timeout in seconds that was exceeded
            outcome: Partial ExecutionOutcome captured before termination
        """
        super().__init__(
            f"Unit '{unit_id}' timed out after {timeout:g} seconds",
            unit_id,
            details={"timeout": timeout}
        )
        self.timeout = timeout
        self.outcome = outcome


class ExecutionIOError(ExecutionError):
    """Raised when reading the child's output or waiting on it fails."""


# State tracker errors

class StateTransitionError(SetupDeckError):
    """Base class for rejected execution state changes."""


class InvalidTransitionError(StateTransitionError):
    """Raised when a requested status change is not in the transition table."""

    def __init__(self, unit_id: str, current: str, requested: str):
        """Initialize invalid transition error."""
        super().__init__(
            f"Unit '{unit_id}' cannot move from {current} to {requested}",
            details={"unit_id": unit_id, "current": current, "requested": requested}
        )
        self.unit_id = unit_id
        self.current = current
        self.requested = requested


class InvalidLeaseError(StateTransitionError):
    """Raised when completing a unit with a stale or foreign lease."""

    def __init__(self, unit_id: str):
        """Initialize invalid lease error."""
        super().__init__(
            f"Lease for unit '{unit_id}' is not the active lease",
            details={"unit_id": unit_id}
        )
        self.unit_id = unit_id


# Orchestrator errors

class UnknownTargetError(SetupDeckError):
    """Raised when a run request names a tab or unit missing from the catalog."""

    def __init__(self, target: str, kind: str = "unit"):
        """Initialize unknown target error."""
        super().__init__(
            f"Unknown {kind} '{target}'",
            details={"target": target, "kind": kind}
        )
        self.target = target
        self.kind = kind
