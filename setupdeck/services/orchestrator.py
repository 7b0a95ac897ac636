"""Orchestrator: turns run requests into plans and drives their execution."""

import heapq
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, List, Optional, Set, Tuple

from setupdeck.core.config import SetupDeckConfig
from setupdeck.core.lib_logger import get_logger
from setupdeck.lib.exceptions import (
    ExecutionError,
    ExecutionTimeoutError,
    UnknownTargetError,
)
from setupdeck.models.catalog import Catalog, SetupUnit
from setupdeck.models.execution_state import AlreadyRunning, ExecutionOutcome, UnitStatus
from setupdeck.models.run_request import (
    PlanResult,
    PlanState,
    RunPlan,
    RunRequest,
    RunScope,
)

from .state_tracker import ExecutionStateTracker
from .unit_executor import CancelToken, UnitExecutor

logger = get_logger(__name__)


class PlanHandle:
    """Caller-side handle on a plan started by ``Orchestrator.run``."""

    def __init__(self, plan: RunPlan):
        self.plan = plan
        self.state = PlanState.PLANNING
        self.token = CancelToken()
        self.executed: List[str] = []
        self._done = threading.Event()
        self._result: Optional[PlanResult] = None
        self._thread: Optional[threading.Thread] = None

    def __repr__(self) -> str:
        return f"PlanHandle(plan_id={self.plan.plan_id!r}, state={self.state.value})"

    @property
    def plan_id(self) -> str:
        return self.plan.plan_id

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def result(self) -> Optional[PlanResult]:
        return self._result

    def cancel(self) -> None:
        """Stop starting units and cancel the ones running in this plan."""
        if not self.done:
            logger.info(f"Cancellation requested for plan {self.plan_id}")
        self.token.cancel()

    def wait(self, timeout: Optional[float] = None) -> Optional[PlanResult]:
        """Block until the plan finishes; None if ``timeout`` elapsed first."""
        if not self._done.wait(timeout):
            return None
        return self._result

    def _finish(self, result: PlanResult) -> None:
        self.state = result.state
        self._result = result
        self._done.set()


class Orchestrator:
    """Resolves run requests into dependency-ordered plans and executes them.

    Units only reach the tracker through ``try_begin``/``complete``/``skip``;
    the orchestrator never mutates execution state itself.
    """

    def __init__(
        self,
        catalog: Catalog,
        tracker: ExecutionStateTracker,
        executor: Optional[UnitExecutor] = None,
        max_parallel: int = 1,
        unit_timeout: Optional[float] = None,
        mark_queued: bool = False,
    ):
        """Initialize orchestrator.

        Args:
            catalog: Loaded, validated catalog
            tracker: Execution state owner
            executor: Unit executor (a default one when omitted)
            max_parallel: Number of execution lanes
            unit_timeout: Timeout for units without their own
            mark_queued: Move plan units to queued before executing
        """
        if max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")
        self.catalog = catalog
        self.tracker = tracker
        self.executor = executor or UnitExecutor()
        self.max_parallel = max_parallel
        self.unit_timeout = unit_timeout
        self.mark_queued = mark_queued

    @classmethod
    def from_config(
        cls,
        catalog: Catalog,
        tracker: ExecutionStateTracker,
        config: SetupDeckConfig,
    ) -> "Orchestrator":
        executor = UnitExecutor(
            output_limit=config.output_limit,
            grace_period=config.grace_period,
            poll_interval=config.poll_interval,
        )
        return cls(
            catalog,
            tracker,
            executor,
            max_parallel=config.max_parallel,
            unit_timeout=config.unit_timeout,
            mark_queued=config.mark_queued,
        )

    # Planning

    def plan(self, request: RunRequest) -> RunPlan:
        """Resolve a request into an ordered plan.

        Raises:
            UnknownTargetError: The request names a missing tab or unit
        """
        selected, rejected = self._resolve_targets(request)

        satisfied: List[str] = []
        if not request.force:
            for unit_id in list(selected):
                unit = self.catalog.get_unit(unit_id)
                if not unit.idempotent and self.tracker.status(unit_id) == UnitStatus.SUCCEEDED:
                    satisfied.append(unit_id)
                    selected.remove(unit_id)

        if request.include_prerequisites:
            selected = self._with_prerequisites(selected)

        plan = RunPlan(
            request=request,
            unit_ids=tuple(self._topological_order(selected)),
            lanes=self.max_parallel,
            rejected=rejected,
            satisfied=tuple(satisfied),
        )
        logger.info(
            f"Planned {len(plan)} units for {request.scope.value} request "
            f"{list(request.targets)} as plan {plan.plan_id}"
        )
        return plan

    def _resolve_targets(self, request: RunRequest):
        catalog = self.catalog
        rejected: Dict[str, str] = {}

        if request.scope == RunScope.TAB:
            tab_id = request.targets[0]
            if catalog.get_tab(tab_id) is None:
                raise UnknownTargetError(tab_id, kind="tab")
            candidates = [unit.id for unit in catalog.visible_units(tab_id) if unit.enabled]

        elif request.scope == RunScope.CATALOG:
            candidates = [
                unit.id
                for tab in catalog.all_tabs()
                for unit in catalog.visible_units(tab.id)
                if unit.enabled
            ]

        else:
            candidates = []
            for unit_id in request.targets:
                unit = catalog.get_unit(unit_id)
                if unit is None:
                    raise UnknownTargetError(unit_id)
                if request.scope == RunScope.UNITS and not unit.multi_select:
                    rejected[unit_id] = "does not support multi-select"
                    continue
                candidates.append(unit_id)

        return list(dict.fromkeys(candidates)), rejected

    def _with_prerequisites(self, selected: List[str]) -> List[str]:
        """Add transitive prerequisites that have not succeeded yet."""
        result = list(selected)
        seen = set(selected)
        stack = list(reversed(selected))
        while stack:
            unit = self.catalog.get_unit(stack.pop())
            for prerequisite in unit.prerequisites:
                if prerequisite in seen:
                    continue
                if self.tracker.status(prerequisite) == UnitStatus.SUCCEEDED:
                    continue
                seen.add(prerequisite)
                result.append(prerequisite)
                stack.append(prerequisite)
        return result

    def _topological_order(self, unit_ids: List[str]) -> List[str]:
        """Kahn's algorithm with ties broken by catalog declaration order."""
        members = set(unit_ids)
        indegree = {unit_id: 0 for unit_id in members}
        dependents: Dict[str, List[str]] = {unit_id: [] for unit_id in members}
        for unit_id in members:
            for prerequisite in self.catalog.get_unit(unit_id).prerequisites:
                if prerequisite in members:
                    indegree[unit_id] += 1
                    dependents[prerequisite].append(unit_id)

        order_key = self.catalog.declaration_index
        ready = [(order_key(u), u) for u, degree in indegree.items() if degree == 0]
        heapq.heapify(ready)

        ordered: List[str] = []
        while ready:
            _, unit_id = heapq.heappop(ready)
            ordered.append(unit_id)
            for dependent in dependents[unit_id]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    heapq.heappush(ready, (order_key(dependent), dependent))
        return ordered

    # Execution

    def run(self, request: RunRequest) -> PlanHandle:
        """Plan a request and execute it on a background thread."""
        return self.start(self.plan(request))

    def start(self, plan: RunPlan) -> PlanHandle:
        """Execute an already computed plan on a background thread."""
        handle = PlanHandle(plan)
        thread = threading.Thread(
            target=self._drive,
            args=(handle,),
            name=f"plan-{handle.plan_id}",
            daemon=True,
        )
        handle._thread = thread
        thread.start()
        return handle

    def execute(self, request: RunRequest) -> PlanResult:
        """Plan a request and execute it on the calling thread."""
        return self.execute_plan(self.plan(request))

    def execute_plan(self, plan: RunPlan) -> PlanResult:
        handle = PlanHandle(plan)
        self._drive(handle)
        return handle.result

    def cancel(self, handle: PlanHandle) -> None:
        handle.cancel()

    def _drive(self, handle: PlanHandle) -> None:
        plan = handle.plan
        handle.state = PlanState.EXECUTING
        log = logger.with_context(plan_id=plan.plan_id)
        log.info(f"Executing plan {plan.plan_id} on {plan.lanes} lane(s)")

        if self.mark_queued:
            for unit_id in plan.unit_ids:
                if self.tracker.status(unit_id) not in (UnitStatus.RUNNING, UnitStatus.QUEUED):
                    self.tracker.enqueue(unit_id, plan_id=plan.plan_id)

        try:
            if plan.lanes == 1:
                for unit_id in plan.unit_ids:
                    if handle.token.cancelled:
                        break
                    self._run_unit(handle, unit_id)
            else:
                self._run_lanes(handle)
        finally:
            cancelled = handle.token.cancelled
            if cancelled and self.mark_queued:
                for unit_id in plan.unit_ids:
                    self.tracker.dequeue(unit_id, plan_id=plan.plan_id)

            result = PlanResult(
                plan_id=plan.plan_id,
                state=PlanState.CANCELLED if cancelled else PlanState.COMPLETED,
                states={unit_id: self.tracker.get(unit_id) for unit_id in plan.unit_ids},
                executed=list(handle.executed),
            )
            handle._finish(result)
            log.info(
                f"Plan {plan.plan_id} {result.state.value}: "
                f"{len(result.succeeded)} succeeded, {len(result.failed)} failed, "
                f"{len(result.skipped)} skipped, {len(result.cancelled)} cancelled"
            )

    def _run_lanes(self, handle: PlanHandle) -> None:
        """Run independent units concurrently, bounded by the plan's lanes."""
        plan = handle.plan
        members = set(plan.unit_ids)
        pending = list(plan.unit_ids)
        finished: Set[str] = set()
        in_flight: Dict[Future, str] = {}

        def ready(unit_id: str) -> bool:
            prerequisites = self.catalog.get_unit(unit_id).prerequisites
            return all(p in finished for p in prerequisites if p in members)

        with ThreadPoolExecutor(max_workers=plan.lanes, thread_name_prefix=f"lane-{plan.plan_id}") as pool:
            while pending or in_flight:
                if handle.token.cancelled:
                    pending.clear()
                for unit_id in list(pending):
                    if len(in_flight) >= plan.lanes:
                        break
                    if ready(unit_id):
                        pending.remove(unit_id)
                        in_flight[pool.submit(self._run_unit, handle, unit_id)] = unit_id
                if not in_flight:
                    break

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for future in done:
                    unit_id = in_flight.pop(future)
                    future.result()
                    finished.add(unit_id)

    def _skip_reason(self, unit: SetupUnit) -> Optional[Tuple[str, Optional[str]]]:
        """Why a unit must be skipped, with the blocking prerequisite; None to run it."""
        if self.catalog.is_hidden(unit.id):
            return self.catalog.hidden_reason(unit.id), None
        for prerequisite in unit.prerequisites:
            status = self.tracker.status(prerequisite)
            if status != UnitStatus.SUCCEEDED:
                return f"prerequisite '{prerequisite}' did not succeed ({status.value})", prerequisite
        return None

    def _run_unit(self, handle: PlanHandle, unit_id: str) -> None:
        if handle.token.cancelled:
            return

        plan_id = handle.plan_id
        unit = self.catalog.get_unit(unit_id)

        skip = self._skip_reason(unit)
        if skip is not None:
            reason, blocked_by = skip
            result = self.tracker.skip(unit_id, reason, blocked_by=blocked_by, plan_id=plan_id)
        else:
            result = self.tracker.try_begin(unit_id, plan_id=plan_id)

        if isinstance(result, AlreadyRunning):
            logger.warning(f"Unit {unit_id} is already running elsewhere; leaving it untouched")
            return
        if skip is not None:
            return

        handle.executed.append(unit_id)
        outcome = self._invoke(unit, handle.token)
        self.tracker.complete(result, outcome, plan_id=plan_id)

    def _invoke(self, unit: SetupUnit, token: CancelToken) -> ExecutionOutcome:
        """Run the executor, absorbing execution errors into an outcome."""
        timeout = unit.timeout or self.unit_timeout
        try:
            return self.executor.run(unit, timeout=timeout, cancel_token=token)
        except ExecutionTimeoutError as e:
            partial = e.outcome or ExecutionOutcome()
            return partial.model_copy(update={"timed_out": True, "error": e.message})
        except ExecutionError as e:
            logger.error(f"Unit {unit.id} could not run: {e.message}")
            return ExecutionOutcome.from_error(e.message)
        except Exception as e:
            logger.exception(f"Unexpected error running unit {unit.id}")
            return ExecutionOutcome.from_error(f"unexpected error: {e}")
