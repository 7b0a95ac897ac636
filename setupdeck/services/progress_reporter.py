"""Console progress reporting for plan execution."""

import logging
from contextlib import contextmanager
from typing import Dict, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text

from setupdeck.models.catalog import Catalog
from setupdeck.models.execution_state import ExecutionState, UnitStatus
from setupdeck.models.progress_event import ProgressEvent
from setupdeck.models.run_request import PlanResult, RunPlan

from .event_bus import EventBus

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    UnitStatus.NOT_RUN: "dim",
    UnitStatus.QUEUED: "blue",
    UnitStatus.RUNNING: "cyan",
    UnitStatus.SUCCEEDED: "green",
    UnitStatus.FAILED: "red",
    UnitStatus.SKIPPED: "yellow",
    UnitStatus.CANCELLED: "magenta",
}

STATUS_ICONS = {
    UnitStatus.SUCCEEDED: "✓",
    UnitStatus.FAILED: "✗",
    UnitStatus.SKIPPED: "↷",
    UnitStatus.CANCELLED: "■",
    UnitStatus.RUNNING: "▶",
}


def styled_status(status: UnitStatus) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.label}[/{style}]"


class ProgressReporter:
    """Renders progress events of a running plan to a rich console.

    The reporter is a bus listener, so ``handle_event`` runs on whichever
    thread performed the transition.
    """

    def __init__(self, console: Optional[Console] = None, catalog: Optional[Catalog] = None):
        """Initialize progress reporter.

        Args:
            console: Rich console for output
            catalog: Catalog used to show unit labels instead of ids
        """
        self.console = console or Console()
        self.catalog = catalog
        self.progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None
        self._plan: Optional[RunPlan] = None
        self._settled: Dict[str, UnitStatus] = {}

    def label_of(self, unit_id: str) -> str:
        if self.catalog is not None:
            unit = self.catalog.get_unit(unit_id)
            if unit is not None:
                return unit.label
        return unit_id

    def create_progress_bar(self) -> Progress:
        return Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=self.console,
        )

    @contextmanager
    def track(self, bus: EventBus, plan: RunPlan):
        """Show a progress bar for ``plan`` while its events arrive on ``bus``."""
        self._plan = plan
        self._settled = {}
        self.progress = self.create_progress_bar()
        self._task = self.progress.add_task(f"Plan {plan.plan_id}", total=len(plan))
        logger.debug(f"Tracking progress of plan {plan.plan_id}")
        bus.add_listener(self.handle_event)
        try:
            with self.progress:
                yield self
        finally:
            bus.remove_listener(self.handle_event)
            self.progress = None
            self._task = None
            self._plan = None

    def handle_event(self, event: ProgressEvent) -> None:
        if self._plan is not None and event.plan_id not in (None, self._plan.plan_id):
            return

        label = escape(self.label_of(event.unit_id))
        if event.new_status == UnitStatus.RUNNING:
            self._print(f"[cyan]{STATUS_ICONS[UnitStatus.RUNNING]}[/cyan] {label}")
            if self.progress is not None and self._task is not None:
                self.progress.update(self._task, description=label)
            return

        if not event.new_status.is_terminal:
            return

        icon = STATUS_ICONS.get(event.new_status, "-")
        line = f"{icon} {label}: {styled_status(event.new_status)}"
        if event.message:
            line += f" [dim]({escape(event.message)})[/dim]"
        self._print(line)

        if event.unit_id not in self._settled and self.progress is not None and self._task is not None:
            self.progress.advance(self._task)
        self._settled[event.unit_id] = event.new_status

    def _print(self, message: str) -> None:
        if self.progress is not None:
            self.progress.console.print(message)
        else:
            self.console.print(message)

    def display_plan(self, plan: RunPlan) -> None:
        """List the units a plan will run, plus anything left out of it."""
        table = Table(title=f"Plan {plan.plan_id}", show_header=True)
        table.add_column("#", style="dim", justify="right")
        table.add_column("Unit", style="cyan")
        table.add_column("Label", style="white")

        for position, unit_id in enumerate(plan.unit_ids, start=1):
            table.add_row(str(position), unit_id, self.label_of(unit_id))
        self.console.print(table)

        for unit_id, reason in plan.rejected.items():
            self.console.print(f"[yellow]Not running {unit_id}: {reason}[/yellow]")
        for unit_id in plan.satisfied:
            self.console.print(
                f"[dim]Not re-running {unit_id}: already succeeded (use --force)[/dim]"
            )

    def display_summary(self, result: PlanResult) -> None:
        table = Table(title="Run Summary", show_header=True)
        table.add_column("Unit", style="cyan")
        table.add_column("Status")
        table.add_column("Exit", justify="right")
        table.add_column("Duration (s)", justify="right", style="magenta")
        table.add_column("Details", style="dim")

        for unit_id, state in result.states.items():
            details = escape(state.skip_reason or state.error or "")
            table.add_row(
                unit_id,
                styled_status(state.status),
                str(state.exit_code) if state.exit_code is not None else "-",
                f"{state.duration:.2f}" if state.duration is not None else "-",
                details,
            )
        self.console.print(table)

        self.console.print(
            f"[green]{len(result.succeeded)} succeeded[/green], "
            f"[red]{len(result.failed)} failed[/red], "
            f"[yellow]{len(result.skipped)} skipped[/yellow], "
            f"[magenta]{len(result.cancelled)} cancelled[/magenta], "
            f"[dim]{len(result.not_run)} not run[/dim]"
        )

    def display_failure(self, state: ExecutionState, max_lines: int = 20) -> None:
        """Show the exit code and output tail of a failed unit."""
        excerpt = state.error_excerpt.strip() or state.output_excerpt.strip()
        lines = excerpt.splitlines()[-max_lines:] if excerpt else []
        body = "\n".join(lines) or "(no output captured)"
        title = f"{self.label_of(state.unit_id)} - {state.summary()}"
        self.console.print(Panel(Text(body), title=escape(title), border_style="red", expand=False))
