"""Execution state commands: status and reset."""

import click
from rich.markup import escape
from rich.table import Table

from setupdeck.lib.exceptions import InvalidTransitionError
from setupdeck.models.execution_state import UnitStatus
from setupdeck.services.progress_reporter import styled_status


@click.command(name="status")
@click.option("--all", "show_all", is_flag=True, help="Include units that never ran")
@click.pass_context
def status(ctx: click.Context, show_all: bool):
    """Show the last execution state of units.

    State survives between invocations only when persist_state is enabled.
    """
    from setupdeck.cli.main import get_app

    app = get_app(ctx)
    snapshot = app.bus.snapshot()

    table = Table(title="Execution Status", show_header=True)
    table.add_column("Unit", style="cyan")
    table.add_column("Tab", style="dim")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Last attempt", style="dim")
    table.add_column("Details", style="dim")

    rows = 0
    for unit in app.catalog.all_units():
        state = snapshot.get(unit.id) or app.tracker.get(unit.id)
        if state.attempt_count == 0 and state.status == UnitStatus.NOT_RUN and not show_all:
            continue
        table.add_row(
            unit.id,
            app.catalog.tab_of(unit.id) or "-",
            styled_status(state.status),
            str(state.attempt_count),
            state.last_attempt_at.isoformat(timespec="seconds") if state.last_attempt_at else "-",
            escape(state.skip_reason or state.error or ""),
        )
        rows += 1

    if rows == 0:
        app.console.print("No units have run yet")
        return
    app.console.print(table)


@click.command(name="reset")
@click.argument("unit_ids", nargs=-1)
@click.option("--all", "reset_all", is_flag=True, help="Reset every unit")
@click.pass_context
def reset(ctx: click.Context, unit_ids: tuple[str, ...], reset_all: bool):
    """Return units to 'not run', forgetting their last result."""
    from setupdeck.cli.main import get_app
    from setupdeck.cli.utils.error_handler import CLIErrorHandler

    if bool(unit_ids) == reset_all:
        raise click.UsageError("Pass unit ids or --all")

    app = get_app(ctx)
    handler = CLIErrorHandler(app.console)

    if reset_all:
        cleared = app.tracker.reset_all()
        handler.success(f"Reset {len(cleared)} unit(s)")
        return

    failed = False
    for unit_id in unit_ids:
        if unit_id not in app.catalog:
            handler.error("unit_not_found", {"name": unit_id})
            failed = True
            continue
        try:
            app.tracker.reset(unit_id)
        except InvalidTransitionError:
            handler.error("unit_running", {"name": unit_id})
            failed = True
            continue
        handler.success(f"Reset {unit_id}")

    if failed:
        ctx.exit(1)
