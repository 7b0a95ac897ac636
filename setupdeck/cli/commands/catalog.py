"""Catalog browsing commands: tabs, show and search."""

import click
from rich.markup import escape
from rich.table import Table

from setupdeck.services.progress_reporter import styled_status


@click.command(name="tabs")
@click.argument("tab_id", required=False)
@click.pass_context
def tabs(ctx: click.Context, tab_id: str | None):
    """List tabs and their units with their last execution status.

    \b
    EXAMPLES:
      setupdeck tabs              # Every tab
      setupdeck tabs network      # Only the 'network' tab
    """
    from setupdeck.cli.main import get_app
    from setupdeck.cli.utils.error_handler import CLIErrorHandler

    app = get_app(ctx)
    catalog = app.catalog

    selected = catalog.all_tabs()
    if tab_id is not None:
        tab = catalog.get_tab(tab_id)
        if tab is None:
            CLIErrorHandler(app.console).error("tab_not_found", {"name": tab_id})
            ctx.exit(1)
        selected = [tab]

    for tab in selected:
        table = Table(title=f"{escape(tab.label)} ({tab.id})", show_header=True, title_justify="left")
        table.add_column("Unit", style="cyan")
        table.add_column("Label")
        table.add_column("Status")
        table.add_column("Prerequisites", style="dim")

        for unit in catalog.visible_units(tab.id):
            label = escape(unit.label)
            if not unit.enabled:
                label += " [dim](disabled)[/dim]"
            table.add_row(
                unit.id,
                label,
                styled_status(app.tracker.status(unit.id)),
                ", ".join(unit.prerequisites) or "-",
            )
        app.console.print(table)

        hidden = [u for u in tab.unit_ids if catalog.is_hidden(u)]
        if hidden:
            app.console.print(
                f"[dim]{len(hidden)} unit(s) hidden because their preconditions are not met "
                f"(use --override-validation to show them)[/dim]"
            )


@click.command(name="show")
@click.argument("unit_id")
@click.pass_context
def show(ctx: click.Context, unit_id: str):
    """Show a unit's definition and its last execution."""
    from setupdeck.cli.main import get_app
    from setupdeck.cli.utils.error_handler import CLIErrorHandler

    app = get_app(ctx)
    catalog = app.catalog
    unit = catalog.get_unit(unit_id)
    if unit is None:
        CLIErrorHandler(app.console).error("unit_not_found", {"name": unit_id})
        ctx.exit(1)

    state = app.tracker.get(unit_id)

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Unit", unit.id)
    table.add_row("Label", escape(unit.label))
    table.add_row("Tab", catalog.tab_of(unit_id) or "-")
    if unit.description:
        table.add_row("Description", escape(unit.description))
    table.add_row("Command", escape(unit.command.describe()))
    table.add_row("Prerequisites", ", ".join(unit.prerequisites) or "-")
    table.add_row("Idempotent", "yes" if unit.idempotent else "no")
    table.add_row("Multi-select", "yes" if unit.multi_select else "no")
    if unit.timeout:
        table.add_row("Timeout", f"{unit.timeout:g}s")
    for precondition in unit.preconditions:
        table.add_row("Precondition", escape(precondition.describe()))
    if catalog.is_hidden(unit_id):
        table.add_row("Hidden", escape(catalog.hidden_reason(unit_id)))

    table.add_row("Status", styled_status(state.status))
    table.add_row("Attempts", str(state.attempt_count))
    if state.last_attempt_at:
        table.add_row("Last attempt", state.last_attempt_at.isoformat(timespec="seconds"))
    if state.exit_code is not None:
        table.add_row("Exit code", str(state.exit_code))
    if state.skip_reason:
        table.add_row("Skip reason", escape(state.skip_reason))
    if state.error:
        table.add_row("Error", escape(state.error))
    app.console.print(table)

    if state.output_excerpt:
        app.console.print("[bold]Output:[/bold]")
        app.console.print(state.output_excerpt, markup=False, highlight=False)


@click.command(name="search")
@click.argument("query")
@click.pass_context
def search(ctx: click.Context, query: str):
    """Find units whose label contains QUERY (case-insensitive)."""
    from setupdeck.cli.main import get_app

    app = get_app(ctx)
    matches = app.catalog.search(query)
    if not matches:
        app.console.print(f"No units match '{escape(query)}'")
        return

    table = Table(title=f"Units matching '{escape(query)}'", show_header=True)
    table.add_column("Unit", style="cyan")
    table.add_column("Label")
    table.add_column("Tab", style="dim")
    for unit in matches:
        table.add_row(unit.id, escape(unit.label), app.catalog.tab_of(unit.id) or "-")
    app.console.print(table)
