"""Run command for SetupDeck CLI."""

import click

from setupdeck.lib.exceptions import UnknownTargetError
from setupdeck.models.run_request import PlanState, RunRequest
from setupdeck.services.output_log import save_output_log
from setupdeck.services.progress_reporter import ProgressReporter

EXIT_FAILED = 1
EXIT_CANCELLED = 130


@click.command(name="run")
@click.argument("unit_ids", nargs=-1)
@click.option("--tab", "-t", "tab_id", help="Run every enabled unit of a tab")
@click.option("--all", "run_all", is_flag=True, help="Run every enabled unit of every tab")
@click.option("--force", "-f", is_flag=True, help="Re-run non-idempotent units that already succeeded")
@click.option("--parallel", "-P", type=click.IntRange(1, 16), default=None,
              help="Maximum units running at once")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Timeout in seconds for units without their own")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.option("--no-prerequisites", is_flag=True,
              help="Do not add missing prerequisites to the plan")
@click.option("--save-logs", is_flag=True, help="Write each unit's output to a log file")
@click.pass_context
def run(ctx: click.Context, unit_ids: tuple[str, ...], tab_id: str | None, run_all: bool,
        force: bool, parallel: int | None, timeout: float | None, yes: bool,
        no_prerequisites: bool, save_logs: bool):
    """Run setup units, a whole tab or the whole catalog.

    Units run in prerequisite order. A failed unit never stops independent
    units; units that depend on it are skipped. Press Ctrl-C to cancel: the
    running units are terminated and the rest stay not run.

    \b
    EXAMPLES:
      setupdeck run dns firewall        # Run two units
      setupdeck run --tab network       # Run a tab
      setupdeck run --all --parallel 4  # Everything, four at a time
      setupdeck run                     # Units listed in auto_execute

    \b
    EXIT CODES:
      0    every unit succeeded or was skipped
      1    at least one unit failed
      130  cancelled with Ctrl-C
    """
    from setupdeck.cli.main import get_app
    from setupdeck.cli.utils.error_handler import CLIErrorHandler

    if sum([bool(unit_ids), tab_id is not None, run_all]) > 1:
        raise click.UsageError("Pass unit ids, --tab or --all, not more than one of them")

    app = get_app(ctx)
    handler = CLIErrorHandler(app.console)
    options = {"force": force, "include_prerequisites": not no_prerequisites}

    if run_all:
        request = RunRequest.for_catalog(**options)
    elif tab_id is not None:
        request = RunRequest.for_tab(tab_id, **options)
    elif unit_ids:
        request = RunRequest.for_units(list(unit_ids), **options)
    elif app.config.auto_execute:
        handler.info(f"Running auto_execute units: {', '.join(app.config.auto_execute)}")
        request = RunRequest.for_units(list(app.config.auto_execute), **options)
    else:
        handler.error("no_targets")
        ctx.exit(2)

    orchestrator = app.orchestrator
    if parallel is not None:
        orchestrator.max_parallel = parallel
    if timeout is not None:
        orchestrator.unit_timeout = timeout

    try:
        plan = orchestrator.plan(request)
    except UnknownTargetError as e:
        handler.handle_exception(e)
        ctx.exit(EXIT_FAILED)

    reporter = ProgressReporter(app.console, app.catalog)
    reporter.display_plan(plan)
    if plan.is_empty:
        handler.info("Nothing to run")
        return

    if not (yes or app.config.skip_confirmation):
        click.confirm(f"Run {len(plan)} unit(s)?", default=True, abort=True)

    with reporter.track(app.bus, plan):
        handle = orchestrator.start(plan)
        try:
            while handle.wait(timeout=0.2) is None:
                pass
        except KeyboardInterrupt:
            app.console.print("[yellow]Cancelling...[/yellow]")
            orchestrator.cancel(handle)
            handle.wait()
    result = handle.result

    reporter.display_summary(result)
    for unit_id in result.failed:
        reporter.display_failure(result.states[unit_id])

    if save_logs or app.config.save_logs:
        for unit_id in result.executed:
            try:
                path = save_output_log(result.states[unit_id], app.config.logs_dir)
            except OSError as e:
                handler.error("log_save_failed", {"name": unit_id, "reason": str(e)})
                continue
            handler.success(f"Saved output of {unit_id}", details=str(path))

    if result.state == PlanState.CANCELLED:
        handler.error("operation_cancelled", show_suggestions=False)
        ctx.exit(EXIT_CANCELLED)
    if result.failed:
        ctx.exit(EXIT_FAILED)
