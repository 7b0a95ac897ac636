"""Main CLI entry point for SetupDeck - commands live in separate modules."""

import os
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console

from setupdeck.core.config import SetupDeckConfig, load_config, set_config
from setupdeck.core.lib_logger import get_component_logger, setup_logging
from setupdeck.lib.exceptions import CatalogLoadError
from setupdeck.models.catalog import Catalog
from setupdeck.services.catalog_store import CatalogStore
from setupdeck.services.event_bus import EventBus
from setupdeck.services.orchestrator import Orchestrator
from setupdeck.services.state_store import StateStore
from setupdeck.services.state_tracker import ExecutionStateTracker
from setupdeck.version import __version__

from .utils.error_handler import CLIErrorHandler, format_error_message


class SetupDeckApp:
    """Wires the catalog, tracker, event bus and orchestrator together."""

    def __init__(self, config: SetupDeckConfig | None = None, console: Console | None = None):
        self.config = config or SetupDeckConfig()
        self.console = console or Console()
        self.logger = None

        self.catalog_store: CatalogStore | None = None
        self.bus: EventBus | None = None
        self.tracker: ExecutionStateTracker | None = None
        self.state_store: StateStore | None = None
        self.orchestrator: Orchestrator | None = None

        self._initialized = False

    @property
    def catalog(self) -> Catalog:
        return self.catalog_store.catalog

    def initialize(self) -> None:
        """Load the catalog and build the engine.

        Raises:
            click.UsageError: No catalog is configured
            CatalogLoadError: The catalog failed validation
        """
        if self._initialized:
            return

        setup_logging(self.config)
        self.logger = get_component_logger("cli")

        if self.config.catalog_path is None:
            raise click.UsageError(format_error_message("catalog_not_configured"))

        self.catalog_store = CatalogStore(validate_preconditions=self.config.validate_preconditions)
        catalog = self.catalog_store.load(self.config.catalog_path)

        self.bus = EventBus()
        self.tracker = ExecutionStateTracker(self.bus, tab_resolver=catalog.tab_of)

        if self.config.persist_state:
            self.state_store = StateStore(self.config.effective_state_file)
            try:
                self.state_store.restore_into(self.tracker)
            except ValueError as e:
                CLIErrorHandler(self.console).warning(
                    format_error_message("state_file_invalid", {"details": str(e)})
                )
            self.state_store.attach(self.tracker)

        self.orchestrator = Orchestrator.from_config(catalog, self.tracker, self.config)

        self._initialized = True
        self.logger.info(
            f"SetupDeck initialized with {len(catalog.all_units())} units "
            f"from {self.config.catalog_path}"
        )


def get_app(ctx: click.Context) -> SetupDeckApp:
    """Initialized app for a command, exiting non-zero if the catalog is unusable."""
    app: SetupDeckApp = ctx.obj["app"]
    if app.config.catalog_path is None:
        CLIErrorHandler(app.console).error("catalog_not_configured")
        ctx.exit(2)
    try:
        app.initialize()
    except CatalogLoadError as e:
        CLIErrorHandler(app.console).catalog_error(e)
        ctx.exit(2)
    return app


def is_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0


@click.group()
@click.version_option(__version__, "--version", "-v", help="Show version and exit")
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Configuration file path")
@click.option("--catalog", "catalog_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Catalog descriptor (YAML or JSON)")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.option("--override-validation", is_flag=True,
              help="Show and run units even when their preconditions fail")
@click.option("--bypass-root", is_flag=True, help="Do not warn when running as root")
@click.pass_context
def main(ctx: click.Context, config_file: Path | None, catalog_path: Path | None, debug: bool,
         override_validation: bool, bypass_root: bool):
    """SetupDeck - run curated machine setup scripts grouped into tabs.

    \b
    QUICK START:
      setupdeck --catalog catalog.yaml tabs          # List tabs and units
      setupdeck --catalog catalog.yaml run dns       # Run one unit
      setupdeck --catalog catalog.yaml run --tab network

    \b
    CONFIGURATION:
      ~/.config/setupdeck/config.yaml, SETUPDECK_* environment variables
      and the options below, highest precedence last.
    """
    ctx.ensure_object(dict)
    console = Console()

    overrides = {"catalog_path": catalog_path}
    if debug:
        overrides.update(debug=True, log_level="DEBUG")
    if override_validation:
        overrides["validate_preconditions"] = False
    if bypass_root:
        overrides["bypass_root"] = True

    try:
        config = set_config(load_config(config_file, **overrides))
    except (ValidationError, ValueError) as e:
        CLIErrorHandler(console).error("invalid_config", {"details": str(e)})
        ctx.exit(2)

    if is_root() and not config.bypass_root:
        CLIErrorHandler(console).warning(
            "Running as root.",
            details="Setup units may change system files. Use --bypass-root to hide this warning.",
        )

    ctx.obj["debug"] = debug
    ctx.obj["app"] = SetupDeckApp(config, console)


# Import and register all commands
from setupdeck.cli.commands.catalog import search, show, tabs
from setupdeck.cli.commands.run import run
from setupdeck.cli.commands.state import reset, status

main.add_command(tabs)
main.add_command(show)
main.add_command(search)
main.add_command(run)
main.add_command(status)
main.add_command(reset)

# CLI alias
cli = main

if __name__ == "__main__":
    main()
