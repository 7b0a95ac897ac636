"""Standardized error messages and display for CLI commands."""

import logging
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from setupdeck.lib.exceptions import (
    CatalogLoadError,
    CyclicDependencyError,
    DuplicateIdError,
    SetupDeckError,
    UnknownTargetError,
    UnknownUnitError,
)

logger = logging.getLogger(__name__)


CLI_ERROR_MESSAGES = {
    # Catalog errors
    "catalog_not_configured": "No catalog configured. Pass --catalog or set SETUPDECK_CATALOG_PATH.",
    "catalog_invalid": "Catalog {source} could not be loaded: {reason}",
    "catalog_cycle": "Catalog {source} has a prerequisite cycle: {reason}",
    "catalog_duplicate": "Catalog {source} declares an id twice: {reason}",
    "catalog_unknown_unit": "Catalog {source} references a missing unit: {reason}",

    # Target errors
    "unit_not_found": "Unit '{name}' not found in the catalog.",
    "tab_not_found": "Tab '{name}' not found in the catalog.",
    "no_targets": "Nothing to run. Name units, pass --tab or --all, or configure auto_execute.",

    # Configuration errors
    "invalid_config": "Invalid configuration: {details}",
    "state_file_invalid": "Ignoring unreadable state file: {details}",

    # Operation errors
    "operation_failed": "Operation '{operation}' failed: {reason}",
    "operation_cancelled": "Operation cancelled by user.",
    "unit_running": "Unit '{name}' is running and cannot be reset.",
    "log_save_failed": "Could not save output log for '{name}': {reason}",
}


ERROR_SUGGESTIONS = {
    "catalog_not_configured": [
        "Run 'setupdeck --catalog path/to/catalog.yaml tabs'",
        "Or add 'catalog_path: ...' to ~/.config/setupdeck/config.yaml",
    ],
    "catalog_cycle": [
        "Remove one of the prerequisites listed in the cycle",
    ],
    "unit_not_found": [
        "Run 'setupdeck tabs' to see available units",
        "Run 'setupdeck search <text>' to find a unit by label",
    ],
    "tab_not_found": [
        "Run 'setupdeck tabs' to see available tabs",
    ],
}


class CLIErrorHandler:
    """Centralized error handler for CLI commands."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()
        self.error_count = 0
        self.warning_count = 0

    def error(
        self,
        error_key: str,
        context: dict[str, Any] | None = None,
        show_suggestions: bool = True,
    ) -> None:
        """Display a formatted error message.

        Args:
            error_key: Key from CLI_ERROR_MESSAGES, or a literal message
            context: Dict with values to format into the message
            show_suggestions: Whether to show suggested actions
        """
        message = format_error_message(error_key, context)

        error_text = Text()
        error_text.append("✗ Error: ", style="bold red")
        error_text.append(message, style="red")
        self.console.print(error_text)
        self.error_count += 1

        if show_suggestions and error_key in ERROR_SUGGESTIONS:
            self._show_suggestions(ERROR_SUGGESTIONS[error_key])

        logger.error(f"CLI Error [{error_key}]: {message}")

    def warning(self, message: str, details: str | None = None) -> None:
        """Display a formatted warning message."""
        warning_text = Text()
        warning_text.append("⚠ Warning: ", style="bold yellow")
        warning_text.append(message, style="yellow")
        self.console.print(warning_text)

        if details:
            self.console.print(Text(f"  {details}", style="dim yellow"))

        self.warning_count += 1
        logger.warning(f"CLI Warning: {message}")

    def success(self, message: str, details: str | None = None) -> None:
        success_text = Text()
        success_text.append("✓ ", style="bold green")
        success_text.append(message, style="green")
        self.console.print(success_text)

        if details:
            self.console.print(Text(f"  {details}", style="dim green"))

    def info(self, message: str, details: str | None = None) -> None:
        self.console.print(Text(f"ℹ {message}", style="cyan"))

        if details:
            self.console.print(Text(f"  {details}", style="dim cyan"))

    def _show_suggestions(self, suggestions: list[str]) -> None:
        if not suggestions:
            return

        self.console.print("\n[yellow]Suggested actions:[/yellow]")
        for suggestion in suggestions:
            self.console.print(f"  • {suggestion}")

    def catalog_error(self, error: CatalogLoadError) -> None:
        """Explain why a catalog failed to load."""
        context = {"source": error.source or "descriptor", "reason": error.message}
        if isinstance(error, CyclicDependencyError):
            self.error("catalog_cycle", context)
        elif isinstance(error, DuplicateIdError):
            self.error("catalog_duplicate", context)
        elif isinstance(error, UnknownUnitError):
            self.error("catalog_unknown_unit", context)
        else:
            self.error("catalog_invalid", context)

    def handle_exception(
        self,
        exception: Exception,
        operation: str | None = None,
        show_traceback: bool = False,
    ) -> None:
        """Handle unexpected exceptions with appropriate messaging."""
        if isinstance(exception, CatalogLoadError):
            self.catalog_error(exception)
            return
        if isinstance(exception, UnknownTargetError):
            key = "tab_not_found" if exception.kind == "tab" else "unit_not_found"
            self.error(key, {"name": exception.target})
            return
        if isinstance(exception, KeyboardInterrupt):
            self.error("operation_cancelled")
            return

        if isinstance(exception, SetupDeckError):
            reason = exception.message
        else:
            reason = str(exception)

        if operation:
            self.error("operation_failed", {"operation": operation, "reason": reason})
        else:
            self.console.print(Text(f"Unexpected error: {reason}", style="red"))

        if show_traceback:
            import traceback
            self.console.print(
                Panel(
                    traceback.format_exc(),
                    title="Traceback",
                    border_style="red",
                    expand=False
                )
            )

        logger.exception(f"Unhandled exception in {operation or 'CLI'}")

    def get_error_summary(self) -> str:
        """Get a summary of errors and warnings."""
        parts = []
        if self.error_count > 0:
            parts.append(f"{self.error_count} error{'s' if self.error_count != 1 else ''}")
        if self.warning_count > 0:
            parts.append(f"{self.warning_count} warning{'s' if self.warning_count != 1 else ''}")

        return ", ".join(parts) if parts else "No errors"


def format_error_message(error_key: str, context: dict[str, Any] | None = None) -> str:
    """Format an error message without displaying it."""
    if error_key in CLI_ERROR_MESSAGES:
        message = CLI_ERROR_MESSAGES[error_key]
        if context:
            return message.format(**context)
        return message
    return error_key
