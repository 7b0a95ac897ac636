"""Structured logging configuration for SetupDeck."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

from .config import SetupDeckConfig

_RESERVED_RECORD_KEYS = {
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "getMessage",
    "exc_info", "exc_text", "stack_info", "taskName", "message", "asctime",
}


class StructuredFormatter(logging.Formatter):
    """Custom formatter that outputs structured JSON logs."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Context added through SetupDeckLoggerAdapter or extra=
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class SetupDeckLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds SetupDeck-specific context."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Process log message and add extra context."""
        extra = dict(kwargs.get("extra") or {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs

    def with_context(self, **context) -> "SetupDeckLoggerAdapter":
        """Create new adapter with additional context."""
        new_extra = dict(self.extra)
        new_extra.update(context)
        return SetupDeckLoggerAdapter(self.logger, new_extra)


class LoggingManager:
    """Manage logging configuration for SetupDeck."""

    def __init__(self, config: SetupDeckConfig):
        """Initialize logging manager with configuration."""
        self.config = config
        self.console = Console(stderr=True)
        self._configured = False

    def setup_logging(self) -> None:
        """Set up logging configuration based on settings."""
        if self._configured:
            return

        level = "DEBUG" if self.config.debug else self.config.log_level

        root_logger = logging.getLogger()
        root_logger.setLevel(logging.DEBUG)

        # Remove handlers from a previous configuration
        for handler in root_logger.handlers[:]:
            if getattr(handler, "_setupdeck_handler", False):
                root_logger.removeHandler(handler)
                handler.close()

        console_handler = RichHandler(
            console=self.console,
            show_time=True,
            show_path=self.config.debug,
            rich_tracebacks=True,
            tracebacks_show_locals=self.config.debug
        )
        console_handler.setLevel(level)
        self._register(root_logger, console_handler)

        log_file = self.config.log_file
        if log_file is None:
            try:
                self.config.logs_dir.mkdir(parents=True, exist_ok=True)
                log_file = self.config.logs_dir / "setupdeck.log"
            except OSError as e:
                logging.getLogger(__name__).warning(
                    f"Cannot create logs directory {self.config.logs_dir}: {e}"
                )

        if log_file is not None:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_handler.setFormatter(StructuredFormatter())
            self._register(root_logger, file_handler)

        self._configured = True

    @staticmethod
    def _register(root_logger: logging.Logger, handler: logging.Handler) -> None:
        handler._setupdeck_handler = True  # type: ignore[attr-defined]
        root_logger.addHandler(handler)

    def get_logger(self, name: str, **context) -> SetupDeckLoggerAdapter:
        """Get a logger with SetupDeck-specific context."""
        if not self._configured:
            self.setup_logging()

        return SetupDeckLoggerAdapter(logging.getLogger(name), context)

    def get_component_logger(self, component: str, **context) -> SetupDeckLoggerAdapter:
        """Get a logger for a specific SetupDeck component."""
        context["component"] = component
        return self.get_logger(f"setupdeck.{component}", **context)


# Global logging manager instance
_logging_manager: Optional[LoggingManager] = None


def setup_logging(config: SetupDeckConfig) -> LoggingManager:
    """Set up global logging configuration."""
    global _logging_manager
    _logging_manager = LoggingManager(config)
    _logging_manager.setup_logging()
    return _logging_manager


def get_logger(name: str, **context) -> SetupDeckLoggerAdapter:
    """Get a logger instance."""
    if _logging_manager is None:
        return SetupDeckLoggerAdapter(logging.getLogger(name), context)

    return _logging_manager.get_logger(name, **context)


def get_component_logger(component: str, **context) -> SetupDeckLoggerAdapter:
    """Get a component-specific logger."""
    if _logging_manager is None:
        context["component"] = component
        return SetupDeckLoggerAdapter(logging.getLogger(f"setupdeck.{component}"), context)

    return _logging_manager.get_component_logger(component, **context)
