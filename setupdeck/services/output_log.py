"""Save captured unit output to timestamped log files."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from setupdeck.models.execution_state import ExecutionState

logger = logging.getLogger(__name__)

LOG_TIMESTAMP_FORMAT = "%Y-%m-%d-%H-%M-%S"


def output_log_path(logs_dir: Path, unit_id: str, when: Optional[datetime] = None) -> Path:
    """Log file path for a unit, e.g. setupdeck_log_dns_2026-01-31-12-00-00.log."""
    stamp = (when or datetime.now()).strftime(LOG_TIMESTAMP_FORMAT)
    return logs_dir / f"setupdeck_log_{unit_id}_{stamp}.log"


def save_output_log(state: ExecutionState, logs_dir: Path) -> Path:
    """Write a unit's last captured output and status to a log file.

    Returns:
        Path of the written file

    Raises:
        OSError: The logs directory or file cannot be written
    """
    logs_dir.mkdir(parents=True, exist_ok=True)
    path = output_log_path(logs_dir, state.unit_id, state.finished_at)

    lines = [
        f"unit: {state.unit_id}",
        f"status: {state.status.value}",
        f"exit code: {state.exit_code if state.exit_code is not None else '-'}",
        f"attempt: {state.attempt_count}",
    ]
    if state.error:
        lines.append(f"error: {state.error}")
    if state.output_truncated:
        lines.append("note: output truncated to its tail")
    lines += ["", "--- stdout ---", state.output_excerpt, "--- stderr ---", state.error_excerpt]

    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    logger.info(f"Saved output of {state.unit_id} to {path}")
    return path
