"""Unit executor: runs one setup unit's script as an isolated child process."""

import os
import re
import subprocess
import threading
import time
from typing import IO, List, Optional

import psutil

from setupdeck.core.lib_logger import get_logger
from setupdeck.lib.exceptions import (
    ExecutionIOError,
    ExecutionTimeoutError,
    SpawnFailedError,
)
from setupdeck.models.catalog import CommandKind, SetupUnit
from setupdeck.models.execution_state import ExecutionOutcome

logger = get_logger(__name__)

ANSI_ESCAPE = re.compile(r"\x1b(?:\[[0-?]*[ -/]*[@-~]|\][^\x07\x1b]*(?:\x07|\x1b\\)|[@-Z\\-_])")

CHILD_ENV = {
    "TERM": "xterm-256color",
    "COLORTERM": "truecolor",
}


def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences from captured output."""
    return ANSI_ESCAPE.sub("", text)


class CancelToken:
    """Thread-safe cooperative cancellation flag."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or the timeout elapses; returns cancelled."""
        return self._event.wait(timeout)


class TailBuffer:
    """Keeps the last ``limit`` bytes written to it."""

    def __init__(self, limit: int):
        self.limit = limit
        self.truncated = False
        self._data = bytearray()

    def write(self, chunk: bytes) -> None:
        self._data.extend(chunk)
        overflow = len(self._data) - self.limit
        if overflow > 0:
            del self._data[:overflow]
            self.truncated = True

    def text(self) -> str:
        return strip_ansi(bytes(self._data).decode("utf-8", errors="replace"))


class _StreamReader(threading.Thread):
    """Drains one child stream into a tail buffer."""

    def __init__(self, stream: IO[bytes], buffer: TailBuffer, name: str):
        super().__init__(name=name, daemon=True)
        self.stream = stream
        self.buffer = buffer
        self.error: Optional[OSError] = None

    def run(self) -> None:
        try:
            with self.stream:
                for chunk in iter(lambda: self.stream.read1(8192), b""):
                    self.buffer.write(chunk)
        except (OSError, ValueError) as e:
            self.error = e if isinstance(e, OSError) else OSError(str(e))


class UnitExecutor:
    """Spawns unit commands, captures bounded output and enforces limits.

    ``run`` blocks the calling thread until the child exits, the timeout
    expires or the cancel token fires, whichever happens first. It polls the
    child and the token alternately, so no extra scheduler thread is needed.
    """

    def __init__(
        self,
        output_limit: int = 64 * 1024,
        grace_period: float = 5.0,
        poll_interval: float = 0.05,
    ):
        """Initialize executor.

        Args:
            output_limit: Bytes of stdout/stderr tail kept per stream
            grace_period: Seconds between graceful terminate and forced kill
            poll_interval: Seconds between child/cancellation checks
        """
        self.output_limit = output_limit
        self.grace_period = grace_period
        self.poll_interval = poll_interval

    def build_env(self, unit: SetupUnit) -> dict:
        return dict(os.environ, **CHILD_ENV, **unit.env)

    def run(
        self,
        unit: SetupUnit,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ExecutionOutcome:
        """Run a unit to completion.

        Returns:
            ExecutionOutcome; ``cancelled`` is set when the token fired

        Raises:
            SpawnFailedError: The child process could not be started
            ExecutionTimeoutError: The unit exceeded ``timeout`` and was killed
            ExecutionIOError: Capturing the child's output failed
        """
        command = unit.command
        if command.kind == CommandKind.SCRIPT and not command.file.is_file():
            raise SpawnFailedError(f"Script not found: {command.file}", unit.id)

        argv = command.to_argv()
        log = logger.with_context(unit_id=unit.id)
        log.info(f"Starting unit {unit.id}: {command.describe()}")

        started = time.monotonic()
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=command.working_dir,
                env=self.build_env(unit),
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnFailedError(f"Cannot start unit '{unit.id}': {e}", unit.id) from e

        stdout = TailBuffer(self.output_limit)
        stderr = TailBuffer(self.output_limit)
        readers = [
            _StreamReader(process.stdout, stdout, f"{unit.id}-stdout"),
            _StreamReader(process.stderr, stderr, f"{unit.id}-stderr"),
        ]
        for reader in readers:
            reader.start()

        deadline = started + timeout if timeout else None
        cancelled = timed_out = False

        while process.poll() is None:
            if cancel_token is not None and cancel_token.cancelled:
                log.info(f"Cancelling unit {unit.id}")
                cancelled = True
                self._terminate(process)
                break
            if deadline is not None and time.monotonic() >= deadline:
                log.warning(f"Unit {unit.id} exceeded timeout of {timeout:g}s")
                timed_out = True
                self._terminate(process)
                break
            if cancel_token is not None:
                cancel_token.wait(self.poll_interval)
            else:
                time.sleep(self.poll_interval)

        for reader in readers:
            # Orphaned grandchildren can keep a pipe open after the child exits
            reader.join(timeout=max(self.grace_period, 1.0))

        duration = time.monotonic() - started
        io_errors = [reader.error for reader in readers if reader.error is not None]
        if io_errors and not (cancelled or timed_out):
            raise ExecutionIOError(
                f"Reading output of unit '{unit.id}' failed: {io_errors[0]}", unit.id
            )

        outcome = ExecutionOutcome(
            exit_status=process.returncode,
            stdout_tail=stdout.text(),
            stderr_tail=stderr.text(),
            stdout_truncated=stdout.truncated,
            stderr_truncated=stderr.truncated,
            duration=duration,
            cancelled=cancelled,
            timed_out=timed_out,
        )

        if timed_out:
            raise ExecutionTimeoutError(unit.id, timeout, outcome=outcome)

        log.info(
            f"Unit {unit.id} finished with exit code {process.returncode} "
            f"in {duration:.2f}s" + (" (cancelled)" if cancelled else "")
        )
        return outcome

    def _terminate(self, process: subprocess.Popen) -> None:
        """Terminate the child and its descendants, killing after the grace period."""
        try:
            descendants: List[psutil.Process] = psutil.Process(process.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            descendants = []

        for target in descendants:
            try:
                target.terminate()
            except psutil.NoSuchProcess:
                pass
        try:
            process.terminate()
        except ProcessLookupError:
            pass

        try:
            process.wait(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            logger.warning(f"Child {process.pid} ignored terminate, killing it")
            process.kill()
            process.wait()

        _, alive = psutil.wait_procs(descendants, timeout=self.grace_period)
        for target in alive:
            try:
                target.kill()
            except psutil.NoSuchProcess:
                pass
