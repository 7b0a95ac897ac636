"""Integration tests for the unit executor with real shell scripts."""

import threading
import time

import pytest

from setupdeck.lib.exceptions import ExecutionTimeoutError, SpawnFailedError
from setupdeck.models.catalog import CommandKind, SetupUnit, UnitCommand
from setupdeck.services.unit_executor import CancelToken, TailBuffer, UnitExecutor, strip_ansi


pytestmark = pytest.mark.integration


def raw_unit(snippet: str, unit_id: str = "probe", **extra) -> SetupUnit:
    return SetupUnit(
        id=unit_id,
        label=unit_id,
        command=UnitCommand(kind=CommandKind.RAW, raw=snippet),
        **extra,
    )


@pytest.fixture
def executor():
    return UnitExecutor(output_limit=1024, grace_period=1.0, poll_interval=0.01)


class TestTailBuffer:
    """Test bounded output capture."""

    def test_keeps_everything_under_limit(self):
        buffer = TailBuffer(10)
        buffer.write(b"hello")

        assert buffer.text() == "hello"
        assert not buffer.truncated

    def test_drops_oldest_bytes(self):
        """Test that overflow keeps the tail and sets the flag."""
        buffer = TailBuffer(4)
        buffer.write(b"abc")
        buffer.write(b"defg")

        assert buffer.text() == "defg"
        assert buffer.truncated

    def test_strip_ansi(self):
        """Test removal of colour and cursor sequences."""
        assert strip_ansi("\x1b[1;32mok\x1b[0m \x1b[2Kdone") == "ok done"


class TestUnitExecutorRun:
    """Test running child processes."""

    def test_success_captures_output(self, executor):
        """Test exit 0 with stdout and stderr captured separately."""
        outcome = executor.run(raw_unit("echo out; echo err >&2"))

        assert outcome.exit_status == 0
        assert outcome.succeeded
        assert outcome.stdout_tail == "out\n"
        assert outcome.stderr_tail == "err\n"
        assert outcome.duration >= 0

    def test_failure_keeps_exit_code(self, executor):
        """Test that a non-zero exit is reported raw."""
        outcome = executor.run(raw_unit("exit 3"))

        assert outcome.exit_status == 3
        assert not outcome.succeeded

    def test_environment(self, executor):
        """Test terminal variables and unit env reach the child."""
        outcome = executor.run(raw_unit('echo "$TERM $DECK_GREETING"', env={"DECK_GREETING": "hi"}))

        assert outcome.stdout_tail == "xterm-256color hi\n"

    def test_stdin_is_closed(self, executor):
        """Test that a unit reading stdin does not hang."""
        outcome = executor.run(raw_unit("cat; echo done"), timeout=5)

        assert outcome.stdout_tail == "done\n"

    def test_output_truncated_to_tail(self, executor):
        """Test bounded capture of a chatty unit."""
        outcome = executor.run(raw_unit("i=0; while [ $i -lt 500 ]; do echo line$i; i=$((i+1)); done"))

        assert outcome.stdout_truncated
        assert len(outcome.stdout_tail.encode()) <= 1024
        assert outcome.stdout_tail.endswith("line499\n")

    def test_ansi_sequences_stripped(self, executor):
        """Test that coloured output is captured as plain text."""
        outcome = executor.run(raw_unit(r"printf '\033[31mred\033[0m\n'"))

        assert outcome.stdout_tail == "red\n"

    def test_script_runs_from_its_directory(self, executor, write_script):
        """Test script units with arguments and working directory."""
        script = write_script("where.sh", 'pwd -P; echo "$1"')
        unit = SetupUnit(
            id="where",
            label="Where",
            command=UnitCommand(kind=CommandKind.SCRIPT, file=script, args=("arg1",)),
        )

        outcome = executor.run(unit)

        lines = outcome.stdout_tail.splitlines()
        assert lines[0] == str(script.parent.resolve())
        assert lines[1] == "arg1"

    def test_missing_script_fails_to_spawn(self, executor, temp_dir):
        """Test that a missing script raises SpawnFailedError."""
        unit = SetupUnit(
            id="ghost",
            label="Ghost",
            command=UnitCommand(kind=CommandKind.SCRIPT, file=temp_dir / "missing.sh"),
        )

        with pytest.raises(SpawnFailedError):
            executor.run(unit)

    def test_missing_executable_fails_to_spawn(self, executor):
        """Test that an argv command naming no real program raises SpawnFailedError."""
        unit = SetupUnit(
            id="nothing",
            label="Nothing",
            command=UnitCommand(kind=CommandKind.ARGV, argv=("definitely-not-a-command-xyz",)),
        )

        with pytest.raises(SpawnFailedError) as exc_info:
            executor.run(unit)

        assert exc_info.value.unit_id == "nothing"


class TestUnitExecutorLimits:
    """Test timeouts and cancellation."""

    def test_timeout_kills_child(self, executor):
        """Test that a unit exceeding its timeout is terminated."""
        started = time.monotonic()

        with pytest.raises(ExecutionTimeoutError) as exc_info:
            executor.run(raw_unit("echo started; sleep 30"), timeout=0.5)

        assert time.monotonic() - started < 10
        outcome = exc_info.value.outcome
        assert outcome.timed_out
        assert not outcome.succeeded
        assert "started" in outcome.stdout_tail

    def test_cancel_terminates_child(self, executor):
        """Test cooperative cancellation while the child runs."""
        token = CancelToken()
        timer = threading.Timer(0.3, token.cancel)
        timer.start()
        started = time.monotonic()

        outcome = executor.run(raw_unit("sleep 30"), cancel_token=token)

        timer.cancel()
        assert time.monotonic() - started < 10
        assert outcome.cancelled
        assert outcome.resulting_status.value == "cancelled"

    def test_cancel_reaches_grandchildren(self, executor):
        """Test that the whole process tree is terminated."""
        token = CancelToken()
        threading.Timer(0.3, token.cancel).start()
        started = time.monotonic()

        outcome = executor.run(raw_unit("sh -c 'sleep 30' & sleep 30; wait"), cancel_token=token)

        assert outcome.cancelled
        assert time.monotonic() - started < 10

    def test_kill_after_grace_period(self):
        """Test that a child ignoring SIGTERM is killed once the grace period ends."""
        executor = UnitExecutor(grace_period=0.5, poll_interval=0.01)
        token = CancelToken()
        threading.Timer(0.3, token.cancel).start()
        started = time.monotonic()

        outcome = executor.run(raw_unit("trap '' TERM; sleep 30"), cancel_token=token)

        elapsed = time.monotonic() - started
        assert outcome.cancelled
        assert outcome.exit_status == -9
        assert 0.8 <= elapsed < 5

    def test_pre_cancelled_token(self, executor):
        """Test that an already-cancelled token stops the unit at once."""
        token = CancelToken()
        token.cancel()

        outcome = executor.run(raw_unit("sleep 30"), cancel_token=token)

        assert outcome.cancelled
