"""
Tests for the afl-showmap tracer adapter.

Process-level tests run a shell stand-in for afl-showmap (see conftest) that
reports each line of the input as a tuple.
"""

import threading
import time
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from corpus_cmin.core.corpus.trace_store import InputFile
from corpus_cmin.core.exceptions import (
    InvalidTargetError,
    MissingTracerError,
    TracerInvocationError,
)
from corpus_cmin.core.tracer import (
    ShowmapTracer,
    TraceOutcome,
    TraceStatus,
    classify_exit,
    locate_showmap,
    parse_trace,
    validate_target,
)


def _input(tmp_path: Path, name: str, content: str) -> InputFile:
    path = tmp_path / name
    path.write_text(content)
    return InputFile.from_path(path)


# ============================================================================
# Discovery and validation
# ============================================================================


class TestLocateShowmap:
    """Test afl-showmap discovery."""

    def test_from_afl_path(self, afl_dir, fake_showmap):
        assert locate_showmap(afl_dir) == fake_showmap

    def test_from_search_path(self, afl_dir, fake_showmap, monkeypatch):
        monkeypatch.setenv("PATH", str(afl_dir))

        assert locate_showmap() == fake_showmap

    def test_missing_in_afl_path(self, tmp_path):
        with pytest.raises(MissingTracerError) as exc_info:
            locate_showmap(tmp_path)

        assert exc_info.value.error_code == "missing_tracer"
        assert "AFL_PATH" in exc_info.value.message

    def test_not_executable(self, tmp_path):
        (tmp_path / "afl-showmap").write_text("not a program")

        with pytest.raises(MissingTracerError):
            locate_showmap(tmp_path)


class TestValidateTarget:
    """Test target binary validation."""

    def test_executable_target(self, target_binary):
        assert validate_target(str(target_binary)) == target_binary

    def test_missing_target(self, tmp_path):
        with pytest.raises(InvalidTargetError):
            validate_target(tmp_path / "nope")

    def test_non_executable_target(self, tmp_path):
        path = tmp_path / "data.bin"
        path.write_bytes(b"\x7fELF")

        with pytest.raises(InvalidTargetError) as exc_info:
            validate_target(path)

        assert exc_info.value.context["target"] == str(path)


# ============================================================================
# Parsing and classification
# ============================================================================


class TestParseTrace:
    def test_one_tuple_per_line(self):
        assert parse_trace("000123:1\n000456:3\n") == frozenset({"000123:1", "000456:3"})

    def test_blank_lines_and_whitespace_ignored(self):
        assert parse_trace("\n  7:1  \n\n7:1\n") == frozenset({"7:1"})

    def test_empty(self):
        assert parse_trace("") == frozenset()


class TestClassifyExit:
    @pytest.mark.parametrize(
        ("exit_code", "status"),
        [
            (0, TraceStatus.SUCCESS),
            (1, TraceStatus.HANG),
            (2, TraceStatus.CRASH),
            (-9, TraceStatus.CRASH),
            (None, TraceStatus.HANG),
            (3, TraceStatus.ERROR),
        ],
    )
    def test_exit_codes(self, exit_code, status):
        assert classify_exit(exit_code) == status

    def test_outcome_truthiness(self):
        ok = TraceOutcome(frozenset(), TraceStatus.SUCCESS, 0, 0.01)
        crashed = TraceOutcome(frozenset({"1"}), TraceStatus.CRASH, 2, 0.01)

        assert ok
        assert not crashed


# ============================================================================
# Command construction
# ============================================================================


class TestBuildCommand:
    """Test afl-showmap command lines."""

    def test_stdin_mode(self, fake_showmap, target_binary, tmp_path):
        tracer = ShowmapTracer(fake_showmap, target_binary, ["-v"])

        cmd = tracer.build_command(tmp_path / "trace", tmp_path / "in")

        assert tracer.uses_stdin
        assert cmd == [
            str(fake_showmap),
            "-q",
            "-o",
            str(tmp_path / "trace"),
            "-m",
            "100",
            "-t",
            "5000",
            "--",
            str(target_binary),
            "-v",
        ]

    def test_placeholder_substituted(self, fake_showmap, target_binary, tmp_path):
        tracer = ShowmapTracer(fake_showmap, target_binary, ["-f", "@@", "--fast"])

        cmd = tracer.build_command(tmp_path / "trace", tmp_path / "in")

        assert not tracer.uses_stdin
        assert cmd[-3:] == ["-f", str(tmp_path / "in"), "--fast"]

    def test_edges_and_unlimited_memory(self, fake_showmap, target_binary, tmp_path):
        tracer = ShowmapTracer(
            fake_showmap, target_binary, memory_limit_mb=0, timeout=0.25, edges_only=True
        )

        cmd = tracer.build_command(tmp_path / "trace", tmp_path / "in")

        assert cmd[cmd.index("-m") + 1] == "none"
        assert cmd[cmd.index("-t") + 1] == "250"
        assert cmd.index("-e") < cmd.index("--")

    def test_environment(self, fake_showmap, target_binary):
        env = ShowmapTracer(fake_showmap, target_binary, edges_only=True)._environment()

        assert env["AFL_MINIMIZE_MODE"] == "1"
        assert env["AFL_EDGES_ONLY"] == "1"


# ============================================================================
# Running the tracer
# ============================================================================


class TestShowmapTracer:
    """Test tracing through the fake afl-showmap."""

    def test_stdin_input(self, fake_showmap, target_binary, tmp_path):
        tracer = ShowmapTracer(fake_showmap, target_binary)

        outcome = tracer.trace(_input(tmp_path, "seed", "000001:1\n000002:4\n"))

        assert outcome.status == TraceStatus.SUCCESS
        assert outcome.exit_code == 0
        assert outcome.tuples == frozenset({"000001:1", "000002:4"})

    def test_placeholder_input(self, fake_showmap, target_binary, tmp_path):
        tracer = ShowmapTracer(fake_showmap, target_binary, ["@@"])

        outcome = tracer.trace(_input(tmp_path, "seed", "42:1\n"))

        assert outcome.tuples == frozenset({"42:1"})

    def test_edges_only(self, fake_showmap, target_binary, tmp_path):
        tracer = ShowmapTracer(fake_showmap, target_binary, edges_only=True)

        outcome = tracer.trace(_input(tmp_path, "seed", "000001:1\n000001:2\n000009:8\n"))

        assert outcome.tuples == frozenset({"000001", "000009"})

    def test_crash_keeps_partial_trace(self, fake_showmap, target_binary, tmp_path):
        tracer = ShowmapTracer(fake_showmap, target_binary)

        outcome = tracer.trace(_input(tmp_path, "crasher", "7:1\nCRASH\n"))

        assert outcome.status == TraceStatus.CRASH
        assert outcome.tuples == frozenset({"7:1"})

    def test_hang_is_killed(self, fake_showmap, target_binary, tmp_path):
        tracer = ShowmapTracer(fake_showmap, target_binary, timeout=0.1, kill_grace=0.2)

        start = time.time()
        outcome = tracer.trace(_input(tmp_path, "hanger", "8:1\nHANG\n"))

        assert time.time() - start < 10
        assert outcome.status == TraceStatus.HANG
        assert outcome.exit_code is None
        assert outcome.tuples == frozenset({"8:1"})
        assert tracer._running == {}

    def test_callable_returns_tuples_and_warns(self, fake_showmap, target_binary, tmp_path):
        tracer = ShowmapTracer(fake_showmap, target_binary)

        with capture_logs() as logs:
            tuples = tracer(_input(tmp_path, "crasher", "5:2\nCRASH\n"))

        assert tuples == frozenset({"5:2"})
        warnings = [e for e in logs if e["log_level"] == "warning"]
        assert warnings[0]["file"] == "crasher"
        assert warnings[0]["status"] == "crash"

    def test_input_without_path(self, fake_showmap, target_binary):
        tracer = ShowmapTracer(fake_showmap, target_binary)

        with pytest.raises(TracerInvocationError) as exc_info:
            tracer.trace(InputFile("orphan", 1))

        assert exc_info.value.error_code == "no_input_path"

    def test_unreadable_input(self, fake_showmap, target_binary, tmp_path):
        tracer = ShowmapTracer(fake_showmap, target_binary)

        with pytest.raises(TracerInvocationError) as exc_info:
            tracer.trace(InputFile("gone", 1, tmp_path / "gone"))

        assert exc_info.value.error_code == "unreadable_input"

    def test_launch_failure(self, target_binary, tmp_path):
        tracer = ShowmapTracer(tmp_path / "no-such-showmap", target_binary)

        with pytest.raises(TracerInvocationError) as exc_info:
            tracer.trace(_input(tmp_path, "seed", "1\n"))

        assert exc_info.value.error_code == "launch_failed"

    def test_cancel_stops_further_traces(self, fake_showmap, target_binary, tmp_path):
        tracer = ShowmapTracer(fake_showmap, target_binary)

        tracer.cancel()

        with pytest.raises(TracerInvocationError) as exc_info:
            tracer.trace(_input(tmp_path, "seed", "1\n"))
        assert exc_info.value.error_code == "cancelled"

    def test_cancel_kills_running_trace(self, fake_showmap, target_binary, tmp_path):
        tracer = ShowmapTracer(fake_showmap, target_binary, timeout=30)
        input_file = _input(tmp_path, "hanger", "3:1\nHANG\n")
        outcomes = []

        worker = threading.Thread(target=lambda: outcomes.append(tracer.trace(input_file)))
        worker.start()
        deadline = time.time() + 10
        while not tracer._running and time.time() < deadline:
            time.sleep(0.02)

        tracer.cancel()
        worker.join(timeout=15)

        assert not worker.is_alive()
        assert outcomes[0].status != TraceStatus.SUCCESS

    def test_cancel_before_registration_kills_new_process(
        self, fake_showmap, target_binary, tmp_path
    ):
        """A cancel landing just before launch still stops the new process."""
        tracer = ShowmapTracer(fake_showmap, target_binary, timeout=30)
        build_command = tracer.build_command

        def build_then_cancel(trace_path, input_path):
            cmd = build_command(trace_path, input_path)
            tracer.cancel()
            return cmd

        tracer.build_command = build_then_cancel

        start = time.time()
        outcome = tracer.trace(_input(tmp_path, "hanger", "4:1\nHANG\n"))

        assert time.time() - start < 15
        assert outcome.status != TraceStatus.SUCCESS
        assert tracer._running == {}
