"""Coverage Tracer Adapter

Runs afl-showmap against the target once per input file and reports the set
of coverage tuples observed for that input.

TRACING WORKFLOW:
1. Launch ``afl-showmap -o <trace>`` around the target with the input on
   stdin (or substituted for ``@@`` in the target arguments)
2. Wait with a wall-clock timeout, killing the whole process tree on expiry
3. Read whatever trace was written, even after a crash or hang
4. Classify the exit status

A failing target never aborts a run: its trace is whatever was captured.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import psutil

from corpus_cmin.core.constants import (
    DEFAULT_KILL_GRACE_SECONDS,
    DEFAULT_MEMORY_LIMIT_MB,
    DEFAULT_TIMEOUT_SECONDS,
    INPUT_PLACEHOLDER,
    SHOWMAP_BINARY,
    SHOWMAP_EXIT_CRASH,
    SHOWMAP_EXIT_OK,
    SHOWMAP_EXIT_TIMEOUT,
    SHOWMAP_FALLBACK_PATH,
)
from corpus_cmin.core.corpus.trace_store import InputFile
from corpus_cmin.core.exceptions import (
    InvalidTargetError,
    MissingTracerError,
    TracerInvocationError,
)
from corpus_cmin.utils.logger import get_logger

logger = get_logger(__name__)


class TraceStatus(Enum):
    """Outcome of tracing a single input."""

    SUCCESS = "success"  # Target exited normally
    CRASH = "crash"  # Target terminated abnormally
    HANG = "hang"  # Target (or afl-showmap) exceeded the timeout
    ERROR = "error"  # afl-showmap reported an unexpected failure


@dataclass(frozen=True)
class TraceOutcome:
    """Tuples captured for one input plus how the run ended."""

    tuples: frozenset[str]
    status: TraceStatus
    exit_code: int | None
    execution_time: float

    def __bool__(self) -> bool:
        """Tracing succeeded if the target exited normally."""
        return self.status == TraceStatus.SUCCESS


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def locate_showmap(afl_path: Path | str | None = None) -> Path:
    """Find the afl-showmap binary.

    Args:
        afl_path: Directory holding afl-showmap (the AFL_PATH convention)

    Returns:
        Path to an executable afl-showmap

    Raises:
        MissingTracerError: If no executable afl-showmap is found

    """
    if afl_path:
        candidate = Path(afl_path) / SHOWMAP_BINARY
    else:
        found = shutil.which(SHOWMAP_BINARY)
        candidate = Path(found) if found else Path(SHOWMAP_FALLBACK_PATH)

    if not _is_executable(candidate):
        raise MissingTracerError(
            f"Can't find '{SHOWMAP_BINARY}' - please set AFL_PATH",
            error_code="missing_tracer",
            context={"searched": str(candidate)},
        )
    return candidate


def validate_target(target: Path | str) -> Path:
    """Check the target binary exists and is executable."""
    target_path = Path(target)
    if not _is_executable(target_path):
        raise InvalidTargetError(
            f"Binary '{target}' not found or is not executable",
            error_code="invalid_target",
            context={"target": str(target)},
        )
    return target_path


def parse_trace(text: str) -> frozenset[str]:
    """Parse afl-showmap output: one tuple per non-blank line."""
    return frozenset(line.strip() for line in text.splitlines() if line.strip())


def classify_exit(exit_code: int | None) -> TraceStatus:
    """Map an afl-showmap exit code to a TraceStatus."""
    if exit_code is None:
        return TraceStatus.HANG
    if exit_code == SHOWMAP_EXIT_OK:
        return TraceStatus.SUCCESS
    if exit_code == SHOWMAP_EXIT_CRASH or exit_code < 0:
        return TraceStatus.CRASH
    if exit_code == SHOWMAP_EXIT_TIMEOUT:
        return TraceStatus.HANG
    return TraceStatus.ERROR


def terminate_process_tree(pid: int, timeout: float = 2.0) -> None:
    """Terminate a process and all its children, killing survivors.

    Args:
        pid: Root process id
        timeout: Seconds to wait for graceful termination

    """
    try:
        root = psutil.Process(pid)
        children = root.children(recursive=True)
    except psutil.NoSuchProcess:
        return

    procs = [root, *children]
    for proc in procs:
        try:
            proc.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug("process already gone or inaccessible", error=str(e))

    _, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug("survivor already gone or inaccessible", error=str(e))

    logger.debug("terminated process tree", pid=pid, children_count=len(children))


class ShowmapTracer:
    """Collects per-input coverage traces through afl-showmap.

    Instances are callable with an InputFile and return its tuple set,
    which is the ``trace_of`` contract of ``build_trace_store``. Safe to call
    from several worker threads at once.

    Usage:
        tracer = ShowmapTracer(locate_showmap(), "./target", ["-d", "@@"])
        outcome = tracer.trace(InputFile("id:000001", 42, Path("queue/id:000001")))
    """

    def __init__(
        self,
        showmap: Path | str,
        target: Path | str,
        target_args: Sequence[str] = (),
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB,
        edges_only: bool = False,
        kill_grace: float = DEFAULT_KILL_GRACE_SECONDS,
    ) -> None:
        """Initialize the tracer.

        Args:
            showmap: Path to afl-showmap
            target: Path to the instrumented target binary
            target_args: Target arguments; ``@@`` is replaced by the input path
            timeout: Per-input timeout in seconds, passed to afl-showmap
            memory_limit_mb: Target memory limit in MB, 0 for none
            edges_only: Report edges without hit-count buckets
            kill_grace: Extra seconds before afl-showmap itself is killed

        """
        self.showmap = Path(showmap)
        self.target = Path(target)
        self.target_args = list(target_args)
        self.timeout = timeout
        self.memory_limit_mb = memory_limit_mb
        self.edges_only = edges_only
        self.kill_grace = kill_grace

        self._lock = threading.Lock()
        self._running: dict[int, subprocess.Popen[bytes]] = {}
        self._cancelled = threading.Event()

    @property
    def uses_stdin(self) -> bool:
        """True when the input is fed on stdin rather than via ``@@``."""
        return INPUT_PLACEHOLDER not in self.target_args

    def build_command(self, trace_path: Path, input_path: Path) -> list[str]:
        """Build the afl-showmap command line for one input."""
        memory = str(self.memory_limit_mb) if self.memory_limit_mb else "none"
        cmd = [
            str(self.showmap),
            "-q",
            "-o",
            str(trace_path),
            "-m",
            memory,
            "-t",
            str(max(1, int(self.timeout * 1000))),
        ]
        if self.edges_only:
            cmd.append("-e")
        cmd.append("--")
        cmd.append(str(self.target))
        cmd.extend(
            str(input_path) if arg == INPUT_PLACEHOLDER else arg
            for arg in self.target_args
        )
        return cmd

    def _environment(self) -> dict[str, str]:
        env = dict(os.environ)
        env["AFL_MINIMIZE_MODE"] = "1"
        if self.edges_only:
            env["AFL_EDGES_ONLY"] = "1"
        return env

    def trace(self, input_file: InputFile) -> TraceOutcome:
        """Trace one input file.

        Args:
            input_file: Input to run the target against

        Returns:
            TraceOutcome with the tuples captured before the run ended

        Raises:
            TracerInvocationError: If afl-showmap could not be launched or the
                input could not be read

        """
        if input_file.path is None:
            raise TracerInvocationError(
                f"No path recorded for input '{input_file.name}'",
                error_code="no_input_path",
            )
        if self._cancelled.is_set():
            raise TracerInvocationError(
                "Tracer cancelled", error_code="cancelled"
            )

        with tempfile.TemporaryDirectory(prefix="cmin_trace_") as tmp:
            trace_path = Path(tmp) / "trace"
            cmd = self.build_command(trace_path, input_file.path)
            start_time = time.time()
            exit_code = self._run(cmd, input_file.name, input_file.path)
            execution_time = time.time() - start_time

            try:
                text = trace_path.read_text(errors="replace")
            except FileNotFoundError:
                text = ""

        outcome = TraceOutcome(
            tuples=parse_trace(text),
            status=classify_exit(exit_code),
            exit_code=exit_code,
            execution_time=execution_time,
        )
        logger.debug(
            "traced input",
            file=input_file.name,
            tuples=len(outcome.tuples),
            status=outcome.status.value,
        )
        return outcome

    def _run(self, cmd: list[str], name: str, input_path: Path) -> int | None:
        """Run afl-showmap, returning its exit code or None on a hard timeout."""
        try:
            stdin = open(input_path, "rb") if self.uses_stdin else None
        except OSError as e:
            raise TracerInvocationError(
                f"Cannot read input '{name}': {e}",
                error_code="unreadable_input",
            ) from e

        try:
            try:
                process = subprocess.Popen(
                    cmd,
                    stdin=stdin if stdin is not None else subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    env=self._environment(),
                )
            except OSError as e:
                raise TracerInvocationError(
                    f"Failed to launch {self.showmap}: {e}",
                    error_code="launch_failed",
                    context={"command": cmd},
                ) from e

            with self._lock:
                self._running[process.pid] = process
                cancelled = self._cancelled.is_set()
            if cancelled:
                # cancel() ran between the check in trace() and registration
                terminate_process_tree(process.pid)
            try:
                return process.wait(timeout=self.timeout + self.kill_grace)
            except subprocess.TimeoutExpired:
                logger.debug("tracer timeout", file=name)
                terminate_process_tree(process.pid)
                process.wait()
                return None
            finally:
                with self._lock:
                    self._running.pop(process.pid, None)
        finally:
            if stdin is not None:
                stdin.close()

    def cancel(self) -> None:
        """Terminate every in-flight afl-showmap process tree."""
        self._cancelled.set()
        with self._lock:
            pids = list(self._running)
        for pid in pids:
            terminate_process_tree(pid)
        if pids:
            logger.info("cancelled in-flight traces", count=len(pids))

    def __call__(self, input_file: InputFile) -> frozenset[str]:
        """Return the tuple set for an input, logging non-clean runs."""
        outcome = self.trace(input_file)
        if not outcome:
            logger.warning(
                "target did not exit cleanly, keeping partial trace",
                file=input_file.name,
                status=outcome.status.value,
                exit_code=outcome.exit_code,
                tuples=len(outcome.tuples),
            )
        return outcome.tuples
