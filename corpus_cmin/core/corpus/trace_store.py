"""Trace Store

Holds the coverage trace and size of every input file in a corpus. Built once
per run, read many times by the candidate map, the frequency index and the
cover selector.

Tracing is embarrassingly parallel: each input is traced independently by a
worker pool, and results are merged by file name once every worker is done,
so the store never depends on scheduling order.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Hashable, Iterable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from corpus_cmin.core.constants import QUEUE_DIR_NAME, TRACE_CACHE_VERSION
from corpus_cmin.core.exceptions import InvalidInputDirectoryError
from corpus_cmin.utils.logger import get_logger

logger = get_logger(__name__)

TupleId = str
Trace = frozenset[TupleId]
TraceFunction = Callable[["InputFile"], Iterable[Hashable]]

_EMPTY_TRACE: Trace = frozenset()


@dataclass(frozen=True, order=True)
class InputFile:
    """One corpus entry, identified by name and byte size.

    The path is informational only and takes no part in equality or ordering.
    """

    name: str
    size: int
    path: Path | None = field(default=None, compare=False)

    @classmethod
    def from_path(cls, path: Path) -> InputFile:
        """Create an InputFile from a file on disk."""
        return cls(name=path.name, size=path.stat().st_size, path=path)


def canonical_trace(tuples: Iterable[Hashable]) -> Trace:
    """Normalize tracer output to a frozenset of canonical tuple strings."""
    return frozenset(str(t) for t in tuples)


class TraceStore:
    """Read-only mapping from input file to its trace.

    Natural order is name order; size order is ascending size with ties
    broken by natural order.
    """

    def __init__(
        self,
        files: Iterable[InputFile],
        traces: dict[str, Trace],
        failed: Iterable[str] = (),
    ) -> None:
        self._files = tuple(sorted(files, key=lambda f: f.name))
        self._by_name = {f.name: f for f in self._files}
        if len(self._by_name) != len(self._files):
            raise ValueError("Input file names must be unique within a corpus")
        self._traces = {f.name: traces.get(f.name, _EMPTY_TRACE) for f in self._files}
        self._by_size = tuple(sorted(self._files, key=lambda f: (f.size, f.name)))
        self.failed = tuple(sorted(failed))

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self) -> Iterator[InputFile]:
        return iter(self._files)

    def __contains__(self, item: object) -> bool:
        return isinstance(item, InputFile) and self._by_name.get(item.name) == item

    def files(self) -> tuple[InputFile, ...]:
        """All files in natural (name) order."""
        return self._files

    def files_by_size(self) -> tuple[InputFile, ...]:
        """All files by ascending size, ties broken by name."""
        return self._by_size

    def get(self, name: str) -> InputFile:
        """Look up a file by name."""
        return self._by_name[name]

    def trace(self, input_file: InputFile) -> Trace:
        """Trace recorded for a file."""
        return self._traces[input_file.name]

    def size(self, input_file: InputFile) -> int:
        """Byte size recorded for a file."""
        return self._by_name[input_file.name].size

    def universe(self) -> frozenset[TupleId]:
        """Union of every trace in the store."""
        return frozenset().union(*self._traces.values())

    def subset(self, files: Iterable[InputFile]) -> TraceStore:
        """Store restricted to the given files, keeping their traces."""
        chosen = [self._by_name[f.name] for f in files]
        names = {f.name for f in chosen}
        return TraceStore(
            chosen,
            {name: self._traces[name] for name in names},
            failed=[name for name in self.failed if name in names],
        )

    def to_dict(self) -> dict[str, list[TupleId]]:
        """Serializable view: file name to sorted tuple list."""
        return {f.name: sorted(self._traces[f.name]) for f in self._files}


def scan_corpus(corpus_dir: Path) -> tuple[Path, list[InputFile]]:
    """List the input files of a corpus directory.

    Args:
        corpus_dir: Corpus directory, or an afl-fuzz output directory whose
            ``queue`` subdirectory holds the corpus

    Returns:
        Tuple of (effective corpus root, input files in name order)

    Raises:
        InvalidInputDirectoryError: If corpus_dir is not a directory

    """
    if not corpus_dir.is_dir():
        raise InvalidInputDirectoryError(
            f"Directory '{corpus_dir}' not found",
            error_code="invalid_input_dir",
            context={"corpus_dir": str(corpus_dir)},
        )

    root = corpus_dir
    queue_dir = corpus_dir / QUEUE_DIR_NAME
    if queue_dir.is_dir():
        root = queue_dir
        logger.debug("using queue subdirectory", corpus_root=str(root))

    files = [
        InputFile.from_path(entry)
        for entry in sorted(root.iterdir(), key=lambda p: p.name)
        if entry.is_file() and not entry.name.startswith(".")
    ]
    return root, files


def _trace_one(trace_of: TraceFunction, input_file: InputFile) -> Trace:
    return canonical_trace(trace_of(input_file))


def build_trace_store(
    files: Sequence[InputFile],
    trace_of: TraceFunction,
    max_workers: int = 1,
    on_traced: Callable[[InputFile], None] | None = None,
    on_cancel: Callable[[], None] | None = None,
) -> TraceStore:
    """Trace every file exactly once and collect the results.

    Args:
        files: Corpus entries (names must be unique)
        trace_of: Tracer returning the tuple set for one file
        max_workers: Concurrent tracer invocations
        on_traced: Progress callback, invoked once per finished file
        on_cancel: Called on interrupt to stop in-flight tracer processes

    Returns:
        TraceStore holding one trace per file; files whose tracing raised are
        kept with an empty trace and listed in ``store.failed``

    """
    names = [f.name for f in files]
    if len(set(names)) != len(names):
        raise ValueError("Input file names must be unique within a corpus")

    traces: dict[str, Trace] = {}
    failed: list[str] = []

    def record(input_file: InputFile, error: BaseException | None, trace: Trace) -> None:
        if error is not None:
            logger.warning(
                "tracer invocation failed, using empty trace",
                file=input_file.name,
                error=str(error),
            )
            failed.append(input_file.name)
        traces[input_file.name] = trace
        if on_traced is not None:
            on_traced(input_file)

    def cancel() -> None:
        logger.warning("tracing interrupted, discarding partial results")
        if on_cancel is not None:
            on_cancel()

    if max_workers <= 1:
        try:
            for input_file in files:
                try:
                    trace = _trace_one(trace_of, input_file)
                except Exception as e:
                    record(input_file, e, _EMPTY_TRACE)
                else:
                    record(input_file, None, trace)
        except KeyboardInterrupt:
            cancel()
            raise
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(_trace_one, trace_of, input_file): input_file
                for input_file in files
            }
            try:
                for future in as_completed(futures):
                    input_file = futures[future]
                    try:
                        trace = future.result()
                    except Exception as e:
                        record(input_file, e, _EMPTY_TRACE)
                    else:
                        record(input_file, None, trace)
            except KeyboardInterrupt:
                # Stop queued work and kill running tracers before the pool joins
                executor.shutdown(wait=False, cancel_futures=True)
                cancel()
                raise

    store = TraceStore(files, traces, failed=failed)
    logger.info(
        "trace store built",
        files=len(store),
        unique_tuples=len(store.universe()),
        failed=len(store.failed),
    )
    return store


def save_traces(store: TraceStore, path: Path) -> None:
    """Write the store's traces to a JSON cache file."""
    payload: dict[str, Any] = {
        "version": TRACE_CACHE_VERSION,
        "files": store.to_dict(),
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n")
    logger.info("saved traces", path=str(path), files=len(store))


def load_traces(path: Path) -> TraceFunction:
    """Build a trace function that reads from a JSON cache file.

    Files missing from the cache raise KeyError, which the trace store treats
    as a tracer failure.
    """
    with open(path) as f:
        payload = json.load(f)

    if payload.get("version") != TRACE_CACHE_VERSION:
        raise ValueError(
            f"Unsupported trace cache version {payload.get('version')!r} in {path}"
        )

    cached: dict[str, list[str]] = payload["files"]
    logger.info("loaded traces", path=str(path), files=len(cached))

    def trace_of(input_file: InputFile) -> list[str]:
        try:
            return cached[input_file.name]
        except KeyError:
            raise KeyError(f"No cached trace for '{input_file.name}'") from None

    return trace_of
