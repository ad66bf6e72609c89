"""Corpus Minimization.

Finds a small subset of a corpus that still triggers every coverage tuple seen
across the whole corpus, using a greedy tuple cover:

1. Count how many files hit each tuple and walk the tuples rarest first
   (ties by tuple order). Rare tuples have little or no choice of file, so
   they are settled before common ones.
2. For each tuple not yet covered, select its best candidate, the smallest
   file containing it, and mark every tuple of that file as covered.

This trades optimality for near-linear cost on large corpora; it is the
afl-cmin heuristic, not an exact set cover.

References:
- afl-cmin: https://github.com/google/AFL/blob/master/afl-cmin
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from corpus_cmin.core.constants import LinkMode
from corpus_cmin.core.corpus.materializer import (
    materialize_selection,
    prepare_output_dir,
    validate_output_dir,
)
from corpus_cmin.core.corpus.trace_store import (
    InputFile,
    TraceFunction,
    TraceStore,
    TupleId,
    build_trace_store,
    scan_corpus,
)
from corpus_cmin.core.corpus.tuple_index import (
    build_best_candidates,
    build_tuple_frequencies,
)
from corpus_cmin.core.exceptions import InconsistentCandidateMapError
from corpus_cmin.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SelectionResult:
    """Selected files in selection order and the tuples they cover."""

    selected: tuple[InputFile, ...] = ()
    covered: frozenset[TupleId] = frozenset()
    universe: frozenset[TupleId] = frozenset()
    corpus_size: int = 0

    @property
    def minimized_size(self) -> int:
        return len(self.selected)

    @property
    def is_complete(self) -> bool:
        """True when the selection covers every tuple of the corpus."""
        return self.covered == self.universe

    @property
    def reduction_percent(self) -> float:
        if not self.corpus_size:
            return 0.0
        return 100 * (self.corpus_size - self.minimized_size) / self.corpus_size

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "unique_tuples": len(self.universe),
            "covered_tuples": len(self.covered),
            "corpus_size": self.corpus_size,
            "minimized_size": self.minimized_size,
            "reduction_percent": round(self.reduction_percent, 2),
            "complete": self.is_complete,
            "selected": [f.name for f in self.selected],
        }


class GreedyCoverSelector:
    """Greedy rarest-tuple-first cover over a TraceStore.

    The selector is single-threaded: its covered set is an ordered
    accumulator, and the output depends on processing order.
    """

    def __init__(self, store: TraceStore) -> None:
        self.store = store

    def select(self) -> SelectionResult:
        """Run the cover and return the selected files.

        Raises:
            InconsistentCandidateMapError: If a tuple has no candidate file

        """
        frequencies = build_tuple_frequencies(self.store)
        candidates = build_best_candidates(self.store)

        covered: set[TupleId] = set()
        selected: list[InputFile] = []
        chosen: set[str] = set()

        for count, tuple_id in frequencies:
            if tuple_id in covered:
                continue

            try:
                best = candidates[tuple_id]
            except KeyError:
                raise InconsistentCandidateMapError(
                    f"Tuple '{tuple_id}' has no candidate file",
                    error_code="inconsistent_candidate_map",
                    context={"tuple": tuple_id, "count": count},
                ) from None

            if best.name in chosen:
                # Candidate's trace lacks the tuple; store is inconsistent
                logger.warning(
                    "candidate already selected, skipping",
                    tuple=tuple_id,
                    file=best.name,
                )
                covered.add(tuple_id)
                continue

            selected.append(best)
            chosen.add(best.name)
            covered |= self.store.trace(best)
            logger.debug(
                "selected file",
                file=best.name,
                trigger=tuple_id,
                count=count,
                covered=len(covered),
            )

        result = SelectionResult(
            selected=tuple(selected),
            covered=frozenset(covered),
            universe=self.store.universe(),
            corpus_size=len(self.store),
        )
        logger.info(
            "selection complete",
            corpus_size=result.corpus_size,
            selected=result.minimized_size,
            unique_tuples=len(result.universe),
        )
        return result


def select_minimal_corpus(store: TraceStore) -> SelectionResult:
    """Run the greedy cover selector over a store."""
    return GreedyCoverSelector(store).select()


@dataclass
class MinimizationReport:
    """Outcome of a full minimization run."""

    corpus_dir: Path
    corpus_root: Path
    output_dir: Path
    result: SelectionResult = field(default_factory=SelectionResult)
    store: TraceStore | None = None
    written: list[Path] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def nothing_to_do(self) -> bool:
        """True when the corpus held no inputs."""
        return self.result.corpus_size == 0

    @property
    def failed_traces(self) -> tuple[str, ...]:
        return self.store.failed if self.store is not None else ()

    def summary_line(self) -> str:
        """One-line size-reduction summary."""
        if self.nothing_to_do:
            return "No inputs in the target directory - nothing to be done."
        return (
            f"Narrowed down to {self.result.minimized_size} files, "
            f"saved in '{self.output_dir}'."
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "corpus_dir": str(self.corpus_dir),
            "corpus_root": str(self.corpus_root),
            "output_dir": str(self.output_dir),
            "failed_traces": list(self.failed_traces),
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            **self.result.to_dict(),
        }


def minimize_corpus(
    corpus_dir: Path,
    output_dir: Path,
    trace_of: TraceFunction,
    *,
    max_workers: int = 1,
    link_mode: LinkMode = LinkMode.HARDLINK,
    on_traced: Callable[[InputFile], None] | None = None,
    on_cancel: Callable[[], None] | None = None,
) -> MinimizationReport:
    """Minimize a corpus directory into a fresh output directory.

    Args:
        corpus_dir: Corpus directory (a ``queue`` subdirectory is used if present)
        output_dir: Destination; recreated empty before tracing starts
        trace_of: Tracer returning the tuple set for one input
        max_workers: Concurrent tracer invocations
        link_mode: How selected files are placed into output_dir
        on_traced: Progress callback invoked once per traced input
        on_cancel: Called on interrupt to stop in-flight tracers

    Returns:
        MinimizationReport with the selection and written paths

    """
    start_time = time.time()
    corpus_root, files = scan_corpus(corpus_dir)
    validate_output_dir(output_dir, corpus_dir)

    if not files:
        logger.info("no inputs in corpus, nothing to be done", corpus_dir=str(corpus_dir))
        return MinimizationReport(
            corpus_dir=corpus_dir,
            corpus_root=corpus_root,
            output_dir=output_dir,
            elapsed_seconds=time.time() - start_time,
        )

    prepare_output_dir(output_dir, corpus_dir)

    with structlog.contextvars.bound_contextvars(phase="trace"):
        logger.info("obtaining traces", corpus_root=str(corpus_root), files=len(files))
        store = build_trace_store(
            files,
            trace_of,
            max_workers=max_workers,
            on_traced=on_traced,
            on_cancel=on_cancel,
        )

    with structlog.contextvars.bound_contextvars(phase="select"):
        logger.info("finding best candidates", unique_tuples=len(store.universe()))
        result = select_minimal_corpus(store)
        if not result.is_complete:
            logger.error(
                "selection does not cover every tuple",
                missing=len(result.universe - result.covered),
            )

    with structlog.contextvars.bound_contextvars(phase="output"):
        written = materialize_selection(
            result.selected, corpus_root, output_dir, link_mode
        )

    report = MinimizationReport(
        corpus_dir=corpus_dir,
        corpus_root=corpus_root,
        output_dir=output_dir,
        result=result,
        store=store,
        written=written,
        elapsed_seconds=time.time() - start_time,
    )
    logger.info(
        "corpus minimized",
        original_files=result.corpus_size,
        minimized_files=result.minimized_size,
        reduction_percent=round(result.reduction_percent, 1),
    )
    return report
