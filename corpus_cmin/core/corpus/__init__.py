"""Trace aggregation and greedy tuple-cover corpus minimization."""

from .corpus_minimization import (
    GreedyCoverSelector,
    MinimizationReport,
    SelectionResult,
    minimize_corpus,
    select_minimal_corpus,
)
from .materializer import (
    default_output_dir,
    materialize_selection,
    prepare_output_dir,
    validate_output_dir,
)
from .trace_store import (
    InputFile,
    TraceStore,
    build_trace_store,
    load_traces,
    save_traces,
    scan_corpus,
)
from .tuple_index import TupleFrequency, build_best_candidates, build_tuple_frequencies

__all__ = [
    # Trace store
    "InputFile",
    "TraceStore",
    "build_trace_store",
    "load_traces",
    "save_traces",
    "scan_corpus",
    # Indices
    "TupleFrequency",
    "build_best_candidates",
    "build_tuple_frequencies",
    # Selection
    "GreedyCoverSelector",
    "MinimizationReport",
    "SelectionResult",
    "minimize_corpus",
    "select_minimal_corpus",
    # Output
    "default_output_dir",
    "materialize_selection",
    "prepare_output_dir",
    "validate_output_dir",
]
