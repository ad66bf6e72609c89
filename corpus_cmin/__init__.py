"""
corpus-cmin - coverage-guided corpus minimization for AFL-style fuzzers.

Traces every input of a corpus with afl-showmap and keeps the smallest
subset that still triggers every coverage tuple seen across the corpus.
"""

__version__ = "1.0.0"
__license__ = "MIT"

from corpus_cmin.core.corpus import (
    GreedyCoverSelector,
    InputFile,
    MinimizationReport,
    SelectionResult,
    TraceStore,
    build_trace_store,
    minimize_corpus,
    select_minimal_corpus,
)
from corpus_cmin.core.tracer import ShowmapTracer, locate_showmap

__all__ = [
    "__version__",
    "__license__",
    "GreedyCoverSelector",
    "InputFile",
    "MinimizationReport",
    "SelectionResult",
    "ShowmapTracer",
    "TraceStore",
    "build_trace_store",
    "locate_showmap",
    "minimize_corpus",
    "select_minimal_corpus",
]
