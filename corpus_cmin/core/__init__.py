"""Core corpus minimization functionality.

This module contains the trace store, the tuple indices, the greedy cover
selector and the afl-showmap tracer adapter.
"""

from .corpus import (
    GreedyCoverSelector,
    InputFile,
    SelectionResult,
    TraceStore,
    build_trace_store,
    minimize_corpus,
)
from .exceptions import CminError, TracerInvocationError
from .tracer import ShowmapTracer, TraceOutcome, TraceStatus, locate_showmap

__all__ = [
    "CminError",
    "GreedyCoverSelector",
    "InputFile",
    "SelectionResult",
    "ShowmapTracer",
    "TraceOutcome",
    "TraceStatus",
    "TraceStore",
    "TracerInvocationError",
    "build_trace_store",
    "locate_showmap",
    "minimize_corpus",
]
