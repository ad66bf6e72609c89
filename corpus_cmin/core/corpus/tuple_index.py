"""Tuple indices derived from a TraceStore.

- Best-candidate map: for each tuple, the smallest file whose trace holds it.
- Frequency index: every tuple with the number of files holding it, rarest
  first, ties broken by tuple order.
"""

from __future__ import annotations

from collections import Counter
from typing import NamedTuple

from corpus_cmin.core.corpus.trace_store import InputFile, TraceStore, TupleId
from corpus_cmin.utils.logger import get_logger

logger = get_logger(__name__)


class TupleFrequency(NamedTuple):
    """Number of files whose trace contains a tuple."""

    count: int
    tuple_id: TupleId


def build_best_candidates(store: TraceStore) -> dict[TupleId, InputFile]:
    """Map each tuple to the file chosen to represent it.

    Files are scanned smallest first (ties by name); the first file seen with
    a tuple keeps it.

    Args:
        store: Trace store to index

    Returns:
        Mapping from tuple to its best candidate file

    """
    candidates: dict[TupleId, InputFile] = {}
    for input_file in store.files_by_size():
        for tuple_id in store.trace(input_file):
            candidates.setdefault(tuple_id, input_file)

    logger.debug(
        "best candidates built",
        tuples=len(candidates),
        distinct_candidates=len(set(candidates.values())),
    )
    return candidates


def build_tuple_frequencies(store: TraceStore) -> list[TupleFrequency]:
    """Count tuple popularity across the corpus.

    Args:
        store: Trace store to index

    Returns:
        (count, tuple) pairs sorted by ascending count, then ascending tuple

    """
    counts: Counter[TupleId] = Counter()
    for input_file in store.files():
        counts.update(store.trace(input_file))

    return sorted(TupleFrequency(count, tuple_id) for tuple_id, count in counts.items())
