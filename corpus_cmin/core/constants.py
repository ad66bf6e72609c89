"""Shared constants for corpus minimization.

Defaults mirror the classic afl-cmin behaviour: a 100 MB memory cap on the
traced target, a ``queue`` subdirectory treated as the corpus root when
present, and ``.minimized`` / ``.edges.minimized`` output suffixes.

References:
- AFL technical details: https://lcamtuf.coredump.cx/afl/technical_details.txt
- AFL++ documentation: https://aflplus.plus/docs/fuzzing_in_depth/

"""

from __future__ import annotations

from enum import Enum
from typing import Final

# =============================================================================
# Tracer Defaults
# =============================================================================

#: Name of the coverage tracing tool shipped with AFL / AFL++
SHOWMAP_BINARY: Final[str] = "afl-showmap"

#: Fallback location when AFL_PATH is unset and afl-showmap is not on PATH
SHOWMAP_FALLBACK_PATH: Final[str] = "/usr/local/bin/afl-showmap"

#: Memory limit applied to the traced target, in megabytes
DEFAULT_MEMORY_LIMIT_MB: Final[int] = 100

#: Per-input execution timeout, in seconds
DEFAULT_TIMEOUT_SECONDS: Final[float] = 5.0

#: Extra wall-clock time granted to afl-showmap before its process tree is killed
DEFAULT_KILL_GRACE_SECONDS: Final[float] = 2.0

#: Placeholder in target arguments replaced by the input file path
INPUT_PLACEHOLDER: Final[str] = "@@"

#: afl-showmap exit codes
SHOWMAP_EXIT_OK: Final[int] = 0
SHOWMAP_EXIT_TIMEOUT: Final[int] = 1
SHOWMAP_EXIT_CRASH: Final[int] = 2

# =============================================================================
# Corpus Layout
# =============================================================================

#: afl-fuzz output directories keep their corpus under this subdirectory
QUEUE_DIR_NAME: Final[str] = "queue"

#: Suffix of the default output directory
MINIMIZED_SUFFIX: Final[str] = ".minimized"

#: Suffix of the default output directory in edges-only mode
EDGES_MINIMIZED_SUFFIX: Final[str] = ".edges.minimized"

#: Trace cache file format version
TRACE_CACHE_VERSION: Final[int] = 1


class LinkMode(str, Enum):
    """How selected files are placed into the output directory."""

    HARDLINK = "hardlink"
    COPY = "copy"
    SYMLINK = "symlink"
