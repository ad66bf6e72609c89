"""
Pytest configuration and shared fixtures for corpus-cmin tests.
"""

import stat
from collections.abc import Callable
from pathlib import Path

import pytest
import structlog

from corpus_cmin.core import config
from corpus_cmin.core.corpus.trace_store import InputFile, TraceStore, build_trace_store

#: Stand-in for afl-showmap. Every non-blank line of the input is reported as
#: a tuple; a CRASH line makes it exit 2, a HANG line makes it sleep.
FAKE_SHOWMAP = r"""#!/bin/sh
out=""
edges=0
while [ $# -gt 0 ]; do
  case "$1" in
    -o) out="$2"; shift 2 ;;
    -m|-t) shift 2 ;;
    -e) edges=1; shift ;;
    -q) shift ;;
    --) shift; break ;;
    *) shift ;;
  esac
done
shift
input=""
for arg in "$@"; do
  if [ -f "$arg" ]; then input="$arg"; fi
done
if [ -n "$input" ]; then data=$(cat "$input"); else data=$(cat); fi
tuples=$(printf '%s\n' "$data" | grep -v -e '^$' -e '^CRASH$' -e '^HANG$')
if [ "$edges" = "1" ]; then
  tuples=$(printf '%s\n' "$tuples" | sed 's/:.*//')
fi
printf '%s\n' "$tuples" > "$out"
case "$data" in *CRASH*) exit 2 ;; esac
case "$data" in *HANG*) sleep 30 ;; esac
exit 0
"""


def _make_executable(path: Path, content: str) -> Path:
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def afl_dir(tmp_path: Path) -> Path:
    """Directory holding a fake afl-showmap, usable as AFL_PATH."""
    bin_dir = tmp_path / "afl"
    bin_dir.mkdir()
    _make_executable(bin_dir / "afl-showmap", FAKE_SHOWMAP)
    return bin_dir


@pytest.fixture
def fake_showmap(afl_dir: Path) -> Path:
    """Path to the fake afl-showmap."""
    return afl_dir / "afl-showmap"


@pytest.fixture
def target_binary(tmp_path: Path) -> Path:
    """An executable placeholder for the instrumented target."""
    return _make_executable(tmp_path / "target", "#!/bin/sh\nexit 0\n")


@pytest.fixture
def make_corpus(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a corpus directory from a name -> content mapping."""

    def _make(files: dict[str, bytes | str], name: str = "corpus") -> Path:
        corpus_dir = tmp_path / name
        corpus_dir.mkdir(parents=True, exist_ok=True)
        for file_name, content in files.items():
            data = content.encode() if isinstance(content, str) else content
            (corpus_dir / file_name).write_bytes(data)
        return corpus_dir

    return _make


@pytest.fixture
def make_store() -> Callable[[dict[str, tuple[int, set[str]]]], TraceStore]:
    """Factory building a TraceStore from name -> (size, tuples)."""

    def _make(corpus: dict[str, tuple[int, set[str]]]) -> TraceStore:
        files = [InputFile(name, size) for name, (size, _) in corpus.items()]
        return build_trace_store(files, lambda f: corpus[f.name][1])

    return _make


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    """Drop the settings singleton so each test reads its own environment."""
    monkeypatch.setattr(config, "_settings", None)
    for var in ("AFL_PATH", "AFL_EDGES_ONLY"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def reset_structlog():
    """Reset structlog configuration after each test.

    This ensures tests don't interfere with each other's logging configuration.
    """
    yield
    structlog.reset_defaults()
