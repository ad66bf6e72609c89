"""Output materialization for minimized corpora.

The output directory is created fresh for every run; pre-existing contents
are removed, never merged.
"""

from __future__ import annotations

import os
import shutil
from collections.abc import Sequence
from pathlib import Path

from corpus_cmin.core.constants import (
    EDGES_MINIMIZED_SUFFIX,
    MINIMIZED_SUFFIX,
    LinkMode,
)
from corpus_cmin.core.corpus.trace_store import InputFile
from corpus_cmin.core.exceptions import InvalidOutputPathError
from corpus_cmin.utils.logger import get_logger

logger = get_logger(__name__)


def default_output_dir(corpus_dir: Path, edges_only: bool = False) -> Path:
    """Output directory next to the corpus: ``<dir>.minimized``.

    Raises:
        InvalidOutputPathError: If the corpus is the filesystem root

    """
    suffix = EDGES_MINIMIZED_SUFFIX if edges_only else MINIMIZED_SUFFIX
    corpus_dir = Path(os.path.normpath(corpus_dir))
    if corpus_dir.name in ("", ".."):
        # "." and ".." carry no usable name
        corpus_dir = corpus_dir.resolve()
    if not corpus_dir.name:
        raise InvalidOutputPathError(
            f"Cannot derive an output directory for '{corpus_dir}', use -o",
            error_code="no_default_output",
            context={"corpus_dir": str(corpus_dir)},
        )
    return corpus_dir.with_name(corpus_dir.name + suffix)


def _is_relative_to(path: Path, other: Path) -> bool:
    return path == other or other in path.parents


def validate_output_dir(output_dir: Path, corpus_root: Path) -> None:
    """Reject output locations that would clobber a file or the corpus.

    Raises:
        InvalidOutputPathError: If output_dir is a regular file, or overlaps
            the corpus directory

    """
    output = output_dir.resolve()
    corpus = corpus_root.resolve()

    if output_dir.exists() and not output_dir.is_dir():
        raise InvalidOutputPathError(
            f"Output path '{output_dir}' exists and is not a directory",
            error_code="output_not_dir",
            context={"output_dir": str(output_dir)},
        )
    if _is_relative_to(output, corpus) or _is_relative_to(corpus, output):
        raise InvalidOutputPathError(
            f"Output directory '{output_dir}' overlaps corpus '{corpus_root}'",
            error_code="output_overlaps_corpus",
            context={"output_dir": str(output_dir), "corpus_dir": str(corpus_root)},
        )


def prepare_output_dir(output_dir: Path, corpus_root: Path) -> Path:
    """Validate and (re)create an empty output directory.

    Args:
        output_dir: Destination for the minimized corpus
        corpus_root: Corpus directory the selection is drawn from

    Returns:
        The created output directory

    """
    validate_output_dir(output_dir, corpus_root)

    if output_dir.exists():
        logger.debug("removing previous output", output_dir=str(output_dir))
        shutil.rmtree(output_dir)

    try:
        output_dir.mkdir(parents=True)
    except OSError as e:
        raise InvalidOutputPathError(
            f"Cannot create output directory '{output_dir}': {e}",
            error_code="output_create_failed",
            context={"output_dir": str(output_dir)},
        ) from e
    return output_dir


def _place(source: Path, dest: Path, link_mode: LinkMode) -> None:
    if link_mode is LinkMode.SYMLINK:
        dest.symlink_to(source.resolve())
    elif link_mode is LinkMode.HARDLINK:
        try:
            os.link(source, dest)
        except OSError as e:
            # Cross-device or unsupported filesystem
            logger.debug("hard link failed, copying", file=source.name, error=str(e))
            shutil.copy2(source, dest)
    else:
        shutil.copy2(source, dest)


def materialize_selection(
    selected: Sequence[InputFile],
    source_root: Path,
    output_dir: Path,
    link_mode: LinkMode = LinkMode.HARDLINK,
) -> list[Path]:
    """Place the selected files into the output directory by name.

    Args:
        selected: Selected inputs, in selection order
        source_root: Directory the inputs live in
        output_dir: Prepared output directory
        link_mode: Hard link, copy or symlink

    Returns:
        Paths written, in selection order

    """
    link_mode = LinkMode(link_mode)
    written: list[Path] = []
    for input_file in selected:
        source = input_file.path or source_root / input_file.name
        dest = output_dir / input_file.name
        _place(source, dest, link_mode)
        written.append(dest)

    logger.info(
        "minimized corpus written",
        output_dir=str(output_dir),
        files=len(written),
        link_mode=link_mode.value,
    )
    return written
