"""Custom exceptions for corpus minimization.

This module defines the exception hierarchy for the corpus minimizer,
providing detailed error information and categorization.
"""

from typing import Any


class CminError(Exception):
    """Base exception for corpus minimization operations.

    Attributes:
        message: Human-readable error description
        error_code: Optional error code for categorization
        context: Additional context information

    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}


class TracerInvocationError(CminError):
    """Raised when the tracer could not produce a trace for one input.

    Recovered by the trace store: the input is kept with an empty trace.
    """

    pass


class MissingTracerError(CminError):
    """Raised when afl-showmap cannot be located or is not executable."""

    pass


class InvalidTargetError(CminError):
    """Raised when the target binary is missing or not executable."""

    pass


class InvalidInputDirectoryError(CminError):
    """Raised when the corpus directory does not exist or is not a directory."""

    pass


class InvalidOutputPathError(CminError):
    """Raised when the output location cannot safely hold the minimized corpus."""

    pass


class InconsistentCandidateMapError(CminError):
    """Raised when a tuple in the frequency index has no best candidate.

    Indicates an internal invariant violation, never a user error.
    """

    pass
