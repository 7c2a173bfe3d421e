"""Error taxonomy for a review run.

Fatal errors (MalformedDiffError, CollaboratorTimeoutError, DiffSourceError)
abort the run before anything is persisted. InvalidFindingError is recoverable:
the pipeline drops the offending finding, logs it and keeps going.
"""

from __future__ import annotations


class PrLedgerError(Exception):
    """Base class for every error raised by prledger."""


class MalformedDiffError(PrLedgerError, ValueError):
    """The diff text could not be parsed into hunks."""

    def __init__(self, message: str, line_number: int | None = None):
        if line_number is not None:
            message = f"{message} (diff line {line_number})"
        super().__init__(message)
        self.line_number = line_number


class InvalidFindingError(PrLedgerError, ValueError):
    """A collaborator finding is missing a required field or has a bad value."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class CollaboratorTimeoutError(PrLedgerError):
    """The reviewer collaborator timed out or failed on every attempt."""


class DiffSourceError(PrLedgerError):
    """The diff or a file's content could not be fetched from its source."""
