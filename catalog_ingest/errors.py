"""Exception types raised by the ingestion pipeline."""

from __future__ import annotations


class IngestError(RuntimeError):
    """Base class for failures surfaced to ingestion callers."""


class CaptureFormatError(IngestError):
    """Raised when the top-level capture document cannot be parsed."""


class EntryParseError(IngestError):
    """Raised when a single capture entry carries an unparseable JSON body.

    Extraction catches this per entry; it never reaches the caller.
    """

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url


class PersistenceError(IngestError):
    """Raised when the transactional write fails and has been rolled back."""


class IngestCancelled(IngestError):
    """Raised when the caller's cancel token fires or its deadline passes."""


class CategoryNotFound(KeyError):
    """Raised by category lookups for ids that are not known."""
