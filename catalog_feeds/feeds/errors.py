"""Feed generation errors.

Record-level problems (``RecordMappingError``) only ever skip the record.
Everything deriving from ``FeedGenerationError`` aborts the current batch.
"""


class FeedError(Exception):
    """Base class for feed errors."""


class UnknownFeedTypeError(FeedError, LookupError):
    """The registry has no feed of the requested type."""


class RecordMappingError(FeedError):
    """One source record could not be turned into a feed row."""


class FeedGenerationError(FeedError):
    """A batch could not be completed."""

    retryable = False


class FeedWriteError(FeedGenerationError):
    """Appending to the working file failed (disk full, permissions)."""

    retryable = True


class RecordSourceError(FeedGenerationError):
    """The record source could not deliver a batch."""

    retryable = True


class FeedFinalizeError(FeedGenerationError):
    """Publishing the working file failed; the run cannot be resumed."""
