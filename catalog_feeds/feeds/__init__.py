"""Batched feed generation, publishing and delivery."""

from .errors import (
    FeedError,
    FeedFinalizeError,
    FeedGenerationError,
    FeedWriteError,
    RecordMappingError,
    RecordSourceError,
    UnknownFeedTypeError,
)
from .feed import AbstractFeed
from .generator import FeedGenerator, RecordSourceFeedGenerator
from .manager import FeedManager
from .scheduler import ActionScheduler
from .state import JobStateStore, MemoryJobStateStore
from .writer import CsvFeedFileWriter

__all__ = [
    "AbstractFeed",
    "ActionScheduler",
    "CsvFeedFileWriter",
    "FeedError",
    "FeedFinalizeError",
    "FeedGenerationError",
    "FeedGenerator",
    "FeedManager",
    "FeedWriteError",
    "JobStateStore",
    "MemoryJobStateStore",
    "RecordMappingError",
    "RecordSourceError",
    "RecordSourceFeedGenerator",
    "UnknownFeedTypeError",
]
