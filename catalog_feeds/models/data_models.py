"""Core data models for feed generation and delivery."""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()


class FeedType(Enum):
    """Feed types accepted by the commerce platform's feed upload endpoint."""
    PRODUCTS = "PRODUCTS"
    SHIPPING_PROFILES = "SHIPPING_PROFILES"
    PROMOTIONS = "PROMOTIONS"
    NAVIGATION_MENU = "NAVIGATION_MENU"
    RATINGS_AND_REVIEWS = "PRODUCT_RATINGS_AND_REVIEWS"

    @property
    def data_stream_name(self) -> str:
        """Short machine name used for file names, actions and URLs."""
        return {
            FeedType.PRODUCTS: "products",
            FeedType.SHIPPING_PROFILES: "shipping_profiles",
            FeedType.PROMOTIONS: "promotions",
            FeedType.NAVIGATION_MENU: "navigation_menu",
            FeedType.RATINGS_AND_REVIEWS: "ratings_and_reviews",
        }[self]

    @classmethod
    def parse(cls, value: Union[str, "FeedType"]) -> "FeedType":
        """
        Resolve a feed type from the enum itself, its name, its value or its
        data stream name (case-insensitive).

        Raises:
            ValueError: If nothing matches
        """
        if isinstance(value, cls):
            return value
        needle = str(value).strip().lower()
        for feed_type in cls:
            if needle in (feed_type.name.lower(), feed_type.value.lower(), feed_type.data_stream_name):
                return feed_type
        raise ValueError(f"Unknown feed type: {value!r}")


class JobStatus(Enum):
    """Lifecycle states of a feed generation job."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class BatchSize:
    """
    Upper bound on records requested per generator invocation.

    ``BatchSize.unbounded()`` means the source has no pagination and returns
    every record on the first batch. ``BatchSize.fixed(n)`` requires n >= 1.
    """
    limit: Optional[int] = None

    def __post_init__(self):
        if self.limit is not None and self.limit < 1:
            raise ValueError(f"Batch size must be at least 1, got: {self.limit}")

    @classmethod
    def unbounded(cls) -> "BatchSize":
        return cls(limit=None)

    @classmethod
    def fixed(cls, limit: int) -> "BatchSize":
        return cls(limit=limit)

    @property
    def is_unbounded(self) -> bool:
        return self.limit is None

    def offset_for(self, batch_number: int) -> int:
        """Zero-based record offset of a batch (always 0 when unbounded)."""
        if self.limit is None:
            return 0
        return (max(1, batch_number) - 1) * self.limit


@dataclass(frozen=True)
class FeedDescriptor:
    """Static shape of one feed type's file."""
    feed_type: FeedType
    data_stream_name: str
    header: Tuple[str, ...]
    delimiter: str = ","
    regeneration_interval_seconds: int = 86400

    def __post_init__(self):
        if not self.header:
            raise ValueError("Feed header must declare at least one field")
        if len(self.delimiter) != 1:
            raise ValueError(f"Delimiter must be a single character, got: {self.delimiter!r}")
        if self.regeneration_interval_seconds <= 0:
            raise ValueError("regeneration_interval_seconds must be positive")

    @property
    def header_line(self) -> str:
        """Field names joined by the delimiter (unescaped)."""
        return self.delimiter.join(self.header)


@dataclass
class GenerationJob:
    """Resumable state of one feed's in-progress build."""
    feed_type: FeedType
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    current_batch_number: int = 1
    cumulative_rows_written: int = 0
    status: JobStatus = JobStatus.IDLE
    last_error: Optional[str] = None
    skipped_records: int = 0
    committed_offset: int = 0  # working file length after last committed batch
    batch_attempts: int = 0
    in_flight_since: Optional[float] = None  # epoch seconds, set while a batch runs
    args: Dict[str, Any] = field(default_factory=dict)
    started_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == JobStatus.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["feed_type"] = self.feed_type.value
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GenerationJob":
        values = dict(data)
        values["feed_type"] = FeedType(values["feed_type"])
        values["status"] = JobStatus(values.get("status", JobStatus.IDLE.value))
        known = cls.__dataclass_fields__.keys()
        return cls(**{key: value for key, value in values.items() if key in known})


@dataclass
class Batch:
    """One bounded slice of source records."""
    batch_number: int
    records: Sequence[Mapping[str, Any]]


@dataclass
class RecordFailure:
    """A single record that could not be turned into a feed row."""
    record_id: str
    error: str


@dataclass
class BatchResult:
    """Outcome of a single generator invocation."""
    feed_type: FeedType
    batch_number: int
    rows_written: int = 0
    skipped: List[RecordFailure] = field(default_factory=list)
    completed: bool = False
    performed: bool = True  # False when the invocation was a no-op


@dataclass(frozen=True)
class WorkingFile:
    """Private temporary file a job appends rows to."""
    descriptor: FeedDescriptor
    path: Path
    published_path: Path


@dataclass(frozen=True)
class PublishedFile:
    """Finalized, externally visible feed file."""
    feed_type: FeedType
    path: Path
    size_bytes: int


@dataclass
class FeedStatus:
    """Where a feed's generation currently stands."""
    feed_type: FeedType
    data_stream_name: str
    status: JobStatus
    current_batch_number: int
    cumulative_rows_written: int
    skipped_records: int
    last_error: Optional[str]
    started_at: Optional[str]
    completed_at: Optional[str]
    published_path: Optional[str]
    published_size_bytes: Optional[int]
    published_at: Optional[str]
