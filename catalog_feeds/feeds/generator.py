"""
Batched, resumable feed generation.

A ``FeedGenerator`` drives one feed type's build as a series of scheduler
invocations. Each invocation pulls one batch from the record source, maps it
to rows, appends them to the working file and advances the persisted job.
The build ends on the first batch that comes back empty: the working file is
published and the completion callback fires.

Job lifecycle:
    idle -> running -> complete
              |  ^
              v  |  (transient batch failure, retried at the same batch)
            failed

Invariants kept by ``run_batch``:
- at most one batch of a job runs at a time (``in_flight_since`` lease)
- a batch commits by advancing ``committed_offset``; bytes past it are cut
  off before the batch is retried, so no row is written twice
- a batch whose job was cancelled or restarted while it ran writes nothing
"""

import abc
import asyncio
import inspect
import logging
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Tuple

from catalog_feeds.feeds.errors import FeedGenerationError, RecordSourceError
from catalog_feeds.feeds.sources import RecordSource
from catalog_feeds.feeds.state import JobStateStore, MemoryJobStateStore
from catalog_feeds.feeds.writer import CsvFeedFileWriter
from catalog_feeds.models.data_models import (
    Batch,
    BatchResult,
    BatchSize,
    FeedDescriptor,
    GenerationJob,
    JobStatus,
    PublishedFile,
    RecordFailure,
    utc_now_iso,
)
from catalog_feeds.monitoring.logger import StructuredLogger

CompletionCallback = Callable[[PublishedFile], Awaitable[Any]]


class FeedGenerator(abc.ABC):
    """
    Base class for per-feed-type generators.

    Subclasses supply the record pull (``get_items_for_batch``), the batch
    size and the record-to-row mapping. Scheduling, persistence, file
    handling and failure accounting live here.
    """

    BATCH_ACTION = "generate_feed_batch_{name}"
    COMPLETE_ACTION = "feed_generation_completed_{name}"

    def __init__(
        self,
        descriptor: FeedDescriptor,
        writer: CsvFeedFileWriter,
        state_store: Optional[JobStateStore] = None,
        scheduler=None,
        logger: Optional[StructuredLogger] = None,
        batch_timeout: float = 30.0,
        max_batch_attempts: int = 3,
        on_complete: Optional[CompletionCallback] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Args:
            descriptor: Shape of the feed file
            writer: Working/published file handling
            state_store: Where the job is persisted between invocations
            scheduler: ``ActionScheduler`` the next batch is enqueued on;
                when None, batches are driven externally (e.g. cron ticks)
            logger: Structured logger
            batch_timeout: Seconds after which an in-flight batch is
                considered dead and its lease reclaimable
            max_batch_attempts: Consecutive failures of one batch before
                the job is marked failed
            on_complete: Awaited (or enqueued) with the published file once
                generation finishes
            clock: Epoch-seconds clock used for the in-flight lease
        """
        if max_batch_attempts < 1:
            raise ValueError("max_batch_attempts must be at least 1")

        self.descriptor = descriptor
        self.writer = writer
        self.state_store = state_store or MemoryJobStateStore()
        self.scheduler = scheduler
        self.logger = logger or StructuredLogger()
        self.batch_timeout = batch_timeout
        self.max_batch_attempts = max_batch_attempts
        self.on_complete = on_complete
        self.clock = clock

        self._job = self.state_store.load_job(descriptor.feed_type) or GenerationJob(descriptor.feed_type)

    @property
    def feed_name(self) -> str:
        return self.descriptor.data_stream_name

    @property
    def batch_action_name(self) -> str:
        return self.BATCH_ACTION.format(name=self.feed_name)

    @property
    def complete_action_name(self) -> str:
        return self.COMPLETE_ACTION.format(name=self.feed_name)

    @abc.abstractmethod
    async def get_items_for_batch(self, batch_number: int, args: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        """
        Source records of one batch. An empty sequence ends generation.
        """

    @abc.abstractmethod
    def get_batch_size(self) -> BatchSize:
        """Upper bound on records per batch."""

    @abc.abstractmethod
    def map_record(self, record: Mapping[str, Any]) -> Mapping[str, Any]:
        """
        Turn one source record into a row keyed by header field.

        Raises:
            Exception: Any error (typically RecordMappingError) skips the record
        """

    def record_identifier(self, record: Mapping[str, Any]) -> str:
        """Identifier used when logging a skipped record."""
        for key in ("id", "product_id", "sku"):
            if record.get(key) not in (None, ""):
                return str(record[key])
        return "<unknown>"

    # Job state

    def _refresh(self) -> GenerationJob:
        """Reload the job so changes made by other invocations are seen."""
        stored = self.state_store.load_job(self.descriptor.feed_type)
        if stored is not None:
            self._job = stored
        return self._job

    def _save(self) -> None:
        self._job.updated_at = utc_now_iso()
        self.state_store.save_job(self._job)

    def _is_current(self, job_id: str, batch_number: int) -> bool:
        job = self._refresh()
        return (
            job.job_id == job_id
            and job.current_batch_number == batch_number
            and job.status == JobStatus.RUNNING
        )

    def get_job(self) -> GenerationJob:
        """Snapshot of the current job."""
        return replace(self._refresh())

    def _schedule_next(self) -> None:
        if self.scheduler is not None:
            self.scheduler.enqueue(self.batch_action_name, self.run_batch)

    def queue_start(self, args: Optional[Mapping[str, Any]] = None) -> bool:
        """
        Start a new build at batch 1.

        Has no effect while a build is already running. A completed or failed
        job is replaced by a fresh one.

        Args:
            args: Forwarded to ``get_items_for_batch`` on every batch

        Returns:
            True if a build was started

        Raises:
            FeedWriteError: If the working file cannot be created
        """
        job = self._refresh()
        if job.status == JobStatus.RUNNING:
            self.logger.batch_noop(self.feed_name, job.current_batch_number, "generation_already_running")
            return False

        self._job = GenerationJob(
            feed_type=self.descriptor.feed_type,
            status=JobStatus.RUNNING,
            args=dict(args or {}),
            started_at=utc_now_iso()
        )
        try:
            working_file = self.writer.open(self.descriptor)
            self._job.committed_offset = self.writer.size(working_file)
        except FeedGenerationError as e:
            self._job.status = JobStatus.FAILED
            self._job.last_error = str(e)
            self._save()
            self.logger.generation_failed(self.feed_name, str(e))
            raise

        self._save()
        self.logger.log("generation_started", feed=self.feed_name, job_id=self._job.job_id)
        self._schedule_next()
        return True

    def cancel(self) -> bool:
        """
        Reset a running or failed job to idle and drop its working file.

        The published file is not touched.

        Returns:
            True if there was something to reset
        """
        job = self._refresh()
        if job.status not in (JobStatus.RUNNING, JobStatus.FAILED):
            return False

        self.writer.discard(self.descriptor)
        previous = job.status
        self._job = GenerationJob(feed_type=self.descriptor.feed_type)
        self._save()
        self.logger.log("generation_cancelled", feed=self.feed_name, previous_status=previous.value)
        return True

    # Batches

    def _noop(self, batch_number: int, reason: str) -> BatchResult:
        self.logger.batch_noop(self.feed_name, batch_number, reason)
        return BatchResult(feed_type=self.descriptor.feed_type, batch_number=batch_number, performed=False)

    def _fail_attempt(self, error: BaseException, retryable: bool, reschedule: bool = True) -> None:
        """
        Account for a failed batch on the current job.

        Retryable failures leave the job running at the same batch until
        ``max_batch_attempts`` is reached; anything else fails the job.
        """
        job = self._job
        job.in_flight_since = None
        job.batch_attempts += 1
        job.last_error = str(error) or error.__class__.__name__
        give_up = not retryable or job.batch_attempts >= self.max_batch_attempts

        self.logger.batch_failed(
            self.feed_name, job.current_batch_number, job.last_error,
            attempt=job.batch_attempts, retryable=not give_up
        )

        if give_up:
            job.status = JobStatus.FAILED
            self.writer.discard(self.descriptor)
            self._save()
            self.logger.generation_failed(self.feed_name, job.last_error)
            return

        self._save()
        if reschedule:
            self._schedule_next()

    async def run_batch(self) -> BatchResult:
        """
        Process the job's current batch.

        A no-op when no job is running or another invocation holds the
        batch. A lease older than ``batch_timeout`` counts as a timed-out
        attempt and is taken over.

        Returns:
            What the invocation did

        Raises:
            FeedGenerationError: When the batch failed; the job has already
                been updated (retry scheduled or marked failed)
        """
        job = self._refresh()
        if job.status != JobStatus.RUNNING:
            return self._noop(job.current_batch_number, f"job_{job.status.value}")

        if job.in_flight_since is not None:
            if self.clock() - job.in_flight_since < self.batch_timeout:
                return self._noop(job.current_batch_number, "batch_in_flight")
            self._fail_attempt(
                FeedGenerationError(f"Batch {job.current_batch_number} timed out"),
                retryable=True,
                reschedule=False
            )
            if self._job.status != JobStatus.RUNNING:
                return self._noop(self._job.current_batch_number, "job_failed")

        job_id = self._job.job_id
        batch_number = self._job.current_batch_number
        self._job.in_flight_since = self.clock()
        self._save()
        self.logger.batch_start(self.feed_name, batch_number)

        try:
            return await self._process_batch(job_id, batch_number)
        except asyncio.CancelledError:
            if self._is_current(job_id, batch_number):
                self._fail_attempt(FeedGenerationError(f"Batch {batch_number} timed out"), retryable=True)
            raise
        except Exception as e:
            if self._is_current(job_id, batch_number):
                self._fail_attempt(e, retryable=getattr(e, "retryable", False))
            else:
                self.logger.batch_noop(self.feed_name, batch_number, "stale_job")
            raise

    async def _pull(self, batch_number: int, args: Mapping[str, Any]) -> Batch:
        try:
            records = await self.get_items_for_batch(batch_number, args)
        except FeedGenerationError:
            raise
        except Exception as e:
            raise RecordSourceError(f"Could not load batch {batch_number}: {e}") from e
        return Batch(batch_number=batch_number, records=list(records or []))

    def _map_batch(self, batch: Batch) -> Tuple[List[Mapping[str, Any]], List[RecordFailure]]:
        rows = []
        skipped = []
        for record in batch.records:
            try:
                rows.append(self.map_record(record))
            except Exception as e:
                failure = RecordFailure(record_id=self.record_identifier(record), error=str(e))
                skipped.append(failure)
                self.logger.record_skipped(self.feed_name, batch.batch_number, failure.record_id, failure.error)
        return rows, skipped

    async def _process_batch(self, job_id: str, batch_number: int) -> BatchResult:
        batch = await self._pull(batch_number, self._job.args)

        # The job may have been cancelled or restarted while the pull ran
        if not self._is_current(job_id, batch_number):
            return self._noop(batch_number, "stale_job")

        if not batch.records:
            return await self._complete(batch_number)

        limit = self.get_batch_size().limit
        if limit is not None and len(batch.records) > limit:
            self.logger.log(
                "batch_oversized", logging.WARNING,
                feed=self.feed_name, batch=batch_number, records=len(batch.records), limit=limit
            )

        rows, skipped = self._map_batch(batch)

        job = self._job
        working_file = self.writer.resume(self.descriptor, job.committed_offset)
        size = self.writer.append_rows(working_file, rows)

        job.committed_offset = size
        job.cumulative_rows_written += len(rows)
        job.skipped_records += len(skipped)
        job.current_batch_number = batch_number + 1
        job.batch_attempts = 0
        job.last_error = None
        job.in_flight_since = None
        self._save()

        self.logger.batch_complete(self.feed_name, batch_number, rows=len(rows), skipped=len(skipped))
        self._schedule_next()

        return BatchResult(
            feed_type=self.descriptor.feed_type,
            batch_number=batch_number,
            rows_written=len(rows),
            skipped=skipped
        )

    async def _complete(self, batch_number: int) -> BatchResult:
        job = self._job
        working_file = self.writer.resume(self.descriptor, job.committed_offset)
        published = self.writer.finalize(working_file)

        job.status = JobStatus.COMPLETE
        job.completed_at = utc_now_iso()
        job.batch_attempts = 0
        job.last_error = None
        job.in_flight_since = None
        self._save()

        self.logger.feed_finalized(self.feed_name, job.cumulative_rows_written, str(published.path))
        await self._notify_complete(published)

        return BatchResult(feed_type=self.descriptor.feed_type, batch_number=batch_number, completed=True)

    async def _notify_complete(self, published: PublishedFile) -> None:
        """Hand the published file to the completion callback; its failures never fail the build."""
        if self.on_complete is None:
            return

        if self.scheduler is not None:
            self.scheduler.enqueue(self.complete_action_name, lambda: self.on_complete(published))
            return

        try:
            result = self.on_complete(published)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.logger.action_failed(self.complete_action_name, str(e))


class RecordSourceFeedGenerator(FeedGenerator):
    """
    Generator pulling slices from a ``RecordSource``.

    With an unbounded batch size the first batch returns every record and
    the second is always empty.
    """

    def __init__(
        self,
        descriptor: FeedDescriptor,
        writer: CsvFeedFileWriter,
        source: RecordSource,
        batch_size: BatchSize,
        mapper: Callable[[Mapping[str, Any]], Mapping[str, Any]],
        **kwargs
    ):
        super().__init__(descriptor, writer, **kwargs)
        self.source = source
        self.batch_size = batch_size
        self.mapper = mapper

    def get_batch_size(self) -> BatchSize:
        return self.batch_size

    def map_record(self, record: Mapping[str, Any]) -> Mapping[str, Any]:
        return self.mapper(record)

    async def get_items_for_batch(self, batch_number: int, args: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        if self.batch_size.is_unbounded and batch_number > 1:
            return []
        return await self.source.fetch(self.batch_size.offset_for(batch_number), self.batch_size.limit)

