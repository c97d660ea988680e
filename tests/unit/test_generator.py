"""Unit tests for batched, resumable feed generation."""

import asyncio
from unittest.mock import patch

import pytest

from catalog_feeds.feeds.errors import (
    FeedFinalizeError,
    FeedGenerationError,
    FeedWriteError,
    RecordMappingError,
    RecordSourceError,
)
from catalog_feeds.feeds.generator import FeedGenerator, RecordSourceFeedGenerator
from catalog_feeds.feeds.scheduler import ActionScheduler
from catalog_feeds.feeds.sources import MemoryRecordSource
from catalog_feeds.feeds.writer import CsvFeedFileWriter
from catalog_feeds.models.data_models import BatchSize, FeedDescriptor, FeedType, JobStatus

DESCRIPTOR = FeedDescriptor(FeedType.PRODUCTS, "products", ("id", "title"))


class FakeClock:
    def __init__(self, t: float = 1000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


async def _ret(value):
    return value


class RecordingScheduler:
    """Collects enqueued actions without running them."""

    def __init__(self):
        self.enqueued = []

    def enqueue(self, name, callback, delay=0.0):
        self.enqueued.append((name, callback))
        return True


class ListGenerator(FeedGenerator):
    """Generator over an in-memory list that records every pull."""

    def __init__(self, records, batch_size=BatchSize.fixed(2), **kwargs):
        super().__init__(DESCRIPTOR, **kwargs)
        self.records = list(records)
        self.batch_size = batch_size
        self.pulls = []
        self.pull_args = []
        self.pull_hook = None

    def get_batch_size(self):
        return self.batch_size

    async def get_items_for_batch(self, batch_number, args):
        self.pulls.append(batch_number)
        self.pull_args.append(dict(args))
        if self.pull_hook is not None:
            await self.pull_hook(batch_number)
        if self.batch_size.is_unbounded:
            return self.records if batch_number == 1 else []
        offset = self.batch_size.offset_for(batch_number)
        return self.records[offset:offset + self.batch_size.limit]

    def map_record(self, record):
        if record.get("bad"):
            raise RecordMappingError("Record is marked bad")
        return {"id": record["id"], "title": record.get("title", "")}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_generator(writer, state_store, logger, clock):
    def factory(records=(), **kwargs):
        kwargs.setdefault("state_store", state_store)
        kwargs.setdefault("logger", logger)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("batch_timeout", 30.0)
        return ListGenerator(records, writer=kwargs.pop("writer", writer), **kwargs)
    return factory


def published_lines(writer):
    return writer.published_path(DESCRIPTOR).read_text(encoding="utf-8").splitlines()


class TestBatchFlow:

    @pytest.mark.asyncio
    async def test_two_records_fit_one_batch(self, make_generator, writer):
        generator = make_generator([{"id": 1, "title": "A"}, {"id": 2, "title": "B"}])
        assert generator.queue_start()

        first = await generator.run_batch()
        assert first.batch_number == 1
        assert first.rows_written == 2
        assert not first.completed

        second = await generator.run_batch()
        assert second.batch_number == 2
        assert second.completed

        third = await generator.run_batch()
        assert not third.performed

        assert generator.pulls == [1, 2]
        assert published_lines(writer) == ["id,title", "1,A", "2,B"]
        job = generator.get_job()
        assert job.status == JobStatus.COMPLETE
        assert job.cumulative_rows_written == 2
        assert job.completed_at is not None
        assert not writer.working_path(DESCRIPTOR).exists()

    @pytest.mark.asyncio
    async def test_short_last_batch(self, make_generator, writer):
        generator = make_generator([{"id": i} for i in range(5)])
        generator.queue_start()

        results = [await generator.run_batch() for _ in range(4)]

        assert [r.rows_written for r in results] == [2, 2, 1, 0]
        assert results[-1].completed
        assert len(published_lines(writer)) == 6

    @pytest.mark.asyncio
    async def test_empty_source_publishes_header_only(self, make_generator, writer):
        generator = make_generator([])
        generator.queue_start()

        result = await generator.run_batch()

        assert result.completed
        assert published_lines(writer) == ["id,title"]

    @pytest.mark.asyncio
    async def test_no_job_is_noop(self, make_generator):
        generator = make_generator([{"id": 1}])

        result = await generator.run_batch()

        assert not result.performed
        assert generator.pulls == []

    @pytest.mark.asyncio
    async def test_args_forwarded_to_every_batch(self, make_generator):
        generator = make_generator([{"id": 1}])
        generator.queue_start({"since": "2024-01-01"})

        await generator.run_batch()
        await generator.run_batch()

        assert generator.pull_args == [{"since": "2024-01-01"}, {"since": "2024-01-01"}]

    @pytest.mark.asyncio
    async def test_unbounded_generator(self, make_generator, writer):
        generator = make_generator([{"id": i} for i in range(7)], batch_size=BatchSize.unbounded())
        generator.queue_start()

        first = await generator.run_batch()
        second = await generator.run_batch()

        assert first.rows_written == 7
        assert second.completed
        assert len(published_lines(writer)) == 8

    @pytest.mark.asyncio
    async def test_oversized_batch_still_written(self, make_generator):
        generator = make_generator([], batch_size=BatchSize.fixed(2))

        async def oversized(batch_number, args):
            return [{"id": i} for i in range(3)] if batch_number == 1 else []

        generator.get_items_for_batch = oversized
        generator.queue_start()

        result = await generator.run_batch()

        assert result.rows_written == 3


class TestQueueStart:

    @pytest.mark.asyncio
    async def test_not_restarted_while_running(self, make_generator):
        generator = make_generator([{"id": 1}, {"id": 2}, {"id": 3}])
        assert generator.queue_start()
        await generator.run_batch()

        assert not generator.queue_start()
        assert generator.get_job().current_batch_number == 2

    @pytest.mark.asyncio
    async def test_completed_job_replaced(self, make_generator):
        generator = make_generator([{"id": 1}])
        generator.queue_start()
        await generator.run_batch()
        await generator.run_batch()
        first_job = generator.get_job().job_id

        assert generator.queue_start()

        job = generator.get_job()
        assert job.job_id != first_job
        assert job.status == JobStatus.RUNNING
        assert job.current_batch_number == 1
        assert job.cumulative_rows_written == 0

    def test_open_failure_fails_job(self, make_generator, tmp_path):
        blocker = tmp_path / "not_a_directory"
        blocker.write_text("x")
        generator = make_generator([{"id": 1}], writer=CsvFeedFileWriter(blocker))

        with pytest.raises(FeedWriteError):
            generator.queue_start()

        job = generator.get_job()
        assert job.status == JobStatus.FAILED
        assert job.last_error

    def test_first_batch_enqueued(self, make_generator):
        scheduler = RecordingScheduler()
        generator = make_generator([{"id": 1}], scheduler=scheduler)

        generator.queue_start()

        assert [name for name, _ in scheduler.enqueued] == ["generate_feed_batch_products"]


class TestRecordFailures:

    @pytest.mark.asyncio
    async def test_bad_records_skipped(self, make_generator, writer):
        generator = make_generator(
            [{"id": 1}, {"id": 2, "bad": True}, {"id": 3}, {"bad": True}],
            batch_size=BatchSize.fixed(10)
        )
        generator.queue_start()

        result = await generator.run_batch()
        await generator.run_batch()

        assert result.rows_written == 2
        assert [failure.record_id for failure in result.skipped] == ["2", "<unknown>"]
        assert result.skipped[0].error == "Record is marked bad"
        job = generator.get_job()
        assert job.skipped_records == 2
        assert job.status == JobStatus.COMPLETE
        assert published_lines(writer) == ["id,title", "1,", "3,"]

    @pytest.mark.asyncio
    async def test_any_mapper_exception_skips_record(self, make_generator):
        generator = make_generator([{"id": 1}, {"title": "missing id"}], batch_size=BatchSize.fixed(10))
        generator.queue_start()

        result = await generator.run_batch()

        assert result.rows_written == 1
        assert len(result.skipped) == 1
        assert "id" in result.skipped[0].error


class TestTransientFailures:

    @pytest.mark.asyncio
    async def test_source_failure_retried_at_same_batch(self, make_generator):
        scheduler = RecordingScheduler()
        generator = make_generator([{"id": 1}], scheduler=scheduler)
        generator.queue_start()

        async def fail(batch_number):
            raise RecordSourceError("store unavailable")

        generator.pull_hook = fail
        with pytest.raises(RecordSourceError):
            await generator.run_batch()

        job = generator.get_job()
        assert job.status == JobStatus.RUNNING
        assert job.current_batch_number == 1
        assert job.batch_attempts == 1
        assert job.last_error == "store unavailable"
        assert job.in_flight_since is None
        assert len(scheduler.enqueued) == 2

        generator.pull_hook = None
        result = await generator.run_batch()

        assert result.rows_written == 1
        assert generator.get_job().batch_attempts == 0
        assert generator.get_job().last_error is None

    @pytest.mark.asyncio
    async def test_unexpected_source_error_is_retryable(self, make_generator):
        generator = make_generator([{"id": 1}])
        generator.queue_start()

        async def fail(batch_number):
            raise ConnectionResetError("reset by peer")

        generator.pull_hook = fail
        with pytest.raises(RecordSourceError, match="reset by peer"):
            await generator.run_batch()

        assert generator.get_job().status == JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_job_fails_after_max_attempts(self, make_generator, writer):
        generator = make_generator([{"id": 1}, {"id": 2}, {"id": 3}], max_batch_attempts=3)
        generator.queue_start()
        await generator.run_batch()

        async def fail(batch_number):
            raise RecordSourceError("still down")

        generator.pull_hook = fail
        for _ in range(3):
            with pytest.raises(RecordSourceError):
                await generator.run_batch()

        job = generator.get_job()
        assert job.status == JobStatus.FAILED
        assert job.batch_attempts == 3
        assert job.current_batch_number == 2
        assert not writer.working_path(DESCRIPTOR).exists()
        assert not (await generator.run_batch()).performed

    @pytest.mark.asyncio
    async def test_write_failure_leaves_no_duplicate_rows(self, make_generator, writer):
        generator = make_generator([{"id": i} for i in range(4)])
        generator.queue_start()
        await generator.run_batch()

        def partial_append(working_file, rows):
            with open(working_file.path, "a", encoding="utf-8") as f:
                f.write("half-written-row")
            raise FeedWriteError("disk full")

        with patch.object(writer, "append_rows", side_effect=partial_append):
            with pytest.raises(FeedWriteError):
                await generator.run_batch()

        await generator.run_batch()
        await generator.run_batch()

        assert published_lines(writer) == ["id,title", "0,", "1,", "2,", "3,"]

    @pytest.mark.asyncio
    async def test_finalize_failure_is_terminal(self, make_generator, writer):
        generator = make_generator([{"id": "old"}])
        generator.queue_start()
        await generator.run_batch()
        await generator.run_batch()
        previous = writer.published_path(DESCRIPTOR).read_bytes()

        generator.records = [{"id": "new"}]
        generator.queue_start()
        await generator.run_batch()
        with patch.object(writer, "finalize", side_effect=FeedFinalizeError("rename failed")):
            with pytest.raises(FeedFinalizeError):
                await generator.run_batch()

        job = generator.get_job()
        assert job.status == JobStatus.FAILED
        assert job.batch_attempts == 1
        assert writer.published_path(DESCRIPTOR).read_bytes() == previous
        assert not writer.working_path(DESCRIPTOR).exists()

    @pytest.mark.asyncio
    async def test_failed_job_saved_when_working_file_cannot_be_removed(self, make_generator, writer, state_store):
        generator = make_generator([{"id": 1}])
        generator.queue_start()
        await generator.run_batch()

        working_path = writer.working_path(DESCRIPTOR)
        with patch.object(writer, "finalize", side_effect=FeedFinalizeError("rename failed")), \
                patch.object(type(working_path), "unlink", side_effect=PermissionError("denied")):
            with pytest.raises(FeedFinalizeError):
                await generator.run_batch()

        job = state_store.load_job(FeedType.PRODUCTS)
        assert job.status == JobStatus.FAILED
        assert job.in_flight_since is None
        assert job.last_error == "rename failed"
        assert working_path.exists()

    @pytest.mark.asyncio
    async def test_cancelled_batch_counts_as_attempt(self, make_generator):
        generator = make_generator([{"id": 1}])
        generator.queue_start()

        async def hang(batch_number):
            await asyncio.sleep(10)

        generator.pull_hook = hang
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(generator.run_batch(), timeout=0.05)

        job = generator.get_job()
        assert job.status == JobStatus.RUNNING
        assert job.batch_attempts == 1
        assert "timed out" in job.last_error
        assert job.in_flight_since is None


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_in_flight_batch_blocks_second_invocation(self, make_generator, state_store, clock):
        generator = make_generator([{"id": 1}])
        generator.queue_start()
        job = state_store.load_job(FeedType.PRODUCTS)
        job.in_flight_since = clock()
        state_store.save_job(job)

        clock.t += 10
        result = await generator.run_batch()

        assert not result.performed
        assert generator.pulls == []

    @pytest.mark.asyncio
    async def test_concurrent_invocations_run_once(self, make_generator, state_store):
        first = make_generator([{"id": 1}, {"id": 2}])
        second = make_generator([{"id": 1}, {"id": 2}])
        first.queue_start()
        release = asyncio.Event()

        async def wait_for_release(batch_number):
            await release.wait()

        first.pull_hook = wait_for_release
        task = asyncio.create_task(first.run_batch())
        await asyncio.sleep(0)

        blocked = await second.run_batch()
        release.set()
        done = await task

        assert not blocked.performed
        assert done.rows_written == 2
        assert state_store.load_job(FeedType.PRODUCTS).current_batch_number == 2

    @pytest.mark.asyncio
    async def test_expired_lease_taken_over(self, make_generator, state_store, clock):
        generator = make_generator([{"id": 1}], batch_timeout=30.0)
        generator.queue_start()
        job = state_store.load_job(FeedType.PRODUCTS)
        job.in_flight_since = clock()
        state_store.save_job(job)

        clock.t += 31
        result = await generator.run_batch()

        assert result.performed
        assert result.rows_written == 1
        assert generator.pulls == [1]

    @pytest.mark.asyncio
    async def test_expired_lease_can_exhaust_attempts(self, make_generator, state_store, clock):
        generator = make_generator([{"id": 1}], max_batch_attempts=1)
        generator.queue_start()
        job = state_store.load_job(FeedType.PRODUCTS)
        job.in_flight_since = clock()
        state_store.save_job(job)

        clock.t += 60
        result = await generator.run_batch()

        assert not result.performed
        assert generator.get_job().status == JobStatus.FAILED
        assert generator.pulls == []

    @pytest.mark.asyncio
    async def test_cancel_during_pull_discards_batch(self, make_generator, writer):
        generator = make_generator([{"id": 1}])
        generator.queue_start()

        async def cancel_midway(batch_number):
            generator.cancel()

        generator.pull_hook = cancel_midway
        result = await generator.run_batch()

        assert not result.performed
        assert generator.get_job().status == JobStatus.IDLE
        assert not writer.working_path(DESCRIPTOR).exists()

    @pytest.mark.asyncio
    async def test_restart_during_pull_ignores_stale_batch(self, make_generator, writer):
        generator = make_generator([{"id": 1}])
        generator.queue_start()

        async def restart(batch_number):
            generator.pull_hook = None
            generator.cancel()
            generator.queue_start()

        generator.pull_hook = restart
        stale = await generator.run_batch()

        assert not stale.performed
        job = generator.get_job()
        assert job.current_batch_number == 1
        assert job.cumulative_rows_written == 0
        assert writer.working_path(DESCRIPTOR).read_text(encoding="utf-8") == "id,title\n"


class TestCancel:

    def test_cancel_idle_is_noop(self, make_generator):
        assert not make_generator([]).cancel()

    @pytest.mark.asyncio
    async def test_cancel_keeps_published_file(self, make_generator, writer):
        generator = make_generator([{"id": 1}])
        generator.queue_start()
        await generator.run_batch()
        await generator.run_batch()
        generator.queue_start()

        assert generator.cancel()

        assert writer.published_file(DESCRIPTOR) is not None
        assert not writer.working_path(DESCRIPTOR).exists()
        assert generator.get_job().status == JobStatus.IDLE

    @pytest.mark.asyncio
    async def test_cancel_failed_job(self, make_generator):
        generator = make_generator([{"id": 1}], max_batch_attempts=1)
        generator.queue_start()

        async def fail(batch_number):
            raise RecordSourceError("down")

        generator.pull_hook = fail
        with pytest.raises(RecordSourceError):
            await generator.run_batch()

        assert generator.cancel()
        assert generator.get_job().last_error is None


class TestCompletion:

    @pytest.mark.asyncio
    async def test_callback_awaited_without_scheduler(self, make_generator):
        published = []

        async def on_complete(published_file):
            published.append(published_file)

        generator = make_generator([{"id": 1}], on_complete=on_complete)
        generator.queue_start()
        await generator.run_batch()
        await generator.run_batch()

        assert len(published) == 1
        assert published[0].feed_type is FeedType.PRODUCTS

    @pytest.mark.asyncio
    async def test_callback_failure_does_not_fail_build(self, make_generator):
        async def on_complete(published_file):
            raise RuntimeError("upload exploded")

        generator = make_generator([], on_complete=on_complete)
        generator.queue_start()

        result = await generator.run_batch()

        assert result.completed
        assert generator.get_job().status == JobStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_callback_enqueued_on_scheduler(self, make_generator):
        scheduler = RecordingScheduler()
        generator = make_generator([], scheduler=scheduler, on_complete=lambda published_file: _ret(None))
        generator.queue_start()

        await generator.run_batch()

        assert [name for name, _ in scheduler.enqueued] == [
            "generate_feed_batch_products",
            "feed_generation_completed_products",
        ]


class TestScheduledGeneration:

    @pytest.mark.asyncio
    async def test_scheduler_drives_build_to_completion(self, make_generator, writer, logger):
        scheduler = ActionScheduler(logger=logger)
        completed = []

        async def on_complete(published_file):
            completed.append(published_file.path)

        generator = make_generator(
            [{"id": i} for i in range(5)],
            scheduler=scheduler,
            on_complete=on_complete
        )
        generator.queue_start()

        await scheduler.run_until_idle()

        assert generator.pulls == [1, 2, 3, 4]
        assert completed == [writer.published_path(DESCRIPTOR)]
        assert scheduler.pending() == []

    @pytest.mark.asyncio
    async def test_record_source_generator(self, writer, state_store, logger):
        source = MemoryRecordSource([{"id": 1}, {"id": 2}, {"id": 3}])
        generator = RecordSourceFeedGenerator(
            DESCRIPTOR,
            writer,
            source=source,
            batch_size=BatchSize.unbounded(),
            mapper=lambda record: {"id": record["id"]},
            state_store=state_store,
            logger=logger
        )
        generator.queue_start()

        assert await generator.get_items_for_batch(2, {}) == []
        first = await generator.run_batch()
        second = await generator.run_batch()

        assert first.rows_written == 3
        assert second.completed
        assert generator.get_batch_size().is_unbounded

    def test_invalid_attempts(self, writer):
        with pytest.raises(ValueError):
            ListGenerator([], writer=writer, max_batch_attempts=0)

    def test_errors_carry_retryability(self):
        assert RecordSourceError("x").retryable
        assert FeedWriteError("x").retryable
        assert not FeedFinalizeError("x").retryable
        assert not FeedGenerationError("x").retryable
