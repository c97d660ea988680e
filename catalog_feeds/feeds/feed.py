"""Per-feed-type orchestration: schedule, generate, publish, request upload."""

import abc
import secrets
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, ClassVar, Mapping, Optional
from urllib.parse import urlencode

from catalog_feeds.api.client import CommerceApiClient
from catalog_feeds.api.exceptions import ApiException
from catalog_feeds.api.response import ApiResponse
from catalog_feeds.feeds.generator import FeedGenerator, RecordSourceFeedGenerator
from catalog_feeds.feeds.sources import RecordSource, build_record_source
from catalog_feeds.feeds.state import JobStateStore, MemoryJobStateStore
from catalog_feeds.feeds.writer import CsvFeedFileWriter
from catalog_feeds.models.config import AppConfig, FeedConfig
from catalog_feeds.models.data_models import (
    BatchSize,
    FeedDescriptor,
    FeedStatus,
    FeedType,
    PublishedFile,
)
from catalog_feeds.monitoring.logger import StructuredLogger


class AbstractFeed(abc.ABC):
    """
    Binds one feed type to its writer and generator.

    Subclasses declare the feed's shape (``descriptor``), its default batch
    size and how a source record becomes a row (``map_record``).
    """

    descriptor: ClassVar[FeedDescriptor]
    default_batch_size: ClassVar[BatchSize] = BatchSize.fixed(100)

    REGENERATE_ACTION = "regenerate_feed_{name}"
    FEED_PATH = "/feeds/{name}"
    UPDATE_TYPE = "CREATE"

    def __init__(
        self,
        config: AppConfig,
        feed_config: Optional[FeedConfig] = None,
        state_store: Optional[JobStateStore] = None,
        scheduler=None,
        api_client: Optional[CommerceApiClient] = None,
        source: Optional[RecordSource] = None,
        writer: Optional[CsvFeedFileWriter] = None,
        logger: Optional[StructuredLogger] = None
    ):
        """
        Args:
            config: Application configuration
            feed_config: This feed's settings (defaults apply when None)
            state_store: Persistence for the job and the feed secret
            scheduler: ``ActionScheduler`` running batches and uploads
            api_client: Client used for the upload request; no upload is
                requested without one
            source: Record source; built from ``feed_config.source`` when None
            writer: Feed file writer; defaults to one on the output directory
            logger: Structured logger
        """
        self.config = config
        self.feed_config = feed_config or FeedConfig(feed_type=self.get_feed_type())
        self.state_store = state_store or MemoryJobStateStore()
        self.scheduler = scheduler
        self.api_client = api_client
        self.logger = logger or StructuredLogger()
        self.writer = writer or CsvFeedFileWriter(config.output_path, logger=self.logger)
        self.source = source or build_record_source(self.feed_config.source)

        interval = self.feed_config.regeneration_interval_seconds
        self.feed_descriptor = (
            replace(self.descriptor, regeneration_interval_seconds=interval)
            if interval else self.descriptor
        )

        self.feed_generator = self.create_generator()

    @classmethod
    def get_feed_type(cls) -> FeedType:
        return cls.descriptor.feed_type

    @property
    def data_stream_name(self) -> str:
        return self.feed_descriptor.data_stream_name

    def get_batch_size(self) -> BatchSize:
        """Configured batch size, falling back to the feed type's default."""
        configured = self.feed_config.batch_size
        if configured is None:
            return self.default_batch_size
        if configured == "unbounded":
            return BatchSize.unbounded()
        return BatchSize.fixed(configured)

    @abc.abstractmethod
    def map_record(self, record: Mapping[str, Any]) -> Mapping[str, Any]:
        """Feed row for one source record."""

    def create_generator(self) -> FeedGenerator:
        on_complete = self._on_generation_complete if self.config.upload_on_complete else None
        return RecordSourceFeedGenerator(
            self.feed_descriptor,
            self.writer,
            source=self.source,
            batch_size=self.get_batch_size(),
            mapper=self.map_record,
            state_store=self.state_store,
            scheduler=self.scheduler,
            logger=self.logger,
            batch_timeout=self.config.batch_timeout,
            max_batch_attempts=self.config.max_batch_attempts,
            on_complete=on_complete
        )

    # Scheduling

    @property
    def regenerate_action_name(self) -> str:
        return self.REGENERATE_ACTION.format(name=self.data_stream_name)

    def schedule_feed_generation(self) -> bool:
        """
        Register the recurring regeneration action.

        Returns:
            False if it was already registered
        """
        if self.scheduler is None:
            raise RuntimeError(f"{self.data_stream_name} feed has no scheduler")
        return self.scheduler.schedule_recurring(
            self.regenerate_action_name,
            self.regenerate_feed,
            interval=self.feed_descriptor.regeneration_interval_seconds
        )

    def regenerate_feed(self, args: Optional[Mapping[str, Any]] = None) -> bool:
        """
        Start a new build unless one is running.

        Returns:
            True if a build was started
        """
        return self.feed_generator.queue_start(args)

    def cancel(self) -> bool:
        """Reset a running or failed build to idle."""
        return self.feed_generator.cancel()

    async def run_batch(self):
        """Run the current batch directly (cron tick entry point)."""
        return await self.feed_generator.run_batch()

    # Status

    def get_published_file(self) -> Optional[PublishedFile]:
        return self.writer.published_file(self.feed_descriptor)

    def get_status(self) -> FeedStatus:
        job = self.feed_generator.get_job()
        published = self.get_published_file()
        published_at = None
        if published is not None:
            mtime = published.path.stat().st_mtime
            published_at = datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat()

        return FeedStatus(
            feed_type=self.get_feed_type(),
            data_stream_name=self.data_stream_name,
            status=job.status,
            current_batch_number=job.current_batch_number,
            cumulative_rows_written=job.cumulative_rows_written,
            skipped_records=job.skipped_records,
            last_error=job.last_error,
            started_at=job.started_at,
            completed_at=job.completed_at,
            published_path=str(published.path) if published else None,
            published_size_bytes=published.size_bytes if published else None,
            published_at=published_at
        )

    # Delivery

    def get_feed_secret(self) -> str:
        """Secret guarding the feed URL; generated and persisted on first use."""
        secret = self.state_store.load_secret(self.get_feed_type())
        if not secret:
            secret = secrets.token_hex(16)
            self.state_store.save_secret(self.get_feed_type(), secret)
        return secret

    def get_feed_data_url(self) -> str:
        """Public URL the platform fetches the published feed from."""
        path = self.FEED_PATH.format(name=self.data_stream_name)
        query = urlencode({"secret": self.get_feed_secret()})
        return f"{self.config.feed_base_url}{path}?{query}"

    async def _on_generation_complete(self, published: PublishedFile) -> None:
        await self.send_request_to_upload_feed()

    async def send_request_to_upload_feed(self) -> Optional[ApiResponse]:
        """
        Ask the platform to fetch the published feed.

        Failures are logged; the published feed stays valid either way.

        Returns:
            The API response, or None if no request could be made
        """
        integration_id = self.config.api.commerce_partner_integration_id
        if self.api_client is None or not integration_id:
            self.logger.log(
                "feed_upload_skipped", feed=self.data_stream_name,
                reason="no api client" if self.api_client is None else "no integration id"
            )
            return None

        data = {
            "url": self.get_feed_data_url(),
            "feed_type": self.get_feed_type().value,
            "update_type": self.UPDATE_TYPE,
        }
        try:
            response = await self.api_client.create_feed_upload(integration_id, data)
        except ApiException as e:
            self.logger.action_failed(
                f"upload_feed_{self.data_stream_name}",
                f"Failed to create feed upload request: {e}"
            )
            return None

        self.logger.log("feed_upload_requested", feed=self.data_stream_name, upload_id=response.id)
        return response
