"""Runtime wiring the feed registry, scheduler and API client together."""

import asyncio
from typing import Dict, List, Mapping, Optional, Sequence

import httpx

from catalog_feeds.api.client import CommerceApiClient, build_http_client
from catalog_feeds.feeds.errors import FeedGenerationError
from catalog_feeds.feeds.feed import AbstractFeed
from catalog_feeds.feeds.manager import FeedManager
from catalog_feeds.feeds.scheduler import ActionScheduler
from catalog_feeds.feeds.sources import RecordSource
from catalog_feeds.feeds.state import JobStateStore
from catalog_feeds.models.config import AppConfig
from catalog_feeds.models.data_models import BatchResult, FeedStatus, FeedType, JobStatus
from catalog_feeds.monitoring.logger import StructuredLogger


class FeedPipeline:
    """
    Builds every component from configuration and runs feeds.

    Two ways to drive generation:
    - scheduled: an in-process ``ActionScheduler`` runs batch after batch
      (``regenerate`` with drain, ``run``)
    - ticked: each ``tick`` runs one batch per running feed and returns,
      for an external cron that invokes the CLI repeatedly
    """

    def __init__(
        self,
        config: AppConfig,
        scheduled: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sources: Optional[Mapping[FeedType, RecordSource]] = None,
        logger: Optional[StructuredLogger] = None
    ):
        """
        Args:
            config: Application configuration
            scheduled: Whether batches are chained through an in-process
                scheduler (False for cron ticks)
            transport: httpx transport override for the API client
            sources: Record sources overriding the configured ones
            logger: Structured logger
        """
        self.config = config
        self.logger = logger or StructuredLogger(level=config.log_level, structured=config.structured_logging)
        self.state_store = JobStateStore(config.state_path)
        self.scheduler = (
            ActionScheduler(action_timeout=config.batch_timeout, logger=self.logger)
            if scheduled else None
        )
        self.http_client = build_http_client(config.api, transport=transport)
        self.api_client = CommerceApiClient(config.api, self.http_client, logger=self.logger)
        self.manager = FeedManager(
            config,
            state_store=self.state_store,
            scheduler=self.scheduler,
            api_client=self.api_client,
            logger=self.logger,
            sources=sources
        )

    async def __aenter__(self):
        await self.http_client.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.manager.close()
        await self.http_client.__aexit__(exc_type, exc_val, exc_tb)

    def resolve_feeds(self, names: Sequence[str] = ()) -> List[AbstractFeed]:
        """
        Feeds by name, or every configured feed when no name is given.

        Raises:
            UnknownFeedTypeError: If a name matches no configured feed
        """
        if not names:
            return self.manager.get_feeds()
        return [self.manager.get_feed_instance(name) for name in names]

    async def drain(self) -> int:
        """Run scheduled actions until no batch or upload is pending."""
        if self.scheduler is None:
            return 0
        return await self.scheduler.run_until_idle()

    async def regenerate(self, names: Sequence[str] = (), drain: bool = True) -> Dict[FeedType, bool]:
        """
        Start a build of each feed.

        Args:
            names: Feeds to build (all when empty)
            drain: Run the builds to completion before returning

        Returns:
            Whether a build was started, per feed type
        """
        started = {}
        for feed in self.resolve_feeds(names):
            try:
                started[feed.get_feed_type()] = feed.regenerate_feed()
            except FeedGenerationError as e:
                self.logger.action_failed(f"regenerate_{feed.data_stream_name}", str(e))
                started[feed.get_feed_type()] = False
        self.logger.log("regenerate_requested", feeds=[feed_type.name for feed_type, ok in started.items() if ok])
        if drain:
            await self.drain()
        return started

    async def tick(self, names: Sequence[str] = (), start_idle: bool = False) -> List[BatchResult]:
        """
        Run one batch of every running feed.

        Feeds run concurrently. A failed batch is logged and recorded on its
        job; the other feeds still run.

        Args:
            names: Feeds to advance (all when empty)
            start_idle: Start a build for feeds with no running job first
        """
        outcomes = await asyncio.gather(*(self._tick_feed(feed, start_idle) for feed in self.resolve_feeds(names)))
        return [result for result in outcomes if result is not None]

    async def _tick_feed(self, feed: AbstractFeed, start_idle: bool) -> Optional[BatchResult]:
        try:
            if start_idle and feed.get_status().status != JobStatus.RUNNING:
                feed.regenerate_feed()
            return await asyncio.wait_for(feed.run_batch(), timeout=self.config.batch_timeout)
        except asyncio.TimeoutError:
            self.logger.action_failed(f"tick_{feed.data_stream_name}", "Batch timed out")
        except Exception as e:
            self.logger.action_failed(f"tick_{feed.data_stream_name}", str(e))
        return None

    async def run(self, poll_interval: float = 1.0, stop: Optional[asyncio.Event] = None) -> None:
        """Schedule every feed's regeneration and keep the scheduler running."""
        if self.scheduler is None:
            raise RuntimeError("run() requires a scheduled pipeline")
        scheduled = self.manager.schedule_all()
        self.logger.log("pipeline_start", feeds=[feed_type.name for feed_type in scheduled])
        await self.scheduler.run_forever(poll_interval, stop)

    def status(self, names: Sequence[str] = ()) -> List[FeedStatus]:
        return [feed.get_status() for feed in self.resolve_feeds(names)]

    def cancel(self, names: Sequence[str] = ()) -> List[FeedType]:
        """Reset running or failed builds to idle; returns the feeds reset."""
        return [feed.get_feed_type() for feed in self.resolve_feeds(names) if feed.cancel()]
