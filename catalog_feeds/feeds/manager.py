"""Registry of the configured feeds."""

from typing import Dict, List, Mapping, Optional, Type, Union

from catalog_feeds.api.client import CommerceApiClient
from catalog_feeds.feeds.errors import UnknownFeedTypeError
from catalog_feeds.feeds.feed import AbstractFeed
from catalog_feeds.feeds.sources import RecordSource
from catalog_feeds.feeds.state import JobStateStore
from catalog_feeds.feeds.types import FEED_CLASSES
from catalog_feeds.feeds.writer import CsvFeedFileWriter
from catalog_feeds.models.config import AppConfig
from catalog_feeds.models.data_models import FeedType
from catalog_feeds.monitoring.logger import StructuredLogger


class FeedManager:
    """
    Creates and caches one ``AbstractFeed`` per enabled, configured feed type.

    Everything a feed needs (state store, scheduler, API client) is handed in
    at construction, so independent managers never share state.
    """

    def __init__(
        self,
        config: AppConfig,
        state_store: Optional[JobStateStore] = None,
        scheduler=None,
        api_client: Optional[CommerceApiClient] = None,
        logger: Optional[StructuredLogger] = None,
        sources: Optional[Mapping[FeedType, RecordSource]] = None,
        feed_classes: Optional[Mapping[FeedType, Type[AbstractFeed]]] = None
    ):
        """
        Args:
            config: Application configuration; ``config.feeds`` decides which
                feed types exist
            state_store: Job and secret persistence (defaults to JSON files
                under ``config.state_directory``)
            scheduler: ``ActionScheduler`` shared by all feeds
            api_client: Client for upload requests
            logger: Structured logger
            sources: Record sources overriding the configured ones
            feed_classes: Feed implementations per type
        """
        self.config = config
        self.state_store = state_store or JobStateStore(config.state_path)
        self.scheduler = scheduler
        self.api_client = api_client
        self.logger = logger or StructuredLogger(level=config.log_level, structured=config.structured_logging)
        self.sources = dict(sources or {})
        self.feed_classes = dict(feed_classes or FEED_CLASSES)
        self.writer = CsvFeedFileWriter(config.output_path, logger=self.logger)
        self._feed_instances: Dict[FeedType, AbstractFeed] = {}

    def get_feed_types(self) -> List[FeedType]:
        """Feed types that are configured, enabled and implemented."""
        return [
            feed.feed_type
            for feed in self.config.feeds
            if feed.enabled and feed.feed_type in self.feed_classes
        ]

    def _resolve(self, feed_type: Union[str, FeedType]) -> FeedType:
        try:
            resolved = FeedType.parse(feed_type)
        except ValueError as e:
            raise UnknownFeedTypeError(str(e)) from e
        if resolved not in self.get_feed_types():
            raise UnknownFeedTypeError(f"Feed type {resolved.name} is not configured")
        return resolved

    def create_feed(self, feed_type: FeedType) -> AbstractFeed:
        feed_class = self.feed_classes[feed_type]
        return feed_class(
            self.config,
            feed_config=self.config.feed_config(feed_type),
            state_store=self.state_store,
            scheduler=self.scheduler,
            api_client=self.api_client,
            source=self.sources.get(feed_type),
            writer=self.writer,
            logger=self.logger
        )

    def get_feed_instance(self, feed_type: Union[str, FeedType]) -> AbstractFeed:
        """
        Feed for a type, created on first use.

        Args:
            feed_type: Enum member, name, value or data stream name

        Raises:
            UnknownFeedTypeError: If the type is unknown or not configured
        """
        resolved = self._resolve(feed_type)
        if resolved not in self._feed_instances:
            self._feed_instances[resolved] = self.create_feed(resolved)
        return self._feed_instances[resolved]

    def get_feeds(self) -> List[AbstractFeed]:
        return [self.get_feed_instance(feed_type) for feed_type in self.get_feed_types()]

    def schedule_all(self) -> List[FeedType]:
        """
        Register the recurring regeneration of every feed.

        Returns:
            Feed types that were newly scheduled
        """
        return [feed.get_feed_type() for feed in self.get_feeds() if feed.schedule_feed_generation()]

    def get_feed_secret(self, feed_type: Union[str, FeedType]) -> str:
        return self.get_feed_instance(feed_type).get_feed_secret()

    def close(self) -> None:
        """Drop the cached feeds and unschedule their actions."""
        if self.scheduler is not None:
            for feed in self._feed_instances.values():
                self.scheduler.unschedule(feed.regenerate_action_name)
                self.scheduler.unschedule(feed.feed_generator.batch_action_name)
        self._feed_instances.clear()
