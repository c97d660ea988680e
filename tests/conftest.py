"""Pytest configuration and shared fixtures."""

import random

import pytest

from catalog_feeds.feeds.state import MemoryJobStateStore
from catalog_feeds.feeds.writer import CsvFeedFileWriter
from catalog_feeds.models.config import ApiConfig, AppConfig, FeedConfig
from catalog_feeds.models.data_models import FeedType
from catalog_feeds.monitoring.logger import StructuredLogger


@pytest.fixture(scope="session")
def deterministic_seed():
    """Set a fixed random seed for deterministic test results."""
    random.seed(42)
    return 42


@pytest.fixture
def logger():
    """Plain-text logger so test output stays readable."""
    return StructuredLogger(name="catalog_feeds.tests", level="DEBUG", structured=False)


@pytest.fixture
def state_store():
    return MemoryJobStateStore()


@pytest.fixture
def writer(tmp_path):
    return CsvFeedFileWriter(tmp_path / "feeds")


@pytest.fixture
def app_config(tmp_path):
    """Configuration with every feed type enabled and files under tmp_path."""
    return AppConfig(
        output_directory=str(tmp_path / "feeds"),
        state_directory=str(tmp_path / "state"),
        feed_base_url="http://feeds.test",
        batch_timeout=5.0,
        max_batch_attempts=3,
        api=ApiConfig(
            base_url="http://graph.test",
            access_token="test-token",
            commerce_partner_integration_id="cpi-1",
            catalog_id="catalog-1",
            retry_base_delay=0.0,
            retry_max_delay=0.0,
            retry_jitter_max=0.0
        ),
        feeds=[FeedConfig(feed_type=feed_type) for feed_type in FeedType]
    )
