"""Unit tests for the structured logger."""

import json
import logging

from catalog_feeds.monitoring.logger import StructuredLogger


class TestStructuredLogger:

    def test_structured_output_is_json(self, caplog):
        logger = StructuredLogger(name="catalog_feeds.test_json", level="DEBUG")

        with caplog.at_level(logging.DEBUG, logger="catalog_feeds.test_json"):
            logger.batch_complete("products", 2, rows=100, skipped=1)

        payload = json.loads(caplog.records[-1].getMessage())
        assert payload == {"event": "batch_complete", "feed": "products", "batch": 2, "rows": 100, "skipped": 1}

    def test_plain_output(self, caplog):
        logger = StructuredLogger(name="catalog_feeds.test_plain", level="DEBUG", structured=False)

        with caplog.at_level(logging.DEBUG, logger="catalog_feeds.test_plain"):
            logger.batch_noop("products", 3, reason="in flight")

        assert caplog.records[-1].getMessage() == "batch_noop feed=products batch=3 reason=in flight"

    def test_levels(self, caplog):
        logger = StructuredLogger(name="catalog_feeds.test_levels", level="DEBUG")

        with caplog.at_level(logging.DEBUG, logger="catalog_feeds.test_levels"):
            logger.record_skipped("products", 1, "42", "Product has no valid price")
            logger.batch_failed("products", 1, "disk full", attempt=2, retryable=True)
            logger.feed_finalized("products", 10, "/tmp/products_feed.csv")

        levels = [record.levelno for record in caplog.records[-3:]]
        assert levels == [logging.WARNING, logging.ERROR, logging.INFO]

    def test_level_filters(self, caplog):
        logger = StructuredLogger(name="catalog_feeds.test_filter", level="ERROR")

        logger.batch_start("products", 1)
        logger.generation_failed("products", "boom")

        events = [json.loads(record.getMessage())["event"] for record in caplog.records]
        assert events == ["generation_failed"]

    def test_non_serializable_values(self, caplog):
        logger = StructuredLogger(name="catalog_feeds.test_default", level="DEBUG")

        with caplog.at_level(logging.DEBUG, logger="catalog_feeds.test_default"):
            logger.log("custom", path=object())

        assert json.loads(caplog.records[-1].getMessage())["event"] == "custom"

    def test_single_handler_per_name(self):
        StructuredLogger(name="catalog_feeds.test_handlers")
        logger = StructuredLogger(name="catalog_feeds.test_handlers")

        assert len(logger.logger.handlers) == 1
