"""Structured logging for feed generation and API calls."""

import json
import logging
from typing import Optional


class StructuredLogger:
    """Structured logger with uniform schema."""

    def __init__(self, name: str = "catalog_feeds", level: str = "INFO", structured: bool = True):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.structured = structured

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(handler)

    def log(self, event: str, level: int = logging.INFO, **kwargs) -> None:
        """
        Log structured event.

        Standard keys: event, feed, batch, rows, skipped, record_id, error,
                       request, attempt, status, code, seconds
        """
        log_data = {"event": event, **kwargs}
        if self.structured:
            self.logger.log(level, json.dumps(log_data, default=str))
        else:
            details = " ".join(f"{key}={value}" for key, value in kwargs.items())
            self.logger.log(level, f"{event} {details}".rstrip())

    def batch_start(self, feed: str, batch: int) -> None:
        self.log("batch_start", feed=feed, batch=batch)

    def batch_complete(self, feed: str, batch: int, rows: int, skipped: int) -> None:
        self.log("batch_complete", feed=feed, batch=batch, rows=rows, skipped=skipped)

    def batch_noop(self, feed: str, batch: int, reason: str) -> None:
        self.log("batch_noop", feed=feed, batch=batch, reason=reason)

    def record_skipped(self, feed: str, batch: int, record_id: str, error: str) -> None:
        self.log("record_skipped", logging.WARNING, feed=feed, batch=batch, record_id=record_id, error=error)

    def batch_failed(self, feed: str, batch: int, error: str, attempt: int, retryable: bool) -> None:
        self.log(
            "batch_failed", logging.ERROR,
            feed=feed, batch=batch, error=error, attempt=attempt, retryable=retryable
        )

    def feed_finalized(self, feed: str, rows: int, path: str) -> None:
        self.log("feed_finalized", feed=feed, rows=rows, path=path)

    def generation_failed(self, feed: str, error: str) -> None:
        self.log("generation_failed", logging.ERROR, feed=feed, error=error)

    def request_retry(self, request: str, attempt: int, status: Optional[int], code: Optional[int], error: str) -> None:
        self.log(
            "request_retry", logging.WARNING,
            request=request, attempt=attempt, status=status, code=code, error=error
        )

    def rate_limited(self, endpoint: str, seconds: int, call_count: int) -> None:
        self.log("rate_limited", logging.WARNING, endpoint=endpoint, seconds=seconds, call_count=call_count)

    def action_failed(self, action: str, error: str) -> None:
        self.log("action_failed", logging.ERROR, action=action, error=error)
