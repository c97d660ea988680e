"""Errors raised by the commerce API client."""

from typing import Optional

from catalog_feeds.api.rate_limit import RateLimitUsage


# Error codes the platform uses for throttled calls
RATE_LIMIT_ERROR_CODES = frozenset({4, 17, 32, 613, 80004})


class ApiException(Exception):
    """Base class for outbound API failures."""


class ApiTransportError(ApiException):
    """The request never produced an HTTP response (connect, timeout, reset)."""


class ApiResponseError(ApiException):
    """The API answered with an error status or an error body."""

    def __init__(
        self,
        message: str,
        status_code: int,
        code: Optional[int] = None,
        usage: Optional[RateLimitUsage] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.usage = usage or RateLimitUsage()

    @property
    def codes(self) -> frozenset:
        """Every code a retry policy may match: the API error code and the HTTP status."""
        return frozenset(c for c in (self.code, self.status_code) if c is not None)


class RequestLimitReached(ApiResponseError):
    """The API rejected the call because a usage limit was hit."""

    @property
    def retry_after(self) -> Optional[int]:
        """Seconds until access is regained, when the API reported it."""
        return self.usage.estimated_time_to_regain_access
