"""Commerce API client with retry, rate-limit and idempotency handling."""

from .client import CommerceApiClient
from .exceptions import ApiException, ApiResponseError, ApiTransportError, RequestLimitReached
from .rate_limit import RateLimitUsage
from .throttle import RateLimitThrottle

__all__ = [
    "ApiException",
    "ApiResponseError",
    "ApiTransportError",
    "CommerceApiClient",
    "RateLimitThrottle",
    "RateLimitUsage",
    "RequestLimitReached",
]
