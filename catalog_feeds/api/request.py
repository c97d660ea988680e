"""Outbound API request types.

Every request instance is one logical call: it owns its idempotency key, its
retry counter and the rate-limit usage reported by its latest response, so a
retry resends exactly the same operation.
"""

from typing import Any, Dict, FrozenSet, Iterable, Optional

from catalog_feeds.api.idempotency import IdempotentRequestMixin
from catalog_feeds.api.rate_limit import RateLimitUsage
from catalog_feeds.models.config import RequestPolicy

DEFAULT_RETRY_LIMIT = 5

IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"


class RetryableRequestMixin:
    """Retry bookkeeping for one logical request."""

    _retry_count: int = 0
    _retry_limit: int = DEFAULT_RETRY_LIMIT
    _retry_codes: FrozenSet[int] = frozenset()

    def get_retry_count(self) -> int:
        return self._retry_count

    def mark_retry(self) -> None:
        self._retry_count += 1

    def get_retry_limit(self) -> int:
        return self._retry_limit

    def get_retry_codes(self) -> FrozenSet[int]:
        return self._retry_codes

    def can_retry(self, codes: Iterable[int] = (), transport_error: bool = False) -> bool:
        """
        Whether another attempt is allowed.

        Transport errors are always retryable up to the limit; API errors
        only when one of their codes was opted in for this request type.

        Args:
            codes: Codes of the failure (API error code, HTTP status)
            transport_error: Whether the failure happened below HTTP
        """
        if self._retry_count >= self._retry_limit:
            return False
        if transport_error:
            return True
        return any(code in self._retry_codes for code in codes)


class ApiRequest(IdempotentRequestMixin, RetryableRequestMixin):
    """Base class for commerce API calls."""

    request_type = "request"
    method = "GET"

    def __init__(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        policy: Optional[RequestPolicy] = None
    ):
        self.path = "/" + path.lstrip("/")
        self.params = dict(params or {})
        self.data = data
        self.rate_limit_usage = RateLimitUsage()

        policy = policy or RequestPolicy()
        self._retry_limit = policy.retry_limit
        self._retry_codes = frozenset(policy.retry_codes)

    @property
    def is_mutating(self) -> bool:
        return self.method in ("POST", "PUT", "PATCH", "DELETE")

    @property
    def rate_limit_key(self) -> str:
        """Throttling scope: the graph node the request targets."""
        return self.path.strip("/").split("/")[0] or self.request_type

    def get_headers(self) -> Dict[str, str]:
        return {IDEMPOTENCY_KEY_HEADER: self.get_idempotency_key()}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.method} {self.path} retries={self._retry_count}>"


class FeedUploadCreateRequest(ApiRequest):
    """Asks the platform to pull a published feed file."""

    request_type = "feed_upload_create"
    method = "POST"

    def __init__(self, integration_id: str, data: Dict[str, Any], policy: Optional[RequestPolicy] = None):
        super().__init__(f"/{integration_id}/file_update", data=data, policy=policy)


class ProductCreateRequest(ApiRequest):
    request_type = "product_create"
    method = "POST"

    def __init__(self, catalog_id: str, data: Dict[str, Any], policy: Optional[RequestPolicy] = None):
        super().__init__(f"/{catalog_id}/products", data=data, policy=policy)


class ProductUpdateRequest(ApiRequest):
    request_type = "product_update"
    method = "POST"

    def __init__(self, product_id: str, data: Dict[str, Any], policy: Optional[RequestPolicy] = None):
        super().__init__(f"/{product_id}", data=data, policy=policy)


class ProductDeleteRequest(ApiRequest):
    request_type = "product_delete"
    method = "DELETE"

    def __init__(self, product_id: str, policy: Optional[RequestPolicy] = None):
        super().__init__(f"/{product_id}", policy=policy)


class ProductReadRequest(ApiRequest):
    request_type = "product_read"
    method = "GET"

    def __init__(self, product_id: str, fields: Iterable[str] = ("id",), policy: Optional[RequestPolicy] = None):
        super().__init__(f"/{product_id}", params={"fields": ",".join(fields)}, policy=policy)


class LogEventRequest(ApiRequest):
    """Ships an error/telemetry context to the platform's integration log."""

    request_type = "log_event"
    method = "POST"

    def __init__(self, integration_id: str, context: Dict[str, Any], policy: Optional[RequestPolicy] = None):
        super().__init__(f"/{integration_id}/logs", data={"context": context}, policy=policy)
