"""Commerce platform API client with retries, throttling and idempotency."""

from typing import Any, Dict, Optional, Type

import httpx

from catalog_feeds.api.exceptions import (
    RATE_LIMIT_ERROR_CODES,
    ApiResponseError,
    ApiTransportError,
    RequestLimitReached,
)
from catalog_feeds.api.http_client import AsyncHTTPClient
from catalog_feeds.api.request import (
    ApiRequest,
    FeedUploadCreateRequest,
    LogEventRequest,
    ProductCreateRequest,
    ProductDeleteRequest,
    ProductReadRequest,
    ProductUpdateRequest,
)
from catalog_feeds.api.response import ApiResponse
from catalog_feeds.api.retry_handler import RetryHandler
from catalog_feeds.api.throttle import RateLimitThrottle
from catalog_feeds.models.config import ApiConfig


def build_http_client(config: ApiConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> AsyncHTTPClient:
    """HTTP client carrying the configured timeouts and bearer token."""
    headers = {"Accept": "application/json"}
    if config.access_token:
        headers["Authorization"] = f"Bearer {config.access_token}"
    return AsyncHTTPClient(
        connect_timeout=config.connect_timeout,
        read_timeout=config.read_timeout,
        headers=headers,
        transport=transport
    )


class CommerceApiClient:
    """
    Sends typed API requests through the reliability layer.

    Responsibilities:
    - Attach the request's idempotency key to every attempt
    - Retry per the request type's policy (transport errors always)
    - Record rate-limit usage on the request and defer the endpoint while
      the platform reports a time to regain access
    - Raise typed errors for terminal failures
    """

    def __init__(
        self,
        config: ApiConfig,
        http_client: AsyncHTTPClient,
        throttle: Optional[RateLimitThrottle] = None,
        retry_handler: Optional[RetryHandler] = None,
        logger=None
    ):
        self.config = config
        self.http_client = http_client
        self.throttle = throttle or RateLimitThrottle()
        self.retry_handler = retry_handler or RetryHandler(
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            jitter_max=config.retry_jitter_max,
            logger=logger
        )
        self.logger = logger

    def url_for(self, request: ApiRequest) -> str:
        return f"{self.config.base_url}/{self.config.api_version}{request.path}"

    def build_request(self, request_class: Type[ApiRequest], *args, **kwargs) -> ApiRequest:
        """Instantiate a request type with its configured retry policy."""
        policy = self.config.policy_for(request_class.request_type)
        return request_class(*args, policy=policy, **kwargs)

    async def perform_request(self, request: ApiRequest) -> ApiResponse:
        """
        Send a request, retrying per its policy.

        Args:
            request: Logical request; the same instance is resent on retries

        Returns:
            Successful API response

        Raises:
            ApiTransportError: Network failure after the retry limit
            RequestLimitReached: Throttled and not retried
            ApiResponseError: Any other terminal API error
        """
        return await self.retry_handler.execute(request, self._send_once)

    async def _send_once(self, request: ApiRequest) -> ApiResponse:
        await self.throttle.acquire(request.rate_limit_key)

        try:
            response = await self.http_client.request(
                request.method,
                self.url_for(request),
                params=request.params or None,
                json=request.data if request.is_mutating else None,
                headers=request.get_headers()
            )
        except httpx.TransportError as e:
            raise ApiTransportError(f"{request.request_type}: {e.__class__.__name__}: {e}") from e

        api_response = ApiResponse.from_httpx(response)
        request.rate_limit_usage = api_response.usage

        regain = api_response.usage.estimated_time_to_regain_access
        if regain:
            self.throttle.defer(request.rate_limit_key, regain)
            if self.logger:
                self.logger.rate_limited(
                    endpoint=request.rate_limit_key,
                    seconds=regain,
                    call_count=api_response.usage.call_count
                )

        if api_response.has_error:
            code = api_response.error_code
            error_class = ApiResponseError
            if code in RATE_LIMIT_ERROR_CODES or api_response.status_code == 429:
                error_class = RequestLimitReached
            raise error_class(
                f"{request.request_type}: {api_response.error_message}",
                status_code=api_response.status_code,
                code=code,
                usage=api_response.usage
            )

        return api_response

    async def create_feed_upload(self, integration_id: str, data: Dict[str, Any]) -> ApiResponse:
        return await self.perform_request(self.build_request(FeedUploadCreateRequest, integration_id, data))

    async def create_product_item(self, catalog_id: str, data: Dict[str, Any]) -> ApiResponse:
        return await self.perform_request(self.build_request(ProductCreateRequest, catalog_id, data))

    async def update_product_item(self, product_id: str, data: Dict[str, Any]) -> ApiResponse:
        return await self.perform_request(self.build_request(ProductUpdateRequest, product_id, data))

    async def delete_product_item(self, product_id: str) -> ApiResponse:
        return await self.perform_request(self.build_request(ProductDeleteRequest, product_id))

    async def read_product_item(self, product_id: str, fields=("id",)) -> ApiResponse:
        return await self.perform_request(self.build_request(ProductReadRequest, product_id, fields))

    async def log_event(self, integration_id: str, context: Dict[str, Any]) -> ApiResponse:
        return await self.perform_request(self.build_request(LogEventRequest, integration_id, context))
