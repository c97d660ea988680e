"""Retry handler with exponential backoff and jitter."""

import asyncio
import random
from typing import Any, Awaitable, Callable

from catalog_feeds.api.exceptions import ApiResponseError, ApiTransportError
from catalog_feeds.api.request import ApiRequest


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    jitter_max: float = 0.5
) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Formula: min(max_delay, (base_delay * (2 ** attempt)) + random_jitter)

    Args:
        attempt: Retry attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay cap in seconds
        jitter_max: Maximum jitter to add in seconds

    Returns:
        Delay in seconds
    """
    exponential_delay = base_delay * (2 ** attempt)
    jitter = random.uniform(0, jitter_max)
    return min(max_delay, exponential_delay + jitter)


class RetryHandler:
    """
    Runs one logical request until it succeeds or its retry policy says stop.

    Transport errors are retried unconditionally up to the request's limit.
    API errors are retried only when their code is opted in by the request
    type. The request object itself keeps the retry count, so the limit holds
    across every attempt of the same operation.
    """

    def __init__(
        self,
        base_delay: float = 0.5,
        max_delay: float = 4.0,
        jitter_max: float = 0.5,
        sleeper: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger=None
    ):
        """
        Initialize retry handler.

        Args:
            base_delay: Base delay for exponential backoff
            max_delay: Maximum delay cap
            jitter_max: Maximum jitter to add
            sleeper: Async sleep function (default: asyncio.sleep)
            logger: Optional structured logger
        """
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter_max = jitter_max
        self._sleep = sleeper
        self.logger = logger

    def is_retryable(self, request: ApiRequest, error: Exception) -> bool:
        """
        Check if a failed attempt may be resent.

        Args:
            request: The logical request that failed
            error: The failure of the latest attempt

        Returns:
            True if another attempt is allowed
        """
        if isinstance(error, ApiTransportError):
            return request.can_retry(transport_error=True)
        if isinstance(error, ApiResponseError):
            return request.can_retry(codes=error.codes)
        return False

    async def execute(
        self,
        request: ApiRequest,
        func: Callable[[ApiRequest], Awaitable[Any]]
    ) -> Any:
        """
        Execute an attempt function with retry logic.

        Args:
            request: Request to send; reused unchanged across attempts
            func: Coroutine function performing one attempt

        Returns:
            Result from the successful attempt

        Raises:
            ApiException: The last failure once retries stop
        """
        while True:
            try:
                return await func(request)
            except (ApiTransportError, ApiResponseError) as e:
                if not self.is_retryable(request, e):
                    raise

                delay = calculate_backoff_delay(
                    request.get_retry_count(),
                    self.base_delay,
                    self.max_delay,
                    self.jitter_max
                )
                request.mark_retry()

                if self.logger:
                    self.logger.request_retry(
                        request=request.request_type,
                        attempt=request.get_retry_count(),
                        status=getattr(e, "status_code", None),
                        code=getattr(e, "code", None),
                        error=str(e)
                    )

                await self._sleep(delay)
