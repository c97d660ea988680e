"""Deferral of API calls while the platform reports a usage limit."""

import asyncio
import time
from typing import Any, Callable, Dict


class RateLimitThrottle:
    """Per-endpoint gate driven by estimated_time_to_regain_access.

    When a response reports a non-zero time to regain access, further calls to
    the same endpoint wait that long instead of being retried immediately. The
    deferral is advisory: nothing is raised, callers simply wait.
    """

    def __init__(
        self,
        now: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], Any] = asyncio.sleep,
        max_deferral: float = 3600.0,
    ):
        """Initialize throttle.

        Args:
            now: Clock function for time operations (default: time.monotonic)
            sleeper: Async sleep function (default: asyncio.sleep)
            max_deferral: Upper bound on a single deferral in seconds
        """
        self._now = now
        self._sleep = sleeper
        self.max_deferral = max_deferral

        # {endpoint: monotonic time at which calls may resume}
        self._blocked_until: Dict[str, float] = {}

    def defer(self, endpoint: str, seconds: float) -> None:
        """Block calls to an endpoint for the given number of seconds.

        A later deferral never shortens an earlier, longer one.
        """
        if seconds <= 0:
            return
        until = self._now() + min(seconds, self.max_deferral)
        self._blocked_until[endpoint] = max(until, self._blocked_until.get(endpoint, 0.0))

    def blocked_for(self, endpoint: str) -> float:
        """Seconds remaining before calls to an endpoint may resume."""
        until = self._blocked_until.get(endpoint)
        if until is None:
            return 0.0
        remaining = until - self._now()
        if remaining <= 0:
            del self._blocked_until[endpoint]
            return 0.0
        return remaining

    async def acquire(self, endpoint: str) -> None:
        """Wait until calls to the endpoint are allowed again."""
        while True:
            remaining = self.blocked_for(endpoint)
            if remaining <= 0:
                return
            await self._sleep(remaining)
