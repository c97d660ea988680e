"""In-process action scheduler driving feed generation.

Actions are named zero-argument callables (sync or async). A name can be
pending only once, so enqueueing an action that is already waiting is a
no-op. Each action runs under its own timeout; errors are logged and never
propagate to the scheduler loop.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from catalog_feeds.monitoring.logger import StructuredLogger


@dataclass
class ScheduledAction:
    """A pending one-shot or recurring action."""
    name: str
    callback: Callable[[], Any]
    run_at: float
    interval: Optional[float] = None

    @property
    def is_recurring(self) -> bool:
        return self.interval is not None


class ActionScheduler:
    """Named-action queue with per-action timeout."""

    def __init__(
        self,
        action_timeout: Optional[float] = None,
        logger: Optional[StructuredLogger] = None,
        now: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            action_timeout: Seconds an async action may run before it is
                cancelled (None disables the limit)
            logger: Structured logger for action failures
            now: Monotonic clock
        """
        self.action_timeout = action_timeout
        self.logger = logger or StructuredLogger()
        self.now = now
        self._actions: Dict[str, ScheduledAction] = {}

    def enqueue(self, name: str, callback: Callable[[], Any], delay: float = 0.0) -> bool:
        """
        Schedule a one-shot action.

        Returns:
            False if an action with this name is already pending
        """
        if name in self._actions:
            return False
        self._actions[name] = ScheduledAction(name=name, callback=callback, run_at=self.now() + delay)
        return True

    def schedule_recurring(
        self,
        name: str,
        callback: Callable[[], Any],
        interval: float,
        first_run_delay: Optional[float] = None
    ) -> bool:
        """
        Schedule an action every ``interval`` seconds.

        The first run happens after ``first_run_delay`` (default: one
        interval).

        Returns:
            False if an action with this name is already pending
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        if name in self._actions:
            return False
        delay = interval if first_run_delay is None else first_run_delay
        self._actions[name] = ScheduledAction(
            name=name, callback=callback, run_at=self.now() + delay, interval=interval
        )
        return True

    def is_scheduled(self, name: str) -> bool:
        return name in self._actions

    def unschedule(self, name: str) -> bool:
        return self._actions.pop(name, None) is not None

    def pending(self) -> List[str]:
        """Names of pending actions, soonest first."""
        return [action.name for action in sorted(self._actions.values(), key=lambda a: a.run_at)]

    def _due(self) -> List[ScheduledAction]:
        current = self.now()
        return sorted(
            (action for action in self._actions.values() if action.run_at <= current),
            key=lambda a: a.run_at
        )

    def next_run_in(self) -> Optional[float]:
        """Seconds until the next action is due (0 if one is overdue)."""
        if not self._actions:
            return None
        return max(0.0, min(action.run_at for action in self._actions.values()) - self.now())

    async def _execute(self, action: ScheduledAction) -> bool:
        try:
            result = action.callback()
            if inspect.isawaitable(result):
                if self.action_timeout is not None:
                    await asyncio.wait_for(result, timeout=self.action_timeout)
                else:
                    await result
            return True
        except asyncio.TimeoutError:
            self.logger.action_failed(action.name, f"Timed out after {self.action_timeout}s")
        except Exception as e:
            self.logger.action_failed(action.name, str(e) or e.__class__.__name__)
        return False

    async def run_due(self) -> int:
        """
        Run every action that is currently due, once.

        Due actions run concurrently, so a slow batch of one feed does not
        hold up the others. Actions enqueued while this runs wait for the
        next call.

        Returns:
            Number of actions run
        """
        due = self._due()
        for action in due:
            if action.is_recurring:
                action.run_at = self.now() + action.interval
            else:
                del self._actions[action.name]

        await asyncio.gather(*(self._execute(action) for action in due), return_exceptions=True)
        return len(due)

    async def run_until_idle(self, max_actions: int = 100000) -> int:
        """
        Keep running due actions until none are left.

        Recurring actions run at most once per due time, so they do not keep
        the loop alive.

        Returns:
            Number of actions run
        """
        total = 0
        while total < max_actions:
            ran = await self.run_due()
            if not ran:
                break
            total += ran
        return total

    async def run_forever(self, poll_interval: float = 1.0, stop: Optional[asyncio.Event] = None) -> None:
        """Run due actions until ``stop`` is set."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            await self.run_due()
            wait = self.next_run_in()
            wait = poll_interval if wait is None else min(max(wait, 0.01), poll_interval)
            try:
                await asyncio.wait_for(stop.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass
