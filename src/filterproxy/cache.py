from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

Clock = Callable[[], float]


class SingleFlightCache(Generic[T]):
    """Guarded ``{value, last_refreshed}`` cell with a refresh interval.

    ``get_or_refresh`` decides between serving the cached value and
    refreshing it while holding one lock, so at most one refresh per cell
    is ever in flight. A failed refresh leaves the cell untouched and the
    next caller refreshes again.
    """

    def __init__(
        self,
        initial: T,
        refresh_interval: float = 0.0,
        *,
        clock: Clock = time.monotonic,
        name: str = "",
    ) -> None:
        if refresh_interval < 0:
            raise ValueError("refresh_interval must not be negative")
        self._value = initial
        self._refresh_interval = refresh_interval
        self._clock = clock
        self._name = name
        self._last_refreshed: float | None = None
        self._lock = asyncio.Lock()

    @property
    def value(self) -> T:
        return self._value

    @property
    def last_refreshed(self) -> float | None:
        return self._last_refreshed

    @property
    def refresh_interval(self) -> float:
        return self._refresh_interval

    def is_fresh(self, now: float) -> bool:
        """True if ``now`` is still inside the refresh interval."""
        if self._last_refreshed is None:
            return False
        return now - self._last_refreshed < self._refresh_interval

    async def get_or_refresh(
        self,
        refresh: Callable[[], Awaitable[T]],
        now: float | None = None,
    ) -> T:
        """
        Return the cached value, refreshing it first if it is stale.

        Args:
            refresh: Coroutine factory producing the new value; its exceptions
                propagate to the caller unchanged
            now: Call time; read from the clock after the lock is acquired
                when omitted
        """
        async with self._lock:
            if now is None:
                now = self._clock()
            if self.is_fresh(now):
                return self._value

            value = await refresh()
            self._value = value
            self._last_refreshed = now
            logger.debug("cache_refreshed", cache=self._name, refreshed_at=now)
            return value
