from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

LOGGER = logging.getLogger(__name__)


class RateGovernor:
    """Enforces a minimum spacing between dispatched requests.

    Callers queue on a lock, sleep out whatever is left of the interval since the
    previous dispatch, stamp the new dispatch time and release the lock before
    issuing their request. A caller therefore waits for its own turn only, never
    for another caller's response.
    """

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._min_interval = max(min_interval, 0.0)
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_dispatch: float | None = None

    @property
    def min_interval(self) -> float:
        return self._min_interval

    async def wait_turn(self) -> None:
        if self._min_interval <= 0:
            return
        async with self._lock:
            if self._last_dispatch is not None:
                sleep_for = self._last_dispatch + self._min_interval - self._clock()
                if sleep_for > 0:
                    LOGGER.debug("Rate governor delaying request", extra={"sleep_for": round(sleep_for, 3)})
                    await self._sleep(sleep_for)
            self._last_dispatch = self._clock()
