from __future__ import annotations

import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import CacheConfig, LoggingConfig
from .cache import DedupCache

LOGGER = logging.getLogger(__name__)


class CacheSweeper:
    def __init__(
        self,
        *,
        cache: DedupCache,
        cache_config: CacheConfig,
        logging_config: LoggingConfig,
    ) -> None:
        self._cache = cache
        self._config = cache_config
        self._scheduler = AsyncIOScheduler(timezone=logging_config.timezone)
        self._job = None

    async def start(self) -> None:
        self._scheduler.start()
        interval = max(self._config.sweep_interval_seconds, 1)
        trigger = IntervalTrigger(seconds=interval, start_date=datetime.now(self._scheduler.timezone))
        self._job = self._scheduler.add_job(self.sweep, trigger=trigger, max_instances=1, coalesce=True)
        LOGGER.info(
            "Cache sweep job scheduled",
            extra={"interval": interval, "max_age_ms": self._cache.max_age_ms},
        )

    async def shutdown(self) -> None:
        if self._job is not None:
            self._job.remove()
            self._job = None
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    async def sweep(self) -> None:
        try:
            self._cache.evict_expired()
        except Exception:  # pragma: no cover
            LOGGER.exception("Cache sweep failed")
