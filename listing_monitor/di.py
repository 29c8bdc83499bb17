from __future__ import annotations

import logging

from .api.server import HttpServer, create_app
from .config import AppConfig
from .monitor.cache import DedupCache
from .monitor.hub import BroadcastHub
from .monitor.scheduler import PollScheduler
from .monitor.sweeper import CacheSweeper
from .provider.magiceden_http import MagicEdenHttpSource
from .provider.rate import RateGovernor
from .targets import Target, TargetStore

LOGGER = logging.getLogger(__name__)


class Container:
    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self.governor = RateGovernor(config.source.name_min_interval_seconds)
        self.source = MagicEdenHttpSource(config.source, governor=self.governor)
        self.cache = DedupCache(config.cache.max_age_ms)
        self.sweeper = CacheSweeper(cache=self.cache, cache_config=config.cache, logging_config=config.logging)
        self.hub = BroadcastHub(config.hub.history_capacity, send_timeout=config.hub.send_timeout_seconds)
        self.targets = TargetStore(self._initial_target())
        self.scheduler = PollScheduler(
            source=self.source,
            cache=self.cache,
            hub=self.hub,
            targets=self.targets,
            poller_config=config.poller,
            default_collection=config.target.collection_id,
        )
        self.targets.add_listener(self.scheduler.on_target_changed)
        self.app = create_app(hub=self.hub, scheduler=self.scheduler, targets=self.targets)
        self.http_server = HttpServer(self.app, config.server)

    def _initial_target(self) -> Target | None:
        if self.config.target.price_max is None:
            if self.config.target.collection_id:
                LOGGER.warning("TARGET_COLLECTION set without TARGET_PRICE_MAX; starting idle")
            return None
        return Target(price_max=self.config.target.price_max, collection_id=self.config.target.collection_id)

    async def startup(self) -> None:
        await self.source.startup()
        await self.sweeper.start()
        await self.scheduler.start()
        await self.http_server.start()

    async def shutdown(self) -> None:
        try:
            await self.http_server.shutdown()
            await self.scheduler.stop()
            await self.sweeper.shutdown()
        finally:
            await self.source.shutdown()
