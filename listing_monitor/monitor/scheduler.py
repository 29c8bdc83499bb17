from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import time
from typing import Any, Callable, Protocol

from ..config import PollerConfig
from ..provider.base import CollectionMetadata, Listing, ListingSource
from ..targets import Target
from .cache import DedupCache
from .hub import BroadcastHub

LOGGER = logging.getLogger(__name__)


class Phase(str, enum.Enum):
    IDLE = "idle"
    WARMUP = "warmup"
    MONITORING = "monitoring"


class TargetSource(Protocol):
    def get_target(self) -> Target | None: ...


def next_delay_ms(last_cycle_ms: int, period_ms: int = 1000, min_gap_ms: int = 100) -> int:
    """Delay before the next cycle so that cycles start roughly every ``period_ms``."""
    return max(period_ms - last_cycle_ms, min_gap_ms)


class PollScheduler:
    """Drives the warmup/monitoring poll loop for the active target.

    Exactly one cycle runs at a time. Each cycle is tagged with the generation
    current when it started; a target change or stop bumps the generation and
    any later result of an older cycle is discarded.
    """

    def __init__(
        self,
        *,
        source: ListingSource,
        cache: DedupCache,
        hub: BroadcastHub,
        targets: TargetSource,
        poller_config: PollerConfig,
        default_collection: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._cache = cache
        self._hub = hub
        self._targets = targets
        self._config = poller_config
        self._default_collection = default_collection
        self._clock = clock

        self._phase = Phase.IDLE
        self._target: Target | None = None
        self._collection: str | None = None
        self._generation = 0
        self._publish_lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._stopped = False
        self._metadata: dict[str, CollectionMetadata] = {}
        self._last_cycle_ms = 0
        self._cycles = 0

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def collection_id(self) -> str | None:
        return self._collection

    @property
    def last_cycle_ms(self) -> int:
        return self._last_cycle_ms

    def metadata_for(self, collection_id: str) -> CollectionMetadata | None:
        return self._metadata.get(collection_id)

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stopped = False
        await self.on_target_changed(self._targets.get_target())
        self._task = asyncio.create_task(self._run(), name="poll-scheduler")
        LOGGER.info("Poll scheduler started", extra={"phase": self._phase.value})

    async def stop(self) -> None:
        self._stopped = True
        self._generation += 1
        self._wakeup.set()
        task, self._task = self._task, None
        if task is None:
            return
        done, _ = await asyncio.wait({task}, timeout=self._config.stop_grace_seconds)
        if not done:
            LOGGER.warning("Poll cycle still running at stop, cancelling")
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        LOGGER.info("Poll scheduler stopped", extra={"cycles": self._cycles})

    async def on_target_changed(self, target: Target | None) -> None:
        self._generation += 1
        self._target = target
        self._collection = None
        if target is not None:
            self._collection = target.collection_id or self._default_collection
        self._cache.clear()
        async with self._publish_lock:
            await self._hub.clear_history()
        self._phase = Phase.WARMUP if self._collection else Phase.IDLE
        self._wakeup.set()
        LOGGER.info(
            "Target changed",
            extra={
                "collection": self._collection,
                "price_max": str(target.price_max) if target else None,
                "phase": self._phase.value,
            },
        )
        await self._hub.broadcast_message("target", self._target_payload())

    async def run_cycle(self) -> None:
        phase = self._phase
        try:
            target = self._targets.get_target()
            if target != self._target:
                await self.on_target_changed(target)
            generation = self._generation
            phase = self._phase
            if phase is Phase.WARMUP:
                await self._run_warmup(generation)
            elif phase is Phase.MONITORING:
                await self._run_monitoring(generation)
        except Exception as exc:
            LOGGER.exception(
                "Poll cycle failed",
                extra={"phase": phase.value, "collection": self._collection, "error": str(exc)},
            )

    def stats(self) -> dict[str, Any]:
        return {
            "phase": self._phase.value,
            "collection": self._collection,
            "priceMax": float(self._target.price_max) if self._target else None,
            "cacheSize": self._cache.size(),
            "connectedClients": self._hub.client_count(),
            "lastCycleMs": self._last_cycle_ms,
            "cycles": self._cycles,
        }

    async def _run(self) -> None:
        while not self._stopped:
            started = self._clock()
            await self.run_cycle()
            self._last_cycle_ms = int((self._clock() - started) * 1000)
            self._cycles += 1
            if self._stopped:
                break
            delay_ms = next_delay_ms(self._last_cycle_ms, self._config.cycle_period_ms, self._config.min_gap_ms)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wakeup.wait(), timeout=delay_ms / 1000)
            self._wakeup.clear()

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def _run_warmup(self, generation: int) -> None:
        collection = self._collection
        target = self._target
        if collection is None or target is None:
            return
        LOGGER.info("Warmup started", extra={"collection": collection})
        snapshot = await self._source.snapshot_listings(collection)
        if not self._is_current(generation):
            return
        # Upstream sorts newest-first
        snapshot.reverse()

        await asyncio.sleep(self._config.warmup_settle_seconds)
        events = await self._source.fetch_activity_events(collection)
        if not self._is_current(generation):
            return
        activity = self._source.listings_from_activity(collection, events)
        event_times: dict[str, int] = {}
        for event in activity:
            event_times.setdefault(event.mint, event.timestamp)
        corrected = 0
        for listing in snapshot:
            event_time = event_times.get(listing.mint)
            if event_time:
                listing.timestamp = event_time
                corrected += 1

        self._cache.filter_new_listings(snapshot)
        # Signed events already seen here must not re-alert once monitoring starts
        self._cache.filter_new_listings(activity)
        matches = [listing for listing in snapshot if listing.price <= target.price_max]
        published = await self._publish(matches, generation)
        LOGGER.info(
            "Warmup snapshot processed",
            extra={
                "collection": collection,
                "snapshot": len(snapshot),
                "timestamps_corrected": corrected,
                "published": published,
                "cache_size": self._cache.size(),
            },
        )

        await self._ensure_metadata(collection, generation)
        if self._is_current(generation):
            self._phase = Phase.MONITORING
            LOGGER.info("Warmup complete, monitoring", extra={"collection": collection})

    async def _run_monitoring(self, generation: int) -> None:
        collection = self._collection
        target = self._target
        if collection is None or target is None:
            return
        events = await self._source.fetch_activity_events(collection)
        if not self._is_current(generation):
            return
        observed = self._source.listings_from_activity(collection, events)
        fresh = self._cache.filter_new_listings(observed).new
        if not fresh:
            return
        matches = [listing for listing in fresh if listing.price <= target.price_max]
        LOGGER.debug(
            "New listings observed",
            extra={"collection": collection, "new": len(fresh), "matching": len(matches)},
        )
        if not matches:
            return
        # Activity feed is newest-first
        matches.reverse()
        await self._resolve_names(matches)
        await self._publish(matches, generation)

    async def _resolve_names(self, listings: list[Listing]) -> None:
        pending = [listing for listing in listings if not listing.name]
        if not pending:
            return
        results = await asyncio.gather(
            *(self._source.resolve_display_name(listing.mint) for listing in pending),
            return_exceptions=True,
        )
        for listing, result in zip(pending, results):
            if isinstance(result, BaseException):
                LOGGER.warning("Name resolution raised", extra={"mint": listing.mint, "error": repr(result)})
                continue
            if result:
                listing.name = result

    async def _publish(self, listings: list[Listing], generation: int) -> int:
        published = 0
        async with self._publish_lock:
            for listing in listings:
                if not self._is_current(generation):
                    break
                await self._hub.publish(listing)
                published += 1
        if published:
            LOGGER.info(
                "Published listings",
                extra={"collection": self._collection, "count": published, "clients": self._hub.client_count()},
            )
        return published

    async def _ensure_metadata(self, collection: str, generation: int) -> None:
        if collection in self._metadata:
            return
        await asyncio.sleep(self._config.metadata_delay_seconds)
        if not self._is_current(generation):
            return
        try:
            metadata = await self._source.fetch_collection_metadata(collection)
        except Exception:
            LOGGER.exception("Collection metadata lookup failed", extra={"collection": collection})
            metadata = CollectionMetadata.fallback(collection)
        self._metadata[collection] = metadata
        await self._hub.broadcast_message("collection", metadata.to_dict())

    def _target_payload(self) -> dict[str, Any] | None:
        if self._target is None:
            return None
        payload = self._target.to_dict()
        payload["collectionId"] = self._collection
        return payload
