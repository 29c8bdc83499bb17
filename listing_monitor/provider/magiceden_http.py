from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Iterable
from urllib.parse import quote

import aiohttp
import orjson

from ..config import SourceConfig
from .base import (
    CollectionMetadata,
    Listing,
    ListingSource,
    MalformedResponseError,
    RateLimitError,
    SourceError,
    TransientFetchError,
    to_decimal,
)
from .rate import RateGovernor

LOGGER = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class MagicEdenHttpSource(ListingSource):
    def __init__(
        self,
        config: SourceConfig,
        *,
        governor: RateGovernor | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._config = config
        self.source_id = "magiceden"
        self._api_base = config.api_base.rstrip("/")
        self._governor = governor or RateGovernor(config.name_min_interval_seconds)
        self._clock = clock
        self._session: aiohttp.ClientSession | None = None
        self._names: dict[str, str] = {}

    @property
    def governor(self) -> RateGovernor:
        return self._governor

    async def startup(self) -> None:
        if self._session is not None:
            return
        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_seconds)
        headers = {
            "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            "Accept": "application/json",
        }
        self._session = aiohttp.ClientSession(timeout=timeout, headers=headers)
        LOGGER.info(
            "HTTP session opened",
            extra={"api_base": self._api_base, "timeout": self._config.request_timeout_seconds},
        )

    async def shutdown(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def snapshot_listings(self, collection_id: str) -> list[Listing]:
        url = f"{self._api_base}/collections/{quote(collection_id, safe='')}/listings"
        params = {"limit": self._config.snapshot_limit, "sort": "updatedAt"}
        try:
            payload = await self._request_json(url, params)
            items = self._expect_list(payload, url)
        except MalformedResponseError as exc:
            LOGGER.warning("Malformed snapshot response", extra={"url": url, "error": str(exc)})
            return []
        polled_at = self._clock()
        listings: list[Listing] = []
        for item in items:
            listing = self._convert_snapshot_item(collection_id, item, polled_at)
            if listing is not None:
                listings.append(listing)
        LOGGER.debug(
            "Fetched snapshot",
            extra={"collection": collection_id, "count": len(listings), "raw_count": len(items)},
        )
        return listings

    async def fetch_activity_events(self, collection_id: str) -> list[dict[str, Any]]:
        url = f"{self._api_base}/collections/{quote(collection_id, safe='')}/activities"
        try:
            payload = await self._request_json(url, {"limit": self._config.activity_limit})
            return self._expect_list(payload, url)
        except SourceError as exc:
            LOGGER.warning(
                "Activity fetch failed",
                extra={"collection": collection_id, "error": str(exc), "status": exc.status},
            )
            return []

    def listings_from_activity(self, collection_id: str, events: Iterable[dict[str, Any]]) -> list[Listing]:
        listings: list[Listing] = []
        for event in events:
            if event.get("type") != "list":
                continue
            mint = event.get("tokenMint")
            price = to_decimal(event.get("price"))
            if not mint or price is None:
                continue
            block_time = event.get("blockTime") or 0
            try:
                timestamp = int(float(block_time) * 1000)
            except (TypeError, ValueError):
                timestamp = 0
            listings.append(
                Listing(
                    collection_id=collection_id,
                    mint=str(mint),
                    price=price,
                    listing_url=self._item_url(str(mint)),
                    timestamp=timestamp,
                    image_url=event.get("image") or None,
                    seller=event.get("seller") or None,
                    signature=event.get("signature") or None,
                )
            )
        return listings

    async def resolve_display_name(self, mint: str) -> str | None:
        cached = self._names.get(mint)
        if cached is not None:
            return cached
        await self._governor.wait_turn()
        url = f"{self._api_base}/tokens/{quote(mint, safe='')}"
        try:
            payload = await self._request_json(url)
        except SourceError as exc:
            LOGGER.warning("Name resolution failed", extra={"mint": mint, "error": str(exc), "status": exc.status})
            return None
        name = payload.get("name") if isinstance(payload, dict) else None
        if not name:
            return None
        self._names[mint] = str(name)
        return self._names[mint]

    async def fetch_collection_metadata(self, collection_id: str) -> CollectionMetadata:
        url = f"{self._api_base}/collections/{quote(collection_id, safe='')}"
        try:
            payload = await self._request_json(url)
            if not isinstance(payload, dict):
                raise MalformedResponseError("Expected object", url=url)
        except SourceError as exc:
            LOGGER.info(
                "Collection metadata unavailable, using fallback",
                extra={"collection": collection_id, "error": str(exc)},
            )
            return CollectionMetadata.fallback(collection_id)
        return CollectionMetadata(
            collection_id=str(payload.get("symbol") or collection_id),
            name=str(payload.get("name") or collection_id),
            image=str(payload.get("image") or ""),
        )

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            await self.startup()
        if self._session is None:  # pragma: no cover
            raise RuntimeError("HTTP session is not initialized")
        return self._session

    async def _request_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        session = await self._ensure_session()
        try:
            async with session.get(url, params=params) as response:
                if response.status == 429:
                    raise RateLimitError("429 - Too Many Requests", url=url, status=429)
                if response.status >= 400:
                    raise TransientFetchError(f"HTTP error status {response.status}", url=url, status=response.status)
                body = await response.read()
        except asyncio.TimeoutError as exc:
            raise TransientFetchError("Request timed out", url=url) from exc
        except aiohttp.ClientError as exc:
            raise TransientFetchError(f"HTTP request failed: {exc}", url=url) from exc
        try:
            return orjson.loads(body)
        except orjson.JSONDecodeError as exc:
            raise MalformedResponseError("Response is not valid JSON", url=url) from exc

    @staticmethod
    def _expect_list(payload: Any, url: str) -> list[dict[str, Any]]:
        if not isinstance(payload, list):
            raise MalformedResponseError(f"Expected array, got {type(payload).__name__}", url=url)
        return [item for item in payload if isinstance(item, dict)]

    def _convert_snapshot_item(self, collection_id: str, item: dict[str, Any], polled_at: int) -> Listing | None:
        mint = item.get("tokenMint")
        price = to_decimal(item.get("price"))
        if not mint or price is None:
            return None
        extra = item.get("extra") if isinstance(item.get("extra"), dict) else {}
        token = item.get("token") if isinstance(item.get("token"), dict) else {}
        return Listing(
            collection_id=collection_id,
            mint=str(mint),
            price=price,
            listing_url=self._item_url(str(mint)),
            # Snapshot items carry no event time; the poll time stands in until warmup corrects it
            timestamp=polled_at,
            image_url=extra.get("img") or token.get("image") or None,
            name=token.get("name") or None,
            seller=item.get("seller") or None,
        )

    def _item_url(self, mint: str) -> str:
        return f"{self._config.item_url_base.rstrip('/')}/{mint}"
