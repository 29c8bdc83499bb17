from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Protocol

from ..provider.base import Listing

LOGGER = logging.getLogger(__name__)


class Sink(Protocol):
    async def send(self, message: dict[str, Any]) -> None: ...


class BroadcastHub:
    """Fans published listings out to live sinks and replays history to new ones.

    History mutation and delivery happen under one lock, so a sink that joins
    sees every listing exactly once: either in its replay or as a live publish.
    """

    def __init__(self, history_capacity: int = 1000, *, send_timeout: float = 5.0) -> None:
        self._history: deque[Listing] = deque(maxlen=max(history_capacity, 1))
        self._sinks: dict[int, Sink] = {}
        self._lock = asyncio.Lock()
        self._next_id = 0
        self._send_timeout = send_timeout

    @property
    def history_capacity(self) -> int:
        return self._history.maxlen or 0

    async def subscribe(self, sink: Sink) -> int | None:
        async with self._lock:
            self._next_id += 1
            client_id = self._next_id
            try:
                await self._send(sink, {"type": "connected", "clientId": client_id})
                if self._history:
                    LOGGER.info(
                        "Replaying history to client",
                        extra={"client_id": client_id, "count": len(self._history)},
                    )
                for listing in list(self._history):
                    await self._send(sink, _listing_message(listing))
            except Exception:
                LOGGER.warning("Client failed during replay", exc_info=True, extra={"client_id": client_id})
                return None
            self._sinks[client_id] = sink
        LOGGER.info("Client connected", extra={"client_id": client_id, "clients": len(self._sinks)})
        return client_id

    def unsubscribe(self, client_id: int) -> None:
        if self._sinks.pop(client_id, None) is not None:
            LOGGER.info("Client disconnected", extra={"client_id": client_id, "clients": len(self._sinks)})

    async def publish(self, listing: Listing) -> None:
        async with self._lock:
            self._history.append(listing)
            await self._fan_out(_listing_message(listing))

    async def broadcast_message(self, kind: str, data: Any) -> None:
        async with self._lock:
            await self._fan_out({"type": kind, "data": data})

    async def clear_history(self) -> None:
        async with self._lock:
            self._history.clear()

    def history(self) -> list[Listing]:
        return list(self._history)

    def client_count(self) -> int:
        return len(self._sinks)

    async def _fan_out(self, message: dict[str, Any]) -> None:
        for client_id, sink in list(self._sinks.items()):
            if client_id not in self._sinks:
                continue
            try:
                await self._send(sink, message)
            except asyncio.TimeoutError:
                LOGGER.warning("Dropping client stalled on delivery", extra={"client_id": client_id})
                self.unsubscribe(client_id)
            except Exception:
                LOGGER.warning("Dropping client after failed delivery", exc_info=True, extra={"client_id": client_id})
                self.unsubscribe(client_id)

    async def _send(self, sink: Sink, message: dict[str, Any]) -> None:
        if self._send_timeout > 0:
            await asyncio.wait_for(sink.send(message), timeout=self._send_timeout)
        else:
            await sink.send(message)


def _listing_message(listing: Listing) -> dict[str, Any]:
    return {"type": "listing", "data": listing.to_dict()}
