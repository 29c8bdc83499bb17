from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from .provider.base import to_decimal

LOGGER = logging.getLogger(__name__)

TargetListener = Callable[[Optional["Target"]], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class Target:
    price_max: Decimal
    collection_id: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "Target":
        if not isinstance(payload, dict):
            raise ValueError("Target payload must be an object")
        price_max = to_decimal(payload.get("priceMax"))
        if price_max is None or price_max < 0:
            raise ValueError("priceMax must be a non-negative number")
        collection = payload.get("collectionId")
        if collection is not None and not isinstance(collection, str):
            raise ValueError("collectionId must be a string")
        return cls(price_max=price_max, collection_id=(collection or "").strip() or None)

    def to_dict(self) -> dict[str, Any]:
        return {"priceMax": float(self.price_max), "collectionId": self.collection_id}


class TargetStore:
    """Holds the active target in memory and notifies listeners on change."""

    def __init__(self, initial: Target | None = None) -> None:
        self._target = initial
        self._listeners: list[TargetListener] = []

    def add_listener(self, listener: TargetListener) -> None:
        self._listeners.append(listener)

    def get_target(self) -> Target | None:
        return self._target

    async def set_target(self, target: Target) -> None:
        self._target = target
        LOGGER.info(
            "Target set",
            extra={"collection": target.collection_id, "price_max": str(target.price_max)},
        )
        await self._notify()

    async def remove_target(self) -> None:
        if self._target is None:
            return
        self._target = None
        LOGGER.info("Target removed")
        await self._notify()

    async def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                await listener(self._target)
            except Exception:
                LOGGER.exception("Target listener failed")
