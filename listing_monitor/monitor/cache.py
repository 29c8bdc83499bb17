from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable, NamedTuple

from ..provider.base import Listing

LOGGER = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class MintEntry(NamedTuple):
    price: Decimal
    seen_at: int


@dataclass(slots=True)
class FilterResult:
    new: list[Listing]
    duplicates: list[Listing]


class DedupCache:
    """Remembers observed listings so each one is alerted at most once.

    A listing with a signature is new only if that signature is unknown. Without
    a signature the mint decides: unseen mints are new, and a seen mint is new
    again only when its price drops below the recorded one.
    """

    def __init__(self, max_age_ms: int = 10 * 60 * 1000, *, clock: Callable[[], int] = now_ms) -> None:
        self._max_age_ms = max_age_ms
        self._clock = clock
        self._mints: dict[str, MintEntry] = {}
        self._signatures: dict[str, int] = {}

    @property
    def max_age_ms(self) -> int:
        return self._max_age_ms

    def has_mint(self, mint: str) -> bool:
        return mint in self._mints

    def has_signature(self, signature: str) -> bool:
        return signature in self._signatures

    def is_new(self, listing: Listing) -> bool:
        if listing.signature:
            return listing.signature not in self._signatures
        cached = self._mints.get(listing.mint)
        if cached is None:
            return True
        if listing.price < cached.price:
            LOGGER.debug(
                "Price drop detected",
                extra={"mint": listing.mint, "old_price": str(cached.price), "new_price": str(listing.price)},
            )
            return True
        return False

    def filter_new_listings(self, batch: Iterable[Listing]) -> FilterResult:
        result = FilterResult(new=[], duplicates=[])
        for listing in batch:
            if self.is_new(listing):
                self._record(listing)
                result.new.append(listing)
            else:
                result.duplicates.append(listing)
        return result

    def _record(self, listing: Listing) -> None:
        seen_at = self._clock()
        if listing.signature:
            self._signatures[listing.signature] = seen_at
        self._mints[listing.mint] = MintEntry(price=listing.price, seen_at=seen_at)

    def evict_expired(self) -> tuple[int, int]:
        cutoff = self._clock() - self._max_age_ms
        stale_mints = [mint for mint, entry in self._mints.items() if entry.seen_at < cutoff]
        for mint in stale_mints:
            del self._mints[mint]
        stale_signatures = [sig for sig, seen_at in self._signatures.items() if seen_at < cutoff]
        for sig in stale_signatures:
            del self._signatures[sig]
        if stale_mints or stale_signatures:
            LOGGER.info(
                "Evicted expired cache entries",
                extra={"mints": len(stale_mints), "signatures": len(stale_signatures), "size": self.size()},
            )
        return len(stale_mints), len(stale_signatures)

    def size(self) -> int:
        return len(self._mints) + len(self._signatures)

    def clear(self) -> None:
        self._mints.clear()
        self._signatures.clear()
