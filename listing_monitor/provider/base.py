from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Protocol


class SourceError(Exception):
    def __init__(self, message: str, *, url: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class TransientFetchError(SourceError):
    """Network failure, timeout or non-2xx response; retried on the next tick."""


class RateLimitError(TransientFetchError):
    """HTTP 429 from upstream."""


class MalformedResponseError(SourceError):
    """Payload did not have the expected shape."""


@dataclass(slots=True)
class Listing:
    collection_id: str
    mint: str
    price: Decimal
    listing_url: str
    timestamp: int
    image_url: str | None = None
    name: str | None = None
    seller: str | None = None
    signature: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection_id,
            "mint": self.mint,
            "price": float(self.price),
            "listingUrl": self.listing_url,
            "timestamp": self.timestamp,
            "imageUrl": self.image_url,
            "name": self.name,
            "seller": self.seller,
            "signature": self.signature,
        }


@dataclass(slots=True)
class CollectionMetadata:
    collection_id: str
    name: str
    image: str

    @classmethod
    def fallback(cls, collection_id: str) -> "CollectionMetadata":
        return cls(collection_id=collection_id, name=collection_id, image="")

    def to_dict(self) -> dict[str, str]:
        return {"id": self.collection_id, "name": self.name, "image": self.image}


class ListingSource(Protocol):
    source_id: str

    async def snapshot_listings(self, collection_id: str) -> list[Listing]: ...

    async def fetch_activity_events(self, collection_id: str) -> list[dict[str, Any]]: ...

    def listings_from_activity(self, collection_id: str, events: Iterable[dict[str, Any]]) -> list[Listing]: ...

    async def resolve_display_name(self, mint: str) -> str | None: ...

    async def fetch_collection_metadata(self, collection_id: str) -> CollectionMetadata: ...


def to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result
