from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from listing_monitor.targets import Target, TargetStore


def test_target_from_payload() -> None:
    target = Target.from_payload({"priceMax": "1.75", "collectionId": "  degods "})
    assert target == Target(price_max=Decimal("1.75"), collection_id="degods")
    assert Target.from_payload({"priceMax": 3}).collection_id is None
    assert Target.from_payload({"priceMax": 3, "collectionId": ""}).collection_id is None


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {},
        {"priceMax": None},
        {"priceMax": -1},
        {"priceMax": "abc"},
        {"priceMax": True},
        {"priceMax": 1, "collectionId": 5},
    ],
)
def test_target_from_payload_rejects_invalid(payload: object) -> None:
    with pytest.raises(ValueError):
        Target.from_payload(payload)


def test_store_notifies_listeners_and_survives_failures() -> None:
    async def scenario() -> None:
        store = TargetStore()
        seen: list[Target | None] = []

        async def broken(target: Target | None) -> None:
            raise RuntimeError("listener bug")

        async def recorder(target: Target | None) -> None:
            seen.append(target)

        store.add_listener(broken)
        store.add_listener(recorder)

        await store.remove_target()
        assert seen == []

        target = Target(price_max=Decimal("2"), collection_id="degods")
        await store.set_target(target)
        assert store.get_target() == target
        await store.remove_target()
        assert store.get_target() is None
        assert seen == [target, None]

    asyncio.run(scenario())
