from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

from listing_monitor.monitor.hub import BroadcastHub
from listing_monitor.provider.base import Listing


class RecordingSink:
    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def send(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    def mints(self) -> list[str]:
        return [m["data"]["mint"] for m in self.messages if m["type"] == "listing"]


class BrokenSink:
    def __init__(self, fail_after: int = 0) -> None:
        self.calls = 0
        self._fail_after = fail_after

    async def send(self, message: dict[str, Any]) -> None:
        self.calls += 1
        if self.calls > self._fail_after:
            raise ConnectionResetError("client went away")


def make_listing(mint: str) -> Listing:
    return Listing(
        collection_id="degods",
        mint=mint,
        price=Decimal("1.5"),
        listing_url=f"https://magiceden.io/item-details/{mint}",
        timestamp=1_700_000_000_000,
    )


def test_late_subscriber_gets_bounded_history_then_live_events() -> None:
    async def scenario() -> None:
        hub = BroadcastHub(history_capacity=3)
        for i in range(5):
            await hub.publish(make_listing(f"m{i}"))
        sink = RecordingSink()
        client_id = await hub.subscribe(sink)
        assert client_id is not None
        assert sink.messages[0] == {"type": "connected", "clientId": client_id}
        assert sink.mints() == ["m2", "m3", "m4"]

        await hub.publish(make_listing("m5"))
        assert sink.mints() == ["m2", "m3", "m4", "m5"]
        assert [l.mint for l in hub.history()] == ["m3", "m4", "m5"]

    asyncio.run(scenario())


def test_publish_delivers_in_registration_order_and_drops_failed_sink() -> None:
    async def scenario() -> None:
        hub = BroadcastHub()
        order: list[str] = []

        class NamedSink:
            def __init__(self, name: str) -> None:
                self.name = name

            async def send(self, message: dict[str, Any]) -> None:
                if message["type"] == "listing":
                    order.append(self.name)

        await hub.subscribe(NamedSink("first"))
        await hub.subscribe(BrokenSink(fail_after=1))
        await hub.subscribe(NamedSink("third"))
        assert hub.client_count() == 3

        await hub.publish(make_listing("A"))
        assert order == ["first", "third"]
        assert hub.client_count() == 2

        await hub.publish(make_listing("B"))
        assert order == ["first", "third", "first", "third"]

    asyncio.run(scenario())


def test_sink_failing_during_replay_is_not_admitted() -> None:
    async def scenario() -> None:
        hub = BroadcastHub()
        await hub.publish(make_listing("A"))
        assert await hub.subscribe(BrokenSink()) is None
        assert hub.client_count() == 0

    asyncio.run(scenario())


def test_unsubscribe_stops_delivery() -> None:
    async def scenario() -> None:
        hub = BroadcastHub()
        sink = RecordingSink()
        client_id = await hub.subscribe(sink)
        assert client_id is not None
        hub.unsubscribe(client_id)
        hub.unsubscribe(client_id)
        await hub.publish(make_listing("A"))
        assert sink.mints() == []
        assert hub.client_count() == 0

    asyncio.run(scenario())


def test_clear_history_keeps_live_sinks() -> None:
    async def scenario() -> None:
        hub = BroadcastHub()
        sink = RecordingSink()
        await hub.subscribe(sink)
        await hub.publish(make_listing("A"))
        await hub.clear_history()
        assert hub.history() == []
        await hub.publish(make_listing("B"))
        assert sink.mints() == ["A", "B"]

        late = RecordingSink()
        await hub.subscribe(late)
        assert late.mints() == ["B"]

    asyncio.run(scenario())


def test_broadcast_message_is_not_recorded_in_history() -> None:
    async def scenario() -> None:
        hub = BroadcastHub()
        sink = RecordingSink()
        await hub.subscribe(sink)
        await hub.broadcast_message("collection", {"id": "degods"})
        assert sink.messages[-1] == {"type": "collection", "data": {"id": "degods"}}
        assert hub.history() == []

    asyncio.run(scenario())


def test_subscribe_concurrent_with_publish_has_no_gap_or_duplicate() -> None:
    async def scenario() -> None:
        hub = BroadcastHub()

        class SlowSink(RecordingSink):
            async def send(self, message: dict[str, Any]) -> None:
                await asyncio.sleep(0)
                await super().send(message)

        for i in range(3):
            await hub.publish(make_listing(f"m{i}"))
        sink = SlowSink()
        await asyncio.gather(
            hub.subscribe(sink),
            hub.publish(make_listing("m3")),
            hub.publish(make_listing("m4")),
        )
        assert sink.mints() == ["m0", "m1", "m2", "m3", "m4"]

    asyncio.run(scenario())


def test_stalled_sink_is_dropped_without_blocking_others() -> None:
    async def scenario() -> None:
        hub = BroadcastHub(send_timeout=0.05)

        class StalledSink(RecordingSink):
            async def send(self, message: dict[str, Any]) -> None:
                if message["type"] == "listing":
                    await asyncio.Event().wait()
                await super().send(message)

        stalled = StalledSink()
        healthy = RecordingSink()
        await hub.subscribe(stalled)
        await hub.subscribe(healthy)

        await asyncio.wait_for(hub.publish(make_listing("A")), timeout=2)
        assert healthy.mints() == ["A"]
        assert hub.client_count() == 1

        await hub.publish(make_listing("B"))
        assert healthy.mints() == ["A", "B"]

        late_stalled = StalledSink()
        assert await asyncio.wait_for(hub.subscribe(late_stalled), timeout=2) is None
        assert hub.client_count() == 1

    asyncio.run(scenario())
