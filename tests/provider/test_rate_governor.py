from __future__ import annotations

import asyncio

import pytest

from listing_monitor.provider.rate import RateGovernor


class FakeTime:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_first_call_is_immediate_and_later_calls_are_spaced() -> None:
    async def scenario() -> None:
        fake = FakeTime()
        governor = RateGovernor(0.5, clock=fake.clock, sleep=fake.sleep)
        await governor.wait_turn()
        assert fake.sleeps == []

        fake.now += 0.2
        await governor.wait_turn()
        assert fake.sleeps == [pytest.approx(0.3)]

        fake.now += 2.0
        await governor.wait_turn()
        assert len(fake.sleeps) == 1

    asyncio.run(scenario())


def test_concurrent_callers_are_serialized() -> None:
    async def scenario() -> None:
        fake = FakeTime()
        governor = RateGovernor(0.5, clock=fake.clock, sleep=fake.sleep)
        dispatched: list[float] = []

        async def caller() -> None:
            await governor.wait_turn()
            dispatched.append(fake.now)

        await asyncio.gather(*(caller() for _ in range(4)))
        assert dispatched == [pytest.approx(v) for v in (100.0, 100.5, 101.0, 101.5)]

    asyncio.run(scenario())


def test_zero_interval_never_sleeps() -> None:
    async def scenario() -> None:
        fake = FakeTime()
        governor = RateGovernor(0, clock=fake.clock, sleep=fake.sleep)
        for _ in range(3):
            await governor.wait_turn()
        assert fake.sleeps == []

    asyncio.run(scenario())
