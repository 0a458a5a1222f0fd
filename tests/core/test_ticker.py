"""
Unit tests for the periodic Ticker.

fire() is driven directly; run() is exercised with short intervals.
"""
import asyncio

import pytest

from app.core.ticker import Ticker


class TestFire:
    @pytest.mark.asyncio
    async def test_runs_tick(self):
        calls = []

        async def tick():
            calls.append(1)
            return 3

        ticker = Ticker("test", 60, tick)
        assert await ticker.fire() is True
        assert calls == [1]
        assert ticker.iteration_number == 1

    @pytest.mark.asyncio
    async def test_overlapping_fire_is_skipped(self):
        release = asyncio.Event()
        started = asyncio.Event()

        async def slow_tick():
            started.set()
            await release.wait()

        ticker = Ticker("test", 60, slow_tick)
        first = asyncio.create_task(ticker.fire())
        await started.wait()

        assert ticker.is_running is True
        assert await ticker.fire() is False
        assert ticker.skipped_count == 1

        release.set()
        assert await first is True
        assert ticker.is_running is False

    @pytest.mark.asyncio
    async def test_exception_is_isolated(self):
        async def broken():
            raise RuntimeError("boom")

        ticker = Ticker("test", 60, broken)
        assert await ticker.fire() is True
        assert ticker.is_running is False
        assert await ticker.fire() is True

    @pytest.mark.asyncio
    async def test_timeout_bounds_tick(self):
        async def hangs():
            await asyncio.sleep(10)

        ticker = Ticker("test", 60, hangs, timeout_seconds=0.01)
        assert await ticker.fire() is True
        assert ticker.is_running is False

    def test_interval_must_be_positive(self):
        async def tick():
            return None

        with pytest.raises(ValueError):
            Ticker("test", 0, tick)


class TestRun:
    @pytest.mark.asyncio
    async def test_fires_immediately_and_stops(self):
        fired = asyncio.Event()

        async def tick():
            fired.set()

        ticker = Ticker("test", 60, tick)
        task = asyncio.create_task(ticker.run())
        await asyncio.wait_for(fired.wait(), timeout=1)

        ticker.stop()
        await asyncio.wait_for(task, timeout=1)
        assert ticker.iteration_number == 1

    @pytest.mark.asyncio
    async def test_repeats_on_interval(self):
        count = 0

        async def tick():
            nonlocal count
            count += 1

        ticker = Ticker("test", 0.01, tick)
        task = asyncio.create_task(ticker.run())
        await asyncio.sleep(0.1)
        ticker.stop()
        await asyncio.wait_for(task, timeout=1)

        assert count >= 2

    @pytest.mark.asyncio
    async def test_stop_during_initial_delay(self):
        calls = []

        async def tick():
            calls.append(1)

        ticker = Ticker("test", 60, tick, initial_delay_seconds=30)
        task = asyncio.create_task(ticker.run())
        await asyncio.sleep(0)
        ticker.stop()
        await asyncio.wait_for(task, timeout=1)

        assert calls == []

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_tick(self):
        started = asyncio.Event()
        finished = []

        async def tick():
            started.set()
            await asyncio.sleep(0.05)
            finished.append(1)

        ticker = Ticker("test", 60, tick)
        task = asyncio.create_task(ticker.run())
        await asyncio.wait_for(started.wait(), timeout=1)
        ticker.stop()
        await asyncio.wait_for(task, timeout=1)

        assert finished == [1]
