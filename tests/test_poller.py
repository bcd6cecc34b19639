"""Tests for the single-flight polling loop."""

import asyncio

import pytest

from mgrelay.game.poller import Poller


@pytest.mark.asyncio
async def test_tick_is_skipped_while_previous_run_is_in_flight():
    gate = asyncio.Event()
    calls = 0

    async def slow():
        nonlocal calls
        calls += 1
        await gate.wait()

    p = Poller("slow", 10.0, slow)
    assert p.tick() is True
    await asyncio.sleep(0)
    assert p.tick() is False
    assert p.tick() is False
    assert p.skipped == 2

    gate.set()
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert not p.busy
    assert p.tick() is True
    await asyncio.sleep(0)
    assert calls == 2
    await p.stop()


@pytest.mark.asyncio
async def test_failed_run_does_not_stop_the_loop():
    calls = 0

    async def boom():
        nonlocal calls
        calls += 1
        raise RuntimeError("console went away")

    p = Poller("boom", 0.01, boom)
    p.start()
    await asyncio.sleep(0.06)
    await p.stop()

    assert calls >= 2
    assert p.runs == 0


@pytest.mark.asyncio
async def test_disabled_poller_does_not_run():
    calls = 0

    async def fn():
        nonlocal calls
        calls += 1

    enabled = False
    p = Poller("gated", 0.01, fn, enabled=lambda: enabled)
    assert p.tick() is False
    enabled = True
    assert p.tick() is True
    await asyncio.sleep(0)
    assert calls == 1
    await p.stop()


@pytest.mark.asyncio
async def test_stop_cancels_in_flight_run():
    started = asyncio.Event()

    async def forever():
        started.set()
        await asyncio.sleep(3600)

    p = Poller("forever", 0.01, forever)
    p.start()
    await asyncio.wait_for(started.wait(), timeout=1.0)
    assert p.busy
    await p.stop()
    assert not p.busy
