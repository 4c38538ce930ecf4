import asyncio
from datetime import date

import pytest

import crashwatch.main as main_mod


class _FakePipeline:
    def __init__(self, stop, fail=False):
        self.stop = stop
        self.fail = fail
        self.cycles = []
        self.closes = []

    async def run_cycle(self, market):
        self.cycles.append(market)
        if self.fail:
            raise RuntimeError("cycle exploded")
        if len(self.cycles) >= 2:
            self.stop.set()

    async def close_of_day(self, market):
        self.closes.append(market)


@pytest.mark.asyncio
async def test_regular_hours_run_cycles(monkeypatch):
    monkeypatch.setattr(main_mod, "session_phase", lambda m: "regular")
    stop = asyncio.Event()
    p = _FakePipeline(stop)
    await asyncio.wait_for(main_mod.market_loop(p, "INDIA", 0.01, stop), timeout=2)
    assert p.cycles == ["INDIA", "INDIA"]
    assert p.closes == []


@pytest.mark.asyncio
async def test_close_of_day_runs_once_per_date(monkeypatch):
    monkeypatch.setattr(main_mod, "session_phase", lambda m: "after_close")
    monkeypatch.setattr(main_mod, "market_today", lambda m: date(2025, 3, 14))
    stop = asyncio.Event()
    p = _FakePipeline(stop)
    task = asyncio.create_task(main_mod.market_loop(p, "USA", 0.01, stop))
    await asyncio.sleep(0.1)
    stop.set()
    await asyncio.wait_for(task, timeout=2)
    assert p.closes == ["USA"]


@pytest.mark.asyncio
async def test_failed_cycle_does_not_kill_loop(monkeypatch):
    monkeypatch.setattr(main_mod, "session_phase", lambda m: "regular")
    stop = asyncio.Event()
    p = _FakePipeline(stop, fail=True)
    task = asyncio.create_task(main_mod.market_loop(p, "INDIA", 0.01, stop))
    await asyncio.sleep(0.1)
    stop.set()
    await asyncio.wait_for(task, timeout=2)
    assert len(p.cycles) > 1
