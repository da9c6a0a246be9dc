"""Tests for sync/trigger.py -- debounced single-flight trigger."""

import asyncio
import time

from opencode_synced.core.async_utils import run_sync
from opencode_synced.sync.lock import sync_lock, try_acquire_lock
from opencode_synced.sync.trigger import SyncTrigger


class Counter:
    def __init__(self, hold: asyncio.Event | None = None) -> None:
        self.calls = 0
        self.hold = hold

    async def __call__(self) -> None:
        self.calls += 1
        if self.hold is not None:
            await self.hold.wait()


async def test_schedule_is_noop_until_started():
    counter = Counter()
    trigger = SyncTrigger(counter, delay=0)
    trigger.schedule()
    assert not trigger.pending
    await asyncio.sleep(0.01)
    assert counter.calls == 0


async def test_fires_once_after_delay():
    counter = Counter()
    trigger = SyncTrigger(counter, delay=0.01)
    trigger.start()
    assert trigger.pending

    await asyncio.sleep(0.05)
    await trigger.wait()

    assert counter.calls == 1
    assert not trigger.pending
    assert not trigger.running
    await trigger.stop()


async def test_rescheduling_debounces():
    counter = Counter()
    trigger = SyncTrigger(counter, delay=0.05)
    trigger.start()
    for _ in range(3):
        await asyncio.sleep(0.01)
        trigger.schedule()

    await asyncio.sleep(0.1)
    await trigger.wait()

    assert counter.calls == 1
    await trigger.stop()


async def test_trigger_while_running_is_dropped():
    hold = asyncio.Event()
    counter = Counter(hold)
    trigger = SyncTrigger(counter, delay=0)
    trigger.start()
    await asyncio.sleep(0.01)
    assert trigger.running

    trigger.schedule()
    await asyncio.sleep(0.01)
    hold.set()
    await trigger.wait()

    assert counter.calls == 1
    await trigger.stop()


async def test_callback_errors_do_not_escape():
    async def failing() -> None:
        raise RuntimeError("boom")

    trigger = SyncTrigger(failing, delay=0)
    trigger.start()
    await asyncio.sleep(0.01)
    await trigger.wait()
    assert not trigger.running
    await trigger.stop()


async def test_stop_waits_for_running_callback():
    hold = asyncio.Event()
    counter = Counter(hold)
    trigger = SyncTrigger(counter, delay=0)
    trigger.start()
    await asyncio.sleep(0.01)
    assert trigger.running

    stopping = asyncio.ensure_future(trigger.stop())
    await asyncio.sleep(0.01)
    assert not stopping.done()
    assert trigger.running

    hold.set()
    await stopping

    assert counter.calls == 1
    assert not trigger.started
    assert not trigger.running
    trigger.schedule()
    assert not trigger.pending


async def test_slow_locked_run_finishes_before_stop_returns(tmp_path):
    lock_path = tmp_path / "sync.lock"
    target = tmp_path / "written.txt"

    def slow_write() -> None:
        time.sleep(0.2)
        target.write_text("done", encoding="utf-8")

    async def locked_sync() -> None:
        with sync_lock(lock_path):
            await run_sync(slow_write)

    trigger = SyncTrigger(locked_sync, delay=0)
    trigger.start()
    await asyncio.sleep(0.02)
    assert trigger.running

    stopping = asyncio.ensure_future(trigger.stop())
    await asyncio.sleep(0.05)
    second = try_acquire_lock(lock_path).acquired
    await stopping

    assert second is False
    assert target.read_text(encoding="utf-8") == "done"
    assert not lock_path.exists()


async def test_stop_before_fire():
    counter = Counter()
    trigger = SyncTrigger(counter, delay=0.05)
    trigger.start()
    await trigger.stop()
    await asyncio.sleep(0.1)
    assert counter.calls == 0
