"""Debounced trigger for background sync runs.

``SyncTrigger`` owns the timer state: ``schedule()`` (re)arms a single
cancellable timer, and when it fires the callback runs once.  A trigger
that fires while a run is still in progress is dropped.  ``stop()``
cancels a pending timer but never a running callback: the callback holds
the sync lock and may be mid-write, so ``stop()`` waits for it instead.

The trigger knows nothing about sync internals; it only awaits the
callback it was given.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_DELAY = 1.0


class SyncTrigger:
    """Single-flight, debounced runner for one async callback.

    Args:
        callback: Coroutine function to run when the timer fires.
        delay: Debounce delay in seconds.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[Any]],
        delay: float = DEFAULT_DELAY,
    ) -> None:
        self._callback = callback
        self._delay = delay
        self._started = False
        self._running = False
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def started(self) -> bool:
        return self._started

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        """Enable the trigger and schedule the first run."""
        self._started = True
        self.schedule()

    def schedule(self) -> None:
        """(Re)arm the debounce timer; no-op until started."""
        if not self._started:
            return
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        if self._running:
            logger.debug("Sync already running; dropping trigger")
            return
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        try:
            await self._callback()
        except Exception:
            logger.exception("Background sync failed")
        finally:
            self._running = False

    async def wait(self) -> None:
        """Wait for the current run, if any, to finish."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.shield(task)

    async def stop(self) -> None:
        """Disable the trigger and cancel the timer.

        A callback already running is left to finish; this returns once
        it has.
        """
        self._started = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._running:
            logger.info("Waiting for background sync to finish")
        await self.wait()
        self._task = None
