"""Async bridge for the synchronous filesystem work done by the sync engine."""

import asyncio
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Used for file copies, manifest rewrites and JSON reads so MCP
    handlers and the startup trigger stay responsive.

    Example:
        report = await run_sync(sync_mirror_to_local, plan, overrides)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
