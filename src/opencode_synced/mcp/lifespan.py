"""Lifespan management for MCP server startup and shutdown."""

import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv

from ..config import load_sync_config, validate_sync_config
from ..core.async_utils import run_sync
from ..core.host import LoggingHost
from ..core.runner import SubprocessRunner
from ..errors import ConfigInvalidError
from ..sync.paths import resolve_sync_locations
from ..sync.service import SyncService
from ..sync.trigger import DEFAULT_DELAY, SyncTrigger

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available to the location resolver)
    - Resolve config, data and state locations for this machine
    - Report whether a sync config is present and valid
    - Schedule the background startup sync unless disabled

    On shutdown:
    - Stop the startup trigger, waiting for a sync still in flight

    A missing or invalid sync config does not stop the server: the
    ``sync_init`` and ``sync_link`` tools exist to fix it.

    Args:
        config_overrides: Optional dict with ``startup_sync`` (bool) and
            ``startup_delay`` (seconds).

    Yields:
        Dict with 'locations' and 'runner' keys.

    Raises:
        RuntimeError: If the home directory cannot be resolved.
    """
    logger.info("MCP server starting...")
    _stderr_print("opencode-synced MCP server starting...")

    overrides = config_overrides or {}
    load_dotenv()

    locations = resolve_sync_locations(os.environ)
    if not locations.xdg.home_dir:
        logger.error("Unable to resolve home directory")
        _stderr_print("ERROR: Unable to resolve home directory.")
        raise RuntimeError(
            "Unable to resolve home directory. Set HOME (or USERPROFILE on Windows)."
        )
    logger.info("Config root: %s", locations.config_root)
    _stderr_print(f"  Config root: {locations.config_root}")

    try:
        config = await run_sync(load_sync_config, locations)
    except ConfigInvalidError as e:
        config = None
        logger.warning("Sync config is invalid: %s", e)
        _stderr_print(f"  WARNING: {e}")
    else:
        if config is None:
            _stderr_print("  Sync not configured. Use the sync_init tool to set it up.")
        else:
            validation = validate_sync_config(config)
            if validation.ok:
                _stderr_print(f"  Sync config: {locations.sync_config_path}")
            else:
                logger.warning("Sync config is invalid: %s", validation.reason)
                _stderr_print(f"  WARNING: {validation.reason}")

    runner = SubprocessRunner()
    trigger: SyncTrigger | None = None
    if overrides.get("startup_sync", True):
        background = SyncService(runner, LoggingHost(), locations)
        trigger = SyncTrigger(
            background.startup_sync,
            delay=overrides.get("startup_delay", DEFAULT_DELAY),
        )
        trigger.start()
        logger.info("Startup sync scheduled")
    else:
        _stderr_print("  Startup sync disabled.")

    _stderr_print("Server ready. Waiting for MCP client connection...")
    try:
        yield {"locations": locations, "runner": runner}
    finally:
        if trigger is not None:
            await trigger.stop()
        logger.info("MCP server shutting down")
        _stderr_print("opencode-synced MCP server shutting down.")
