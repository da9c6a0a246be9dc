"""MCP Server for opencode-synced using stdio transport.

This module implements the Model Context Protocol server that lets an
AI agent (and the human behind it) run config sync flows as tools.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP

Each tool call builds a ``SyncService`` bound to the calling session, so
notifications reach that client as log messages and commit messages and
resolve verdicts come from the client's model via sampling.
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from pydantic_core import Url

from .. import __version__
from ..core.host import LoggingHost, McpHostServices
from ..core.runner import CommandRunner
from ..logger import DEFAULT_MCP_LOG_FILE, setup_logging
from ..sync.models import SyncLocations
from ..sync.service import SyncService
from .lifespan import server_lifespan
from .resources.config import (
    handle_list_config_resources,
    handle_read_config_resource,
)
from .tools import ALL_SPECS, ToolRegistry, build_error_response

logger = logging.getLogger(__name__)

SERVER_NAME = "opencode-synced"

# Initialize server instance
server = Server(SERVER_NAME)

# Global context (initialized in main via lifespan)
_context: dict | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_context() -> dict:
    """Get the lifespan context (locations and command runner).

    Raises:
        RuntimeError: If the server lifespan has not started.
    """
    if _context is None:
        raise RuntimeError("Server context not initialized. Server lifespan not started.")
    return _context


def set_context(context: dict | None) -> None:
    global _context
    _context = context


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry


def build_service() -> SyncService:
    """SyncService for the current request.

    Falls back to a logging-only host outside a request (no session).
    """
    context = get_context()
    runner: CommandRunner = context["runner"]
    locations: SyncLocations = context["locations"]
    try:
        session = server.request_context.session
    except LookupError:
        return SyncService(runner, LoggingHost(), locations)
    return SyncService(runner, McpHostServices(session, SERVER_NAME), locations)


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available sync tools."""
    return get_registry().list_tools()


@server.list_resources()
async def handle_list_resources() -> list[types.Resource]:
    return await handle_list_config_resources()


@server.read_resource()  # type: ignore[arg-type]  # MCP Url type mismatch
async def handle_read_resource(uri: Url) -> str:
    """Read an opencode-synced resource by URI.

    Supports:
    - opencode-synced://config/effective - local config with overrides applied

    Raises:
        ValueError: If URI scheme or path is not recognized
    """
    if uri.scheme != "opencode-synced":
        raise ValueError(f"Unsupported URI scheme: {uri.scheme}")

    if uri.host == "config":
        return await handle_read_config_resource(uri, build_service())

    raise ValueError(f"Unknown resource type: {uri.host}")


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch."""
    service = build_service()
    try:
        return await get_registry().call_tool(name, arguments, service)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Args:
        config_overrides: Optional dict with log_file, debug, read_only,
            startup_sync and startup_delay.
    """
    overrides = config_overrides or {}

    # Must run before stdio_server: stdout belongs to the protocol.
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
    )

    read_only = overrides.get("read_only", False)
    registry = ToolRegistry(ALL_SPECS, read_only=read_only)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(ALL_SPECS),
    )
    if read_only:
        print(
            f"Read-only mode: {registry.tool_count()} of {len(ALL_SPECS)} tools enabled",
            file=sys.stderr,
        )
    set_registry(registry)

    # The context is installed here rather than inside the lifespan so
    # running this file as __main__ sets the globals on the module that
    # actually serves requests.
    async with server_lifespan(config_overrides=overrides) as ctx:
        set_context(ctx)
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(
                    read_stream, write_stream, init_options
                )
        finally:
            set_context(None)
            set_registry(None)


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = argparse.ArgumentParser(
        description="opencode-synced MCP Server - sync OpenCode config through a private GitHub repo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  # Run with defaults (startup sync one second after launch)
  opencode-synced-mcp

  # Custom log file location
  opencode-synced-mcp --log-file /var/log/opencode-synced.log

  # Expose only read-only tools and skip the startup sync
  opencode-synced-mcp --read-only --no-startup-sync

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr. Logs go to {DEFAULT_MCP_LOG_FILE}
unless --log-file or LOG_FILE says otherwise.
        """,
    )

    parser.add_argument(
        "--log-file",
        help=f"Log file path (default: LOG_FILE env var or {DEFAULT_MCP_LOG_FILE})",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging (overrides LOG_LEVEL)",
    )
    parser.add_argument(
        "--no-startup-sync",
        action="store_true",
        help="Do not run the background sync after startup",
    )
    parser.add_argument(
        "--startup-delay",
        type=float,
        default=None,
        help="Seconds to wait before the startup sync (default: 1)",
    )
    parser.add_argument(
        "--read-only",
        action="store_true",
        help="Only expose tools that change nothing (status tools)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"opencode-synced-mcp version {__version__}",
    )

    args = parser.parse_args()

    config_overrides: dict = {}
    if args.log_file:
        config_overrides["log_file"] = args.log_file
    if args.debug:
        config_overrides["debug"] = True
    if args.no_startup_sync:
        config_overrides["startup_sync"] = False
    if args.startup_delay is not None:
        config_overrides["startup_delay"] = args.startup_delay
    if args.read_only:
        config_overrides["read_only"] = True

    if config_overrides:
        print(
            f"Config overrides from CLI: {', '.join(config_overrides)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
