"""Ports and helpers shared between the CLI and the MCP server."""

from .async_utils import run_sync
from .host import HostServices, LoggingHost, McpHostServices
from .runner import CommandResult, CommandRunner, SubprocessRunner

__all__ = [
    "CommandResult",
    "CommandRunner",
    "HostServices",
    "LoggingHost",
    "McpHostServices",
    "SubprocessRunner",
    "run_sync",
]
