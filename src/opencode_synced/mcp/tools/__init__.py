"""MCP tool handlers for opencode-synced.

This package wraps ``SyncService`` flows as MCP tools with structured
error responses.
"""

from .errors import build_error_response, translate_sync_error
from .registry import ToolRegistry, ToolSpec
from .secrets import SECRETS_SPECS, SECRETS_TOOLS
from .sync import SYNC_SPECS, SYNC_TOOLS

ALL_SPECS: list[ToolSpec] = SYNC_SPECS + SECRETS_SPECS

__all__ = [
    "ALL_SPECS",
    "SECRETS_SPECS",
    "SECRETS_TOOLS",
    "SYNC_SPECS",
    "SYNC_TOOLS",
    "ToolRegistry",
    "ToolSpec",
    "build_error_response",
    "translate_sync_error",
]
