"""MCP tool handlers for the external secrets backend.

Defines three tools:

- ``sync_secrets_status`` -- report backend readiness and local auth files.
- ``sync_secrets_pull`` -- restore auth files from the vault.
- ``sync_secrets_push`` -- store local auth files in the vault.
"""

from __future__ import annotations

import mcp.types as types

from ...sync.service import SyncService
from .errors import text_result
from .registry import ToolSpec

_NO_ARGS = {"type": "object", "properties": {}, "required": []}

SECRETS_TOOLS: list[types.Tool] = [
    types.Tool(
        name="sync_secrets_status",
        description=(
            "Check the configured secrets backend (1Password CLI) and whether "
            "auth.json and mcp-auth.json exist locally."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="sync_secrets_pull",
        description=(
            "Download auth.json and mcp-auth.json from the secrets backend, "
            "replacing the local files."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="sync_secrets_push",
        description="Upload local auth.json and mcp-auth.json to the secrets backend.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema=_NO_ARGS,
    ),
]


async def _handle_status(service: SyncService, args: dict) -> types.CallToolResult:
    return text_result(await service.secrets_status())


async def _handle_pull(service: SyncService, args: dict) -> types.CallToolResult:
    return text_result(await service.secrets_pull())


async def _handle_push(service: SyncService, args: dict) -> types.CallToolResult:
    return text_result(await service.secrets_push())


SECRETS_SPECS: list[ToolSpec] = [
    ToolSpec(tool=SECRETS_TOOLS[0], mutating=False, handler=_handle_status),
    ToolSpec(tool=SECRETS_TOOLS[1], mutating=True, handler=_handle_pull),
    ToolSpec(tool=SECRETS_TOOLS[2], mutating=True, handler=_handle_push),
]
