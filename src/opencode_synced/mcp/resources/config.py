"""Config resource handlers for the MCP server.

Exposes the local OpenCode config as the running host sees it: the
config file with the machine-local overrides document merged on top.
"""

from __future__ import annotations

import json

import mcp.types as types
from pydantic_core import Url

from ...sync.service import SyncService

EFFECTIVE_CONFIG_URI = "opencode-synced://config/effective"

CONFIG_RESOURCES = [
    types.Resource(
        uri=EFFECTIVE_CONFIG_URI,  # type: ignore[arg-type]  # MCP AnyUrl/Url type mismatch
        name="Effective OpenCode config",
        description=(
            "Local opencode.json(c) with machine-local overrides applied. "
            "This is the config OpenCode will use after a restart."
        ),
        mimeType="application/json",
    ),
]


async def handle_list_config_resources() -> list[types.Resource]:
    return CONFIG_RESOURCES


async def handle_read_config_resource(uri: Url, service: SyncService) -> str:
    """Read a config resource by URI.

    Raises:
        ValueError: If the path does not name a known config resource.
    """
    path = (uri.path or "").strip("/")
    if path == "effective":
        config = await service.effective_config()
        return json.dumps(config, indent=2, ensure_ascii=False)
    raise ValueError(f"Unknown config resource: {path or '(empty)'}")
