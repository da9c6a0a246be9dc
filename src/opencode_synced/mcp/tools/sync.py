"""MCP tool handlers for mirror sync.

Defines the repository-facing tools:

- ``sync_status`` -- summarize repo, flags, timestamps and working tree.
- ``sync_init`` -- write a sync config, creating the mirror repo if needed.
- ``sync_link`` -- attach to an existing mirror and apply it locally.
- ``sync_pull`` -- fast-forward the mirror and apply remote changes.
- ``sync_push`` -- copy local changes into the mirror, commit and push.
- ``sync_enable_secrets`` -- turn on secrets sync for a private repo.
- ``sync_resolve`` -- let the AI advisor settle uncommitted mirror changes.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ...sync.service import InitOptions, SyncService
from .errors import text_result
from .registry import ToolSpec

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


def _optional_str(args: dict[str, Any], key: str) -> str | None:
    value = args.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value.strip() or None


def _optional_bool(args: dict[str, Any], key: str) -> bool | None:
    value = args.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean")
    return value


def _optional_str_list(args: dict[str, Any], key: str) -> list[str] | None:
    value = args.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{key} must be an array of strings")
    return value


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

_PATH_LIST = {"type": "array", "items": {"type": "string"}}

SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="sync_status",
        description=(
            "Show the opencode-synced configuration summary: repo, branch, "
            "enabled categories, last pull/push times and whether the local "
            "sync repo has uncommitted changes."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="sync_init",
        description=(
            "Configure opencode-synced. Creates the GitHub repo (private by "
            "default) when it does not exist, writes the sync config and "
            "clones the repo locally. With no repo given, uses "
            "my-opencode-config under the authenticated gh user."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "repo": {
                    "type": "string",
                    "description": "Repo URL, owner/name, or bare name",
                },
                "branch": {"type": "string", "description": "Branch to sync"},
                "include_secrets": {
                    "type": "boolean",
                    "default": False,
                    "description": "Sync auth tokens and secret files (requires a private repo)",
                },
                "include_mcp_secrets": {
                    "type": "boolean",
                    "default": False,
                    "description": "Allow MCP server secrets to be committed",
                },
                "include_sessions": {"type": "boolean", "default": False},
                "include_prompt_stash": {"type": "boolean", "default": False},
                "include_model_favorites": {"type": "boolean", "default": True},
                "create": {
                    "type": "boolean",
                    "default": True,
                    "description": "Create the repo when it does not exist",
                },
                "private": {
                    "type": "boolean",
                    "default": True,
                    "description": "Visibility of a newly created repo",
                },
                "extra_secret_paths": _PATH_LIST,
                "extra_config_paths": _PATH_LIST,
                "local_repo_path": {
                    "type": "string",
                    "description": "Where to keep the local clone",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="sync_link",
        description=(
            "Link this machine to an existing opencode-synced repo, clone it "
            "and apply its config locally. Without a repo, searches the "
            "authenticated user's repos."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "repo": {
                    "type": "string",
                    "description": "Repo URL, owner/name, or bare name",
                },
                "branch": {"type": "string"},
            },
            "required": [],
        },
    ),
    types.Tool(
        name="sync_pull",
        description=(
            "Fetch the sync repo and apply remote changes to the local "
            "OpenCode config. Restart OpenCode afterwards to use them."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="sync_push",
        description=(
            "Copy local OpenCode config into the sync repo, commit with an "
            "AI-generated message and push."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="sync_enable_secrets",
        description=(
            "Enable secrets sync. Verifies the repo is private before "
            "updating the sync config."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "extra_secret_paths": _PATH_LIST,
                "include_mcp_secrets": {"type": "boolean"},
            },
            "required": [],
        },
    ),
    types.Tool(
        name="sync_resolve",
        description=(
            "Ask the AI advisor whether uncommitted changes in the sync repo "
            "should be committed or discarded. Discarding only happens when "
            "confirm_discard is true."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=False,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "confirm_discard": {
                    "type": "boolean",
                    "default": False,
                    "description": "Allow a discard verdict to reset the sync repo",
                },
            },
            "required": [],
        },
    ),
]


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


async def _handle_status(service: SyncService, args: dict) -> types.CallToolResult:
    return text_result(await service.status())


async def _handle_init(service: SyncService, args: dict) -> types.CallToolResult:
    """Handle the ``sync_init`` tool."""
    options: dict[str, Any] = {
        "repo": _optional_str(args, "repo"),
        "branch": _optional_str(args, "branch"),
        "local_repo_path": _optional_str(args, "local_repo_path"),
        "extra_secret_paths": _optional_str_list(args, "extra_secret_paths"),
        "extra_config_paths": _optional_str_list(args, "extra_config_paths"),
    }
    for key in (
        "include_secrets",
        "include_mcp_secrets",
        "include_sessions",
        "include_prompt_stash",
        "include_model_favorites",
        "create",
        "private",
    ):
        value = _optional_bool(args, key)
        if value is not None:
            options[key] = value
    return text_result(await service.init(InitOptions(**options)))


async def _handle_link(service: SyncService, args: dict) -> types.CallToolResult:
    text = await service.link(_optional_str(args, "repo"), _optional_str(args, "branch"))
    return text_result(text)


async def _handle_pull(service: SyncService, args: dict) -> types.CallToolResult:
    return text_result(await service.pull())


async def _handle_push(service: SyncService, args: dict) -> types.CallToolResult:
    return text_result(await service.push())


async def _handle_enable_secrets(
    service: SyncService, args: dict
) -> types.CallToolResult:
    text = await service.enable_secrets(
        extra_secret_paths=_optional_str_list(args, "extra_secret_paths"),
        include_mcp_secrets=_optional_bool(args, "include_mcp_secrets"),
    )
    return text_result(text)


async def _handle_resolve(service: SyncService, args: dict) -> types.CallToolResult:
    confirm = _optional_bool(args, "confirm_discard") or False
    return text_result(await service.resolve(confirm_discard=confirm))


# ToolSpec list for registry-based dispatch
SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(tool=SYNC_TOOLS[0], mutating=False, handler=_handle_status),
    ToolSpec(tool=SYNC_TOOLS[1], mutating=True, handler=_handle_init),
    ToolSpec(tool=SYNC_TOOLS[2], mutating=True, handler=_handle_link),
    ToolSpec(tool=SYNC_TOOLS[3], mutating=True, handler=_handle_pull),
    ToolSpec(tool=SYNC_TOOLS[4], mutating=True, handler=_handle_push),
    ToolSpec(tool=SYNC_TOOLS[5], mutating=True, handler=_handle_enable_secrets),
    ToolSpec(tool=SYNC_TOOLS[6], mutating=True, handler=_handle_resolve),
]
