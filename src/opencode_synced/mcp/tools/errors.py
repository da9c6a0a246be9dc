"""Error response builders for MCP tool handlers.

Tool handlers never let a ``SyncError`` escape to the protocol layer.
Each failure becomes a ``CallToolResult`` with ``isError=True`` whose
text names the error category and a corrective action the agent (or the
human behind it) can take.
"""

from __future__ import annotations

import mcp.types as types

from ...errors import SyncError


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (config_missing, lock_busy, repo_diverged, ...)
        message: Human-readable error description
        corrective_action: Specific action that resolves the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("lock_busy", "Another sync is running", "Retry shortly.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def text_result(text: str, structured: dict | None = None) -> types.CallToolResult:
    """Plain successful tool result."""
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )


# ---------------------------------------------------------------------------
# Category-specific corrective actions
# ---------------------------------------------------------------------------

_CORRECTIVE_ACTIONS: dict[str, str] = {
    "config_missing": "Run sync_init to create a sync config, or sync_link to attach an existing repo.",
    "config_invalid": "Fix the opencode-synced config file, or re-run sync_init.",
    "command_failed": "Check that git, gh and op are installed and authenticated, then retry.",
    "repo_not_private": "Make the sync repo private, or disable includeSecrets.",
    "repo_diverged": "Rebase the local sync repo onto the remote, then retry.",
    "lock_busy": "Wait for the other sync to finish, then retry.",
    "secrets_ambiguous": "Rename the duplicate documents in the vault so each title is unique.",
    "auth_files_tracked": "Remove data/auth.json and data/mcp-auth.json from the repo history and force-push.",
    "repo_dirty": "Use sync_resolve, or commit or discard the changes in the local sync repo.",
}

_DEFAULT_ACTION = "Check the server log for details and retry."


def translate_sync_error(error: SyncError) -> types.CallToolResult:
    """Translate a ``SyncError`` into a structured error response."""
    category = error.category
    action = _CORRECTIVE_ACTIONS.get(category, _DEFAULT_ACTION)
    return build_error_response(category, str(error), action)
