"""Tests for the sync_* tool handlers.

Handler argument mapping is checked against a mocked SyncService; the
end-to-end cases run a real service over the fake runner.
"""

from pathlib import Path
from unittest.mock import AsyncMock

import mcp.types as types
import pytest

from opencode_synced.mcp.tools import ALL_SPECS, ToolRegistry
from opencode_synced.sync.service import InitOptions, SyncService


def _text(result: types.CallToolResult) -> str:
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry(ALL_SPECS)


@pytest.fixture
def mock_service() -> AsyncMock:
    service = AsyncMock(spec=SyncService)
    for name in ("status", "init", "link", "pull", "push", "enable_secrets", "resolve"):
        getattr(service, name).return_value = f"{name} done"
    return service


# ---------------------------------------------------------------------------
# Argument mapping
# ---------------------------------------------------------------------------


class TestArgumentMapping:
    async def test_init_passes_only_given_flags(self, registry, mock_service):
        result = await registry.call_tool(
            "sync_init",
            {
                "repo": " me/cfg ",
                "include_secrets": True,
                "extra_secret_paths": ["~/.npmrc"],
            },
            mock_service,
        )

        assert _text(result) == "init done"
        options = mock_service.init.await_args.args[0]
        assert isinstance(options, InitOptions)
        assert options.repo == "me/cfg"
        assert options.include_secrets is True
        assert options.extra_secret_paths == ["~/.npmrc"]
        assert options.create is True
        assert options.private is True
        assert options.include_model_favorites is True

    async def test_init_rejects_wrong_types(self, registry, mock_service):
        result = await registry.call_tool(
            "sync_init", {"include_secrets": "yes"}, mock_service
        )
        assert result.isError is True
        assert "include_secrets must be a boolean" in _text(result)
        mock_service.init.assert_not_awaited()

    async def test_init_rejects_non_string_paths(self, registry, mock_service):
        result = await registry.call_tool(
            "sync_init", {"extra_config_paths": ["ok", 3]}, mock_service
        )
        assert "extra_config_paths must be an array of strings" in _text(result)

    async def test_link_blank_repo_means_discovery(self, registry, mock_service):
        await registry.call_tool("sync_link", {"repo": "  ", "branch": "dev"}, mock_service)
        mock_service.link.assert_awaited_once_with(None, "dev")

    async def test_enable_secrets(self, registry, mock_service):
        await registry.call_tool(
            "sync_enable_secrets", {"include_mcp_secrets": False}, mock_service
        )
        mock_service.enable_secrets.assert_awaited_once_with(
            extra_secret_paths=None, include_mcp_secrets=False
        )

    @pytest.mark.parametrize("args, confirm", [({}, False), ({"confirm_discard": True}, True)])
    async def test_resolve_confirmation(self, registry, mock_service, args, confirm):
        await registry.call_tool("sync_resolve", args, mock_service)
        mock_service.resolve.assert_awaited_once_with(confirm_discard=confirm)

    @pytest.mark.parametrize(
        "tool, method",
        [("sync_status", "status"), ("sync_pull", "pull"), ("sync_push", "push")],
    )
    async def test_no_argument_tools(self, registry, mock_service, tool, method):
        result = await registry.call_tool(tool, {}, mock_service)
        assert _text(result) == f"{method} done"


# ---------------------------------------------------------------------------
# End to end over the fake runner
# ---------------------------------------------------------------------------


class TestEndToEnd:
    @pytest.fixture
    def service(self, runner, host, locations) -> SyncService:
        return SyncService(runner, host, locations, platform="linux")

    async def test_status_unconfigured(self, registry, service):
        result = await registry.call_tool("sync_status", {}, service)
        assert not result.isError
        assert "not configured" in _text(result)

    async def test_pull_unconfigured_is_config_missing(self, registry, service):
        result = await registry.call_tool("sync_pull", {}, service)
        assert result.isError is True
        assert _text(result).startswith("Error (config_missing): Missing opencode-synced config")

    async def test_push_on_dirty_mirror(
        self, registry, service, runner, locations, write_json
    ):
        (Path(locations.default_repo_dir) / ".git").mkdir(parents=True)
        write_json(Path(locations.sync_config_path), {"repo": {"owner": "me", "name": "cfg"}})
        runner.on("git", "status", "--porcelain", stdout="?? junk\n")

        result = await registry.call_tool("sync_push", {}, service)

        text = _text(result)
        assert text.startswith("Error (repo_dirty): Local sync repo has uncommitted changes.")
        assert "Action: Use sync_resolve" in text
