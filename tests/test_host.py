"""Tests for core/host.py -- LoggingHost and McpHostServices."""

import logging
from unittest.mock import AsyncMock, MagicMock

import mcp.types as types

from opencode_synced.core.host import PROMPT_MAX_TOKENS, LoggingHost, McpHostServices


def _session(sampling: bool = True, reply: object = None) -> MagicMock:
    session = MagicMock()
    session.check_client_capability.return_value = sampling
    session.send_log_message = AsyncMock()
    session.create_message = AsyncMock(return_value=MagicMock(content=reply))
    return session


class TestLoggingHost:
    async def test_notify_logs_at_level(self, caplog):
        with caplog.at_level(logging.INFO, logger="opencode_synced.core.host"):
            await LoggingHost().notify("careful", "warning")
        assert [(r.levelno, r.getMessage()) for r in caplog.records] == [
            (logging.WARNING, "careful")
        ]

    async def test_prompt_has_no_model(self):
        assert await LoggingHost().prompt("anything") is None


class TestMcpHostServices:
    async def test_notify_sends_log_message(self):
        session = _session()
        await McpHostServices(session, "opencode-synced").notify("hello", "info")
        session.send_log_message.assert_awaited_once_with(
            level="info", data="hello", logger="opencode-synced"
        )

    async def test_notify_survives_transport_errors(self):
        session = _session()
        session.send_log_message.side_effect = RuntimeError("closed")
        await McpHostServices(session).notify("hello")

    async def test_prompt_uses_sampling(self):
        session = _session(reply=types.TextContent(type="text", text="  Add agent \n"))

        assert await McpHostServices(session).prompt("summarize") == "Add agent"

        kwargs = session.create_message.await_args.kwargs
        assert kwargs["max_tokens"] == PROMPT_MAX_TOKENS
        assert kwargs["messages"][0].content.text == "summarize"

    async def test_prompt_without_sampling_capability(self):
        session = _session(sampling=False)
        assert await McpHostServices(session).prompt("summarize") is None
        session.create_message.assert_not_awaited()

    async def test_prompt_failure_is_none(self):
        session = _session()
        session.create_message.side_effect = RuntimeError("denied")
        assert await McpHostServices(session).prompt("summarize") is None

    async def test_non_text_reply_is_none(self):
        session = _session(reply=types.ImageContent(type="image", data="", mimeType="image/png"))
        assert await McpHostServices(session).prompt("summarize") is None
