"""Host-services port: logging, user notification, one-shot AI prompt.

``LoggingHost`` is the headless implementation used by the CLI and by
background work with no client session: notifications go to the log and
prompts return ``None``, so callers fall back to their deterministic
defaults.  ``McpHostServices`` routes notifications to the MCP client as
log messages and prompts through MCP sampling.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal, Protocol

import mcp.types as types

if TYPE_CHECKING:
    from mcp.server.session import ServerSession

logger = logging.getLogger(__name__)

NotifyLevel = Literal["info", "warning", "error"]

PROMPT_MAX_TOKENS = 400

_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class HostServices(Protocol):
    def log(self, level: NotifyLevel, message: str) -> None: ...

    async def notify(self, message: str, level: NotifyLevel = "info") -> None: ...

    async def prompt(self, text: str) -> str | None: ...


class LoggingHost:
    """Host with no user channel and no AI collaborator."""

    def log(self, level: NotifyLevel, message: str) -> None:
        logger.log(_LEVELS.get(level, logging.INFO), message)

    async def notify(self, message: str, level: NotifyLevel = "info") -> None:
        self.log(level, message)

    async def prompt(self, text: str) -> str | None:
        return None


class McpHostServices(LoggingHost):
    """Host backed by a live MCP client session.

    Args:
        session: The request's ``ServerSession``.
        logger_name: Logger name reported to the client.
    """

    def __init__(
        self, session: ServerSession, logger_name: str = "opencode-synced"
    ) -> None:
        self._session = session
        self._logger_name = logger_name

    async def notify(self, message: str, level: NotifyLevel = "info") -> None:
        self.log(level, message)
        try:
            await self._session.send_log_message(
                level=level, data=message, logger=self._logger_name
            )
        except Exception:
            logger.warning("Could not deliver notification to MCP client", exc_info=True)

    def supports_sampling(self) -> bool:
        return self._session.check_client_capability(
            types.ClientCapabilities(sampling=types.SamplingCapability())
        )

    async def prompt(self, text: str) -> str | None:
        """Ask the client's model for a completion.

        Any failure, including a client without sampling support, yields
        ``None``.
        """
        if not self.supports_sampling():
            logger.debug("MCP client does not support sampling")
            return None
        try:
            result = await self._session.create_message(
                messages=[
                    types.SamplingMessage(
                        role="user",
                        content=types.TextContent(type="text", text=text),
                    )
                ],
                max_tokens=PROMPT_MAX_TOKENS,
            )
        except Exception:
            logger.warning("Sampling request failed", exc_info=True)
            return None

        content = result.content
        if isinstance(content, types.TextContent):
            reply = content.text.strip()
            return reply or None
        return None
