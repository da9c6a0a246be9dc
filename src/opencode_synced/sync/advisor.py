"""AI advisor helpers: commit messages and dirty-mirror classification.

The language model is reached only through ``HostServices.prompt()``.
Every helper degrades to a deterministic answer when the prompt returns
nothing or something unusable.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Literal

from ..core.host import HostServices

logger = logging.getLogger(__name__)

MAX_COMMIT_MESSAGE = 72

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_QUOTES = "\"'`"


def fallback_commit_message(today: date | None = None) -> str:
    return f"Sync OpenCode config ({(today or date.today()).isoformat()})"


def sanitize_commit_message(message: str) -> str:
    """First line, surrounding quotes removed, capped at 72 characters."""
    lines = message.strip().splitlines()
    if not lines:
        return ""
    first = lines[0].strip().strip(_QUOTES).strip()
    if len(first) <= MAX_COMMIT_MESSAGE:
        return first
    return first[:MAX_COMMIT_MESSAGE].strip()


def build_commit_prompt(diff_summary: str) -> str:
    return "\n".join(
        [
            "Generate a concise single-line git commit message (max 72 chars).",
            "Focus on OpenCode config sync changes.",
            "Return only the message, no quotes.",
            "",
            "Diff summary:",
            diff_summary,
        ]
    )


async def generate_commit_message(
    host: HostServices, diff_summary: str, today: date | None = None
) -> str:
    fallback = fallback_commit_message(today)
    if not diff_summary.strip():
        return fallback
    reply = await host.prompt(build_commit_prompt(diff_summary))
    if not reply:
        return fallback
    return sanitize_commit_message(reply) or fallback


# ---------------------------------------------------------------------------
# Resolve classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResolveDecision:
    """How to deal with uncommitted mirror changes.

    ``commit`` carries ``message``; ``discard`` may carry ``reason``;
    ``manual`` means nothing should be touched.
    """

    action: Literal["commit", "discard", "manual"]
    message: str | None = None
    reason: str | None = None


def build_resolve_prompt(status: list[str], diff: str) -> str:
    return "\n".join(
        [
            "You are resolving uncommitted changes in an OpenCode config sync repository.",
            "Decide whether the changes should be committed or discarded.",
            "",
            'Only choose "commit" if the changes look like legitimate config updates.',
            'Choose "discard" if they look like temporary files, cache or corruption.',
            "",
            "Respond with JSON only, in one of these forms:",
            '{"action": "commit", "message": "<single-line commit message>"}',
            '{"action": "discard", "reason": "<short reason>"}',
            "",
            "git status --porcelain:",
            "\n".join(status) or "(empty)",
            "",
            "Diff (truncated):",
            diff or "(no tracked changes)",
        ]
    )


def parse_resolve_response(reply: str | None) -> ResolveDecision:
    """Turn a model reply into a decision; anything unexpected is manual."""
    if not reply:
        return ResolveDecision("manual")
    match = _JSON_OBJECT.search(reply)
    if not match:
        return ResolveDecision("manual")
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        logger.debug("Resolve reply was not valid JSON")
        return ResolveDecision("manual")
    if not isinstance(parsed, dict):
        return ResolveDecision("manual")

    action = parsed.get("action")
    if action == "commit":
        message = parsed.get("message")
        if isinstance(message, str) and sanitize_commit_message(message):
            return ResolveDecision("commit", message=sanitize_commit_message(message))
        return ResolveDecision("manual")
    if action == "discard":
        reason = parsed.get("reason")
        return ResolveDecision("discard", reason=reason if isinstance(reason, str) else None)
    return ResolveDecision("manual")


async def classify_changes(
    host: HostServices, status: list[str], diff: str
) -> ResolveDecision:
    return parse_resolve_response(await host.prompt(build_resolve_prompt(status, diff)))
