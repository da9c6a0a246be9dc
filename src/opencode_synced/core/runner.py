"""Command-runner port: execute an external tool and capture its output.

The sync core never spawns processes directly.  It receives a
``CommandRunner`` and calls ``run()``, which raises
``CommandFailureError`` on a non-zero exit unless ``check=False``.
``SubprocessRunner`` is the real implementation.  Tests inject a fake.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ..errors import CommandFailureError

logger = logging.getLogger(__name__)

MAX_ERROR_OUTPUT = 500

_URL_CREDENTIALS = re.compile(r"(\b[a-zA-Z][a-zA-Z0-9+.-]*://)[^/\s@]+@")
_TOKEN_PATTERNS = (
    re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"),
    re.compile(r"\bgithub_pat_[A-Za-z0-9_]{20,}\b"),
    re.compile(r"\bsk-[A-Za-z0-9_-]{16,}\b"),
    re.compile(r"\bxox[abprs]-[A-Za-z0-9-]{10,}\b"),
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
    re.compile(r"(?i)\b(bearer|basic)\s+[A-Za-z0-9._~+/=-]{8,}"),
)


def sanitize_command_output(text: str, limit: int = MAX_ERROR_OUTPUT) -> str:
    """Redact credentials and cap *text* for inclusion in error messages."""
    cleaned = _URL_CREDENTIALS.sub(r"\1***@", text)
    for pattern in _TOKEN_PATTERNS:
        cleaned = pattern.sub("***", cleaned)
    cleaned = cleaned.strip()
    if len(cleaned) > limit:
        cleaned = cleaned[:limit].rstrip() + "..."
    return cleaned


def describe_command(args: Sequence[str]) -> str:
    """Program plus subcommand, e.g. ``git fetch``; never arguments."""
    if not args:
        return "<empty command>"
    words = [args[0]]
    for arg in args[1:]:
        if arg.startswith("-"):
            if arg == "-C":
                continue
            break
        if "/" in arg or "\\" in arg:
            continue
        words.append(arg)
        if len(words) == 3:
            break
    return " ".join(words)


@dataclass(frozen=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner(Protocol):
    async def run(
        self,
        args: Sequence[str],
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> CommandResult: ...


def failure_from_result(result: CommandResult) -> CommandFailureError:
    label = describe_command(result.args)
    detail = sanitize_command_output(result.stderr or result.stdout)
    message = f"{label} failed (exit {result.returncode})"
    if detail:
        message = f"{message}: {detail}"
    return CommandFailureError(message, command=label, returncode=result.returncode)


class SubprocessRunner:
    """Runs commands with ``asyncio.create_subprocess_exec``."""

    async def run(
        self,
        args: Sequence[str],
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> CommandResult:
        label = describe_command(args)
        logger.debug("Running %s", label)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(cwd) if cwd is not None else None,
                env=dict(env) if env is not None else None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise CommandFailureError(
                f"{args[0]} not found on PATH", command=label
            ) from exc

        stdout, stderr = await proc.communicate()
        result = CommandResult(
            args=tuple(args),
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        if check and not result.ok:
            logger.warning("%s exited with %d", label, result.returncode)
            raise failure_from_result(result)
        return result
