"""Shared pytest fixtures for opencode-synced tests."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from opencode_synced.core.runner import CommandResult, failure_from_result
from opencode_synced.jsonc import dump_json
from opencode_synced.sync.models import SyncLocations
from opencode_synced.sync.paths import resolve_sync_locations


def _strip_cwd(args: Sequence[str]) -> tuple[str, ...]:
    """Drop ``-C <dir>`` so git calls can be matched by subcommand."""
    out: list[str] = []
    skip = False
    for arg in args:
        if skip:
            skip = False
            continue
        if arg == "-C" and out == ["git"]:
            skip = True
            continue
        out.append(arg)
    return tuple(out)


@dataclass
class _Rule:
    prefix: tuple[str, ...]
    stdout: str = ""
    stderr: str = ""
    returncode: int = 0
    once: bool = False
    effect: Callable[[tuple[str, ...]], None] | None = None


@dataclass
class FakeRunner:
    """Scripted ``CommandRunner``.

    Rules match on an argument prefix (git's ``-C <dir>`` is ignored) in
    registration order; ``once`` rules are consumed by their first match.
    Unmatched commands succeed with empty output.
    """

    calls: list[tuple[str, ...]] = field(default_factory=list)
    _rules: list[_Rule] = field(default_factory=list)

    def on(
        self,
        *prefix: str,
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
        once: bool = False,
        effect: Callable[[tuple[str, ...]], None] | None = None,
    ) -> FakeRunner:
        self._rules.append(
            _Rule(tuple(prefix), stdout, stderr, returncode, once, effect)
        )
        return self

    async def run(
        self,
        args: Sequence[str],
        *,
        cwd: Any = None,
        env: Any = None,
        check: bool = True,
    ) -> CommandResult:
        full = tuple(args)
        self.calls.append(full)
        key = _strip_cwd(full)

        rule = None
        for candidate in self._rules:
            if key[: len(candidate.prefix)] == candidate.prefix:
                rule = candidate
                break
        if rule is None:
            result = CommandResult(full, 0, "", "")
        else:
            if rule.once:
                self._rules.remove(rule)
            if rule.effect is not None:
                rule.effect(full)
            result = CommandResult(full, rule.returncode, rule.stdout, rule.stderr)

        if check and not result.ok:
            raise failure_from_result(result)
        return result

    @property
    def commands(self) -> list[tuple[str, ...]]:
        return [_strip_cwd(call) for call in self.calls]

    def called(self, *prefix: str) -> bool:
        return any(cmd[: len(prefix)] == prefix for cmd in self.commands)


@dataclass
class FakeHost:
    """``HostServices`` that records notifications and replays prompt replies."""

    replies: list[str | None] = field(default_factory=list)
    prompts: list[str] = field(default_factory=list)
    notifications: list[tuple[str, str]] = field(default_factory=list)
    logs: list[tuple[str, str]] = field(default_factory=list)

    def log(self, level: str, message: str) -> None:
        self.logs.append((level, message))

    async def notify(self, message: str, level: str = "info") -> None:
        self.notifications.append((level, message))

    async def prompt(self, text: str) -> str | None:
        self.prompts.append(text)
        return self.replies.pop(0) if self.replies else None


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def locations(home: Path) -> SyncLocations:
    """Linux layout rooted at a temporary home directory."""
    return resolve_sync_locations({"HOME": str(home)}, "linux")


@pytest.fixture
def write_json() -> Callable[[Path, Any], Path]:
    """Write canonical JSON (the same bytes the sync engine writes)."""

    def _write(path: Path, data: Any) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(dump_json(data), encoding="utf-8")
        return path

    return _write
