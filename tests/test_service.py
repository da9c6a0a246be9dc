"""Tests for opencode_synced.sync.service -- end-to-end sync flows over fakes."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from opencode_synced.errors import (
    AuthFilesAlreadyTrackedError,
    CommandFailureError,
    ConfigInvalidError,
    ConfigMissingError,
    LockBusyError,
    MirrorDirtyError,
    RepoPrivacyViolationError,
)
from opencode_synced.jsonc import read_jsonc_file
from opencode_synced.sync.lock import try_acquire_lock
from opencode_synced.sync.service import (
    ALREADY_UP_TO_DATE,
    NO_LOCAL_CHANGES,
    REMOTE_APPLIED,
    InitOptions,
    SyncService,
    parse_repo_argument,
)
from opencode_synced.sync.state import load_state

NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
BACKEND = {
    "type": "1password",
    "vault": "Private",
    "documents": {"authJson": "opencode-auth", "mcpAuthJson": "opencode-mcp-auth"},
}


class RecordingBackend:
    """Secrets backend double that records calls and can fail on push."""

    def __init__(self, push_error: Exception | None = None) -> None:
        self.calls: list[str] = []
        self.push_error = push_error

    async def pull(self) -> None:
        self.calls.append("pull")

    async def push(self) -> None:
        self.calls.append("push")
        if self.push_error is not None:
            raise self.push_error

    async def status(self) -> str:
        self.calls.append("status")
        return "backend ok"


@pytest.fixture
def service(runner, host, locations) -> SyncService:
    return SyncService(runner, host, locations, platform="linux", clock=lambda: NOW)


@pytest.fixture
def repo_dir(locations) -> Path:
    return Path(locations.default_repo_dir)


@pytest.fixture
def configure(locations, repo_dir, write_json):
    """Write a sync config and make the mirror look cloned."""

    def _configure(cloned: bool = True, **extra) -> Path:
        if cloned:
            (repo_dir / ".git").mkdir(parents=True, exist_ok=True)
        return write_json(
            Path(locations.sync_config_path),
            {"repo": {"owner": "me", "name": "cfg"}, **extra},
        )

    return _configure


def _dirty(runner, line: str = " M config/opencode.json") -> None:
    runner.on("git", "status", "--porcelain", stdout=f"{line}\n")


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


class TestStartupSync:
    async def test_unconfigured_prompts_for_init(self, service, host, runner):
        assert await service.startup_sync() is None
        assert host.notifications == [("info", "Configure opencode-synced with sync init.")]
        assert runner.calls == []

    async def test_invalid_config_is_notified_not_raised(self, service, host, configure):
        configure(secretsBackend={"type": "vault"})
        assert await service.startup_sync() is None
        assert host.notifications == [("error", 'Unsupported secrets backend type "vault".')]

    async def test_dirty_mirror_warns_and_skips_fetch(
        self, service, host, runner, configure, repo_dir
    ):
        configure()
        _dirty(runner)

        assert await service.startup_sync() is None

        level, message = host.notifications[0]
        assert level == "warning"
        assert message.startswith("Uncommitted changes detected. Run sync resolve")
        assert str(repo_dir) in message
        assert not runner.called("git", "fetch")

    async def test_busy_lock_skips_silently(self, service, host, runner, locations, configure):
        configure()
        assert try_acquire_lock(Path(locations.lock_path)).acquired

        assert await service.startup_sync() is None
        assert host.notifications == []
        assert runner.calls == []

    async def test_remote_update_is_applied(
        self, service, host, runner, configure, repo_dir, locations, write_json
    ):
        configure()
        write_json(repo_dir / "config" / "opencode.json", {"theme": "dark"})
        runner.on("git", "rev-list", "--left-right", stdout="0\t2\n")

        assert await service.startup_sync() == REMOTE_APPLIED

        local = Path(locations.config_root) / "opencode.json"
        assert read_jsonc_file(local) == {"theme": "dark"}
        assert host.notifications == [("info", "Config updated. Restart OpenCode to apply.")]

    async def test_failures_are_notified(self, service, host, runner, configure):
        configure()
        runner.on("git", "fetch", returncode=128, stderr="network down")

        assert await service.startup_sync() is None
        assert host.notifications[0][0] == "error"
        assert "network down" in host.notifications[0][1]
        assert not Path(service.locations.lock_path).exists()


# ---------------------------------------------------------------------------
# Pull / push
# ---------------------------------------------------------------------------


class TestPull:
    async def test_requires_config(self, service):
        with pytest.raises(ConfigMissingError):
            await service.pull()

    async def test_busy_lock_raises(self, service, locations, configure):
        configure()
        try_acquire_lock(Path(locations.lock_path))
        with pytest.raises(LockBusyError, match="Another sync is already in progress"):
            await service.pull()

    async def test_dirty_mirror_refuses(self, service, runner, configure):
        configure()
        _dirty(runner)
        with pytest.raises(MirrorDirtyError, match="before pulling"):
            await service.pull()
        assert not runner.called("git", "fetch")

    async def test_up_to_date(self, service, runner, configure, locations):
        configure()
        runner.on("git", "rev-list", "--left-right", stdout="0\t0\n")
        assert await service.pull() == ALREADY_UP_TO_DATE
        assert load_state(locations).last_pull is None

    async def test_applies_remote_with_overrides_and_records_state(
        self, service, runner, configure, repo_dir, locations, write_json
    ):
        configure()
        write_json(repo_dir / "config" / "opencode.json", {"model": "a", "share": "auto"})
        write_json(Path(locations.overrides_path), {"model": "local"})
        runner.on("git", "rev-list", "--left-right", stdout="0\t1\n")

        assert await service.pull() == REMOTE_APPLIED

        local = Path(locations.config_root) / "opencode.json"
        assert read_jsonc_file(local) == {"model": "local", "share": "auto"}
        state = load_state(locations)
        assert state.last_pull == NOW.isoformat()
        assert state.last_remote_update == NOW.isoformat()
        assert not Path(locations.lock_path).exists()

    async def test_backend_pull_follows_apply(
        self, runner, host, locations, configure
    ):
        configure(includeSecrets=True, secretsBackend=BACKEND)
        runner.on("gh", "repo", "view", stdout='{"isPrivate": true}')
        runner.on("git", "rev-list", "--left-right", stdout="0\t1\n")
        backend = RecordingBackend()
        service = SyncService(
            runner, host, locations, platform="linux",
            backend_factory=lambda *args: backend, clock=lambda: NOW,
        )

        assert await service.pull() == REMOTE_APPLIED
        assert backend.calls == ["pull"]


class TestPush:
    async def test_nothing_to_push(self, service, runner, configure):
        configure()
        assert await service.push() == NO_LOCAL_CHANGES
        assert not runner.called("git", "commit")
        assert not runner.called("git", "fetch")

    async def test_dirty_mirror_refuses(self, service, runner, configure):
        configure()
        _dirty(runner)
        with pytest.raises(MirrorDirtyError, match="before pushing"):
            await service.push()

    async def test_commits_and_pushes_with_fallback_message(
        self, service, runner, configure, locations, repo_dir, write_json
    ):
        configure()
        write_json(Path(locations.config_root) / "opencode.json", {"theme": "dark"})
        runner.on("git", "status", "--porcelain", stdout="", once=True)
        _dirty(runner)

        result = await service.push()

        message = "Sync OpenCode config (2026-01-02)"
        assert result == f"Pushed changes: {message}"
        assert ("git", "commit", "-m", message) in runner.commands
        assert ("git", "push", "-u", "origin", "main") in runner.commands
        assert read_jsonc_file(repo_dir / "config" / "opencode.json") == {"theme": "dark"}
        assert load_state(locations).last_push == NOW.isoformat()

    async def test_commit_message_comes_from_the_model(
        self, service, host, runner, configure
    ):
        configure()
        host.replies.append('"Switch theme to dark"\nextra line')
        runner.on("git", "status", "--porcelain", stdout="", once=True)
        _dirty(runner)
        runner.on("git", "diff", "HEAD", "--name-status", stdout="M\tconfig/opencode.json")

        assert await service.push() == "Pushed changes: Switch theme to dark"
        assert "M\tconfig/opencode.json" in host.prompts[0]

    async def test_backend_failure_is_reported_not_raised(
        self, runner, host, locations, configure
    ):
        configure(secretsBackend=BACKEND)
        runner.on("git", "status", "--porcelain", stdout="", once=True)
        _dirty(runner)
        backend = RecordingBackend(push_error=CommandFailureError("op boom"))
        service = SyncService(
            runner, host, locations, platform="linux",
            backend_factory=lambda *args: backend, clock=lambda: NOW,
        )

        result = await service.push()

        assert result == (
            "Pushed changes: Sync OpenCode config (2026-01-02)"
            " (secrets backend push failed: op boom)"
        )
        state = load_state(locations)
        assert state.last_push == NOW.isoformat()
        assert state.last_secrets_hash is None

    async def test_backend_push_skipped_when_hash_unchanged(
        self, runner, host, locations, configure
    ):
        configure(secretsBackend=BACKEND)
        backend = RecordingBackend()
        service = SyncService(
            runner, host, locations, platform="linux",
            backend_factory=lambda *args: backend, clock=lambda: NOW,
        )

        assert await service.push() == NO_LOCAL_CHANGES
        assert await service.push() == NO_LOCAL_CHANGES
        assert backend.calls == ["push"]

    async def test_tracked_auth_files_block_backend(self, service, runner, configure):
        configure(secretsBackend=BACKEND)
        runner.on("git", "rev-list", "--all", stdout="abc123\n")
        with pytest.raises(AuthFilesAlreadyTrackedError, match="already in the sync repo history"):
            await service.push()


# ---------------------------------------------------------------------------
# Setup flows
# ---------------------------------------------------------------------------


class TestParseRepoArgument:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("https://github.com/me/cfg.git", {"url": "https://github.com/me/cfg.git"}),
            ("git@github.com:me/cfg.git", {"url": "git@github.com:me/cfg.git"}),
            ("me/cfg", {"owner": "me", "name": "cfg"}),
        ],
    )
    def test_recognised_forms(self, value, expected):
        parsed = parse_repo_argument(value)
        assert parsed.model_dump(exclude_none=True) == expected

    @pytest.mark.parametrize("value", ["cfg", "a/b/c", "/cfg"])
    def test_bare_or_unrecognised(self, value):
        assert parse_repo_argument(value) is None


class TestInit:
    async def test_creates_default_repo_for_authenticated_user(
        self, service, runner, locations
    ):
        runner.on("gh", "api", "user", stdout="octocat\n")
        runner.on("gh", "repo", "view", "octocat/my-opencode-config", returncode=1)

        result = await service.init()

        assert "Repo: octocat/my-opencode-config (created)" in result
        assert (
            "gh", "repo", "create", "octocat/my-opencode-config", "--private", "--confirm"
        ) in runner.commands
        assert runner.called("gh", "repo", "clone", "octocat/my-opencode-config")
        saved = read_jsonc_file(Path(locations.sync_config_path))
        assert saved["repo"] == {"owner": "octocat", "name": "my-opencode-config"}
        assert saved["includeModelFavorites"] is True

    async def test_existing_repo_is_not_created(self, service, runner):
        result = await service.init(InitOptions(repo="me/cfg", branch="dev"))
        assert "Repo: me/cfg\n" in result
        assert "Branch: dev" in result
        assert not runner.called("gh", "repo", "create")

    async def test_no_create_fails_for_missing_repo(self, service, runner, locations):
        runner.on("gh", "repo", "view", returncode=1)
        with pytest.raises(ConfigInvalidError, match="creation was disabled"):
            await service.init(InitOptions(repo="me/cfg", create=False))
        assert not Path(locations.sync_config_path).exists()

    async def test_secrets_require_private_repo(self, service, runner, repo_dir):
        (repo_dir / ".git").mkdir(parents=True)
        runner.on("gh", "repo", "view", "me/cfg", "--json", "isPrivate",
                  stdout='{"isPrivate": false}')
        with pytest.raises(RepoPrivacyViolationError):
            await service.init(InitOptions(repo="me/cfg", include_secrets=True))


class TestLink:
    async def test_link_keeps_the_linked_repo(
        self, service, runner, locations, repo_dir, write_json
    ):
        (repo_dir / ".git").mkdir(parents=True)
        write_json(
            repo_dir / "config" / "opencode-synced.jsonc",
            {"repo": {"owner": "someone", "name": "else"}, "includeSessions": True},
        )
        write_json(repo_dir / "config" / "opencode.json", {"theme": "dark"})
        runner.on("git", "rev-list", "--left-right", stdout="0\t0\n")

        result = await service.link("me/cfg")

        assert result.startswith("Linked to me/cfg.")
        saved = read_jsonc_file(Path(locations.sync_config_path))
        assert saved["repo"] == {"owner": "me", "name": "cfg"}
        assert saved["includeSessions"] is True
        assert read_jsonc_file(Path(locations.config_root) / "opencode.json") == {
            "theme": "dark"
        }

    async def test_link_discovers_repo(self, service, runner, repo_dir):
        (repo_dir / ".git").mkdir(parents=True)
        runner.on("gh", "api", "user", stdout="me\n")
        runner.on(
            "gh", "repo", "list",
            stdout=json.dumps([{"name": "my-opencode-config",
                                "nameWithOwner": "me/my-opencode-config"}]),
        )

        assert (await service.link()).startswith("Linked to me/my-opencode-config.")

    async def test_link_without_candidates(self, service, runner):
        runner.on("gh", "api", "user", stdout="me\n")
        runner.on("gh", "repo", "list", stdout="[]")
        with pytest.raises(ConfigMissingError, match="No opencode-synced repo found for me"):
            await service.link()


class TestEnableSecrets:
    async def test_enables_on_private_repo(self, service, runner, configure, locations):
        configure()
        runner.on("gh", "repo", "view", stdout='{"isPrivate": true}')

        await service.enable_secrets(["~/.ssh/config"], include_mcp_secrets=True)

        saved = read_jsonc_file(Path(locations.sync_config_path))
        assert saved["includeSecrets"] is True
        assert saved["includeMcpSecrets"] is True
        assert saved["extraSecretPaths"] == ["~/.ssh/config"]

    async def test_public_repo_leaves_config_alone(self, service, runner, configure, locations):
        configure()
        runner.on("gh", "repo", "view", stdout='{"isPrivate": false}')
        with pytest.raises(RepoPrivacyViolationError):
            await service.enable_secrets()
        assert "includeSecrets" not in read_jsonc_file(Path(locations.sync_config_path))


# ---------------------------------------------------------------------------
# Resolve
# ---------------------------------------------------------------------------


class TestResolve:
    async def test_clean_mirror(self, service, configure):
        configure()
        assert await service.resolve() == "No uncommitted changes to resolve."

    async def test_commit_verdict(self, service, host, runner, configure):
        configure()
        _dirty(runner)
        host.replies.append('Sure: {"action": "commit", "message": "Add agent"}')

        assert await service.resolve() == "Resolved by committing changes: Add agent"
        assert ("git", "commit", "-m", "Add agent") in runner.commands

    async def test_discard_needs_confirmation(self, service, host, runner, configure, repo_dir):
        configure()
        _dirty(runner, "?? tmp.log")
        host.replies.append('{"action": "discard", "reason": "temp files"}')

        result = await service.resolve()

        assert result.startswith("Suggested discarding all uncommitted changes (temp files).")
        assert str(repo_dir) in result
        assert not runner.called("git", "reset")

    async def test_confirmed_discard_resets(self, service, host, runner, configure):
        configure()
        _dirty(runner, "?? tmp.log")
        host.replies.append('{"action": "discard"}')

        result = await service.resolve(confirm_discard=True)

        assert result == "Resolved by discarding all uncommitted changes."
        assert ("git", "reset", "--hard", "HEAD") in runner.commands
        assert ("git", "clean", "-fd") in runner.commands

    async def test_no_model_means_manual(self, service, runner, configure, repo_dir):
        configure()
        _dirty(runner)
        result = await service.resolve(confirm_discard=True)
        assert result == f"Unable to automatically resolve. Please manually resolve in: {repo_dir}"
        assert not runner.called("git", "commit")
        assert not runner.called("git", "reset")


# ---------------------------------------------------------------------------
# Status, secrets commands, effective config
# ---------------------------------------------------------------------------


class TestStatus:
    async def test_unconfigured(self, service):
        assert await service.status() == (
            "opencode-synced is not configured. Run sync init to set it up."
        )

    async def test_not_cloned(self, service, runner, configure):
        configure(cloned=False, secretsBackend=BACKEND)
        lines = (await service.status()).splitlines()
        assert lines[0] == "Repo: me/cfg"
        assert "Secrets backend: 1password" in lines
        assert lines[-1] == "Working tree: not cloned"
        assert runner.calls == []

    async def test_pending_changes(self, service, runner, configure):
        configure()
        runner.on("git", "rev-parse", stdout="dev\n")
        runner.on("git", "status", "--porcelain", stdout=" M a\n?? b\n")
        status = await service.status()
        assert "Branch: dev" in status
        assert "Working tree: 2 pending" in status
        assert "Last pull: never" in status


class TestSecretsCommands:
    async def test_invalid_backend_fails_before_any_command(self, service, runner, configure):
        configure(secretsBackend={"type": "1password"})
        with pytest.raises(ConfigInvalidError, match="vault is required"):
            await service.secrets_status()
        assert runner.calls == []

    async def test_missing_backend(self, service, configure):
        configure()
        with pytest.raises(ConfigInvalidError, match="No secrets backend"):
            await service.secrets_pull()

    async def test_push_records_hash(self, runner, host, locations, configure):
        configure(secretsBackend=BACKEND)
        backend = RecordingBackend()
        service = SyncService(
            runner, host, locations, platform="linux",
            backend_factory=lambda *args: backend, clock=lambda: NOW,
        )

        await service.secrets_push()
        status = await service.secrets_status()

        assert backend.calls == ["push", "status"]
        assert load_state(locations).last_secrets_hash
        assert status.splitlines() == ["backend ok", "auth.json: missing", "mcp-auth.json: missing"]


class TestEffectiveConfig:
    async def test_overrides_applied(self, service, locations, write_json):
        write_json(Path(locations.config_root) / "opencode.json", {"a": 1, "mcp": {"x": {}}})
        write_json(Path(locations.overrides_path), {"mcp": {"x": {"enabled": False}}})
        assert await service.effective_config() == {
            "a": 1,
            "mcp": {"x": {"enabled": False}},
        }

    async def test_empty_without_config(self, service):
        assert await service.effective_config() == {}
