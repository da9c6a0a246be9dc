"""Tests for opencode_synced.sync.repo -- git/gh mirror operations."""

from __future__ import annotations

import json

import pytest

from opencode_synced.errors import (
    CommandFailureError,
    RepoDivergedError,
    RepoPrivacyViolationError,
    RepoVisibilityError,
)
from opencode_synced.sync.repo import (
    MirrorRepo,
    create_repo,
    ensure_repo_private,
    find_mirror_repos,
    get_authenticated_user,
    parse_repo_visibility,
    repo_exists,
)


@pytest.fixture
def mirror(runner, tmp_path) -> MirrorRepo:
    repo_dir = tmp_path / "repo"
    (repo_dir / ".git").mkdir(parents=True)
    return MirrorRepo(runner, repo_dir)


class TestFetchAndFastForward:
    """Tests for MirrorRepo.fetch_and_fast_forward()."""

    async def test_diverged_raises_without_merging(self, runner, mirror):
        runner.on("git", "rev-list", "--left-right", stdout="1\t1\n")

        with pytest.raises(RepoDivergedError) as excinfo:
            await mirror.fetch_and_fast_forward("main")

        assert "git pull --rebase" in str(excinfo.value)
        assert not runner.called("git", "merge")

    async def test_behind_only_fast_forwards(self, runner, mirror):
        runner.on("git", "rev-list", "--left-right", stdout="0\t3\n")

        update = await mirror.fetch_and_fast_forward("main")

        assert update.updated is True
        assert update.behind == 3
        assert ("git", "merge", "--ff-only", "origin/main") in runner.commands

    async def test_up_to_date(self, runner, mirror):
        runner.on("git", "rev-list", "--left-right", stdout="0\t0\n")
        update = await mirror.fetch_and_fast_forward("main")
        assert update.updated is False
        assert not runner.called("git", "merge")

    async def test_ahead_only_is_not_an_update(self, runner, mirror):
        runner.on("git", "rev-list", "--left-right", stdout="2\t0\n")
        update = await mirror.fetch_and_fast_forward("main")
        assert update == type(update)(updated=False, branch="main", ahead=2, behind=0)

    async def test_missing_remote_branch(self, runner, mirror):
        runner.on("git", "show-ref", "--verify", "refs/remotes/origin/dev", returncode=1)
        runner.on("git", "show-ref", "--verify", "refs/heads/dev", returncode=1)

        update = await mirror.fetch_and_fast_forward("dev")

        assert update.updated is False
        assert ("git", "checkout", "-b", "dev") in runner.commands
        assert not runner.called("git", "rev-list")

    async def test_fetch_failure_is_wrapped(self, runner, mirror):
        runner.on("git", "fetch", returncode=128, stderr="could not read from remote")
        with pytest.raises(CommandFailureError, match="^Failed to fetch repo: git fetch failed"):
            await mirror.fetch_and_fast_forward("main")

    async def test_commands_target_the_working_copy(self, runner, mirror):
        runner.on("git", "rev-list", "--left-right", stdout="0\t0\n")
        await mirror.fetch_and_fast_forward("main")
        assert runner.calls[0] == ("git", "-C", str(mirror.repo_dir), "fetch", "--prune")


class TestWorkingTree:
    async def test_status_lines(self, runner, mirror):
        runner.on("git", "status", "--porcelain", stdout=" M config/opencode.json\n?? new\n\n")
        runner.on("git", "rev-parse", stdout="main\n")

        status = await mirror.status()

        assert status.branch == "main"
        assert status.changes == ["M config/opencode.json", "?? new"]
        assert status.dirty

    async def test_detached_head_reports_main(self, runner, mirror):
        runner.on("git", "rev-parse", stdout="HEAD\n")
        assert await mirror.current_branch() == "main"

    async def test_diff_is_capped(self, runner, mirror):
        runner.on("git", "diff", "HEAD", stdout="x" * 50)
        assert await mirror.diff(limit=10) == "x" * 10

    async def test_ensure_cloned_skips_existing(self, runner, mirror):
        assert await mirror.ensure_cloned("me/cfg") is False
        assert runner.calls == []

    async def test_ensure_cloned_clones(self, runner, tmp_path):
        repo = MirrorRepo(runner, tmp_path / "fresh" / "repo")
        assert await repo.ensure_cloned("me/cfg") is True
        assert runner.commands == [("gh", "repo", "clone", "me/cfg", str(repo.repo_dir))]

    async def test_paths_in_history(self, runner, mirror):
        runner.on("git", "rev-list", "--all", stdout="abc123\n")
        assert await mirror.paths_in_history("data/auth.json")


# ---------------------------------------------------------------------------
# Hosting service
# ---------------------------------------------------------------------------


class TestVisibility:
    @pytest.mark.parametrize(
        "output, expected",
        [('{"isPrivate": true}', True), ('{"isPrivate": false}', False)],
    )
    def test_parse(self, output, expected):
        assert parse_repo_visibility(output) is expected

    @pytest.mark.parametrize("output", ["not json", "[]", '{"isPrivate": "yes"}'])
    def test_parse_rejects_unexpected_output(self, output):
        with pytest.raises(ValueError):
            parse_repo_visibility(output)

    async def test_public_repo_is_refused(self, runner):
        runner.on("gh", "repo", "view", stdout='{"isPrivate": false}')
        with pytest.raises(RepoPrivacyViolationError):
            await ensure_repo_private(runner, "me/cfg")

    async def test_private_repo_passes(self, runner):
        runner.on("gh", "repo", "view", stdout='{"isPrivate": true}')
        await ensure_repo_private(runner, "me/cfg")

    async def test_gh_failure_is_a_visibility_error(self, runner):
        runner.on("gh", "repo", "view", returncode=1, stderr="HTTP 404")
        with pytest.raises(RepoVisibilityError, match="Unable to verify repo visibility"):
            await ensure_repo_private(runner, "me/cfg")


class TestGitHub:
    async def test_repo_exists(self, runner):
        runner.on("gh", "repo", "view", "missing/repo", returncode=1)
        assert await repo_exists(runner, "me/cfg")
        assert not await repo_exists(runner, "missing/repo")

    async def test_authenticated_user(self, runner):
        runner.on("gh", "api", "user", stdout="octocat\n")
        assert await get_authenticated_user(runner) == "octocat"

    async def test_authenticated_user_requires_login(self, runner):
        with pytest.raises(CommandFailureError, match="Ensure gh is authenticated"):
            await get_authenticated_user(runner)

    async def test_create_repo_visibility_flag(self, runner):
        await create_repo(runner, "me", "cfg")
        await create_repo(runner, "me", "pub", private=False)
        assert runner.commands == [
            ("gh", "repo", "create", "me/cfg", "--private", "--confirm"),
            ("gh", "repo", "create", "me/pub", "--public", "--confirm"),
        ]

    async def test_find_mirror_repos_orders_exact_match_first(self, runner):
        listing = [
            {"name": "zeta-opencode", "nameWithOwner": "me/zeta-opencode"},
            {"name": "dotfiles", "nameWithOwner": "me/dotfiles"},
            {"name": "My-OpenCode-Config", "nameWithOwner": "me/My-OpenCode-Config"},
            {"name": "opencode-alpha", "nameWithOwner": "me/opencode-alpha"},
            "junk",
        ]
        runner.on("gh", "repo", "list", stdout=json.dumps(listing))

        assert await find_mirror_repos(runner, "me") == [
            "me/My-OpenCode-Config",
            "me/opencode-alpha",
            "me/zeta-opencode",
        ]

    async def test_find_mirror_repos_tolerates_failure(self, runner):
        runner.on("gh", "repo", "list", returncode=1)
        assert await find_mirror_repos(runner, "me") == []
