"""Mirror repository operations over ``git`` and ``gh``.

``MirrorRepo`` wraps one local working copy; module-level functions cover
hosting-service queries that do not need a working copy (visibility,
existence, identity, creation, discovery).  Every command goes through
the injected ``CommandRunner``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from ..core.runner import CommandRunner, sanitize_command_output
from ..errors import (
    CommandFailureError,
    RepoDivergedError,
    RepoPrivacyViolationError,
    RepoVisibilityError,
)

logger = logging.getLogger(__name__)

DEFAULT_REPO_NAME = "my-opencode-config"
DIFF_PROMPT_LIMIT = 2000


@dataclass(frozen=True)
class RepoStatus:
    branch: str
    changes: list[str] = field(default_factory=list)

    @property
    def dirty(self) -> bool:
        return bool(self.changes)


@dataclass(frozen=True)
class RepoUpdate:
    """Result of fetch plus fast-forward.

    Attributes:
        updated: True when the working copy was fast-forwarded.
        branch: Branch that was checked out.
        ahead: Local commits not on the remote.
        behind: Remote commits the local branch lacked before the update.
    """

    updated: bool
    branch: str
    ahead: int = 0
    behind: int = 0


def _wrap(action: str, exc: CommandFailureError) -> CommandFailureError:
    return CommandFailureError(
        f"{action}: {exc}", command=exc.command, returncode=exc.returncode
    )


class MirrorRepo:
    """Local working copy of the mirror repository.

    Args:
        runner: Command runner for ``git`` invocations.
        repo_dir: Working copy path.
    """

    def __init__(self, runner: CommandRunner, repo_dir: str | Path) -> None:
        self._runner = runner
        self.repo_dir = Path(repo_dir)

    async def _git(self, *args: str, check: bool = True):
        return await self._runner.run(
            ["git", "-C", str(self.repo_dir), *args], check=check
        )

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def is_cloned(self) -> bool:
        return (self.repo_dir / ".git").exists()

    async def ensure_cloned(self, repo_identifier: str) -> bool:
        """Clone the mirror if needed.  Returns True when a clone happened."""
        if self.is_cloned():
            return False
        self.repo_dir.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Cloning %s into %s", repo_identifier, self.repo_dir)
        try:
            await self._runner.run(
                ["gh", "repo", "clone", repo_identifier, str(self.repo_dir)]
            )
        except CommandFailureError as exc:
            raise _wrap("Failed to clone repo", exc) from exc
        return True

    # ------------------------------------------------------------------
    # Branches and refs
    # ------------------------------------------------------------------

    async def current_branch(self) -> str:
        result = await self._git("rev-parse", "--abbrev-ref", "HEAD", check=False)
        branch = result.stdout.strip()
        if not result.ok or not branch or branch == "HEAD":
            return "main"
        return branch

    async def has_local_branch(self, branch: str) -> bool:
        result = await self._git("show-ref", "--verify", f"refs/heads/{branch}", check=False)
        return result.ok

    async def has_remote_ref(self, branch: str) -> bool:
        result = await self._git(
            "show-ref", "--verify", f"refs/remotes/origin/{branch}", check=False
        )
        return result.ok

    async def checkout(self, branch: str) -> None:
        """Check out *branch*, creating it when it does not exist locally."""
        try:
            if await self.has_local_branch(branch):
                await self._git("checkout", branch)
            else:
                await self._git("checkout", "-b", branch)
        except CommandFailureError as exc:
            raise _wrap("Failed to checkout branch", exc) from exc

    async def ahead_behind(self, remote_ref: str) -> tuple[int, int]:
        result = await self._git(
            "rev-list", "--left-right", "--count", f"HEAD...{remote_ref}", check=False
        )
        if not result.ok:
            return 0, 0
        parts = result.stdout.split()
        try:
            ahead = int(parts[0]) if parts else 0
            behind = int(parts[1]) if len(parts) > 1 else 0
        except ValueError:
            return 0, 0
        return ahead, behind

    async def fetch_and_fast_forward(self, branch: str) -> RepoUpdate:
        """Fetch, check out *branch* and fast-forward it when behind.

        Raises:
            RepoDivergedError: Local and remote have both advanced.  The
                working tree is left untouched.
            CommandFailureError: Fetch, checkout or merge failed.
        """
        try:
            await self._git("fetch", "--prune")
        except CommandFailureError as exc:
            raise _wrap("Failed to fetch repo", exc) from exc

        await self.checkout(branch)
        if not await self.has_remote_ref(branch):
            return RepoUpdate(updated=False, branch=branch)

        remote_ref = f"origin/{branch}"
        ahead, behind = await self.ahead_behind(remote_ref)
        if ahead > 0 and behind > 0:
            raise RepoDivergedError(
                "Local sync repo has diverged. Resolve with: "
                f"cd {self.repo_dir} && git status && git pull --rebase"
            )
        if behind > 0:
            try:
                await self._git("merge", "--ff-only", remote_ref)
            except CommandFailureError as exc:
                raise _wrap("Failed to fast-forward", exc) from exc
            logger.info("Fast-forwarded %s by %d commit(s)", branch, behind)
            return RepoUpdate(updated=True, branch=branch, ahead=ahead, behind=behind)
        return RepoUpdate(updated=False, branch=branch, ahead=ahead, behind=0)

    # ------------------------------------------------------------------
    # Working tree
    # ------------------------------------------------------------------

    async def status_lines(self) -> list[str]:
        result = await self._git("status", "--porcelain", check=False)
        if not result.ok:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def status(self) -> RepoStatus:
        return RepoStatus(branch=await self.current_branch(), changes=await self.status_lines())

    async def has_local_changes(self) -> bool:
        return bool(await self.status_lines())

    async def diff_summary(self) -> str:
        """Name-status plus stat of uncommitted changes against HEAD."""
        parts = []
        for args in (("diff", "HEAD", "--name-status"), ("diff", "HEAD", "--stat")):
            result = await self._git(*args, check=False)
            if result.ok and result.stdout.strip():
                parts.append(result.stdout.strip())
        untracked = [line for line in await self.status_lines() if line.startswith("??")]
        if untracked:
            parts.append("\n".join(untracked))
        return "\n".join(parts)

    async def diff(self, limit: int = DIFF_PROMPT_LIMIT) -> str:
        result = await self._git("diff", "HEAD", check=False)
        return result.stdout[:limit] if result.ok else ""

    async def commit_all(self, message: str) -> None:
        try:
            await self._git("add", "-A")
            await self._git("commit", "-m", message)
        except CommandFailureError as exc:
            raise _wrap("Failed to commit changes", exc) from exc
        logger.info("Committed mirror changes: %s", message)

    async def push(self, branch: str) -> None:
        try:
            await self._git("push", "-u", "origin", branch)
        except CommandFailureError as exc:
            raise _wrap("Failed to push changes", exc) from exc
        logger.info("Pushed %s", branch)

    async def discard_changes(self) -> None:
        """Hard reset to HEAD and remove untracked files."""
        try:
            await self._git("reset", "--hard", "HEAD")
            await self._git("clean", "-fd")
        except CommandFailureError as exc:
            raise _wrap("Failed to discard changes", exc) from exc
        logger.warning("Discarded uncommitted changes in %s", self.repo_dir)

    async def paths_in_history(self, *paths: str) -> bool:
        """True when any commit on any ref touched one of *paths*."""
        result = await self._git("rev-list", "--all", "-n", "1", "--", *paths, check=False)
        return result.ok and bool(result.stdout.strip())


# ---------------------------------------------------------------------------
# Hosting service (gh)
# ---------------------------------------------------------------------------


def parse_repo_visibility(output: str) -> bool:
    """Extract ``isPrivate`` from ``gh repo view --json isPrivate``.

    Raises:
        ValueError: If the output is not the expected JSON.
    """
    parsed = json.loads(output)
    if not isinstance(parsed, dict) or not isinstance(parsed.get("isPrivate"), bool):
        raise ValueError("Invalid repo visibility response.")
    return parsed["isPrivate"]


async def ensure_repo_private(runner: CommandRunner, repo_identifier: str) -> None:
    """Fail unless the hosted repo is private.

    Raises:
        RepoVisibilityError: Visibility could not be determined.
        RepoPrivacyViolationError: The repo is public.
    """
    try:
        result = await runner.run(
            ["gh", "repo", "view", repo_identifier, "--json", "isPrivate"]
        )
    except CommandFailureError as exc:
        raise RepoVisibilityError(
            f"Unable to verify repo visibility: {exc}",
            command=exc.command,
            returncode=exc.returncode,
        ) from exc
    try:
        is_private = parse_repo_visibility(result.stdout)
    except ValueError as exc:
        raise RepoVisibilityError(
            f"Unable to verify repo visibility: {sanitize_command_output(str(exc))}",
            command="gh repo view",
        ) from exc
    if not is_private:
        raise RepoPrivacyViolationError("Secrets sync requires a private GitHub repo.")


async def repo_exists(runner: CommandRunner, repo_identifier: str) -> bool:
    result = await runner.run(
        ["gh", "repo", "view", repo_identifier, "--json", "name"], check=False
    )
    return result.ok


async def get_authenticated_user(runner: CommandRunner) -> str:
    try:
        result = await runner.run(["gh", "api", "user", "--jq", ".login"])
    except CommandFailureError as exc:
        raise CommandFailureError(
            f"Failed to detect GitHub user. Ensure gh is authenticated: {exc}",
            command=exc.command,
            returncode=exc.returncode,
        ) from exc
    login = result.stdout.strip()
    if not login:
        raise CommandFailureError(
            "Failed to detect GitHub user. Ensure gh is authenticated.",
            command="gh api",
        )
    return login


async def create_repo(
    runner: CommandRunner, owner: str, name: str, *, private: bool = True
) -> None:
    visibility = "--private" if private else "--public"
    try:
        await runner.run(["gh", "repo", "create", f"{owner}/{name}", visibility, "--confirm"])
    except CommandFailureError as exc:
        raise _wrap("Failed to create repo", exc) from exc
    logger.info("Created %s repo %s/%s", "private" if private else "public", owner, name)


async def find_mirror_repos(
    runner: CommandRunner, owner: str, name_hint: str = DEFAULT_REPO_NAME
) -> list[str]:
    """List ``owner/name`` repos that look like config mirrors.

    An exact name match sorts first, followed by names containing
    ``opencode``.
    """
    result = await runner.run(
        ["gh", "repo", "list", owner, "--limit", "200", "--json", "name,nameWithOwner"],
        check=False,
    )
    if not result.ok:
        return []
    try:
        parsed = json.loads(result.stdout or "[]")
    except ValueError:
        return []

    exact: list[str] = []
    related: list[str] = []
    for entry in parsed if isinstance(parsed, list) else []:
        if not isinstance(entry, dict):
            continue
        repo_name = entry.get("name")
        full = entry.get("nameWithOwner") or (f"{owner}/{repo_name}" if repo_name else None)
        if not isinstance(repo_name, str) or not isinstance(full, str):
            continue
        if repo_name.lower() == name_hint.lower():
            exact.append(full)
        elif "opencode" in repo_name.lower():
            related.append(full)
    return exact + sorted(related)
