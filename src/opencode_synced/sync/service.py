"""Sync orchestrator.

``SyncService`` runs every user-facing flow: startup sync, pull, push,
init, link, enable-secrets, resolve, status and the secrets-backend
commands.  Each flow is a strict sequence of awaited steps:

    lock -> config -> mirror ready -> clean check -> fetch/fast-forward
         -> apply -> commit/push -> secrets backend -> state -> unlock

Foreground flows raise ``LockBusyError`` when another process holds the
lock.  The background startup flow skips silently instead and reports
problems through ``HostServices.notify()`` rather than raising.

State timestamps are written only after the step they describe has fully
succeeded.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from ..config import (
    NormalizedSyncConfig,
    SyncRepoConfig,
    can_commit_mcp_secrets,
    has_secrets_backend,
    load_overrides,
    load_sync_config,
    normalize_sync_config,
    require_sync_config,
    resolve_repo_branch,
    resolve_repo_identifier,
    validate_sync_config,
    write_sync_config,
)
from ..core.async_utils import run_sync
from ..core.host import HostServices
from ..core.runner import CommandRunner
from ..errors import (
    AuthFilesAlreadyTrackedError,
    ConfigInvalidError,
    ConfigMissingError,
    LockBusyError,
    MirrorDirtyError,
    SyncError,
)
from ..jsonc import read_jsonc_file
from .advisor import classify_changes, generate_commit_message
from .apply import sync_local_to_mirror, sync_mirror_to_local
from .lock import describe_lock_owner, release_lock, try_acquire_lock
from .merge import apply_overrides_to_runtime_config
from .models import SyncLocations, SyncPlan
from .paths import (
    CONFIG_FILE_NAME,
    CONFIGC_FILE_NAME,
    build_sync_plan,
    resolve_repo_root,
    resolve_sync_locations,
)
from .repo import (
    DEFAULT_REPO_NAME,
    MirrorRepo,
    create_repo,
    ensure_repo_private,
    find_mirror_repos,
    get_authenticated_user,
    repo_exists,
)
from .secrets_backend import (
    REPO_AUTH_PATHS,
    SecretsBackend,
    compute_secrets_hash,
    create_secrets_backend,
    require_secrets_backend_config,
    resolve_auth_file_paths,
)
from .state import load_state, write_state

logger = logging.getLogger(__name__)

ALREADY_UP_TO_DATE = "Already up to date."
REMOTE_APPLIED = "Remote config applied. Restart OpenCode to use new settings."
NO_LOCAL_CHANGES = "No local changes to push."

BackendFactory = Callable[..., SecretsBackend]


class InitOptions(BaseModel):
    """Arguments accepted by ``SyncService.init``.

    ``repo`` may be a URL, ``owner/name`` or a bare name (owner is then
    the authenticated ``gh`` user).  With nothing given, the default repo
    name under the authenticated user is used.
    """

    repo: str | None = None
    owner: str | None = None
    name: str | None = None
    url: str | None = None
    branch: str | None = None
    include_secrets: bool = False
    include_mcp_secrets: bool = False
    include_sessions: bool = False
    include_prompt_stash: bool = False
    include_model_favorites: bool = True
    create: bool = True
    private: bool = True
    extra_secret_paths: list[str] | None = None
    extra_config_paths: list[str] | None = None
    local_repo_path: str | None = None


def parse_repo_argument(
    repo: str, branch: str | None = None
) -> SyncRepoConfig | None:
    """Interpret a repo argument without any lookup.

    Returns ``None`` for a bare name, which needs the authenticated user.
    """
    if "://" in repo or repo.endswith(".git"):
        return SyncRepoConfig(url=repo, branch=branch)
    if "/" in repo:
        owner, _, name = repo.partition("/")
        if owner and name and "/" not in name:
            return SyncRepoConfig(owner=owner, name=name, branch=branch)
    return None


class SyncService:
    """Runs sync flows against one machine's locations.

    Args:
        runner: Command runner for git, gh and op.
        host: Logging, notification and AI prompt port.
        locations: Resolved locations; defaults to the running machine's.
        platform: Platform tag for plan building.
        backend_factory: Builds the secrets backend; replaced in tests.
        clock: Source of "now" for state timestamps and commit messages.
    """

    def __init__(
        self,
        runner: CommandRunner,
        host: HostServices,
        locations: SyncLocations | None = None,
        *,
        platform: str | None = None,
        backend_factory: BackendFactory = create_secrets_backend,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.runner = runner
        self.host = host
        self.locations = locations or resolve_sync_locations(platform=platform)
        self.platform = platform
        self._backend_factory = backend_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _now(self) -> str:
        return self._clock().isoformat()

    @asynccontextmanager
    async def _locked(self) -> AsyncIterator[None]:
        lock_path = Path(self.locations.lock_path)
        attempt = await run_sync(try_acquire_lock, lock_path)
        if not attempt.acquired:
            raise LockBusyError(describe_lock_owner(attempt.info), attempt.info)
        try:
            yield
        finally:
            await run_sync(release_lock, lock_path)

    async def _require_config(self) -> NormalizedSyncConfig:
        return await run_sync(require_sync_config, self.locations)

    def _repo(self, config: NormalizedSyncConfig) -> MirrorRepo:
        return MirrorRepo(self.runner, resolve_repo_root(config, self.locations))

    def _plan(self, config: NormalizedSyncConfig, repo: MirrorRepo) -> SyncPlan:
        return build_sync_plan(config, self.locations, str(repo.repo_dir), self.platform)

    def _backend(self, config: NormalizedSyncConfig) -> SecretsBackend:
        backend_config = require_secrets_backend_config(config)
        return self._backend_factory(
            self.runner, self.locations, backend_config, self.platform
        )

    async def _prepare_repo(self, config: NormalizedSyncConfig) -> tuple[MirrorRepo, str]:
        """Clone, enforce secrets policy and resolve the working branch."""
        repo = self._repo(config)
        await repo.ensure_cloned(resolve_repo_identifier(config))
        await self._ensure_secrets_policy(config, repo)
        branch = resolve_repo_branch(config, await repo.current_branch())
        return repo, branch

    async def _ensure_secrets_policy(
        self, config: NormalizedSyncConfig, repo: MirrorRepo
    ) -> None:
        if config.include_secrets:
            await ensure_repo_private(self.runner, resolve_repo_identifier(config))
        if has_secrets_backend(config) and await repo.paths_in_history(*REPO_AUTH_PATHS):
            raise AuthFilesAlreadyTrackedError(
                "A secrets backend is configured but data/auth.json or "
                "data/mcp-auth.json is already in the sync repo history. "
                f"Remove them from history in {repo.repo_dir} and force-push "
                "before using the secrets backend."
            )

    def _dirty_message(self, repo: MirrorRepo, verb: str) -> str:
        return (
            f"Local sync repo has uncommitted changes. Resolve in {repo.repo_dir} "
            f"before {verb}."
        )

    async def _apply_remote(
        self, config: NormalizedSyncConfig, repo: MirrorRepo
    ) -> None:
        overrides = await run_sync(load_overrides, self.locations)
        plan = self._plan(config, repo)
        await run_sync(sync_mirror_to_local, plan, overrides)
        if has_secrets_backend(config):
            await self._backend(config).pull()
        now = self._now()
        await run_sync(
            write_state, self.locations, last_pull=now, last_remote_update=now
        )

    async def _commit_local(
        self, config: NormalizedSyncConfig, repo: MirrorRepo, branch: str
    ) -> str | None:
        """Apply local changes to the mirror and push them.

        Returns the commit message, or ``None`` when nothing changed.
        """
        overrides = await run_sync(load_overrides, self.locations)
        plan = self._plan(config, repo)
        await run_sync(
            sync_local_to_mirror,
            plan,
            overrides,
            overrides_path=Path(self.locations.overrides_path),
            allow_mcp_secrets=can_commit_mcp_secrets(config),
            exclude_auth_tokens=has_secrets_backend(config),
        )
        if not await repo.has_local_changes():
            return None

        message = await generate_commit_message(
            self.host, await repo.diff_summary(), self._clock().date()
        )
        await repo.commit_all(message)
        await repo.push(branch)
        await run_sync(write_state, self.locations, last_push=self._now())
        return message

    async def _push_secrets_if_changed(
        self, config: NormalizedSyncConfig, *, soft: bool
    ) -> str:
        """Push backend secrets when their hash moved.

        With *soft*, a failure is logged and returned as a caveat suffix
        instead of raised.
        """
        if not has_secrets_backend(config):
            return ""
        current = await run_sync(compute_secrets_hash, self.locations, self.platform)
        state = await run_sync(load_state, self.locations)
        if state.last_secrets_hash == current:
            return ""
        try:
            await self._backend(config).push()
        except SyncError as exc:
            if not soft:
                raise
            logger.warning("Secrets backend push failed: %s", exc)
            return f" (secrets backend push failed: {exc})"
        await run_sync(write_state, self.locations, last_secrets_hash=current)
        return ""

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def startup_sync(self) -> str | None:
        """Background sync run shortly after the host starts.

        Never raises a ``SyncError``; outcomes are notified and returned.
        """
        lock_path = Path(self.locations.lock_path)
        attempt = await run_sync(try_acquire_lock, lock_path)
        if not attempt.acquired:
            logger.info("Startup sync skipped: %s", describe_lock_owner(attempt.info))
            return None
        try:
            try:
                config = await run_sync(load_sync_config, self.locations)
            except ConfigInvalidError as exc:
                await self.host.notify(str(exc), "error")
                return None
            if config is None:
                await self.host.notify(
                    "Configure opencode-synced with sync init.", "info"
                )
                return None
            validation = validate_sync_config(config)
            if not validation.ok:
                await self.host.notify(validation.reason or "Invalid sync config.", "error")
                return None
            try:
                return await self._run_startup(config)
            except SyncError as exc:
                logger.error("Startup sync failed: %s", exc)
                await self.host.notify(str(exc), "error")
                return None
        finally:
            await run_sync(release_lock, lock_path)

    async def _run_startup(self, config: NormalizedSyncConfig) -> str | None:
        repo, branch = await self._prepare_repo(config)

        if await repo.has_local_changes():
            await self.host.notify(
                "Uncommitted changes detected. Run sync resolve to auto-fix, "
                f"or manually resolve in: {repo.repo_dir}",
                "warning",
            )
            return None

        update = await repo.fetch_and_fast_forward(branch)
        if update.updated:
            await self._apply_remote(config, repo)
            await self.host.notify("Config updated. Restart OpenCode to apply.", "info")
            return REMOTE_APPLIED

        message = await self._commit_local(config, repo, branch)
        suffix = await self._push_secrets_if_changed(config, soft=True)
        if suffix:
            await self.host.notify(suffix.strip(" ()"), "warning")
        if message is None:
            return f"{NO_LOCAL_CHANGES}{suffix}"
        return f"Pushed changes: {message}{suffix}"

    # ------------------------------------------------------------------
    # Pull / push
    # ------------------------------------------------------------------

    async def pull(self) -> str:
        async with self._locked():
            config = await self._require_config()
            repo, branch = await self._prepare_repo(config)
            if await repo.has_local_changes():
                raise MirrorDirtyError(self._dirty_message(repo, "pulling"))

            update = await repo.fetch_and_fast_forward(branch)
            if not update.updated:
                return ALREADY_UP_TO_DATE

            await self._apply_remote(config, repo)
            await self.host.notify("Config updated. Restart OpenCode to apply.", "info")
            return REMOTE_APPLIED

    async def push(self) -> str:
        async with self._locked():
            config = await self._require_config()
            repo, branch = await self._prepare_repo(config)
            if await repo.has_local_changes():
                raise MirrorDirtyError(self._dirty_message(repo, "pushing"))

            message = await self._commit_local(config, repo, branch)
            suffix = await self._push_secrets_if_changed(config, soft=True)
            if message is None:
                return f"{NO_LOCAL_CHANGES}{suffix}"
            return f"Pushed changes: {message}{suffix}"

    # ------------------------------------------------------------------
    # Setup flows
    # ------------------------------------------------------------------

    async def _resolve_init_repo(self, options: InitOptions) -> SyncRepoConfig:
        if options.url:
            return SyncRepoConfig(url=options.url, branch=options.branch)
        if options.owner and options.name:
            return SyncRepoConfig(
                owner=options.owner, name=options.name, branch=options.branch
            )
        if options.repo:
            parsed = parse_repo_argument(options.repo, options.branch)
            if parsed is not None:
                return parsed
            owner = await get_authenticated_user(self.runner)
            return SyncRepoConfig(owner=owner, name=options.repo, branch=options.branch)
        owner = await get_authenticated_user(self.runner)
        return SyncRepoConfig(owner=owner, name=DEFAULT_REPO_NAME, branch=options.branch)

    async def init(self, options: InitOptions | None = None) -> str:
        """Write a sync config, creating and cloning the mirror as needed."""
        options = options or InitOptions()
        async with self._locked():
            repo_config = await self._resolve_init_repo(options)
            config = normalize_sync_config(
                {
                    "repo": repo_config.model_dump(exclude_none=True),
                    "localRepoPath": options.local_repo_path,
                    "includeSecrets": options.include_secrets,
                    "includeMcpSecrets": options.include_mcp_secrets,
                    "includeSessions": options.include_sessions,
                    "includePromptStash": options.include_prompt_stash,
                    "includeModelFavorites": options.include_model_favorites,
                    "extraSecretPaths": options.extra_secret_paths or [],
                    "extraConfigPaths": options.extra_config_paths or [],
                }
            )
            identifier = resolve_repo_identifier(config)

            created = False
            if not await repo_exists(self.runner, identifier):
                if not options.create:
                    raise ConfigInvalidError(
                        f"Repo {identifier} does not exist and creation was disabled."
                    )
                if not (repo_config.owner and repo_config.name):
                    raise ConfigInvalidError("Repo creation requires owner/name.")
                await create_repo(
                    self.runner, repo_config.owner, repo_config.name, private=options.private
                )
                created = True

            await run_sync(write_sync_config, self.locations, config)
            repo = self._repo(config)
            await repo.ensure_cloned(identifier)
            await self._ensure_secrets_policy(config, repo)

            return "\n".join(
                [
                    "opencode-synced configured.",
                    f"Repo: {identifier}{' (created)' if created else ''}",
                    f"Branch: {resolve_repo_branch(config)}",
                    f"Local repo: {repo.repo_dir}",
                ]
            )

    async def link(self, repo: str | None = None, branch: str | None = None) -> str:
        """Attach this machine to an existing mirror and apply it locally."""
        async with self._locked():
            if repo:
                repo_config = parse_repo_argument(repo, branch)
                if repo_config is None:
                    owner = await get_authenticated_user(self.runner)
                    repo_config = SyncRepoConfig(owner=owner, name=repo, branch=branch)
            else:
                owner = await get_authenticated_user(self.runner)
                candidates = await find_mirror_repos(self.runner, owner)
                if not candidates:
                    raise ConfigMissingError(
                        f"No opencode-synced repo found for {owner}. "
                        "Run sync init to create one."
                    )
                repo_config = parse_repo_argument(candidates[0], branch)
                if repo_config is None:
                    raise ConfigInvalidError(f"Unrecognised repo name {candidates[0]}.")
                if len(candidates) > 1:
                    logger.info("Multiple mirror candidates; using %s", candidates[0])

            existing = await run_sync(load_sync_config, self.locations)
            base = existing or normalize_sync_config({})
            config = base.model_copy(update={"repo": repo_config})
            identifier = resolve_repo_identifier(config)

            mirror = self._repo(config)
            await mirror.ensure_cloned(identifier)
            await self._ensure_secrets_policy(config, mirror)
            working_branch = resolve_repo_branch(config, await mirror.current_branch())
            if await mirror.has_local_changes():
                raise MirrorDirtyError(self._dirty_message(mirror, "linking"))
            await mirror.fetch_and_fast_forward(working_branch)

            # The mirror carries its own sync config; keep the linked repo
            # even if that copy names a different one.
            await self._apply_remote(config, mirror)
            applied = await run_sync(load_sync_config, self.locations)
            if applied is None or applied.repo != repo_config:
                final = (applied or config).model_copy(update={"repo": repo_config})
                await run_sync(write_sync_config, self.locations, final)

            return "\n".join(
                [
                    f"Linked to {identifier}.",
                    f"Branch: {working_branch}",
                    f"Local repo: {mirror.repo_dir}",
                    "Restart OpenCode to use the synced settings.",
                ]
            )

    async def enable_secrets(
        self,
        extra_secret_paths: list[str] | None = None,
        include_mcp_secrets: bool | None = None,
    ) -> str:
        async with self._locked():
            config = await self._require_config()
            update: dict[str, Any] = {"include_secrets": True}
            if extra_secret_paths is not None:
                update["extra_secret_paths"] = tuple(extra_secret_paths)
            if include_mcp_secrets is not None:
                update["include_mcp_secrets"] = include_mcp_secrets
            updated = config.model_copy(update=update)
            await ensure_repo_private(self.runner, resolve_repo_identifier(updated))
            await run_sync(write_sync_config, self.locations, updated)
            return "Secrets sync enabled for this repo."

    # ------------------------------------------------------------------
    # Resolve
    # ------------------------------------------------------------------

    async def resolve(self, confirm_discard: bool = False) -> str:
        """Let the AI advisor settle uncommitted mirror changes.

        A ``discard`` verdict only resets the working copy when
        *confirm_discard* is set; otherwise it is reported and nothing
        changes.
        """
        async with self._locked():
            config = await self._require_config()
            repo = self._repo(config)
            await repo.ensure_cloned(resolve_repo_identifier(config))

            status = await repo.status()
            if not status.dirty:
                return "No uncommitted changes to resolve."

            decision = await classify_changes(self.host, status.changes, await repo.diff())
            if decision.action == "commit" and decision.message:
                await repo.commit_all(decision.message)
                return f"Resolved by committing changes: {decision.message}"
            if decision.action == "discard":
                if not confirm_discard:
                    reason = f" ({decision.reason})" if decision.reason else ""
                    return (
                        f"Suggested discarding all uncommitted changes{reason}. "
                        "Re-run with confirmation to discard, or manually "
                        f"resolve in: {repo.repo_dir}"
                    )
                await repo.discard_changes()
                return "Resolved by discarding all uncommitted changes."
            return f"Unable to automatically resolve. Please manually resolve in: {repo.repo_dir}"

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def status(self) -> str:
        config = await run_sync(load_sync_config, self.locations)
        if config is None:
            return "opencode-synced is not configured. Run sync init to set it up."

        state = await run_sync(load_state, self.locations)
        repo = self._repo(config)
        branch = resolve_repo_branch(config)
        if not repo.is_cloned():
            tree = "not cloned"
        else:
            try:
                repo_status = await repo.status()
            except SyncError:
                tree = "unknown"
            else:
                branch = resolve_repo_branch(config, repo_status.branch)
                tree = f"{len(repo_status.changes)} pending" if repo_status.dirty else "clean"

        try:
            identifier = resolve_repo_identifier(config)
        except ConfigInvalidError:
            identifier = "(not configured)"

        def flag(value: bool) -> str:
            return "enabled" if value else "disabled"

        lines = [
            f"Repo: {identifier}",
            f"Branch: {branch}",
            f"Secrets: {flag(config.include_secrets)}",
            f"Sessions: {flag(config.include_sessions)}",
            f"Prompt stash: {flag(config.include_prompt_stash)}",
            f"Last pull: {state.last_pull or 'never'}",
            f"Last push: {state.last_push or 'never'}",
            f"Working tree: {tree}",
        ]
        if config.secrets_backend is not None:
            lines.insert(3, f"Secrets backend: {config.secrets_backend.type}")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Secrets backend commands
    # ------------------------------------------------------------------

    async def secrets_pull(self) -> str:
        async with self._locked():
            config = await self._require_config()
            await self._backend(config).pull()
            return "Pulled secrets from the secrets backend."

    async def secrets_push(self) -> str:
        async with self._locked():
            config = await self._require_config()
            await self._backend(config).push()
            current = await run_sync(compute_secrets_hash, self.locations, self.platform)
            await run_sync(write_state, self.locations, last_secrets_hash=current)
            return "Pushed secrets to the secrets backend."

    async def secrets_status(self) -> str:
        config = await self._require_config()
        summary = await self._backend(config).status()
        lines = [summary]
        for path in resolve_auth_file_paths(self.locations, self.platform):
            present = "present" if Path(path).exists() else "missing"
            lines.append(f"{Path(path).name}: {present}")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Runtime config
    # ------------------------------------------------------------------

    async def effective_config(self) -> dict[str, Any]:
        """Local OpenCode config with overrides applied, as the host sees it."""
        return await run_sync(self._read_effective_config)

    def _read_effective_config(self) -> dict[str, Any]:
        root = Path(self.locations.config_root)
        config: dict[str, Any] = {}
        for name in (CONFIG_FILE_NAME, CONFIGC_FILE_NAME):
            path = root / name
            if path.exists():
                data = read_jsonc_file(path)
                if isinstance(data, dict):
                    config = data
                    break
        overrides = load_overrides(self.locations)
        if overrides:
            apply_overrides_to_runtime_config(config, overrides)
        return config
