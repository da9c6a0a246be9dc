"""Location resolution and sync plan construction.

``resolve_sync_locations`` maps an environment and a platform tag to the
concrete roots used on that machine; it reads nothing from the real
process state, so Windows layouts can be computed on POSIX and vice
versa.  ``build_sync_plan`` turns a normalized config plus those
locations into the list of items one operation moves.

Path arithmetic goes through ``ntpath`` or ``posixpath`` according to
the platform tag rather than ``os.path``.
"""

from __future__ import annotations

import hashlib
import ntpath
import os
import posixpath
import re
import sys
from collections.abc import Iterable, Mapping
from types import ModuleType

from ..config import NormalizedSyncConfig, has_secrets_backend
from .models import (
    ExtraPathEntry,
    ExtraPathPlan,
    SyncItem,
    SyncLocations,
    SyncPlan,
    XdgRoots,
)

CONFIG_FILE_NAME = "opencode.json"
CONFIGC_FILE_NAME = "opencode.jsonc"
AGENTS_FILE_NAME = "AGENTS.md"
SYNC_CONFIG_NAME = "opencode-synced.jsonc"
OVERRIDES_NAME = "opencode-synced.overrides.jsonc"
STATE_NAME = "sync-state.json"
LOCK_NAME = "sync.lock"
AUTH_FILE_NAME = "auth.json"
MCP_AUTH_FILE_NAME = "mcp-auth.json"

CONFIG_DIRS = ("agent", "command", "mode", "tool", "themes", "plugin")
SESSION_DIRS = (
    "storage/session",
    "storage/message",
    "storage/part",
    "storage/session_diff",
)
PROMPT_STASH_FILES = ("prompt-stash.jsonl", "prompt-history.jsonl")
MODEL_FAVORITES_FILE = "model.json"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


def path_module(platform: str) -> ModuleType:
    return ntpath if platform == "win32" else posixpath


# ---------------------------------------------------------------------------
# Location resolver
# ---------------------------------------------------------------------------


def resolve_home_dir(
    env: Mapping[str, str] | None = None, platform: str | None = None
) -> str:
    env = os.environ if env is None else env
    platform = platform or sys.platform
    if platform == "win32":
        return (
            env.get("USERPROFILE") or env.get("HOMEDRIVE") or env.get("HOME") or ""
        )
    return env.get("HOME") or ""


def resolve_xdg_roots(
    env: Mapping[str, str] | None = None, platform: str | None = None
) -> XdgRoots:
    """Pick config/data/state roots, honouring the platform's overrides.

    An unresolvable home directory yields all-empty roots.
    """
    env = os.environ if env is None else env
    platform = platform or sys.platform
    home = resolve_home_dir(env, platform)
    if not home:
        return XdgRoots(home_dir="", config_dir="", data_dir="", state_dir="")

    join = path_module(platform).join
    if platform == "win32":
        local = env.get("LOCALAPPDATA") or join(home, "AppData", "Local")
        return XdgRoots(
            home_dir=home,
            config_dir=env.get("APPDATA") or join(home, "AppData", "Roaming"),
            data_dir=local,
            # No state root on Windows; local app data doubles as one.
            state_dir=local,
        )

    return XdgRoots(
        home_dir=home,
        config_dir=env.get("XDG_CONFIG_HOME") or join(home, ".config"),
        data_dir=env.get("XDG_DATA_HOME") or join(home, ".local", "share"),
        state_dir=env.get("XDG_STATE_HOME") or join(home, ".local", "state"),
    )


def resolve_sync_locations(
    env: Mapping[str, str] | None = None, platform: str | None = None
) -> SyncLocations:
    """Resolve every well-known location for *platform*.

    Args:
        env: Environment map; defaults to ``os.environ``.
        platform: ``sys.platform``-style tag; defaults to the running one.

    The ``opencode_config_dir`` variable replaces the config root
    (``~`` is expanded and the result made absolute).
    """
    env = os.environ if env is None else env
    platform = platform or sys.platform
    pm = path_module(platform)
    xdg = resolve_xdg_roots(env, platform)

    custom = env.get("opencode_config_dir")
    if custom:
        config_root = pm.abspath(expand_home(custom, xdg.home_dir, platform))
    else:
        config_root = pm.join(xdg.config_dir, "opencode")
    data_root = pm.join(xdg.data_dir, "opencode")
    synced_root = pm.join(data_root, "opencode-synced")

    return SyncLocations(
        xdg=xdg,
        config_root=config_root,
        sync_config_path=pm.join(config_root, SYNC_CONFIG_NAME),
        overrides_path=pm.join(config_root, OVERRIDES_NAME),
        state_path=pm.join(data_root, STATE_NAME),
        default_repo_dir=pm.join(synced_root, "repo"),
        lock_path=pm.join(synced_root, LOCK_NAME),
    )


def expand_home(path: str, home_dir: str, platform: str | None = None) -> str:
    """Expand a leading ``~`` against *home_dir*; other paths pass through."""
    if not path or not home_dir:
        return path
    if path == "~":
        return home_dir
    if path.startswith("~/") or path.startswith("~\\"):
        return path_module(platform or sys.platform).join(home_dir, path[2:])
    return path


def normalize_path(path: str, home_dir: str, platform: str | None = None) -> str:
    """Expand, absolutize and (on Windows) lower-case *path*."""
    platform = platform or sys.platform
    resolved = path_module(platform).abspath(expand_home(path, home_dir, platform))
    if platform == "win32":
        return resolved.lower()
    return resolved


def is_same_path(
    left: str, right: str, home_dir: str, platform: str | None = None
) -> bool:
    return normalize_path(left, home_dir, platform) == normalize_path(
        right, home_dir, platform
    )


def resolve_repo_root(
    config: NormalizedSyncConfig | None, locations: SyncLocations
) -> str:
    """Mirror working copy: configured ``localRepoPath`` or the default."""
    if config is not None and config.local_repo_path:
        return expand_home(config.local_repo_path, locations.xdg.home_dir)
    return locations.default_repo_dir


def encode_extra_path(path: str) -> str:
    """Derive a stable, recognisable mirror name for an extra path.

    ``<sanitized basename>-<first 8 hex of sha1(path)>``.  Backslashes are
    folded to ``/`` first so the name does not depend on the separator.
    The hash is for uniqueness among a handful of paths, not security.
    """
    normalized = path.replace("\\", "/")
    basename = normalized.rstrip("/").rsplit("/", 1)[-1]
    safe = _UNSAFE_CHARS.sub("_", basename).lstrip("_")
    digest = hashlib.sha1(normalized.encode("utf-8")).hexdigest()[:8]
    return f"{safe or 'path'}-{digest}"


# ---------------------------------------------------------------------------
# Plan builder
# ---------------------------------------------------------------------------


def build_sync_plan(
    config: NormalizedSyncConfig,
    locations: SyncLocations,
    repo_root: str,
    platform: str | None = None,
) -> SyncPlan:
    """Compute the item set for one operation.

    Secret items only appear when secrets are enabled.  A configured
    secrets backend owns ``auth.json`` and ``mcp-auth.json`` outright:
    they never enter the plan and are filtered out of the extra secret
    paths.
    """
    platform = platform or sys.platform
    join = path_module(platform).join
    home = locations.xdg.home_dir

    config_root = locations.config_root
    data_root = join(locations.xdg.data_dir, "opencode")
    state_root = join(locations.xdg.state_dir, "opencode")
    repo_config = join(repo_root, "config")
    repo_data = join(repo_root, "data")
    repo_secrets = join(repo_root, "secrets")
    repo_state = join(repo_root, "state")

    using_backend = has_secrets_backend(config)
    auth_path = join(data_root, AUTH_FILE_NAME)
    mcp_auth_path = join(data_root, MCP_AUTH_FILE_NAME)

    items: list[SyncItem] = []
    for name, is_config in (
        (CONFIG_FILE_NAME, True),
        (CONFIGC_FILE_NAME, True),
        (AGENTS_FILE_NAME, False),
        (SYNC_CONFIG_NAME, False),
    ):
        items.append(
            SyncItem(
                local_path=join(config_root, name),
                repo_path=join(repo_config, name),
                type="file",
                is_config_file=is_config,
            )
        )
    for dir_name in CONFIG_DIRS:
        items.append(
            SyncItem(
                local_path=join(config_root, dir_name),
                repo_path=join(repo_config, dir_name),
                type="dir",
            )
        )

    if config.include_model_favorites:
        items.append(
            SyncItem(
                local_path=join(state_root, MODEL_FAVORITES_FILE),
                repo_path=join(repo_state, MODEL_FAVORITES_FILE),
                type="file",
            )
        )

    if config.include_secrets:
        if not using_backend:
            for local, name in (
                (auth_path, AUTH_FILE_NAME),
                (mcp_auth_path, MCP_AUTH_FILE_NAME),
            ):
                items.append(
                    SyncItem(
                        local_path=local,
                        repo_path=join(repo_data, name),
                        type="file",
                        is_secret=True,
                        is_auth_token=True,
                    )
                )
        if config.include_sessions:
            for rel in SESSION_DIRS:
                items.append(
                    SyncItem(
                        local_path=join(data_root, *rel.split("/")),
                        repo_path=join(repo_data, *rel.split("/")),
                        type="dir",
                        is_secret=True,
                    )
                )
        if config.include_prompt_stash:
            for name in PROMPT_STASH_FILES:
                items.append(
                    SyncItem(
                        local_path=join(state_root, name),
                        repo_path=join(repo_state, name),
                        type="file",
                        is_secret=True,
                    )
                )

    extra_secret_paths: Iterable[str] = (
        config.extra_secret_paths if config.include_secrets else ()
    )
    if using_backend:
        extra_secret_paths = [
            entry
            for entry in extra_secret_paths
            if not is_same_path(entry, auth_path, home, platform)
            and not is_same_path(entry, mcp_auth_path, home, platform)
        ]
    extra_config_paths = [
        entry
        for entry in config.extra_config_paths
        if not is_same_path(entry, locations.sync_config_path, home, platform)
    ]

    return SyncPlan(
        items=tuple(items),
        extra_secrets=build_extra_path_plan(
            extra_secret_paths,
            home,
            repo_dir=join(repo_secrets, "extra"),
            manifest_path=join(repo_secrets, "extra-manifest.json"),
            platform=platform,
        ),
        extra_configs=build_extra_path_plan(
            extra_config_paths,
            home,
            repo_dir=join(repo_config, "extra"),
            manifest_path=join(repo_config, "extra-manifest.json"),
            platform=platform,
        ),
        repo_root=repo_root,
        home_dir=home,
        platform=platform,
    )


def build_extra_path_plan(
    paths: Iterable[str],
    home_dir: str,
    *,
    repo_dir: str,
    manifest_path: str,
    platform: str,
) -> ExtraPathPlan:
    join = path_module(platform).join
    allowlist: list[str] = []
    for entry in paths:
        normalized = normalize_path(entry, home_dir, platform)
        if normalized not in allowlist:
            allowlist.append(normalized)
    return ExtraPathPlan(
        allowlist=tuple(allowlist),
        manifest_path=manifest_path,
        repo_dir=repo_dir,
        entries=tuple(
            ExtraPathEntry(
                source_path=source,
                repo_path=join(repo_dir, encode_extra_path(source)),
            )
            for source in allowlist
        ),
    )
