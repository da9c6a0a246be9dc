"""Pydantic models shared by the sync modules.

- ``SyncLocations``: resolved filesystem roots and well-known files.
- ``SyncItem``: one local path paired with its mirror counterpart.
- ``ExtraPathPlan``: allow-list plus deterministic mirror paths.
- ``SyncPlan``: everything one operation moves.
- ``LockInfo``: owner record written into the lock file.
- ``ManifestEntry`` / ``ExtraPathManifest``: persisted extra-path records.

Paths are plain strings so a plan computed for one platform can be
inspected on another.  All models are frozen.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

ItemType = Literal["file", "dir"]


class XdgRoots(BaseModel):
    """Platform roots before any application-specific suffix."""

    home_dir: str
    config_dir: str
    data_dir: str
    state_dir: str

    model_config = {"frozen": True}


class SyncLocations(BaseModel):
    """Where everything lives on this machine.  Never persisted.

    Attributes:
        xdg: Home and the config/data/state roots.
        config_root: OpenCode config directory (``<config>/opencode``
            unless overridden).
        sync_config_path: ``opencode-synced.jsonc`` in the config root.
        overrides_path: ``opencode-synced.overrides.jsonc`` beside it.
        state_path: ``<data>/opencode/sync-state.json``.
        default_repo_dir: Default clone location of the mirror.
        lock_path: Advisory lock file.
    """

    xdg: XdgRoots
    config_root: str
    sync_config_path: str
    overrides_path: str
    state_path: str
    default_repo_dir: str
    lock_path: str

    model_config = {"frozen": True}


class SyncItem(BaseModel):
    """A local path and its mirror counterpart.

    Attributes:
        local_path: Absolute path on this machine.
        repo_path: Absolute path inside the mirror working copy.
        type: ``file`` or ``dir``.
        is_secret: Only synced when secrets are enabled.
        is_config_file: JSON config that gets overrides applied/stripped.
        is_auth_token: Authentication material; always also secret.
    """

    local_path: str
    repo_path: str
    type: ItemType
    is_secret: bool = False
    is_config_file: bool = False
    is_auth_token: bool = False

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _auth_tokens_are_secret(self) -> SyncItem:
        if self.is_auth_token and not self.is_secret:
            raise ValueError("auth token items must be marked secret")
        return self


class ExtraPathEntry(BaseModel):
    """One allow-listed extra path and its encoded mirror location."""

    source_path: str
    repo_path: str

    model_config = {"frozen": True}


class ExtraPathPlan(BaseModel):
    """Allow-list and mirror layout for one class of extra paths.

    Attributes:
        allowlist: Normalized source paths; manifest entries outside it
            are ignored.
        manifest_path: Mirror path of the JSON manifest.
        repo_dir: Mirror directory holding the encoded copies.
        entries: Allow-listed paths with their mirror locations.
    """

    allowlist: tuple[str, ...] = ()
    manifest_path: str
    repo_dir: str
    entries: tuple[ExtraPathEntry, ...] = ()

    model_config = {"frozen": True}


class SyncPlan(BaseModel):
    """The mapping one operation applies, in either direction."""

    items: tuple[SyncItem, ...]
    extra_secrets: ExtraPathPlan
    extra_configs: ExtraPathPlan
    repo_root: str
    home_dir: str
    platform: str

    model_config = {"frozen": True}


class _CamelFrozen(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


class LockInfo(_CamelFrozen):
    """Owner record stored in the lock file."""

    pid: int
    started_at: str
    hostname: str


class ManifestItem(_CamelFrozen):
    """A descendant of a directory entry, with its captured mode."""

    relative_path: str
    type: ItemType
    mode: int | None = None


class ManifestEntry(_CamelFrozen):
    """A mirrored extra path as recorded in ``*-manifest.json``.

    ``repo_path`` is relative to the mirror root so the manifest is
    portable between machines.
    """

    source_path: str
    repo_path: str
    type: ItemType
    mode: int | None = None
    items: tuple[ManifestItem, ...] | None = None


class ExtraPathManifest(_CamelFrozen):
    entries: tuple[ManifestEntry, ...] = ()
