"""Sync configuration: persisted schema, normalization, validation, I/O.

The persisted file (``opencode-synced.jsonc``) is JSONC and loosely typed:
any key may be missing and list-valued keys tolerate junk.  Loading goes
through two steps:

1. ``SyncConfig`` parses the raw document leniently.
2. ``normalize_sync_config`` produces a frozen ``NormalizedSyncConfig``
   with every field populated.

``validate_sync_config`` returns a tagged ``ConfigValidation`` instead of
raising, so callers decide whether an invalid config is fatal.

Usage:
    from opencode_synced.config import load_sync_config, validate_sync_config

    config = load_sync_config(locations)
    result = validate_sync_config(config)
    if not result.ok:
        raise ConfigInvalidError(result.reason)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .errors import ConfigInvalidError, ConfigMissingError
from .jsonc import read_jsonc_file, write_json_file

if TYPE_CHECKING:
    from .sync.models import SyncLocations

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Persisted (loose) schema
# ---------------------------------------------------------------------------


class SyncRepoConfig(_CamelModel):
    """Mirror repository identity: a URL or an owner/name pair."""

    url: str | None = None
    owner: str | None = None
    name: str | None = None
    branch: str | None = None


class SecretsBackendConfig(_CamelModel):
    """Out-of-band secret store descriptor.

    Attributes:
        type: Backend type tag, e.g. ``"1password"``.
        vault: Vault identifier the documents live in.
        documents: Logical secret name -> backend document title.
    """

    type: str
    vault: str | None = None
    documents: dict[str, str] | None = None


class SyncConfig(_CamelModel):
    """Sync configuration exactly as persisted; every field optional."""

    repo: SyncRepoConfig | None = None
    local_repo_path: str | None = None
    include_secrets: bool | None = None
    include_mcp_secrets: bool | None = None
    include_sessions: bool | None = None
    include_prompt_stash: bool | None = None
    include_model_favorites: bool | None = None
    extra_secret_paths: list[str] | None = None
    extra_config_paths: list[str] | None = None
    secrets_backend: SecretsBackendConfig | None = None

    @field_validator("extra_secret_paths", "extra_config_paths", mode="before")
    @classmethod
    def _tolerate_non_lists(cls, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str) and item]


# ---------------------------------------------------------------------------
# Normalized (strict, immutable) config
# ---------------------------------------------------------------------------


class NormalizedSyncConfig(_CamelModel):
    """Fully populated configuration for one operation.

    Immutable: build a new one with ``model_copy(update=...)``.
    """

    repo: SyncRepoConfig | None = None
    local_repo_path: str | None = None
    include_secrets: bool = False
    include_mcp_secrets: bool = False
    include_sessions: bool = False
    include_prompt_stash: bool = False
    include_model_favorites: bool = True
    extra_secret_paths: tuple[str, ...] = ()
    extra_config_paths: tuple[str, ...] = ()
    secrets_backend: SecretsBackendConfig | None = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


def normalize_sync_config(
    config: SyncConfig | NormalizedSyncConfig | dict[str, Any],
) -> NormalizedSyncConfig:
    """Fill every default and enforce flag dependencies.

    ``include_mcp_secrets`` is only honoured when secrets are enabled.

    Raises:
        ConfigInvalidError: If a dict input cannot be parsed at all.
    """
    if isinstance(config, dict):
        try:
            config = SyncConfig.model_validate(config)
        except ValidationError as exc:
            raise ConfigInvalidError(
                f"Sync config is invalid: {_summarize_validation(exc)}"
            ) from exc

    include_secrets = bool(config.include_secrets)
    favorites = config.include_model_favorites
    return NormalizedSyncConfig(
        repo=config.repo,
        local_repo_path=config.local_repo_path or None,
        include_secrets=include_secrets,
        include_mcp_secrets=include_secrets and bool(config.include_mcp_secrets),
        include_sessions=bool(config.include_sessions),
        include_prompt_stash=bool(config.include_prompt_stash),
        include_model_favorites=favorites is not False,
        extra_secret_paths=tuple(config.extra_secret_paths or ()),
        extra_config_paths=tuple(config.extra_config_paths or ()),
        secrets_backend=config.secrets_backend,
    )


def _summarize_validation(exc: ValidationError) -> str:
    # Field locations and messages only; never echo input values.
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConfigValidation:
    """Tagged validation result: ``ok`` or ``invalid(reason)``."""

    state: Literal["ok", "invalid"]
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.state == "ok"

    @classmethod
    def valid(cls) -> ConfigValidation:
        return cls("ok")

    @classmethod
    def invalid(cls, reason: str) -> ConfigValidation:
        return cls("invalid", reason)


def validate_sync_config(config: NormalizedSyncConfig) -> ConfigValidation:
    """Check repo identity and the secrets-backend descriptor.

    Pure: performs no I/O and no subprocess calls.
    """
    # Import here to avoid circular imports (secrets_backend imports config)
    from .sync.secrets_backend import resolve_secrets_backend_config

    repo = config.repo
    if repo is None:
        return ConfigValidation.invalid("Missing repo configuration.")
    if not repo.url and not (repo.owner and repo.name):
        return ConfigValidation.invalid(
            "Repo configuration must include url or owner/name."
        )

    resolution = resolve_secrets_backend_config(config)
    if resolution.state == "invalid":
        return ConfigValidation.invalid(resolution.error or "invalid")
    return ConfigValidation.valid()


def has_secrets_backend(config: NormalizedSyncConfig) -> bool:
    """True when a secrets backend descriptor is configured."""
    return config.secrets_backend is not None


def can_commit_mcp_secrets(config: NormalizedSyncConfig) -> bool:
    return config.include_secrets and config.include_mcp_secrets


def resolve_repo_identifier(config: NormalizedSyncConfig) -> str:
    """Return the repo URL or ``owner/name`` used by ``gh``.

    Raises:
        ConfigInvalidError: If neither form is configured.
    """
    repo = config.repo
    if repo is None:
        raise ConfigInvalidError("Missing repo configuration.")
    if repo.url:
        return repo.url
    if repo.owner and repo.name:
        return f"{repo.owner}/{repo.name}"
    raise ConfigInvalidError(
        "Repo configuration must include url or owner/name."
    )


def resolve_repo_branch(
    config: NormalizedSyncConfig, fallback: str = DEFAULT_BRANCH
) -> str:
    if config.repo and config.repo.branch:
        return config.repo.branch
    return fallback


# ---------------------------------------------------------------------------
# File I/O
# ---------------------------------------------------------------------------


def load_sync_config(
    locations: SyncLocations,
) -> NormalizedSyncConfig | None:
    """Load and normalize the sync config, or ``None`` if absent.

    Raises:
        ConfigInvalidError: If the file cannot be parsed.
    """
    path = Path(locations.sync_config_path)
    if not path.exists():
        return None
    try:
        raw = read_jsonc_file(path)
    except json.JSONDecodeError as exc:
        raise ConfigInvalidError(
            f"Sync config {path} is not valid JSONC "
            f"(line {exc.lineno}, column {exc.colno})."
        ) from exc
    if not isinstance(raw, dict):
        raise ConfigInvalidError(
            f"Sync config {path} must contain a JSON object."
        )
    logger.debug("Loaded sync config from %s", path)
    return normalize_sync_config(raw)


def require_sync_config(locations: SyncLocations) -> NormalizedSyncConfig:
    """Load, normalize and validate, raising on any problem.

    Raises:
        ConfigMissingError: No config file.
        ConfigInvalidError: Unparseable or failing validation.
    """
    config = load_sync_config(locations)
    if config is None:
        raise ConfigMissingError(
            "Missing opencode-synced config. Run sync init to set it up."
        )
    result = validate_sync_config(config)
    if not result.ok:
        raise ConfigInvalidError(result.reason or "Invalid sync config.")
    return config


def write_sync_config(
    locations: SyncLocations, config: NormalizedSyncConfig
) -> None:
    payload = config.model_dump(
        mode="json", by_alias=True, exclude_none=True
    )
    write_json_file(Path(locations.sync_config_path), payload, jsonc=True)
    logger.info("Wrote sync config to %s", locations.sync_config_path)


def load_overrides(locations: SyncLocations) -> dict[str, Any] | None:
    """Load the machine-local overrides document, or ``None`` if absent.

    Raises:
        ConfigInvalidError: If the file is not a JSONC object.
    """
    path = Path(locations.overrides_path)
    if not path.exists():
        return None
    try:
        raw = read_jsonc_file(path)
    except json.JSONDecodeError as exc:
        raise ConfigInvalidError(
            f"Overrides file {path} is not valid JSONC "
            f"(line {exc.lineno}, column {exc.colno})."
        ) from exc
    if not isinstance(raw, dict):
        raise ConfigInvalidError(
            f"Overrides file {path} must contain a JSON object."
        )
    return raw
