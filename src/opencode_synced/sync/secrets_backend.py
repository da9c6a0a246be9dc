"""Out-of-band secrets backends.

A configured backend owns ``auth.json`` and ``mcp-auth.json``: those
files never enter the git mirror and are moved with ``pull()`` and
``push()`` instead.  The only backend type today is ``1password``, which
drives the ``op`` CLI through the injected ``CommandRunner``.

Documents are matched by case-insensitive title against a freshly listed
vault index.  No match means pull does nothing and push creates the
document.  More than one match is ambiguous and fatal for both.  When
``op`` reports that a matched document no longer exists, the index is
listed again and the lookup retried once.
"""

from __future__ import annotations

import errno
import hashlib
import json
import logging
import os
import re
import shutil
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Protocol

from ..config import NormalizedSyncConfig
from ..core.async_utils import run_sync
from ..core.runner import CommandResult, CommandRunner, failure_from_result
from ..errors import (
    CommandFailureError,
    ConfigInvalidError,
    SecretsBackendAmbiguousError,
)
from .models import SyncLocations
from .paths import AUTH_FILE_NAME, MCP_AUTH_FILE_NAME, path_module

logger = logging.getLogger(__name__)

ONEPASSWORD = "1password"
OP_MISSING_MESSAGE = "1Password CLI not found. Install it and sign in with `op signin`."

_NOT_FOUND = re.compile(
    r"(isn't an item|not found|no item|doesn't exist|does not exist|could not find)",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Configuration resolution (pure)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OnePasswordConfig:
    vault: str
    auth_json: str
    mcp_auth_json: str
    type: Literal["1password"] = ONEPASSWORD


@dataclass(frozen=True)
class SecretsBackendResolution:
    """``none``, ``invalid`` (with ``error``) or ``ok`` (with ``config``)."""

    state: Literal["none", "invalid", "ok"]
    config: OnePasswordConfig | None = None
    error: str | None = None


def _normalize_title(name: str) -> str:
    return name.strip().lower()


def resolve_secrets_backend_config(
    config: NormalizedSyncConfig,
) -> SecretsBackendResolution:
    """Validate the backend descriptor without touching the system."""
    backend = config.secrets_backend
    if backend is None:
        return SecretsBackendResolution("none")
    if backend.type != ONEPASSWORD:
        return SecretsBackendResolution(
            "invalid", error=f'Unsupported secrets backend type "{backend.type}".'
        )

    vault = (backend.vault or "").strip()
    if not vault:
        return SecretsBackendResolution(
            "invalid",
            error='secretsBackend.vault is required for type "1password".',
        )

    documents = backend.documents or {}
    auth_json = (documents.get("authJson") or "").strip()
    mcp_auth_json = (documents.get("mcpAuthJson") or "").strip()
    if not auth_json or not mcp_auth_json:
        return SecretsBackendResolution(
            "invalid",
            error=(
                "secretsBackend.documents.authJson and "
                "secretsBackend.documents.mcpAuthJson are required for "
                'type "1password".'
            ),
        )
    if _normalize_title(auth_json) == _normalize_title(mcp_auth_json):
        return SecretsBackendResolution(
            "invalid",
            error=(
                "secretsBackend.documents.authJson and "
                "secretsBackend.documents.mcpAuthJson must be unique."
            ),
        )

    return SecretsBackendResolution(
        "ok",
        config=OnePasswordConfig(
            vault=vault, auth_json=auth_json, mcp_auth_json=mcp_auth_json
        ),
    )


def require_secrets_backend_config(config: NormalizedSyncConfig) -> OnePasswordConfig:
    """Return the resolved backend config or raise.

    Raises:
        ConfigInvalidError: No backend configured, or the descriptor is invalid.
    """
    resolution = resolve_secrets_backend_config(config)
    if resolution.state == "none":
        raise ConfigInvalidError("No secrets backend is configured.")
    if resolution.state == "invalid" or resolution.config is None:
        raise ConfigInvalidError(resolution.error or "Invalid secrets backend.")
    return resolution.config


def resolve_auth_file_paths(
    locations: SyncLocations, platform: str | None = None
) -> tuple[str, str]:
    join = path_module(platform or sys.platform).join
    data_root = join(locations.xdg.data_dir, "opencode")
    return (
        join(data_root, AUTH_FILE_NAME),
        join(data_root, MCP_AUTH_FILE_NAME),
    )


#: Backend-owned files as they would appear inside the mirror.
REPO_AUTH_PATHS = (f"data/{AUTH_FILE_NAME}", f"data/{MCP_AUTH_FILE_NAME}")


def hash_files(paths: list[str]) -> str:
    digest = hashlib.sha256()
    for path in paths:
        digest.update(path.encode("utf-8"))
        digest.update(b"\0")
        target = Path(path)
        exists = target.is_file()
        digest.update(b"1" if exists else b"0")
        if exists:
            digest.update(target.read_bytes())
        digest.update(b"\0")
    return digest.hexdigest()


def compute_secrets_hash(
    locations: SyncLocations, platform: str | None = None
) -> str:
    """Hash existence and content of both backend-owned files."""
    return hash_files(list(resolve_auth_file_paths(locations, platform)))


# ---------------------------------------------------------------------------
# Backend protocol
# ---------------------------------------------------------------------------


class SecretsBackend(Protocol):
    async def pull(self) -> None: ...

    async def push(self) -> None: ...

    async def status(self) -> str: ...


@dataclass(frozen=True)
class VaultDocument:
    id: str
    title: str


DocumentIndex = dict[str, list[VaultDocument]]


@dataclass(frozen=True)
class DocumentLookup:
    state: Literal["missing", "duplicate", "ok"]
    count: int
    document: VaultDocument | None = None


def lookup_document(index: DocumentIndex, name: str) -> DocumentLookup:
    matches = index.get(_normalize_title(name), [])
    if not matches:
        return DocumentLookup("missing", 0)
    if len(matches) > 1:
        return DocumentLookup("duplicate", len(matches))
    return DocumentLookup("ok", 1, matches[0])


def replace_file(source: Path, target: Path) -> None:
    """Move *source* over *target* with 0600 permissions.

    Falls back to copy and delete when the two are on different
    filesystems.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    os.chmod(source, 0o600)
    try:
        os.replace(source, target)
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise
        shutil.copyfile(source, target)
        source.unlink()
    os.chmod(target, 0o600)


class OnePasswordBackend:
    """Secrets backend that stores each file as a 1Password Document.

    Args:
        runner: Command runner used for every ``op`` invocation.
        locations: Resolved locations; decides where auth files live.
        config: Validated backend configuration.
        platform: Platform tag for the auth file paths.
    """

    def __init__(
        self,
        runner: CommandRunner,
        locations: SyncLocations,
        config: OnePasswordConfig,
        platform: str | None = None,
    ) -> None:
        self._runner = runner
        self._config = config
        auth_path, mcp_auth_path = resolve_auth_file_paths(locations, platform)
        self._targets = (
            (config.auth_json, Path(auth_path)),
            (config.mcp_auth_json, Path(mcp_auth_path)),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def pull(self) -> None:
        await self._ensure_op_available()
        index = await self._list_documents()
        for name, path in self._targets:
            await self._pull_document(name, path, index)

    async def push(self) -> None:
        await self._ensure_op_available()
        if not any(path.exists() for _, path in self._targets):
            logger.debug("No local auth files; skipping 1Password push")
            return
        index = await self._list_documents()
        for name, path in self._targets:
            await self._push_document(name, path, index)

    async def status(self) -> str:
        await self._ensure_op_available()
        return f'1Password backend configured for vault "{self._config.vault}".'

    # ------------------------------------------------------------------
    # op plumbing
    # ------------------------------------------------------------------

    async def _op(self, *args: str) -> CommandResult:
        return await self._runner.run(["op", *args], check=False)

    async def _ensure_op_available(self) -> None:
        try:
            result = await self._op("--version")
        except CommandFailureError as exc:
            raise CommandFailureError(OP_MISSING_MESSAGE, command="op --version") from exc
        if not result.ok:
            raise CommandFailureError(
                OP_MISSING_MESSAGE, command="op --version", returncode=result.returncode
            )

    async def _list_documents(self) -> DocumentIndex:
        result = await self._op(
            "item", "list",
            "--vault", self._config.vault,
            "--categories", "Document",
            "--format", "json",
        )
        if not result.ok:
            raise failure_from_result(result)
        try:
            parsed = json.loads(result.stdout or "[]")
        except ValueError as exc:
            raise CommandFailureError(
                "1Password document list returned invalid JSON.",
                command="op item list",
            ) from exc
        if not isinstance(parsed, list):
            raise CommandFailureError(
                "1Password document list returned unexpected data.",
                command="op item list",
            )

        index: DocumentIndex = {}
        for entry in parsed:
            if not isinstance(entry, dict):
                continue
            doc_id = entry.get("id")
            title = entry.get("title")
            if not isinstance(doc_id, str) or not isinstance(title, str):
                continue
            if not doc_id or not title:
                continue
            index.setdefault(_normalize_title(title), []).append(
                VaultDocument(id=doc_id, title=title)
            )
        return index

    def _ambiguous(self, name: str, count: int) -> SecretsBackendAmbiguousError:
        return SecretsBackendAmbiguousError(name, self._config.vault, count)

    async def _refresh_lookup(self, name: str) -> DocumentLookup:
        logger.info("Refreshing 1Password index after a not-found error for %s", name)
        return lookup_document(await self._list_documents(), name)

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def _pull_document(
        self, name: str, target: Path, index: DocumentIndex
    ) -> None:
        lookup = lookup_document(index, name)
        if lookup.state == "missing":
            logger.debug("1Password document %s not found; nothing to pull", name)
            return
        if lookup.state == "duplicate":
            raise self._ambiguous(name, lookup.count)

        target.parent.mkdir(parents=True, exist_ok=True)
        temp_dir = Path(
            await run_sync(
                tempfile.mkdtemp, dir=str(target.parent), prefix=".opencode-synced-"
            )
        )
        try:
            temp_path = temp_dir / target.name
            result = await self._document_get(lookup.document, temp_path)
            if not result.ok:
                if not _NOT_FOUND.search(result.stderr):
                    raise failure_from_result(result)
                retry = await self._refresh_lookup(name)
                if retry.state == "missing":
                    return
                if retry.state == "duplicate":
                    raise self._ambiguous(name, retry.count)
                result = await self._document_get(retry.document, temp_path)
                if not result.ok:
                    raise failure_from_result(result)
            await run_sync(replace_file, temp_path, target)
            logger.info("Pulled %s from 1Password", target.name)
        finally:
            await run_sync(shutil.rmtree, temp_dir, ignore_errors=True)

    async def _document_get(
        self, document: VaultDocument, out_file: Path
    ) -> CommandResult:
        return await self._op(
            "document", "get", document.id,
            "--vault", self._config.vault,
            "--out-file", str(out_file),
        )

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def _push_document(
        self, name: str, source: Path, index: DocumentIndex
    ) -> None:
        if not source.exists():
            return
        lookup = lookup_document(index, name)
        if lookup.state == "duplicate":
            raise self._ambiguous(name, lookup.count)
        if lookup.state == "missing":
            await self._document_create(name, source)
            return

        result = await self._document_edit(lookup.document, source)
        if result.ok:
            logger.info("Updated 1Password document for %s", source.name)
            return
        if not _NOT_FOUND.search(result.stderr):
            raise failure_from_result(result)

        retry = await self._refresh_lookup(name)
        if retry.state == "duplicate":
            raise self._ambiguous(name, retry.count)
        if retry.state == "missing":
            await self._document_create(name, source)
            return
        result = await self._document_edit(retry.document, source)
        if not result.ok:
            raise failure_from_result(result)

    async def _document_create(self, name: str, source: Path) -> None:
        result = await self._op(
            "document", "create",
            "--vault", self._config.vault,
            str(source),
            "--title", name,
        )
        if not result.ok:
            raise failure_from_result(result)
        logger.info("Created 1Password document for %s", source.name)

    async def _document_edit(
        self, document: VaultDocument, source: Path
    ) -> CommandResult:
        return await self._op(
            "document", "edit", document.id,
            "--vault", self._config.vault,
            str(source),
        )


def create_secrets_backend(
    runner: CommandRunner,
    locations: SyncLocations,
    config: OnePasswordConfig,
    platform: str | None = None,
) -> SecretsBackend:
    if config.type == ONEPASSWORD:
        return OnePasswordBackend(runner, locations, config, platform)
    raise ConfigInvalidError(f'Unsupported secrets backend type "{config.type}".')
