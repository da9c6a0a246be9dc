"""Applier: move plan items between the local machine and the mirror.

``sync_mirror_to_local`` copies mirror content over local files, restores
extra paths from both manifests and re-applies overrides to every config
file.  ``sync_local_to_mirror`` does the reverse: it strips overrides
(and embedded MCP secrets) out of config files before writing them to the
mirror, copies everything else verbatim, propagates deletions and
rewrites both manifests.

Both functions are synchronous; the orchestrator runs them with
``run_sync()``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..errors import ConfigInvalidError
from ..jsonc import read_jsonc_file, write_json_file
from .files import copy_file_with_mode, copy_item, file_mode, remove_path
from .manifest import apply_extra_path_manifest, rewrite_extra_path_manifest
from .mcp_secrets import (
    extract_mcp_secrets,
    has_overrides,
    merge_overrides,
    strip_override_keys,
)
from .merge import deep_merge, same_json, strip_overrides
from .models import SyncItem, SyncPlan

logger = logging.getLogger(__name__)


@dataclass
class ApplyReport:
    """What one applier pass touched, for logging and tool output."""

    copied: int = 0
    skipped: int = 0
    removed: int = 0
    extra_entries: int = 0
    overrides_updated: bool = False


def _read_config(path: Path) -> dict[str, Any]:
    try:
        data = read_jsonc_file(path)
    except json.JSONDecodeError as exc:
        raise ConfigInvalidError(
            f"Config file {path} is not valid JSONC "
            f"(line {exc.lineno}, column {exc.colno})."
        ) from exc
    if not isinstance(data, dict):
        raise ConfigInvalidError(f"Config file {path} must contain a JSON object.")
    return data


def _is_jsonc(path: Path) -> bool:
    return path.name.endswith(".jsonc")


# ---------------------------------------------------------------------------
# Mirror -> local
# ---------------------------------------------------------------------------


def sync_mirror_to_local(
    plan: SyncPlan, overrides: dict[str, Any] | None
) -> ApplyReport:
    report = ApplyReport()
    for item in plan.items:
        source = Path(item.repo_path)
        if not source.exists():
            report.skipped += 1
            continue
        copy_item(source, Path(item.local_path), item.type)
        report.copied += 1

    report.extra_entries += apply_extra_path_manifest(plan.extra_secrets, plan)
    report.extra_entries += apply_extra_path_manifest(plan.extra_configs, plan)

    if has_overrides(overrides):
        _apply_overrides_to_local_configs(plan, overrides)

    logger.info(
        "Applied mirror to local: %d copied, %d absent, %d extra paths",
        report.copied,
        report.skipped,
        report.extra_entries,
    )
    return report


def _apply_overrides_to_local_configs(
    plan: SyncPlan, overrides: dict[str, Any]
) -> None:
    for item in plan.items:
        if not item.is_config_file:
            continue
        local = Path(item.local_path)
        if not local.exists():
            continue
        parsed = _read_config(local)
        merged = deep_merge(parsed, overrides)
        if same_json(merged, parsed):
            continue
        write_json_file(local, merged, jsonc=_is_jsonc(local), mode=file_mode(local))


# ---------------------------------------------------------------------------
# Local -> mirror
# ---------------------------------------------------------------------------


def sync_local_to_mirror(
    plan: SyncPlan,
    overrides: dict[str, Any] | None,
    *,
    overrides_path: Path | None = None,
    allow_mcp_secrets: bool = False,
    exclude_auth_tokens: bool = False,
) -> ApplyReport:
    """Write local state into the mirror working copy.

    Args:
        plan: Items to move.
        overrides: Current machine-local overrides document.
        overrides_path: Where to persist newly extracted MCP secrets.
        allow_mcp_secrets: Commit embedded MCP secrets instead of moving
            them into the overrides document.
        exclude_auth_tokens: Leave auth-token items out of this pass.
    """
    report = ApplyReport()
    sanitized: dict[str, dict[str, Any]] = {}
    secret_overrides: dict[str, Any] = {}

    for item in plan.items:
        if not item.is_config_file:
            continue
        local = Path(item.local_path)
        if not local.exists():
            continue
        extraction = extract_mcp_secrets(_read_config(local))
        if not allow_mcp_secrets:
            sanitized[item.local_path] = extraction.sanitized_config
        if has_overrides(extraction.secret_overrides):
            secret_overrides = merge_overrides(
                secret_overrides, extraction.secret_overrides
            )

    overrides_for_strip = overrides
    if has_overrides(secret_overrides):
        if not allow_mcp_secrets:
            current = overrides or {}
            merged = merge_overrides(current, secret_overrides)
            if overrides_path is not None and merged != current:
                write_json_file(overrides_path, merged, jsonc=True, mode=0o600)
                report.overrides_updated = True
                logger.info(
                    "Moved embedded MCP secrets into overrides file %s",
                    overrides_path,
                )
        if overrides:
            overrides_for_strip = strip_override_keys(overrides, secret_overrides)

    for item in plan.items:
        if item.is_config_file:
            _copy_config_to_mirror(
                item, overrides_for_strip, sanitized.get(item.local_path), report
            )
            continue
        if exclude_auth_tokens and item.is_auth_token:
            continue
        local = Path(item.local_path)
        if not local.exists():
            if Path(item.repo_path).exists():
                report.removed += 1
        else:
            report.copied += 1
        copy_item(local, Path(item.repo_path), item.type, remove_when_missing=True)

    report.extra_entries += rewrite_extra_path_manifest(plan.extra_secrets, plan)
    report.extra_entries += rewrite_extra_path_manifest(plan.extra_configs, plan)

    logger.info(
        "Applied local to mirror: %d copied, %d unchanged, %d removed, %d extra paths",
        report.copied,
        report.skipped,
        report.removed,
        report.extra_entries,
    )
    return report


def _copy_config_to_mirror(
    item: SyncItem,
    overrides: dict[str, Any] | None,
    sanitized: dict[str, Any] | None,
    report: ApplyReport,
) -> None:
    local = Path(item.local_path)
    repo = Path(item.repo_path)
    if not local.exists():
        if repo.exists():
            remove_path(repo)
            report.removed += 1
        return

    raw = _read_config(local)
    local_config = sanitized if sanitized is not None else raw
    base = _read_config(repo) if repo.exists() else None
    effective = overrides or {}
    stripped = strip_overrides(local_config, effective, base)

    # Nothing machine-local in the file: the mirror keeps the exact bytes.
    if same_json(stripped, raw):
        if repo.exists() and repo.read_bytes() == local.read_bytes():
            report.skipped += 1
            return
        copy_file_with_mode(local, repo)
        report.copied += 1
        return

    if base is not None and same_json(deep_merge(base, effective), local_config):
        report.skipped += 1
        return

    write_json_file(repo, stripped, jsonc=_is_jsonc(local), mode=file_mode(local))
    report.copied += 1
