"""Extra-path manifest tracker.

Each class of extra paths (secret and config) is mirrored under its own
``extra/`` directory with a strict-JSON manifest beside it::

    {"entries": [{"sourcePath": ..., "repoPath": ..., "type": "file",
                  "mode": 384}]}

Directory entries also list every descendant with its mode so the whole
tree can be restored bit for bit.  The manifest is rewritten from
scratch on every local-to-mirror pass.  On the way back only entries
whose source path is still allow-listed are applied.
"""

from __future__ import annotations

import json
import logging
import posixpath
from pathlib import Path, PureWindowsPath

from pydantic import ValidationError

from ..errors import ConfigInvalidError
from ..jsonc import write_json_file
from .files import (
    chmod_if_exists,
    copy_dir_recursive,
    copy_file_with_mode,
    file_mode,
    remove_path,
)
from .models import (
    ExtraPathManifest,
    ExtraPathPlan,
    ManifestEntry,
    ManifestItem,
    SyncPlan,
)
from .paths import normalize_path

logger = logging.getLogger(__name__)


def load_manifest(path: Path) -> ExtraPathManifest | None:
    """Read a manifest, or ``None`` if the mirror has none.

    Raises:
        ConfigInvalidError: If the manifest exists but is malformed.
    """
    if not path.exists():
        return None
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return ExtraPathManifest.model_validate(raw)
    except (ValueError, ValidationError) as exc:
        raise ConfigInvalidError(f"Extra-path manifest {path} is malformed.") from exc


def _is_safe_relative(recorded: str) -> bool:
    parts = recorded.replace("\\", "/").split("/")
    return (
        bool(recorded)
        and not recorded.startswith(("/", "\\"))
        and not PureWindowsPath(recorded).drive
        and ".." not in parts
    )


def _repo_path(plan: SyncPlan, recorded: str) -> Path | None:
    """Resolve a manifest ``repoPath`` inside the mirror, or ``None``.

    The manifest comes from the remote, so absolute paths, ``..`` segments
    and symlinks leading out of the repo root are refused.
    """
    if not _is_safe_relative(recorded):
        return None
    root = Path(plan.repo_root)
    candidate = root.joinpath(*recorded.replace("\\", "/").split("/"))
    if not candidate.resolve().is_relative_to(root.resolve()):
        return None
    return candidate


def capture_items(root: Path) -> list[ManifestItem]:
    """Record every descendant of *root* with its mode, parents first."""
    items: list[ManifestItem] = []
    for entry in sorted(root.rglob("*")):
        if entry.is_dir():
            kind = "dir"
        elif entry.is_file():
            kind = "file"
        else:
            continue
        items.append(
            ManifestItem(
                relative_path=entry.relative_to(root).as_posix(),
                type=kind,
                mode=file_mode(entry),
            )
        )
    return items


def apply_extra_path_manifest(extra: ExtraPathPlan, plan: SyncPlan) -> int:
    """Copy allow-listed manifest entries from the mirror to their sources.

    Returns:
        Number of entries applied.
    """
    if not extra.allowlist:
        return 0
    manifest = load_manifest(Path(extra.manifest_path))
    if manifest is None:
        return 0

    applied = 0
    for entry in manifest.entries:
        normalized = normalize_path(entry.source_path, plan.home_dir, plan.platform)
        if normalized not in extra.allowlist:
            logger.debug("Skipping extra path no longer allow-listed: %s", entry.source_path)
            continue
        source = _repo_path(plan, entry.repo_path)
        if source is None:
            logger.warning(
                "Skipping extra path with a repo path outside the mirror: %s",
                entry.source_path,
            )
            continue
        if not source.exists():
            continue

        target = Path(entry.source_path)
        if entry.type == "dir":
            remove_path(target)
            copy_dir_recursive(source, target)
            for item in entry.items or ():
                if item.mode is not None and _is_safe_relative(item.relative_path):
                    chmod_if_exists(target.joinpath(*item.relative_path.split("/")), item.mode)
        else:
            copy_file_with_mode(source, target)
        if entry.mode is not None:
            chmod_if_exists(target, entry.mode)
        applied += 1
    return applied


def rewrite_extra_path_manifest(extra: ExtraPathPlan, plan: SyncPlan) -> int:
    """Rebuild the mirror copies and manifest from the current allow-list.

    An empty allow-list removes both the manifest and the extra directory.

    Returns:
        Number of entries written.
    """
    manifest_path = Path(extra.manifest_path)
    extra_dir = Path(extra.repo_dir)
    remove_path(extra_dir)
    if not extra.allowlist:
        remove_path(manifest_path)
        return 0

    repo_root = Path(plan.repo_root)
    entries: list[ManifestEntry] = []
    for planned in extra.entries:
        source = Path(planned.source_path)
        if not source.exists():
            continue
        destination = Path(planned.repo_path)
        relative = posixpath.join(*destination.relative_to(repo_root).parts)
        if source.is_dir():
            copy_dir_recursive(source, destination)
            entries.append(
                ManifestEntry(
                    source_path=planned.source_path,
                    repo_path=relative,
                    type="dir",
                    mode=file_mode(source),
                    items=tuple(capture_items(source)),
                )
            )
        else:
            copy_file_with_mode(source, destination)
            entries.append(
                ManifestEntry(
                    source_path=planned.source_path,
                    repo_path=relative,
                    type="file",
                    mode=file_mode(source),
                )
            )

    manifest = ExtraPathManifest(entries=tuple(entries))
    write_json_file(
        manifest_path,
        manifest.model_dump(mode="json", by_alias=True, exclude_none=True),
    )
    logger.debug("Wrote %d extra-path entries to %s", len(entries), manifest_path)
    return len(entries)
