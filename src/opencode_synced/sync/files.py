"""Mode-preserving copy and removal helpers used by the applier.

All functions are synchronous; the orchestrator offloads them with
``run_sync()``.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Literal


def file_mode(path: Path) -> int:
    return path.stat().st_mode & 0o777


def chmod_if_exists(path: Path, mode: int) -> None:
    try:
        os.chmod(path, mode)
    except FileNotFoundError:
        pass


def remove_path(path: Path) -> None:
    """Delete a file or directory tree; missing paths are fine."""
    if path.is_symlink() or path.is_file():
        path.unlink(missing_ok=True)
    elif path.is_dir():
        shutil.rmtree(path)


def copy_file_with_mode(source: Path, destination: Path) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, destination)
    chmod_if_exists(destination, file_mode(source))


def copy_dir_recursive(source: Path, destination: Path) -> None:
    """Copy regular files and directories, carrying mode bits.

    Anything that is neither (sockets, fifos, dangling links) is skipped.
    """
    mode = file_mode(source)
    destination.mkdir(parents=True, exist_ok=True)
    for entry in sorted(source.iterdir()):
        target = destination / entry.name
        if entry.is_dir():
            copy_dir_recursive(entry, target)
        elif entry.is_file():
            copy_file_with_mode(entry, target)
    chmod_if_exists(destination, mode)


def copy_item(
    source: Path,
    destination: Path,
    item_type: Literal["file", "dir"],
    *,
    remove_when_missing: bool = False,
) -> None:
    """Copy one sync item.

    A directory destination is removed before copying so deletions inside
    it propagate.  When *source* is absent the destination is left alone,
    or removed if *remove_when_missing* is set.
    """
    if not source.exists():
        if remove_when_missing:
            remove_path(destination)
        return
    if item_type == "file":
        copy_file_with_mode(source, destination)
        return
    remove_path(destination)
    copy_dir_recursive(source, destination)
