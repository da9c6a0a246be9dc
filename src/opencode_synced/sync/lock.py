"""Advisory file lock keyed on a liveness-checked owner pid.

The lock file is created with ``O_CREAT | O_EXCL`` so exactly one
creator wins.  A lock whose owner is gone (or whose file is unreadable)
is reclaimed once; a live owner makes acquisition fail and the caller
gets the owner's ``LockInfo`` back.

This is cooperative: it only excludes processes that go through the same
lock path.
"""

from __future__ import annotations

import json
import logging
import os
import socket
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import psutil
from pydantic import ValidationError

from ..errors import LockBusyError
from .models import LockInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockAttempt:
    """Outcome of ``try_acquire_lock``.

    ``info`` is ours when acquired, the current owner's otherwise (or
    ``None`` if the owner could not be read).
    """

    acquired: bool
    info: LockInfo | None


def _is_process_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    return psutil.pid_exists(pid)


def read_lock_info(path: Path) -> LockInfo | None:
    """Return the recorded owner, or ``None`` if missing or corrupt."""
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return LockInfo.model_validate(raw)
    except (OSError, ValueError, ValidationError):
        return None


def try_acquire_lock(path: Path) -> LockAttempt:
    """Try to take the lock at *path* once, reclaiming a stale lock once."""
    path.parent.mkdir(parents=True, exist_ok=True)
    ours = LockInfo(
        pid=os.getpid(),
        started_at=datetime.now(timezone.utc).isoformat(),
        hostname=socket.gethostname(),
    )
    payload = json.dumps(ours.model_dump(by_alias=True), indent=2) + "\n"

    for attempt in range(2):
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            existing = read_lock_info(path)
            stale = existing is None or not _is_process_alive(existing.pid)
            if attempt == 0 and stale:
                logger.info(
                    "Reclaiming stale sync lock %s (owner pid %s)",
                    path,
                    existing.pid if existing else "unknown",
                )
                path.unlink(missing_ok=True)
                continue
            return LockAttempt(acquired=False, info=existing)

        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
        logger.debug("Acquired sync lock %s", path)
        return LockAttempt(acquired=True, info=ours)

    return LockAttempt(acquired=False, info=read_lock_info(path))


def release_lock(path: Path) -> None:
    path.unlink(missing_ok=True)
    logger.debug("Released sync lock %s", path)


def describe_lock_owner(info: LockInfo | None) -> str:
    if info is None:
        return "Another sync is already in progress."
    return (
        f"Another sync is already in progress (pid {info.pid} on "
        f"{info.hostname}, started {info.started_at})."
    )


@contextmanager
def sync_lock(path: Path) -> Iterator[LockInfo]:
    """Hold the lock for the duration of the ``with`` block.

    Raises:
        LockBusyError: A live process already holds the lock.
    """
    attempt = try_acquire_lock(path)
    if not attempt.acquired:
        raise LockBusyError(describe_lock_owner(attempt.info), attempt.info)
    try:
        yield attempt.info
    finally:
        release_lock(path)
