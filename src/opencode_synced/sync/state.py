"""Sync state persistence.

``sync-state.json`` records when this machine last pulled, pushed and
saw a remote update, plus the hash of the backend-owned secret files at
the last successful backend push.  Updates are read-modify-write so one
phase never clobbers another's timestamps.

Writes go through the shared atomic writer: readers never see a partial
document.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from ..jsonc import write_json_file
from .models import SyncLocations

logger = logging.getLogger(__name__)


class SyncState(BaseModel):
    """Persisted per-machine sync timestamps.

    Attributes:
        last_pull: ISO 8601 time of the last applied remote change.
        last_push: ISO 8601 time of the last successful push.
        last_remote_update: ISO 8601 time the remote was last seen ahead.
        last_secrets_hash: Secrets hash at the last backend push.
    """

    last_pull: str | None = None
    last_push: str | None = None
    last_remote_update: str | None = None
    last_secrets_hash: str | None = None

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def load_state(locations: SyncLocations) -> SyncState:
    """Load the state file; a missing or unreadable file is an empty state."""
    path = Path(locations.state_path)
    if not path.exists():
        return SyncState()
    try:
        return SyncState.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (ValueError, ValidationError):
        logger.warning("Ignoring unreadable sync state file %s", path)
        return SyncState()


def write_state(locations: SyncLocations, **changes: str | None) -> SyncState:
    """Merge *changes* (snake_case field names) into the stored state.

    Example:
        write_state(locations, last_push=utc_now())
    """
    current = load_state(locations)
    updated = current.model_copy(update=changes)
    write_json_file(
        Path(locations.state_path),
        updated.model_dump(mode="json", by_alias=True, exclude_none=True),
    )
    logger.debug("Updated sync state: %s", ", ".join(sorted(changes)))
    return updated
