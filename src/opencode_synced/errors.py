"""Exception taxonomy for the sync engine.

Every error raised out of an operation derives from ``SyncError`` and
carries a message that may be shown verbatim to a human.  Messages name
operations and paths only; they never embed file contents.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .sync.models import LockInfo


class SyncError(Exception):
    """Base class for all sync failures."""

    #: Short category used by the MCP error responses.
    category = "sync_error"


class ConfigMissingError(SyncError):
    """No sync configuration file is present."""

    category = "config_missing"


class ConfigInvalidError(SyncError):
    """The sync configuration is malformed or fails validation."""

    category = "config_invalid"


class CommandFailureError(SyncError):
    """An external command (git, gh, op) failed.

    Attributes:
        command: The program and subcommand that failed, e.g. ``git fetch``.
        returncode: Process exit status, or ``None`` if it never started.
    """

    category = "command_failed"

    def __init__(
        self,
        message: str,
        command: str | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.command = command
        self.returncode = returncode


class RepoVisibilityError(CommandFailureError):
    """The hosting service could not report the repo's visibility."""


class RepoPrivacyViolationError(SyncError):
    """Secrets are enabled but the mirror repository is not private."""

    category = "repo_not_private"


class RepoDivergedError(SyncError):
    """Local and remote branches have both advanced."""

    category = "repo_diverged"


class LockBusyError(SyncError):
    """Another live process holds the advisory sync lock."""

    category = "lock_busy"

    def __init__(self, message: str, info: LockInfo | None = None) -> None:
        super().__init__(message)
        self.info = info


class SecretsBackendAmbiguousError(SyncError):
    """More than one backend document matches a configured title."""

    category = "secrets_ambiguous"

    def __init__(self, document: str, vault: str, count: int) -> None:
        super().__init__(
            f'Found {count} documents named "{document}" in vault '
            f'"{vault}". Rename them to be unique.'
        )
        self.document = document
        self.vault = vault
        self.count = count


class AuthFilesAlreadyTrackedError(SyncError):
    """Backend-owned auth files are already committed in mirror history."""

    category = "auth_files_tracked"


class MirrorDirtyError(SyncError):
    """The mirror working copy has uncommitted changes."""

    category = "repo_dirty"
