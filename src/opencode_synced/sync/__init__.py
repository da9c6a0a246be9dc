"""Config sync engine.

Mirrors the local OpenCode configuration into a git repository and back,
keeping machine-local overrides and secrets out of the shared history.

Modules:

- ``paths``          -- location resolver, extra-path encoding, sync plan builder.
- ``merge``          -- deep merge and override stripping.
- ``apply``          -- copy a plan in either direction (``sync_mirror_to_local``,
  ``sync_local_to_mirror``).
- ``manifest``       -- extra-path manifests written into the mirror.
- ``mcp_secrets``    -- move embedded MCP server secrets into overrides.
- ``lock``           -- advisory cross-process sync lock.
- ``repo``           -- mirror working copy and hosting-service queries.
- ``secrets_backend`` -- 1Password CLI backend for auth files.
- ``advisor``        -- AI commit messages and dirty-mirror verdicts.
- ``state``          -- per-machine sync timestamps.
- ``trigger``        -- debounced background runner.
- ``service``        -- ``SyncService``: every user-facing flow.

Usage example
-------------
::

    from opencode_synced.core import LoggingHost, SubprocessRunner
    from opencode_synced.sync import SyncService

    service = SyncService(SubprocessRunner(), LoggingHost())
    print(await service.pull())
"""

from .models import SyncItem, SyncLocations, SyncPlan
from .paths import build_sync_plan, resolve_sync_locations
from .service import InitOptions, SyncService
from .trigger import SyncTrigger

__all__ = [
    "InitOptions",
    "SyncItem",
    "SyncLocations",
    "SyncPlan",
    "SyncService",
    "SyncTrigger",
    "build_sync_plan",
    "resolve_sync_locations",
]
