"""Command-line entry point for opencode-synced.

Runs the same flows as the MCP tools, headless: notifications go to the
log on stderr and there is no AI collaborator, so commit messages use the
dated fallback and ``resolve`` always reports a manual verdict.
"""

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Awaitable, Callable

from dotenv import load_dotenv

from . import __version__
from .core.host import LoggingHost
from .core.runner import SubprocessRunner
from .errors import SyncError
from .logger import setup_logging
from .sync.paths import resolve_sync_locations
from .sync.service import InitOptions, SyncService

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opencode-synced",
        description="Sync OpenCode configuration through a private GitHub repo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # First machine: create my-opencode-config under your gh user
  opencode-synced init

  # Another machine: find and apply the existing repo
  opencode-synced link

  # Day to day
  opencode-synced pull
  opencode-synced push
  opencode-synced status
        """,
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--version",
        action="version",
        version=f"opencode-synced version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show sync configuration and repo state")

    init = sub.add_parser("init", help="Configure sync, creating the repo if needed")
    init.add_argument("repo", nargs="?", help="Repo URL, owner/name, or bare name")
    init.add_argument("--branch")
    init.add_argument("--include-secrets", action="store_true")
    init.add_argument("--include-mcp-secrets", action="store_true")
    init.add_argument("--include-sessions", action="store_true")
    init.add_argument("--include-prompt-stash", action="store_true")
    init.add_argument(
        "--no-model-favorites",
        action="store_true",
        help="Do not sync model favorites",
    )
    init.add_argument("--no-create", action="store_true", help="Fail if the repo is missing")
    init.add_argument("--public", action="store_true", help="Create a public repo")
    init.add_argument("--extra-secret-path", action="append", dest="extra_secret_paths")
    init.add_argument("--extra-config-path", action="append", dest="extra_config_paths")
    init.add_argument("--local-repo-path")

    link = sub.add_parser("link", help="Link to an existing repo and apply it")
    link.add_argument("repo", nargs="?", help="Repo URL, owner/name, or bare name")
    link.add_argument("--branch")

    sub.add_parser("pull", help="Apply remote changes locally")
    sub.add_parser("push", help="Commit and push local changes")

    enable = sub.add_parser("enable-secrets", help="Enable secrets sync (private repos only)")
    enable.add_argument("--extra-secret-path", action="append", dest="extra_secret_paths")
    enable.add_argument(
        "--include-mcp-secrets",
        action=argparse.BooleanOptionalAction,
        default=None,
    )

    resolve = sub.add_parser("resolve", help="Settle uncommitted changes in the sync repo")
    resolve.add_argument(
        "--yes",
        action="store_true",
        help="Allow a discard verdict to reset the sync repo",
    )

    secrets = sub.add_parser("secrets", help="Secrets backend commands")
    secrets_sub = secrets.add_subparsers(dest="secrets_command", required=True)
    secrets_sub.add_parser("status", help="Check the secrets backend")
    secrets_sub.add_parser("pull", help="Restore auth files from the backend")
    secrets_sub.add_parser("push", help="Store auth files in the backend")

    return parser


def _dispatch(
    service: SyncService, args: argparse.Namespace
) -> Callable[[], Awaitable[str]]:
    match args.command:
        case "status":
            return service.status
        case "init":
            options = InitOptions(
                repo=args.repo,
                branch=args.branch,
                include_secrets=args.include_secrets,
                include_mcp_secrets=args.include_mcp_secrets,
                include_sessions=args.include_sessions,
                include_prompt_stash=args.include_prompt_stash,
                include_model_favorites=not args.no_model_favorites,
                create=not args.no_create,
                private=not args.public,
                extra_secret_paths=args.extra_secret_paths,
                extra_config_paths=args.extra_config_paths,
                local_repo_path=args.local_repo_path,
            )
            return lambda: service.init(options)
        case "link":
            return lambda: service.link(args.repo, args.branch)
        case "pull":
            return service.pull
        case "push":
            return service.push
        case "enable-secrets":
            return lambda: service.enable_secrets(
                args.extra_secret_paths, args.include_mcp_secrets
            )
        case "resolve":
            return lambda: service.resolve(confirm_discard=args.yes)
        case "secrets":
            match args.secrets_command:
                case "status":
                    return service.secrets_status
                case "pull":
                    return service.secrets_pull
                case "push":
                    return service.secrets_push
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run one command and return the exit status."""
    args = _build_parser().parse_args(argv)

    load_dotenv()
    setup_logging(mode="cli", debug=args.debug)

    locations = resolve_sync_locations(os.environ)
    service = SyncService(SubprocessRunner(), LoggingHost(), locations)
    command = _dispatch(service, args)

    try:
        output = asyncio.run(command())
    except SyncError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130

    print(output)
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
