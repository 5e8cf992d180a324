"""
releasedesk - Entry Point

Run with: python -m releasedesk [serve|create-user] ...
"""

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

from releasedesk import __version__
from releasedesk.config import ConfigError, Settings, load_settings
from releasedesk.core.models import Role
from releasedesk.core.release_db import ReleaseDb
from releasedesk.server import ReleaseDeskServer


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="releasedesk",
        description="releasedesk - music release submission and review backend",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to a releasedesk.toml (default: packaged defaults)",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="Run the HTTP server (default)")
    serve.add_argument("--host", type=str, default=None, help="Host address to bind to")
    serve.add_argument("-p", "--port", type=int, default=None, help="HTTP port")

    create_user = commands.add_parser("create-user", help="Create a user and print a token")
    create_user.add_argument("username", type=str)
    create_user.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=Role.USER.value,
        help="User role (default: User)",
    )

    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "serve"
        args.host = None
        args.port = None
    return args


async def run_server(settings: Settings) -> None:
    """Start and run the releasedesk server."""
    server = ReleaseDeskServer(settings)
    await server.run()


async def create_user(settings: Settings, username: str, role: str) -> str:
    """Create a user (or reuse an existing one) and return a fresh token."""
    db = ReleaseDb(settings.storage.db_path)
    await db.open()
    try:
        await db.ensure_schema()
        user = await db.get_user_by_username(username)
        user_id = user.id if user is not None else await db.create_user(username, role)
        return await db.issue_token(user_id, timedelta(days=settings.auth.token_ttl_days))
    finally:
        await db.close()


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the application."""
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    logger = logging.getLogger(__name__)

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    if args.command == "create-user":
        token = asyncio.run(create_user(settings, args.username, args.role))
        print(token)
        return 0

    if args.host:
        settings.server.host = args.host
    if args.port:
        settings.server.port = args.port

    logger.info("Starting releasedesk %s...", __version__)

    try:
        asyncio.run(run_server(settings))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1

    logger.info("Server stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
