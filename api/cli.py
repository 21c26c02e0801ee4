#!/usr/bin/env python3
"""CLI for workforce API management tasks.

Usage:
    python -m cli <command>

Commands:
    migrate [target]       Apply database migrations (default: head)
    downgrade [target]     Revert database migrations (default: -1)
    current                Show the current migration revision
    dispatch-events        Deliver pending outbox events once and exit
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

from core.logger import configure_logging

logger = logging.getLogger(__name__)

API_DIR = Path(__file__).resolve().parent


def get_alembic_config() -> Config:
    cfg = Config(str(API_DIR / "alembic.ini"))
    # Absolute so the CLI works from any working directory.
    cfg.set_main_option("script_location", str(API_DIR / "alembic"))
    return cfg


def cmd_migrate(target: str) -> int:
    """Apply migrations up to ``target``."""
    logger.info("migrations.starting", extra={"target": target})
    command.upgrade(get_alembic_config(), target)
    logger.info("migrations.complete", extra={"target": target})
    return 0


def cmd_downgrade(target: str) -> int:
    logger.info("migrations.downgrading", extra={"target": target})
    command.downgrade(get_alembic_config(), target)
    return 0


def cmd_current() -> int:
    command.current(get_alembic_config())
    return 0


async def _dispatch_once() -> int:
    from core.database import create_engine, create_session_maker, dispose_engine
    from services.events_service import dispatch_pending

    engine = create_engine()
    try:
        result = await dispatch_pending(create_session_maker(engine))
    finally:
        await dispose_engine(engine)

    logger.info(
        "outbox.dispatch.cli",
        extra={
            "claimed": result.claimed,
            "dispatched": result.dispatched,
            "failed": result.failed,
        },
    )
    return 1 if result.failed else 0


def cmd_dispatch_events() -> int:
    """Run one outbox dispatch pass. Exit status 1 when any event failed."""
    return asyncio.run(_dispatch_once())


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Workforce API CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    migrate = subparsers.add_parser("migrate", help="Apply database migrations")
    migrate.add_argument(
        "target",
        nargs="?",
        default="head",
        help="Target revision (default: head)",
    )

    downgrade = subparsers.add_parser("downgrade", help="Revert database migrations")
    downgrade.add_argument(
        "target",
        nargs="?",
        default="-1",
        help="Target revision (default: -1)",
    )

    subparsers.add_parser("current", help="Show current revision")
    subparsers.add_parser(
        "dispatch-events",
        help="Deliver pending outbox events once",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    parser = _build_parser()
    args = parser.parse_args(argv)

    match args.command:
        case "migrate":
            return cmd_migrate(args.target)
        case "downgrade":
            return cmd_downgrade(args.target)
        case "current":
            return cmd_current()
        case "dispatch-events":
            return cmd_dispatch_events()
        case _:
            parser.print_help()
            return 1


if __name__ == "__main__":
    sys.exit(main())
