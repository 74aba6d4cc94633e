"""Scoring service entrypoint.

Commands:
    run        start workers, reconcile leaderboards, serve until SIGINT/SIGTERM
    reconcile  rebuild leaderboard projections from the ledger and exit
    recompute  rewrite durable ranks for one contest and exit
    init-db    create every table and exit
"""

import argparse
import asyncio
import logging
import os
import signal

from dotenv import load_dotenv

from matchday.config.core import get_settings, last_yaml_path, sanitize_dict
from matchday.database import DBM, create_all
from matchday.events import LoggingEventSink
from matchday.service import ScoringService
from matchday.shared.logging import configure_logging, setup_events_logger

logger = logging.getLogger("matchday.entrypoint")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Matchday contest scoring service")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="run the grading workers")
    rec = sub.add_parser("reconcile", help="rebuild leaderboard projections")
    rec.add_argument("--contest", type=int, default=None)
    rc = sub.add_parser("recompute", help="rewrite ranks for a contest")
    rc.add_argument("--contest", type=int, required=True)
    sub.add_parser("init-db", help="create database tables")
    return parser


async def _run(service: ScoringService) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    await service.start()
    try:
        await stop.wait()
    finally:
        await service.shutdown()


async def _reconcile(service: ScoringService, contest_id: int | None) -> None:
    try:
        for report in await service.reconcile(contest_id):
            logger.info(
                "Contest %s reconciled from %s: %d entries, %d drifted",
                report.contest_id,
                report.source,
                report.entries,
                report.drifted_users,
            )
    finally:
        await service.shutdown()


async def _recompute(service: ScoringService, contest_id: int) -> None:
    try:
        result = await service.update_leaderboard(contest_id)
        logger.info("Contest %s: %d ranks rewritten", contest_id, result["ranked"])
    finally:
        await service.shutdown()


async def _init_db(dbm: DBM) -> None:
    try:
        await create_all(dbm)
    finally:
        await dbm.dispose()


def main(argv: list[str] | None = None) -> None:
    # Load .env if not in test mode
    if os.environ.get("MATCHDAY_TEST_MODE") != "true":
        load_dotenv()

    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.logging.level, settings.logging.json_logs)
    event_logger = setup_events_logger(settings.logging.events_dir, settings.logging.events_retention_size)
    logger.info({"settings": sanitize_dict(settings.model_dump()), "yaml": last_yaml_path()})

    if args.command == "init-db":
        asyncio.run(_init_db(DBM(settings.database)))
        return

    service = ScoringService(settings, sink=LoggingEventSink(event_logger))
    if args.command == "run":
        asyncio.run(_run(service))
    elif args.command == "reconcile":
        asyncio.run(_reconcile(service, args.contest))
    elif args.command == "recompute":
        asyncio.run(_recompute(service, args.contest))


if __name__ == "__main__":
    main()
