#!/usr/bin/env python3
"""
Run one ingestion job by hand.

Usage:
    python -m scripts.run_sync organizations
    python -m scripts.run_sync players bugha
    python -m scripts.run_sync earnings org:team-liquid
    python -m scripts.run_sync transfers --no-notify

Exit code is 0 when the pass completes, even if some items failed, and 1
only when the pass was aborted.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys

from esports_ingest.config import get_settings
from esports_ingest.services.jobs import JOB_NAMES, IngestContext, JobRunner
from esports_ingest.services.platform_auth import PlatformAuthError
from esports_ingest.services.sync.errors import FatalPipelineError
from esports_ingest.services.sync.types import JobStats

LOGGER = logging.getLogger("run_sync")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one esports ingestion job")
    parser.add_argument("family", choices=JOB_NAMES, help="Entity family to sync")
    parser.add_argument(
        "scope",
        nargs="?",
        default="all",
        help="'all' (default), 'org:<slug>' or a single canonical id",
    )
    parser.add_argument("--no-notify", action="store_true", help="Do not send a Telegram summary")
    parser.add_argument("--json", action="store_true", help="Print the final stats as JSON")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logs")
    return parser.parse_args(argv)


def print_stats(stats: JobStats, as_json: bool = False) -> None:
    if as_json:
        print(json.dumps(stats.to_dict(), indent=2))
        return
    print(stats.summary())
    for error in stats.errors:
        print(f"  ! {error.item_id}: {error.message}")


async def run_sync(args: argparse.Namespace, context: IngestContext | None = None) -> int:
    context = context or IngestContext()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop_event.set)
    except (NotImplementedError, RuntimeError):
        # Not available on every platform / outside the main thread
        pass

    try:
        stats = await JobRunner(context, notify=not args.no_notify).run(
            args.family, args.scope, stop_event=stop_event
        )
    except (FatalPipelineError, PlatformAuthError) as e:
        LOGGER.error("Sync %s aborted: %s", args.family, e)
        return 1
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
        await context.aclose()

    if stats is None:
        LOGGER.warning("Job %s is already running", args.family)
        return 0
    print_stats(stats, as_json=args.json)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        return asyncio.run(run_sync(args))
    except ValueError as e:
        LOGGER.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
