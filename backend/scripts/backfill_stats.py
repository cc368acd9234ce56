#!/usr/bin/env python3
"""Rebuild daily/weekly player stats from the match log.

Usage::

    DATABASE_URL=postgresql://... python scripts/backfill_stats.py --start 2025-01-01 --end 2025-03-31
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from matchledger.db import dispose_engine, get_session_factory  # noqa: E402
from matchledger.services.backfill import BackfillError, BackfillJob  # noqa: E402
from matchledger.services.streaks import StreakMaintainer  # noqa: E402
from matchledger.services.validation import ValidationError  # noqa: E402

logger = logging.getLogger("backfill_stats")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--start", help="first day to rebuild (YYYY-MM-DD)")
    parser.add_argument("--end", help="last day to rebuild (YYYY-MM-DD); defaults to today")
    parser.add_argument(
        "--rebuild-lifetime-goals",
        action="store_true",
        help=(
            "also overwrite lifetime goal totals from the same pass; the totals "
            "cover only the requested range, so start it at or before the first match"
        ),
    )
    parser.add_argument(
        "--reconcile-streaks",
        action="store_true",
        help="raise highest streaks to the current streak for every player",
    )
    parser.add_argument(
        "--time-budget",
        type=float,
        default=None,
        help="stop between batches after this many seconds (0 = unlimited)",
    )
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    factory = get_session_factory()
    options = {}
    if args.time_budget is not None:
        options["time_budget"] = args.time_budget
    job = BackfillJob(factory, **options)
    try:
        try:
            result = await job.run(
                args.start,
                args.end,
                rebuild_lifetime_goals=args.rebuild_lifetime_goals,
            )
        except ValidationError as exc:
            logger.error("%s", exc.detail)
            return 2
        except BackfillError as exc:
            logger.error("%s (%d matches read before failure)", exc, exc.result.matches_processed)
            return 1

        print(result.summary())
        if args.reconcile_streaks:
            raised = await StreakMaintainer(factory).reconcile_all_maxima()
            print(f"Raised streak maxima for {raised} player(s).")
        return 0 if result.completed else 3
    finally:
        await dispose_engine()


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return asyncio.run(_run(_parse_args(argv)))


if __name__ == "__main__":
    sys.exit(main())
