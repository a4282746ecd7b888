"""
Daemon that runs The Arch's daily jobs on their configured wall-clock times.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from arch_backend.config import get_settings
from arch_backend.dependencies import (
    get_db_client,
    get_event_bus,
    get_push_client,
)
from arch_backend.notifications import NotificationDispatcher
from arch_backend.scheduler import build_scheduler

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="The Arch daily job scheduler")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run whatever is due now and exit",
    )
    parser.add_argument(
        "--job",
        type=str,
        default=None,
        help="Run a single job immediately and exit "
        "(create_daily_questions, send_reminders, process_daily_responses, cleanup)",
    )
    parser.add_argument(
        "--interval-seconds",
        type=int,
        default=60,
        help="Seconds between checks for due jobs",
    )
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    db = get_db_client()
    notifier = NotificationDispatcher(db, get_push_client())
    scheduler = build_scheduler(db, notifier, settings, events=get_event_bus())

    if args.job:
        try:
            result = scheduler.run_job(args.job)
        except KeyError as exc:
            logger.error("%s", exc)
            return 2
        logger.info("Job %s result: %s", args.job, result)
        return 0

    if args.once:
        ran = scheduler.run_pending()
        logger.info("Ran %d due jobs: %s", len(ran), ", ".join(ran) or "none")
        return 0

    try:
        scheduler.run_loop(args.interval_seconds)
    except KeyboardInterrupt:
        logger.info("Scheduler stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
