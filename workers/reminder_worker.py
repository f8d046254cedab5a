"""
Booking reminder worker.

Purpose:
- One scheduler pass per invocation, driven by cron at 17:00 and 18:00 local time
- Generates tomorrow's reminders and fans them out as push notifications
- Records the run in scheduler_runs so a repeated 17:00 trigger is skipped

Usage:
- python -m workers.reminder_worker                 (slot inferred from the clock)
- python -m workers.reminder_worker --time-slot 17:00 --dry-run
- python -m workers.reminder_worker --target-date 2026-10-19 --force

Exit status is non-zero when the run failed.
"""
import argparse
import asyncio
import logging
import sys
from datetime import date

from config.settings import settings
from core.container import build_container
from core import db
from core.db import get_session_factory
from core.logging import configure_logging
from services.reminder_scheduler import InvalidTimeSlot

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send next-day booking reminders")
    parser.add_argument("--time-slot", default=None, help="17:00 or 18:00; inferred from the clock if omitted")
    parser.add_argument("--target-date", type=date.fromisoformat, default=None, help="YYYY-MM-DD, default tomorrow")
    parser.add_argument("--dry-run", action="store_true", help="create notifications without push delivery")
    parser.add_argument("--force", action="store_true", help="run even if this slot already completed today")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    """Entry point for running the worker."""
    args = parse_args(argv)
    container = build_container(settings, get_session_factory())
    try:
        result = await container.scheduler.run_daily(
            time_slot=args.time_slot,
            target_date=args.target_date,
            dry_run=args.dry_run,
            force=args.force,
        )
    except InvalidTimeSlot as e:
        logger.error("%s", e)
        return 2
    finally:
        if db.engine is not None:
            await db.engine.dispose()

    if result.skipped:
        logger.info(result.message)
    elif result.summary:
        logger.info(
            "Slot %s: reminders=%d sent=%d failed=%d",
            result.time_slot,
            result.summary.total_reminders,
            result.summary.notifications_sent,
            result.summary.notifications_failed,
        )
    if not result.success:
        logger.error("Reminder run failed: %s", result.error)
        return 1
    return 0


if __name__ == "__main__":
    configure_logging(settings.LOG_LEVEL)
    sys.exit(asyncio.run(main()))
