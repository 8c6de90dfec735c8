"""CLI entry point for the ledger batch jobs, meant to be run daily by cron.

Usage:
    python -m hoa_ledger.cli.jobs regenerate
    python -m hoa_ledger.cli.jobs surcharges --date 2024-02-01
    python -m hoa_ledger.cli.jobs all

Exit Codes:
    0 - Success: every item of every job was processed
    1 - Failure: at least one item failed or the run could not start

Logging:
    LOG_LEVEL logs to both stdout and LOG_FILE
"""

import argparse
import asyncio
import sys
from datetime import date

from dotenv import load_dotenv

from hoa_ledger.services.logging import setup_logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="HOA ledger batch jobs")
    parser.add_argument(
        "job",
        choices=["regenerate", "surcharges", "all"],
        help="Job to run",
    )
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Run as of this date, YYYY-MM-DD (default: today)",
    )
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for the batch jobs CLI.

    Returns:
        Exit code: 0 for success, 1 for failure
    """
    args = parse_args(argv)
    load_dotenv()
    logger = setup_logging()
    run_date = args.date or date.today()
    logger.info("Starting ledger job '%s' for %s", args.job, run_date)

    try:
        from hoa_ledger.config import get_settings
        from hoa_ledger.services import SessionLocal
        from hoa_ledger.services.notification_service import build_notifier
        from hoa_ledger.services.scheduler import RecurrenceScheduler

        notifier = build_notifier(get_settings(), SessionLocal)
        await notifier.start()
        try:
            with SessionLocal() as db:
                scheduler = RecurrenceScheduler(db, notifier)
                if args.job == "regenerate":
                    reports = [await scheduler.run_charge_regeneration(run_date)]
                elif args.job == "surcharges":
                    reports = [await scheduler.run_surcharge_batch(run_date)]
                else:
                    reports = await scheduler.run_all(run_date)
        finally:
            await notifier.stop()

        for report in reports:
            logger.info(
                "%s: %d succeeded, %d skipped, %d failed",
                report.job,
                report.success_count,
                report.skipped,
                report.failure_count,
            )
            for failure in report.failures:
                logger.error("%s failed: %s", report.job, failure)
        return 0 if all(report.ok for report in reports) else 1

    except KeyboardInterrupt:
        logger.warning("Job interrupted by user")
        return 1
    except Exception as e:
        logger.error("Job failed: %s", e, exc_info=True)
        return 1


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
