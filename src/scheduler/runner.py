"""Worker process: drains the outbox and sends reminders on a schedule."""
from __future__ import annotations

import signal
import sys
import time
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import get_settings
from core.logging_config import get_logger, setup_logging
from scheduler.jobs import REMINDER_TICK_MINUTES, run_outbox_dispatch_job, run_reminder_job

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def start_scheduler(
    poll_interval_seconds: Optional[int] = None,
    batch_size: Optional[int] = None,
) -> BackgroundScheduler:
    """
    Start the background scheduler with the outbox and reminder jobs.

    Args:
        poll_interval_seconds: Outbox polling interval (defaults to settings).
        batch_size: Events per outbox batch (defaults to settings).

    Returns:
        The running BackgroundScheduler instance.
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        LOGGER.warning("Scheduler is already running")
        return _scheduler

    interval = poll_interval_seconds or SETTINGS.outbox_poll_interval_seconds
    _scheduler = BackgroundScheduler()

    # max_instances=1: a slow batch delays the next one instead of overlapping it
    _scheduler.add_job(
        run_outbox_dispatch_job,
        IntervalTrigger(seconds=interval),
        kwargs={"limit": batch_size},
        id="outbox_dispatch",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        name="Outbox Dispatch",
    )

    _scheduler.add_job(
        run_reminder_job,
        IntervalTrigger(minutes=REMINDER_TICK_MINUTES),
        id="appointment_reminders",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        name="Appointment Reminders",
    )

    _scheduler.start()
    LOGGER.info("Scheduler started with %d jobs (outbox every %ds).", len(_scheduler.get_jobs()), interval)

    return _scheduler


def stop_scheduler() -> None:
    """Stop the background scheduler, letting a running batch finish."""
    global _scheduler

    if _scheduler is not None:
        LOGGER.info("Stopping scheduler...")
        _scheduler.shutdown(wait=True)
        _scheduler = None
        LOGGER.info("Scheduler stopped.")
    else:
        LOGGER.warning("Scheduler is not running")


def _signal_handler(signum: int, frame: object) -> None:
    """Handle shutdown signals."""
    LOGGER.info("Received signal %d, shutting down...", signum)
    stop_scheduler()
    sys.exit(0)


def run_scheduler_blocking(
    poll_interval_seconds: Optional[int] = None,
    batch_size: Optional[int] = None,
) -> None:
    """
    Start the scheduler and block until interrupted.

    This is the main entry point for running the worker as a standalone process.
    """
    setup_logging(level=SETTINGS.log_level, json_format=SETTINGS.log_format == "json")

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    LOGGER.info("Starting Washline worker...")
    LOGGER.info("Environment: %s, Dry Run: %s", SETTINGS.environment, SETTINGS.dry_run)

    start_scheduler(poll_interval_seconds=poll_interval_seconds, batch_size=batch_size)

    try:
        # Keep main thread alive
        while True:
            time.sleep(60)
    except (KeyboardInterrupt, SystemExit):
        if _scheduler is not None:
            stop_scheduler()
        LOGGER.info("Worker shutdown complete.")


if __name__ == "__main__":
    run_scheduler_blocking()
