"""Scheduler module for the outbox worker and reminder jobs."""
from __future__ import annotations

from .jobs import run_outbox_dispatch_job, run_reminder_job
from .runner import start_scheduler, stop_scheduler, run_scheduler_blocking

__all__ = [
    "run_outbox_dispatch_job",
    "run_reminder_job",
    "start_scheduler",
    "stop_scheduler",
    "run_scheduler_blocking",
]
