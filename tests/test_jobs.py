"""Tests for the worker jobs and the CLI."""
from __future__ import annotations

import json
from datetime import timedelta
from unittest.mock import MagicMock

from typer.testing import CliRunner

from conftest import make_appointment
from cli import app as cli_app
from core.utils import utcnow
from outbox.dispatcher import OutboxDispatcher
from outbox.handlers import OutboxHandlers
from scheduler.jobs import REMINDER_LEAD_MINUTES, run_outbox_dispatch_job, run_reminder_job

runner = CliRunner()


# =============================================================================
# Worker jobs
# =============================================================================


def test_outbox_job_reports_stats(session_factory, notifier, calendar, db_session, sample_appointment):
    from domain.appointments import AppointmentService

    AppointmentService(db_session).record_payment(sample_appointment.id, "40")
    db_session.commit()
    dispatcher = OutboxDispatcher(session_factory, OutboxHandlers(notifier, calendar), worker_id="job-test")

    result = run_outbox_dispatch_job(limit=5, dispatcher=dispatcher)

    assert result["success"] is True
    assert result["job_type"] == "outbox_dispatch"
    assert result["result"] == {"total": 1, "processed": 1, "skipped": 0, "errors": 0}


def test_outbox_job_contains_failures():
    dispatcher = MagicMock(spec=OutboxDispatcher)
    dispatcher.process_batch.side_effect = RuntimeError("database unavailable")

    result = run_outbox_dispatch_job(dispatcher=dispatcher)

    assert result["success"] is False
    assert result["error"] == "database unavailable"


def test_reminder_job_sends_for_next_slice(db_session, sample_contact, sample_property, notifier):
    now = utcnow().replace(microsecond=0)
    make_appointment(db_session, sample_contact, sample_property, start_at=now + timedelta(minutes=REMINDER_LEAD_MINUTES + 5))
    make_appointment(db_session, sample_contact, sample_property, start_at=now + timedelta(hours=30))

    result = run_reminder_job(notifier=notifier, now=now)

    assert result["success"] is True
    assert result["result"] == {"sent": 1}
    notifier.send_reminder.assert_called_once()


# =============================================================================
# CLI
# =============================================================================


def test_cli_quote_price_table():
    result = runner.invoke(cli_app, ["quote", "price", "house-wash", "--zone", "zone-core"])

    assert result.exit_code == 0
    assert "Total" in result.output
    assert "375.00" in result.output
    assert "75.00" in result.output


def test_cli_quote_price_json():
    result = runner.invoke(cli_app, ["quote", "price", "house-wash", "--zone", "zone-core", "--json"])

    assert result.exit_code == 0
    breakdown = json.loads(result.output)
    assert breakdown["total"] == 375.0


def test_cli_quote_price_rejects_unknown_service():
    result = runner.invoke(cli_app, ["quote", "price", "chimney-sweep"])

    assert result.exit_code == 1
    assert "selected_services" in result.output


def test_cli_outbox_pending(db_session, sample_appointment):
    from domain.appointments import AppointmentService

    AppointmentService(db_session).add_note(sample_appointment.id, "no events from notes")
    AppointmentService(db_session).record_payment(sample_appointment.id, 10)
    db_session.commit()

    result = runner.invoke(cli_app, ["outbox", "pending"])

    assert result.exit_code == 0
    assert "Pending events: 1" in result.output
