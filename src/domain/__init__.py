"""Domain layer for washline business logic.

This module provides a clean separation between business logic and
infrastructure (CLI, API, worker). All core operations should go through
the domain services.
"""
from __future__ import annotations

from .contacts import AddressFields, ContactDirectory, ContactIdentity
from .intake import IntakePipeline, IntakeResult, LeadSubmission
from .quotes import QuoteService
from .appointments import AppointmentService, send_due_reminders
from .pipeline_stage import enqueue_stage_request, upsert_pipeline_stage
from .crm import CrmService

__all__ = [
    # Contacts
    "AddressFields",
    "ContactDirectory",
    "ContactIdentity",
    # Intake
    "IntakePipeline",
    "IntakeResult",
    "LeadSubmission",
    # Quotes
    "QuoteService",
    # Appointments
    "AppointmentService",
    "send_due_reminders",
    # CRM
    "enqueue_stage_request",
    "upsert_pipeline_stage",
    "CrmService",
]
