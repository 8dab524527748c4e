"""Admin CRM views: the pipeline board, stage moves and the contact directory."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from core.exceptions import NotFoundError, ValidationError
from core.logging_config import get_logger
from core.models import Appointment, Contact, CrmPipeline, PipelineStage, Property, Quote
from core.utils import ensure_aware, isoformat_or_none
from domain.pipeline_stage import parse_stage, upsert_pipeline_stage

LOGGER = get_logger(__name__)

PIPELINE_STAGES = [stage.value for stage in PipelineStage]

DEFAULT_CONTACT_LIMIT = 50
MAX_CONTACT_LIMIT = 200


def _property_summary(prop: Optional[Property]) -> Optional[Dict[str, Any]]:
    if prop is None:
        return None
    return {
        "id": prop.id,
        "address_line1": prop.address_line1,
        "city": prop.city,
        "state": prop.state,
        "postal_code": prop.postal_code,
    }


def _latest(values: Iterable[Optional[datetime]]) -> Optional[datetime]:
    present = [ensure_aware(value) for value in values if value is not None]
    return max(present) if present else None


class CrmService:
    """Read models for the admin board; stage moves flush, the caller commits."""

    def __init__(self, session: Session):
        self.session = session

    # -------------------------------------------------------------------------
    # Aggregates
    # -------------------------------------------------------------------------

    def _appointment_stats(self, contact_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        if not contact_ids:
            return {}
        rows = (
            self.session.query(
                Appointment.contact_id,
                func.count(Appointment.id),
                func.max(func.coalesce(Appointment.updated_at, Appointment.start_at)),
            )
            .filter(Appointment.contact_id.in_(contact_ids))
            .group_by(Appointment.contact_id)
            .all()
        )
        return {contact_id: {"count": count, "latest": latest} for contact_id, count, latest in rows}

    def _quote_stats(self, contact_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        if not contact_ids:
            return {}
        rows = (
            self.session.query(Quote.contact_id, func.count(Quote.id), func.max(Quote.updated_at))
            .filter(Quote.contact_id.in_(contact_ids))
            .group_by(Quote.contact_id)
            .all()
        )
        return {contact_id: {"count": count, "latest": latest} for contact_id, count, latest in rows}

    def _properties_by_contact(self, contact_ids: List[str]) -> Dict[str, List[Property]]:
        """Properties per contact, newest first."""
        grouped: Dict[str, List[Property]] = {}
        if not contact_ids:
            return grouped
        rows = (
            self.session.query(Property)
            .filter(Property.contact_id.in_(contact_ids))
            .order_by(Property.created_at.desc(), Property.id)
            .all()
        )
        for prop in rows:
            grouped.setdefault(prop.contact_id, []).append(prop)
        return grouped

    # -------------------------------------------------------------------------
    # Pipeline board
    # -------------------------------------------------------------------------

    def pipeline_board(self) -> Dict[str, Any]:
        """
        Contacts with a pipeline row, grouped into one lane per stage.

        Every stage gets a lane even when empty. A row holding a stage that
        is no longer known lands in the ``new`` lane. Each lane is ordered
        by last activity, newest first, where last activity is the latest
        of the contact, pipeline, appointment and quote timestamps.
        """
        rows = (
            self.session.query(CrmPipeline, Contact)
            .join(Contact, CrmPipeline.contact_id == Contact.id)
            .all()
        )
        lanes: Dict[str, List[Dict[str, Any]]] = {stage: [] for stage in PIPELINE_STAGES}
        contact_ids = [contact.id for _, contact in rows]
        properties = self._properties_by_contact(contact_ids)
        appointment_stats = self._appointment_stats(contact_ids)
        quote_stats = self._quote_stats(contact_ids)

        for pipeline, contact in rows:
            stage = parse_stage(pipeline.stage) or PipelineStage.NEW.value
            appointment_stat = appointment_stats.get(contact.id, {"count": 0, "latest": None})
            quote_stat = quote_stats.get(contact.id, {"count": 0, "latest": None})
            last_activity = _latest((
                contact.updated_at,
                pipeline.updated_at,
                appointment_stat["latest"],
                quote_stat["latest"],
            ))
            owned = properties.get(contact.id, [])

            lanes[stage].append({
                "id": contact.id,
                "first_name": contact.first_name,
                "last_name": contact.last_name,
                "email": contact.email,
                "phone": contact.phone,
                "pipeline": {
                    "stage": stage,
                    "notes": pipeline.notes,
                    "updated_at": isoformat_or_none(pipeline.updated_at),
                },
                "property": _property_summary(owned[0] if owned else None),
                "stats": {"appointments": appointment_stat["count"], "quotes": quote_stat["count"]},
                "last_activity_at": isoformat_or_none(last_activity),
                "updated_at": isoformat_or_none(contact.updated_at),
                "created_at": isoformat_or_none(contact.created_at),
            })

        # ISO strings of aware UTC datetimes sort chronologically
        for cards in lanes.values():
            cards.sort(key=lambda card: card["last_activity_at"] or "", reverse=True)

        return {
            "stages": PIPELINE_STAGES,
            "lanes": [{"stage": stage, "contacts": lanes[stage]} for stage in PIPELINE_STAGES],
        }

    def move_contact(self, contact_id: str, stage: Optional[str], notes: Optional[str] = None) -> CrmPipeline:
        """
        Set a contact's stage from the board.

        Raises:
            ValidationError: ``stage_required`` or ``invalid_stage``.
            NotFoundError: If the contact does not exist.
        """
        if not isinstance(stage, str) or not stage.strip():
            raise ValidationError("Stage is required", reason="stage_required")
        normalized = parse_stage(stage)
        if normalized is None:
            raise ValidationError(
                f"Unknown stage {stage!r}",
                reason="invalid_stage",
                details={"stages": PIPELINE_STAGES},
            )
        if self.session.get(Contact, contact_id) is None:
            raise NotFoundError(f"Contact {contact_id} not found", reason="contact_not_found")

        cleaned_notes = notes.strip() if isinstance(notes, str) else None
        row = upsert_pipeline_stage(self.session, contact_id, normalized, cleaned_notes or None)
        LOGGER.info(f"Contact {contact_id} moved to {normalized}")
        return row

    # -------------------------------------------------------------------------
    # Contact directory
    # -------------------------------------------------------------------------

    def list_contacts(
        self,
        q: Optional[str] = None,
        limit: int = DEFAULT_CONTACT_LIMIT,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """
        One page of contacts, most recently updated first, properties embedded.

        ``q`` matches name, email, phone or any property's street, city or
        postal code, case-insensitively.
        """
        limit = max(1, min(limit, MAX_CONTACT_LIMIT))
        offset = max(0, offset)

        query = self.session.query(Contact)
        term = (q or "").strip()
        if term:
            pattern = f"%{term}%"
            address_match = select(Property.contact_id).where(
                or_(
                    Property.address_line1.ilike(pattern),
                    Property.city.ilike(pattern),
                    Property.postal_code.ilike(pattern),
                )
            )
            query = query.filter(or_(
                Contact.first_name.ilike(pattern),
                Contact.last_name.ilike(pattern),
                Contact.email.ilike(pattern),
                Contact.phone.ilike(pattern),
                Contact.phone_e164.ilike(pattern),
                Contact.id.in_(address_match),
            ))

        total = query.count()
        contacts = (
            query.order_by(Contact.updated_at.desc(), Contact.id)
            .offset(offset)
            .limit(limit)
            .all()
        )

        contact_ids = [contact.id for contact in contacts]
        properties = self._properties_by_contact(contact_ids)
        appointment_stats = self._appointment_stats(contact_ids)
        quote_stats = self._quote_stats(contact_ids)

        items = []
        for contact in contacts:
            item = contact.to_dict()
            item["updated_at"] = isoformat_or_none(contact.updated_at)
            item["properties"] = [prop.to_dict() for prop in properties.get(contact.id, [])]
            item["stats"] = {
                "appointments": appointment_stats.get(contact.id, {}).get("count", 0),
                "quotes": quote_stats.get(contact.id, {}).get("count", 0),
            }
            items.append(item)

        return {"total": total, "limit": limit, "offset": offset, "contacts": items}
