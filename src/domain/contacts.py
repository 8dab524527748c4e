"""Idempotent contact and property resolution."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from core.logging_config import get_logger
from core.models import Contact, Property
from outreach.phone import require_phone_e164

LOGGER = get_logger(__name__)


@dataclass
class ContactIdentity:
    """Fields used to find or create a contact."""
    first_name: str
    last_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    source: str = "web"


@dataclass
class AddressFields:
    """A service address as submitted."""
    address_line1: str
    city: str
    state: str
    postal_code: str
    address_line2: Optional[str] = None
    lat: Optional[Decimal] = None
    lng: Optional[Decimal] = None
    gated: bool = False


def split_name(name: str) -> Tuple[str, str]:
    """Split a single "name" field into first and last name."""
    parts = (name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    cleaned = email.strip().lower()
    return cleaned or None


class ContactDirectory:
    """
    Find-or-create for contacts and properties.

    Runs inside the caller's transaction: it flushes so new rows get ids
    but never commits or rolls back. A concurrent writer can still win a
    unique constraint; the resulting IntegrityError is left for the caller
    to translate.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def find_contact(self, email: Optional[str], phone_e164: Optional[str]) -> Optional[Contact]:
        """Match by email first, then by normalized phone."""
        if email:
            contact = self.session.query(Contact).filter(Contact.email == email).first()
            if contact:
                return contact
        if phone_e164:
            return self.session.query(Contact).filter(Contact.phone_e164 == phone_e164).first()
        return None

    def upsert_contact(self, identity: ContactIdentity) -> Contact:
        """
        Resolve a contact by email or phone, creating it if neither matches.

        On a match the name and phone are refreshed. An existing email is
        never replaced; it is only filled in when the row had none.

        Raises:
            InvalidPhone: If a phone is given but cannot be normalized.
        """
        email = normalize_email(identity.email)
        phone_raw = identity.phone.strip() if identity.phone else None
        phone_e164 = require_phone_e164(phone_raw) if phone_raw else None

        contact = self.find_contact(email, phone_e164)
        if contact is None:
            contact = Contact(
                first_name=identity.first_name.strip(),
                last_name=(identity.last_name or "").strip(),
                email=email,
                phone=phone_raw,
                phone_e164=phone_e164,
                source=identity.source,
            )
            self.session.add(contact)
            self.session.flush()
            LOGGER.info(f"Created contact {contact.id}")
            return contact

        contact.first_name = identity.first_name.strip() or contact.first_name
        contact.last_name = (identity.last_name or "").strip()
        if phone_e164:
            contact.phone = phone_raw
            contact.phone_e164 = phone_e164
        if email and not contact.email:
            contact.email = email
        self.session.flush()
        LOGGER.debug(f"Matched existing contact {contact.id}")
        return contact

    def upsert_property(self, contact_id: str, address: AddressFields) -> Property:
        """
        Resolve a property by (address_line1, postal_code, state).

        An existing row is claimed by ``contact_id`` and has its city and
        gated flag refreshed. Address fields are left as first recorded.
        """
        line1 = address.address_line1.strip()
        postal_code = address.postal_code.strip()
        state = address.state.strip().upper()

        prop = (
            self.session.query(Property)
            .filter(
                Property.address_line1 == line1,
                Property.postal_code == postal_code,
                Property.state == state,
            )
            .first()
        )

        if prop is None:
            prop = Property(
                contact_id=contact_id,
                address_line1=line1,
                address_line2=(address.address_line2 or "").strip() or None,
                city=address.city.strip(),
                state=state,
                postal_code=postal_code,
                lat=address.lat,
                lng=address.lng,
                gated=address.gated,
            )
            self.session.add(prop)
            self.session.flush()
            return prop

        if prop.contact_id != contact_id:
            LOGGER.info(
                f"Property {prop.id} claimed by contact {contact_id}",
                extra={"extra_data": {"previous_contact_id": prop.contact_id}},
            )
        prop.contact_id = contact_id
        prop.city = address.city.strip()
        prop.gated = address.gated
        self.session.flush()
        return prop


__all__ = [
    "ContactIdentity",
    "AddressFields",
    "ContactDirectory",
    "split_name",
    "normalize_email",
]
