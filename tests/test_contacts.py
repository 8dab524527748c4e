"""Tests for contact and property resolution."""
from __future__ import annotations

import pytest

from core.exceptions import InvalidPhone
from core.models import Contact, Property
from domain.contacts import (
    AddressFields,
    ContactDirectory,
    ContactIdentity,
    normalize_email,
    split_name,
)


def _address(**overrides) -> AddressFields:
    fields = dict(address_line1="42 Maple Court", city="Raleigh", state="nc", postal_code="27601")
    fields.update(overrides)
    return AddressFields(**fields)


def test_split_name():
    assert split_name("Dana Rivers") == ("Dana", "Rivers")
    assert split_name("  Dana  Lee   Rivers ") == ("Dana", "Lee Rivers")
    assert split_name("Cher") == ("Cher", "")
    assert split_name("") == ("", "")


def test_normalize_email():
    assert normalize_email("  Dana@Example.COM ") == "dana@example.com"
    assert normalize_email("   ") is None
    assert normalize_email(None) is None


def test_creates_contact(db_session):
    directory = ContactDirectory(db_session)
    contact = directory.upsert_contact(
        ContactIdentity(first_name="Dana", last_name="Rivers", email="Dana@Example.com", phone="(919) 555-0142")
    )

    assert contact.id is not None
    assert contact.email == "dana@example.com"
    assert contact.phone_e164 == "+19195550142"
    assert contact.full_name == "Dana Rivers"


def test_matches_by_email_and_keeps_it(db_session, sample_contact):
    """A match refreshes name and phone but never replaces the stored email."""
    directory = ContactDirectory(db_session)
    contact = directory.upsert_contact(
        ContactIdentity(first_name="Danielle", last_name="Rivers", email="DANA@example.com", phone="919-555-0199")
    )

    assert contact.id == sample_contact.id
    assert contact.first_name == "Danielle"
    assert contact.email == "dana@example.com"
    assert contact.phone_e164 == "+19195550199"
    assert db_session.query(Contact).count() == 1


def test_matches_by_phone_and_fills_missing_email(db_session):
    db_session.add(Contact(first_name="Sam", last_name="", phone="9195550123", phone_e164="+19195550123"))
    db_session.commit()

    directory = ContactDirectory(db_session)
    contact = directory.upsert_contact(
        ContactIdentity(first_name="Sam", last_name="Okafor", email="sam@example.com", phone="+1 919 555 0123")
    )

    assert contact.email == "sam@example.com"
    assert contact.last_name == "Okafor"
    assert db_session.query(Contact).count() == 1


def test_phone_match_does_not_overwrite_email(db_session, sample_contact):
    directory = ContactDirectory(db_session)
    contact = directory.upsert_contact(
        ContactIdentity(first_name="Dana", email="other@example.com", phone="919-555-0142")
    )

    assert contact.id == sample_contact.id
    assert contact.email == "dana@example.com"


def test_invalid_phone_raises(db_session):
    directory = ContactDirectory(db_session)
    with pytest.raises(InvalidPhone):
        directory.upsert_contact(ContactIdentity(first_name="Dana", phone="call me maybe"))


def test_creates_property(db_session, sample_contact):
    directory = ContactDirectory(db_session)
    prop = directory.upsert_property(sample_contact.id, _address(address_line2="  "))

    assert prop.state == "NC"
    assert prop.address_line2 is None
    assert prop.contact_id == sample_contact.id


def test_property_reused_by_address(db_session, sample_property):
    directory = ContactDirectory(db_session)
    prop = directory.upsert_property(sample_property.contact_id, _address(city="Raleigh City", gated=True))

    assert prop.id == sample_property.id
    assert prop.city == "Raleigh City"
    assert prop.gated is True
    assert db_session.query(Property).count() == 1


def test_property_claimed_by_new_contact(db_session, sample_property):
    """The most recent submitter owns a shared address."""
    newcomer = Contact(first_name="Riley", last_name="Park", email="riley@example.com")
    db_session.add(newcomer)
    db_session.commit()

    directory = ContactDirectory(db_session)
    prop = directory.upsert_property(newcomer.id, _address())

    assert prop.id == sample_property.id
    assert prop.contact_id == newcomer.id
