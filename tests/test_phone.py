"""Tests for phone normalization and SMS eligibility."""
from __future__ import annotations

import pytest

from core.exceptions import InvalidPhone
from outreach.phone import (
    format_phone_display,
    normalize_phone_e164,
    require_phone_e164,
    validate_phone_for_sms,
)
from outreach.twilio_client import get_twilio_client, reset_twilio_client
from services.notification import Notifier


@pytest.mark.parametrize(
    "raw",
    ["(919) 555-0142", "919-555-0142", "919.555.0142", "+1 919 555 0142", "19195550142"],
)
def test_normalize_common_formats(raw):
    assert normalize_phone_e164(raw) == "+19195550142"


@pytest.mark.parametrize("raw", [None, "", "   ", "abc", "12"])
def test_normalize_rejects_garbage(raw):
    assert normalize_phone_e164(raw) is None


def test_require_phone_raises_invalid_phone():
    with pytest.raises(InvalidPhone):
        require_phone_e164("not a phone")


def test_require_phone_returns_e164():
    assert require_phone_e164("919 555 0142") == "+19195550142"


def test_validate_phone_for_sms_mobile():
    result = validate_phone_for_sms("(919) 555-0142")

    assert result.is_valid is True
    assert result.is_sms_capable is True
    assert result.e164 == "+19195550142"
    assert result.error is None


def test_validate_phone_for_sms_toll_free():
    """Toll-free numbers parse but cannot take customer texts."""
    result = validate_phone_for_sms("1-800-555-0199")

    assert result.is_valid is True
    assert result.is_sms_capable is False
    assert result.error == "Toll-free number"


def test_validate_phone_for_sms_invalid():
    result = validate_phone_for_sms("call me")

    assert result.is_valid is False
    assert result.e164 is None
    assert result.error == "Invalid format"


def test_format_phone_display():
    assert format_phone_display("+19195550142") == "(919) 555-0142"
    assert format_phone_display(None) == ""


def test_notifier_shares_twilio_client_until_reset():
    shared = Notifier(staff_phone="").sms_client

    assert shared is get_twilio_client()
    assert shared.send_sms("+19195550142", "hello").status == "dry_run"

    reset_twilio_client()

    assert Notifier(staff_phone="").sms_client is not shared
