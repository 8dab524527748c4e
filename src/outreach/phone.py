"""Phone number normalization for contacts and SMS."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

import phonenumbers
from phonenumbers import NumberParseException

from core.exceptions import InvalidPhone
from core.logging_config import get_logger

LOGGER = get_logger(__name__)

# Toll-free prefixes cannot receive customer SMS
TOLL_FREE_PATTERNS = [
    re.compile(r"^1?8(00|33|44|55|66|77|88)"),
]


@dataclass(frozen=True, slots=True)
class PhoneValidationResult:
    """Result of phone number validation."""

    original: str
    e164: Optional[str]
    is_valid: bool
    is_sms_capable: bool
    error: Optional[str] = None


def normalize_phone_e164(value: Optional[str], default_region: str = "US") -> Optional[str]:
    """
    Normalize a phone number to E.164 format.

    Args:
        value: Raw phone number string.
        default_region: Default region for parsing (ISO 3166-1 alpha-2).

    Returns:
        E.164 formatted phone number if plausible, otherwise None.
    """
    if not value:
        return None

    cleaned = re.sub(r"[^\d+]", "", value.strip())
    if not cleaned:
        return None

    try:
        parsed = phonenumbers.parse(value, default_region)
    except NumberParseException:
        return None

    if not phonenumbers.is_possible_number(parsed):
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def require_phone_e164(value: Optional[str], default_region: str = "US") -> str:
    """
    Normalize a phone number or raise.

    Raises:
        InvalidPhone: If the value cannot be parsed into a plausible number.
    """
    e164 = normalize_phone_e164(value, default_region)
    if e164 is None:
        raise InvalidPhone(f"Could not parse phone number {value!r}")
    return e164


def format_phone_display(e164: Optional[str]) -> str:
    """Render an E.164 number in national format for messages and notes."""
    if not e164:
        return ""
    try:
        parsed = phonenumbers.parse(e164, None)
    except NumberParseException:
        return e164
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.NATIONAL)


def validate_phone_for_sms(value: str, default_region: str = "US") -> PhoneValidationResult:
    """
    Validate a phone number for SMS delivery.

    Args:
        value: Raw phone number string.
        default_region: Default region for parsing.

    Returns:
        PhoneValidationResult object.
    """
    e164 = normalize_phone_e164(value, default_region)

    if not e164:
        return PhoneValidationResult(
            original=value,
            e164=None,
            is_valid=False,
            is_sms_capable=False,
            error="Invalid format",
        )

    is_toll_free = any(p.match(e164.lstrip("+")) for p in TOLL_FREE_PATTERNS)

    return PhoneValidationResult(
        original=value,
        e164=e164,
        is_valid=True,
        is_sms_capable=not is_toll_free,
        error="Toll-free number" if is_toll_free else None,
    )
