"""Outbound messaging: phone normalization and Twilio SMS."""
from .phone import (
    format_phone_display,
    normalize_phone_e164,
    require_phone_e164,
    validate_phone_for_sms,
)
from .twilio_client import TwilioClient, SMSResult, get_twilio_client

__all__ = [
    "format_phone_display",
    "normalize_phone_e164",
    "require_phone_e164",
    "validate_phone_for_sms",
    "TwilioClient",
    "SMSResult",
    "get_twilio_client",
]
