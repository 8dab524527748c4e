"""Twilio client for customer and staff SMS.

Wraps the Twilio REST client with a circuit breaker, DRY_RUN short-circuit
and structured external-call logging. Send failures come back as an
unsuccessful SMSResult; nothing is raised to callers.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from core.config import get_settings
from core.exceptions import TwilioError
from core.logging_config import get_logger, log_external_call
from core.utils import CircuitBreaker

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

_twilio_circuit = CircuitBreaker(
    name="twilio_api",
    failure_threshold=5,
    recovery_timeout=60,
)


@dataclass
class SMSResult:
    """Result from sending an SMS."""
    success: bool
    sid: Optional[str] = None
    status: str = "unknown"
    error_code: Optional[int] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "sid": self.sid,
            "status": self.status,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class TwilioClient:
    """
    Twilio SMS sender.

    Usage:
        client = get_twilio_client()
        result = client.send_sms(to="+15128675309", body="See you Tuesday!")
    """

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        messaging_service_sid: Optional[str] = None,
        dry_run: Optional[bool] = None,
    ):
        self.account_sid = account_sid or SETTINGS.twilio_account_sid
        self.auth_token = auth_token or SETTINGS.twilio_auth_token
        self.from_number = from_number or SETTINGS.twilio_from_number
        self.messaging_service_sid = messaging_service_sid or SETTINGS.twilio_messaging_service_sid
        self.dry_run = SETTINGS.dry_run if dry_run is None else dry_run

        self._client: Optional[Client] = None
        self.circuit = _twilio_circuit

    def _get_client(self) -> Client:
        """Get or create the Twilio REST client."""
        if self._client is None:
            if not self.account_sid or not self.auth_token:
                raise TwilioError("Twilio credentials not configured")
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    def is_configured(self) -> bool:
        """Check if Twilio is properly configured."""
        return bool(
            self.account_sid
            and self.auth_token
            and (self.from_number or self.messaging_service_sid)
        )

    def send_sms(self, to: str, body: str) -> SMSResult:
        """
        Send an SMS message.

        Args:
            to: Recipient phone number (E.164 format).
            body: Message content.

        Returns:
            SMSResult with send outcome.
        """
        if self.dry_run:
            LOGGER.info(f"[DRY RUN] SMS to {to}: {body[:80]}")
            return SMSResult(success=True, status="dry_run")

        if not self.is_configured():
            return SMSResult(success=False, status="not_configured", error_message="Twilio not configured")

        if not self.circuit.can_execute():
            LOGGER.warning("Twilio circuit breaker is open")
            return SMSResult(
                success=False,
                status="circuit_open",
                error_message="Service temporarily unavailable",
            )

        params: Dict[str, Any] = {"to": to, "body": body}
        if self.messaging_service_sid:
            params["messaging_service_sid"] = self.messaging_service_sid
        else:
            params["from_"] = self.from_number

        started = time.monotonic()
        try:
            message = self._get_client().messages.create(**params)
        except TwilioRestException as e:
            self.circuit.record_failure()
            log_external_call(
                LOGGER, "twilio", "send_sms", False, (time.monotonic() - started) * 1000,
                error_code=e.code,
            )
            return SMSResult(
                success=False,
                status="failed",
                error_code=e.code,
                error_message=str(e.msg),
            )
        except Exception as e:
            self.circuit.record_failure()
            LOGGER.exception(f"Unexpected error sending SMS to {to}")
            return SMSResult(success=False, status="error", error_message=str(e))

        self.circuit.record_success()
        log_external_call(
            LOGGER, "twilio", "send_sms", True, (time.monotonic() - started) * 1000,
            sid=message.sid,
        )
        return SMSResult(success=True, sid=message.sid, status=message.status)


# Module-level singleton
_client: Optional[TwilioClient] = None


def get_twilio_client() -> TwilioClient:
    """Get the global TwilioClient instance."""
    global _client
    if _client is None:
        _client = TwilioClient()
    return _client


def reset_twilio_client() -> None:
    """Reset the global Twilio client (useful for testing)."""
    global _client
    _client = None


__all__ = [
    "TwilioClient",
    "SMSResult",
    "get_twilio_client",
    "reset_twilio_client",
]
