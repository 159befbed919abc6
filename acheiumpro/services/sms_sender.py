"""
Twilio SMS sender
Sends plain-text notifications through the Twilio REST API
"""

import logging
from typing import Optional

import httpx

from acheiumpro import config

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class SmsSendError(RuntimeError):
    pass


class SmsSender:
    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.account_sid = config.TWILIO_ACCOUNT_SID if account_sid is None else account_sid
        self.auth_token = config.TWILIO_AUTH_TOKEN if auth_token is None else auth_token
        self.from_number = config.TWILIO_FROM_NUMBER if from_number is None else from_number
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def send(self, to_phone: str, body: str) -> str:
        """Send one SMS and return the Twilio message SID."""
        if not self.enabled:
            raise SmsSendError("Twilio is not configured")
        # Twilio only accepts E.164 numbers
        if not to_phone.startswith("+"):
            raise SmsSendError("Phone number must be in E.164 format (e.g., +5511999999999)")

        with httpx.Client(transport=self._transport, timeout=10.0) as client:
            response = client.post(
                f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json",
                auth=(self.account_sid, self.auth_token),
                data={"To": to_phone, "From": self.from_number, "Body": body},
            )
        if response.status_code not in (200, 201):
            try:
                error_message = response.json().get("message", "Unknown error")
            except ValueError:
                error_message = response.text or "Unknown error"
            raise SmsSendError(f"Twilio API error {response.status_code}: {error_message}")

        message_sid = response.json().get("sid", "")
        logger.info("SMS sent to %s (SID: %s)", to_phone, message_sid)
        return message_sid


sms_sender = SmsSender()
