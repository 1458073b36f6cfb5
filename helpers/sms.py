import asyncio
import logging
import os
import re
from typing import Optional, Protocol

import dotenv
import requests
from twilio.base.exceptions import TwilioException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from helpers.errors import DeliveryError, ValidationError


dotenv.load_dotenv()
logger = logging.getLogger(__name__)

DEFAULT_COUNTRY_CODE = os.getenv("DEFAULT_COUNTRY_CODE", "+91")

_SEPARATORS = re.compile(r"[\s\-().]")


class NotificationSender(Protocol):
    async def send(self, body: str, recipient: str) -> None:
        """Deliver ``body`` or raise ``DeliveryError``."""
        ...


def normalize_phone(number: str, country_code: Optional[str] = None) -> str:
    """Return ``number`` in E.164 form, prefixing the default country code."""
    country_code = country_code or DEFAULT_COUNTRY_CODE
    cleaned = _SEPARATORS.sub("", number or "")
    if not cleaned:
        raise ValidationError("recipient", "Phone number is empty")
    if cleaned.startswith("+"):
        return cleaned
    if cleaned.startswith("00"):
        return "+" + cleaned[2:]
    if not country_code.startswith("+"):
        country_code = f"+{country_code}"
    return f"{country_code}{cleaned.lstrip('0')}"


class TwilioSender:
    """Sends reminders through Twilio, over WhatsApp or plain SMS."""

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        channel: Optional[str] = None,
        country_code: Optional[str] = None,
        timeout: float = 10,
        client: Optional[Client] = None,
    ):
        account_sid = account_sid or os.getenv("TWILIO_ACCOUNT_SID")
        auth_token = auth_token or os.getenv("TWILIO_AUTH_TOKEN")
        self.from_number = from_number or os.getenv("TWILIO_PHONE_NUMBER")
        self.channel = (channel or os.getenv("TWILIO_CHANNEL", "whatsapp")).lower()
        self.country_code = country_code or DEFAULT_COUNTRY_CODE

        if self.channel not in ("whatsapp", "sms"):
            raise ValueError(f"Unsupported TWILIO_CHANNEL: {self.channel}")
        if not self.from_number:
            raise ValueError("TWILIO_PHONE_NUMBER environment variable is not set.")
        if client is None:
            if not account_sid or not auth_token:
                raise ValueError("Twilio credentials missing. Check TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN.")
            client = Client(account_sid, auth_token, http_client=TwilioHttpClient(timeout=timeout))
        self.client = client

    def _address(self, number: str) -> str:
        number = normalize_phone(number, self.country_code)
        return f"whatsapp:{number}" if self.channel == "whatsapp" else number

    async def send(self, body: str, recipient: str) -> None:
        to = self._address(recipient)
        try:
            message = await asyncio.to_thread(
                self.client.messages.create,
                from_=self._address(self.from_number),
                to=to,
                body=body,
            )
        except (TwilioException, requests.RequestException) as e:
            logger.error(f"Twilio send to {to} failed: {e}")
            raise DeliveryError(recipient, str(e)) from e
        logger.info(f"Message {message.sid} queued for {to}")
