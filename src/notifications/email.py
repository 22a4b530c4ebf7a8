from __future__ import annotations

from typing import Optional

import httpx
from loguru import logger

from src.config import get_settings

RESEND_API_URL = "https://api.resend.com/emails"
SEND_TIMEOUT = 15  # seconds


class EmailDeliveryError(Exception):
    """The email provider rejected the message or could not be reached."""


class EmailSender:
    """Send HTML email through the Resend HTTP API."""

    def __init__(self, api_key: Optional[str] = None, from_address: Optional[str] = None):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.from_address = from_address or settings.email_from
        self.is_production = settings.is_production

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def dev_mode(self) -> bool:
        """No API key outside production: log instead of sending."""
        return not self.api_key and not self.is_production

    def send(self, to: str, subject: str, html: str) -> str:
        """Deliver one message and return the provider's message id."""
        if self.dev_mode:
            logger.info(f"[DEV MODE] Email would be sent to {to}: {subject}")
            logger.debug(html)
            return "dev"
        if not self.api_key:
            raise EmailDeliveryError("RESEND_API_KEY is not configured")

        payload = {"from": self.from_address, "to": [to], "subject": subject, "html": html}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            with httpx.Client(timeout=SEND_TIMEOUT) as client:
                response = client.post(RESEND_API_URL, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise EmailDeliveryError(
                f"Resend API error: {e.response.status_code} - {e.response.text}"
            ) from e
        except httpx.RequestError as e:
            raise EmailDeliveryError(f"Resend request failed: {e}") from e

        message_id = response.json().get("id", "")
        logger.info(f"Email sent to {to} ({message_id})")
        return message_id
