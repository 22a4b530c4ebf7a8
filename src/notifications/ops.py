"""Operator alerts for work that ran out of retries.

Dead-lettered crawl jobs and emails are reported to the configured Telegram
chat and/or Discord webhook, at most once per item and channel.
"""
from __future__ import annotations

import re
from typing import Dict, List

import httpx
from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.config import get_settings
from src.models.notification_log import (
    NotificationChannel,
    NotificationLog,
    OpsEventType,
)

TELEGRAM_API_BASE = "https://api.telegram.org"
SEND_TIMEOUT = 10  # seconds
DISCORD_COLOR_RED = 0xE74C3C

_TELEGRAM_ESCAPE_CHARS = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


def escape_markdown_v2(text: str) -> str:
    return _TELEGRAM_ESCAPE_CHARS.sub(r"\\\1", text)


class OpsNotifier:
    def __init__(self, session: Session):
        self.session = session
        self.settings = get_settings()

    def _configured_channels(self) -> List[NotificationChannel]:
        channels = []
        if self.settings.telegram_bot_token and self.settings.telegram_chat_id:
            channels.append(NotificationChannel.telegram)
        if self.settings.discord_webhook_url:
            channels.append(NotificationChannel.discord)
        return channels

    def _already_sent(
        self, event_type: OpsEventType, reference_id: int, channel: NotificationChannel
    ) -> bool:
        stmt = select(NotificationLog.id).filter_by(
            event_type=event_type, reference_id=reference_id, channel=channel
        )
        return self.session.scalar(stmt) is not None

    def _log_sent(
        self, event_type: OpsEventType, reference_id: int, channel: NotificationChannel
    ) -> None:
        try:
            with self.session.begin_nested():
                self.session.add(
                    NotificationLog(event_type=event_type, reference_id=reference_id, channel=channel)
                )
        except IntegrityError:
            # another worker logged it first
            logger.debug(f"{channel.value}: {event_type.value} #{reference_id} already logged")

    def _send_telegram(self, title: str, lines: List[str]) -> bool:
        text = "\n".join(
            [f"*{escape_markdown_v2(title)}*"] + [escape_markdown_v2(line) for line in lines]
        )
        url = f"{TELEGRAM_API_BASE}/bot{self.settings.telegram_bot_token}/sendMessage"
        payload = {
            "chat_id": self.settings.telegram_chat_id,
            "text": text,
            "parse_mode": "MarkdownV2",
        }
        try:
            with httpx.Client(timeout=SEND_TIMEOUT) as client:
                response = client.post(url, json=payload)
                response.raise_for_status()
            return True
        except httpx.HTTPStatusError as e:
            logger.error(f"Telegram API error: {e.response.status_code} - {e.response.text}")
            return False
        except httpx.RequestError as e:
            logger.error(f"Telegram request failed: {e}")
            return False

    def _send_discord(self, title: str, lines: List[str]) -> bool:
        payload = {
            "embeds": [
                {"title": title[:256], "description": "\n".join(lines)[:4096], "color": DISCORD_COLOR_RED}
            ]
        }
        try:
            with httpx.Client(timeout=SEND_TIMEOUT) as client:
                response = client.post(self.settings.discord_webhook_url, json=payload)
                response.raise_for_status()
            return True
        except httpx.HTTPStatusError as e:
            logger.error(f"Discord webhook error: {e.response.status_code} - {e.response.text}")
            return False
        except httpx.RequestError as e:
            logger.error(f"Discord webhook request failed: {e}")
            return False

    def notify(
        self,
        event_type: OpsEventType,
        reference_id: int,
        title: str,
        lines: List[str],
    ) -> Dict[str, bool]:
        """Send one operator message per configured channel.

        Args:
            event_type: What happened (crawl or email dead-letter).
            reference_id: Id of the dead-lettered crawl job or email row.
            title: Short headline.
            lines: Body lines, plain text.

        Returns:
            Channel name -> whether a message went out on this call. Channels
            that already reported this item are left out.
        """
        if not self.settings.notification_enabled:
            logger.debug("Ops notifications are disabled")
            return {}

        senders = {
            NotificationChannel.telegram: self._send_telegram,
            NotificationChannel.discord: self._send_discord,
        }
        results: Dict[str, bool] = {}
        for channel in self._configured_channels():
            if self._already_sent(event_type, reference_id, channel):
                logger.debug(f"{channel.value}: {event_type.value} #{reference_id} already sent")
                continue
            ok = senders[channel](title, lines)
            if ok:
                self._log_sent(event_type, reference_id, channel)
                logger.info(f"{channel.value}: sent {event_type.value} for #{reference_id}")
            results[channel.value] = ok
        return results
