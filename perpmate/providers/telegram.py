"""User notification transports."""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional, Tuple

import httpx

from ..config import settings
from .base import Notifier

logger = logging.getLogger(__name__)


class TelegramNotifier(Notifier):
    """Sends Markdown messages through the Bot API. Owner ids are Telegram chat ids."""

    def __init__(
        self,
        *,
        bot_token: Optional[str] = None,
        api_base_url: Optional[str] = None,
        timeout_s: float = 15,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.bot_token = bot_token if bot_token is not None else settings.telegram_bot_token
        self.api_base_url = (api_base_url or settings.telegram_api_base_url).rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    async def send(self, owner_id: str, message: str) -> None:
        url = f"{self.api_base_url}/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": owner_id,
            "text": message,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                response = await client.post(url, json=payload)
            if response.status_code != 200:
                logger.warning(
                    "Telegram sendMessage to %s returned %s: %s",
                    owner_id,
                    response.status_code,
                    response.text[:200],
                )
        except httpx.HTTPError as exc:
            logger.warning("Telegram sendMessage to %s failed: %s", owner_id, exc)


class LoggingNotifier(Notifier):
    """Records messages and writes them to the log; used when no bot token is set."""

    def __init__(self, *, history: int = 200) -> None:
        self.sent: Deque[Tuple[str, str]] = deque(maxlen=history)

    async def send(self, owner_id: str, message: str) -> None:
        self.sent.append((owner_id, message))
        logger.info("Notify %s: %s", owner_id, message)
