"""Telegram Bot API delivery for user and operator notifications."""

import logging
from typing import Any

import httpx

from ton_lottery.core.config import get_settings

logger = logging.getLogger(__name__)

API_URL = "https://api.telegram.org/bot{token}/{method}"


class TelegramService:
    """Thin sendMessage client. Failures are logged and reported as None."""

    def __init__(self, bot_token: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.bot_token = get_settings().telegram_bot_token if bot_token is None else bot_token
        self._transport = transport

    async def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any] | None:
        url = API_URL.format(token=self.bot_token, method=method)
        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.post(url, json=payload)
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Telegram {method} failed: {e}")
            return None

        if not body.get("ok"):
            logger.error(f"Telegram {method} rejected: {body.get('description', 'unknown error')}")
            return None
        return body

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        silent: bool = False,
    ) -> dict[str, Any] | None:
        """Send an HTML formatted message.

        Returns:
            The API response, or None when nothing was delivered
        """
        if not self.bot_token:
            logger.warning(f"Telegram bot token not configured, dropping message for chat {chat_id}")
            return None

        return await self._call(
            "sendMessage",
            {
                "chat_id": chat_id,
                "text": text,
                "parse_mode": "HTML",
                "disable_notification": silent,
                "disable_web_page_preview": True,
            },
        )
