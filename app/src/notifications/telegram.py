"""
Telegram notification transport.

Sends transcription results and failure notices back to the chat that
requested them, via the Bot API ``sendMessage`` method.
"""

import logging
import re
from typing import Any, Dict, Optional

import httpx

from configs.config import get_config

logger = logging.getLogger(__name__)
cfg = get_config()

# Telegram rejects messages longer than this
MAX_MESSAGE_LENGTH = 4096

_MARKDOWN_SPECIAL = re.compile(r"([_*`\[])")


class NotificationError(Exception):
    """The notification transport rejected or failed to send a message."""


class TelegramNotifier:
    def __init__(
        self,
        bot_token: str,
        client: Optional[httpx.Client] = None,
        api_url: Optional[str] = None,
    ) -> None:
        self._bot_token = bot_token
        self._client = client or httpx.Client(timeout=cfg.NOTIFICATION_TIMEOUT_SECONDS)
        self._api_url = api_url or cfg.TELEGRAM_API_URL

    def send(self, recipient: str, text: str) -> Dict[str, Any]:
        """Send ``text`` to chat ``recipient``; raise NotificationError on failure."""
        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[: MAX_MESSAGE_LENGTH - 3] + "..."

        url = f"{self._api_url}/bot{self._bot_token}/sendMessage"
        try:
            response = self._client.post(
                url,
                json={
                    "chat_id": recipient,
                    "text": text,
                    "parse_mode": "Markdown",
                    "disable_web_page_preview": True,
                },
            )
        except httpx.HTTPError as exc:
            raise NotificationError(f"Telegram request failed: {exc}") from exc

        if response.status_code != 200:
            raise NotificationError(
                f"Telegram API error: {response.status_code} - {response.text}"
            )
        logger.debug("Telegram message delivered to chat %s", recipient)
        return response.json()


def escape_markdown(text: str) -> str:
    """Escape the characters Telegram's legacy Markdown treats as markup."""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", text or "")


def completion_message(filename: str, transcript_text: str) -> str:
    return (
        "🎯 *Transcription Complete*\n\n"
        f"📁 *File:* {escape_markdown(filename)}\n\n"
        f"📝 *Transcript:*\n\n{escape_markdown(transcript_text)}"
    )


def failure_message(filename: str, error: str) -> str:
    return (
        "❌ *Transcription Failed*\n\n"
        f"📁 *File:* {escape_markdown(filename)}\n\n"
        f"💥 *Error:* {escape_markdown(error)}\n\n"
        "Please try again or contact support if the problem persists."
    )
