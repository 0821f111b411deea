"""
Telegram Sink
=============

NotificationSink implementation on top of the Telegram Bot API.

send() either returns normally (delivered) or raises:
- ThrottleError when Telegram answers 429 (retry_after parsed from the
  response)
- PermanentError for anything else (bad chat, network failure, ...)

Retrying is the DeliveryQueue's job, not the sink's.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from ..errors import PermanentError, ThrottleError

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"

_RETRY_AFTER_RE = re.compile(r"retry after (\d+(?:\.\d+)?)", re.IGNORECASE)


def parse_retry_after(payload: Any) -> Optional[float]:
    """
    Extract the backoff Telegram suggests from a 429 response.

    Looks at `parameters.retry_after` first, then for "retry after N" in
    the description (or in a plain string payload).

    Returns:
        Seconds to wait, or None if the response carries no hint
    """
    if isinstance(payload, dict):
        retry_after = (payload.get("parameters") or {}).get("retry_after")
        if retry_after is not None:
            try:
                return float(retry_after)
            except (TypeError, ValueError):
                pass
        payload = payload.get("description") or ""

    if isinstance(payload, str):
        match = _RETRY_AFTER_RE.search(payload)
        if match:
            return float(match.group(1))
    return None


class NotificationSink(ABC):
    """Where alerts end up."""

    @abstractmethod
    async def send(self, destination: str, body: str, thread_id: Optional[str] = None):
        """
        Deliver one message.

        Raises:
            ThrottleError: Sink asked us to back off
            PermanentError: Delivery failed for good
        """

    async def close(self):
        pass


@dataclass
class SinkConfig:
    """Configuration for the Telegram sink."""
    bot_token: str
    dry_run: bool = False
    max_message_length: int = 4000
    timeout: float = 10
    api_base: str = TELEGRAM_API_BASE


class TelegramSink(NotificationSink):
    """
    Sends HTML messages through sendMessage.

    The bot token is part of the request URL, so URLs and raw exception
    text are never logged.
    """

    def __init__(self, config: SinkConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None
        if not config.dry_run and not config.bot_token:
            raise ValueError("BOT_TOKEN is required (or use --dry-run)")

    async def _ensure_session(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout)
            )

    async def close(self):
        if self._session:
            await self._session.close()
            self._session = None

    def _truncate_message(self, text: str) -> str:
        """Truncate message to Telegram's character limit."""
        if len(text) > self.config.max_message_length:
            return text[:self.config.max_message_length - 20] + "\n... (truncated)"
        return text

    async def send(self, destination: str, body: str, thread_id: Optional[str] = None):
        body = self._truncate_message(body)

        if self.config.dry_run:
            logger.info(f"[DRY RUN] Would send Telegram message to {destination}:\n{body}")
            print(f"\n{'='*60}")
            print("[DRY RUN] Telegram Alert:")
            print("=" * 60)
            print(re.sub(r"<[^>]+>", "", body))
            print("=" * 60 + "\n")
            return

        await self._ensure_session()
        url = f"{self.config.api_base}/bot{self.config.bot_token}/sendMessage"

        payload = {
            "chat_id": destination,
            "text": body,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        if thread_id:
            payload["message_thread_id"] = int(thread_id) if str(thread_id).isdigit() else thread_id

        try:
            async with self._session.post(url, json=payload) as response:
                try:
                    result = await response.json(content_type=None)
                except (ValueError, aiohttp.ContentTypeError):
                    result = await response.text()

                if response.status == 429:
                    retry_after = parse_retry_after(result)
                    logger.warning(f"Telegram rate limit hit (429), retry after {retry_after}s")
                    raise ThrottleError(retry_after)

                if response.status != 200 or (isinstance(result, dict) and not result.get("ok", False)):
                    description = result.get("description", "") if isinstance(result, dict) else ""
                    raise PermanentError(f"Telegram HTTP {response.status}: {description}".strip())

        except asyncio.TimeoutError:
            raise PermanentError("Telegram request timed out")
        except aiohttp.ClientError as e:
            # Exception text may contain the URL (and token)
            raise PermanentError(f"Telegram connection error ({type(e).__name__})")

        logger.debug(f"Telegram message delivered to {destination}")
