"""
Telegram Channel
================

Outbound notification channel for the liquidation watcher.

Delivery only: queueing, spacing and fallback live in AlertDispatcher.
Each send is a blocking Bot API call run in a worker thread so the event
loop never waits on Telegram.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

import requests

from ..errors import DeliveryError

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


@dataclass
class ChannelConfig:
    """Configuration for Telegram delivery."""
    bot_token: str
    chat_id: str
    max_message_length: int = 4000
    request_timeout: float = 10.0
    parse_mode: str = "HTML"


class TelegramChannel:
    """
    Sends plain text messages to one Telegram chat.

    Errors are raised as DeliveryError with the token kept out of the
    message (request URLs embed it).
    """

    def __init__(self, config: ChannelConfig):
        """
        Initialize the channel.

        Args:
            config: ChannelConfig with bot token and chat ID
        """
        self.config = config
        self._validate()

    @classmethod
    def from_config(cls, config: "Config") -> Optional["TelegramChannel"]:
        """
        Create a channel from watcher settings.

        Returns:
            TelegramChannel if configured, None otherwise
        """
        if not config.telegram_configured:
            logger.warning(
                "Telegram not configured (set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID). "
                "Alerts will be logged only."
            )
            return None

        return cls(ChannelConfig(
            bot_token=config.telegram_bot_token,
            chat_id=config.telegram_chat_id,
            request_timeout=config.delivery_timeout_sec,
        ))

    def _validate(self):
        if not self.config.bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN is required")
        if not self.config.chat_id:
            raise ValueError("TELEGRAM_CHAT_ID is required")

    def _truncate_message(self, text: str) -> str:
        """Truncate message to Telegram's character limit."""
        if len(text) > self.config.max_message_length:
            return text[:self.config.max_message_length - 20] + "\n... (truncated)"
        return text

    def _post(self, text: str) -> Optional[int]:
        url = f"{TELEGRAM_API_URL}/bot{self.config.bot_token}/sendMessage"
        payload = {
            "chat_id": self.config.chat_id,
            "text": self._truncate_message(text),
            "parse_mode": self.config.parse_mode,
            "disable_web_page_preview": True,
        }

        try:
            response = requests.post(url, json=payload, timeout=self.config.request_timeout)
            response.raise_for_status()
        except requests.exceptions.Timeout:
            raise DeliveryError("Telegram request timed out")
        except requests.exceptions.HTTPError as e:
            # Status code only; the URL contains the token
            status_code = e.response.status_code if e.response is not None else "unknown"
            if status_code == 429:
                logger.warning("Telegram rate limit hit (429)")
            raise DeliveryError(f"Telegram HTTP error: {status_code}", context={"status": status_code})
        except requests.exceptions.ConnectionError:
            raise DeliveryError("Telegram connection error - network issue")
        except requests.exceptions.RequestException:
            raise DeliveryError("Telegram request failed")

        try:
            result = response.json()
        except ValueError:
            return None
        return result.get("result", {}).get("message_id")

    async def send(self, text: str) -> Optional[int]:
        """
        Deliver one message.

        Args:
            text: Message text (HTML formatted)

        Returns:
            Telegram message_id if the response carried one

        Raises:
            DeliveryError: On any transport or HTTP failure
        """
        message_id = await asyncio.to_thread(self._post, text)
        logger.info(f"Telegram alert sent (message_id: {message_id})")
        return message_id


async def send_test_alert(config: "Config") -> bool:
    """
    Send a test alert to verify Telegram configuration.

    Args:
        config: Watcher settings carrying the Telegram credentials

    Returns:
        True if successful
    """
    channel = TelegramChannel.from_config(config)
    if channel is None:
        return False

    try:
        await channel.send(
            "<b>Liquidation watcher test alert</b>\n\n"
            "Telegram configuration verified."
        )
    except DeliveryError as e:
        logger.error(f"Test alert failed: {e}")
        return False
    return True
