"""
Telegram Bot API client.

Only the three calls the service needs: sendMessage for notifications and
replies, getUpdates for the inbound long-poll feed, and a reply keyboard that
asks the user to share their contact.
"""

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

SHARE_CONTACT_BUTTON = "Receive notifications"


class TelegramError(Exception):
    """A Bot API call failed: transport error, timeout, HTTP error or ok=false."""


class TelegramBot:
    def __init__(
        self,
        token: str,
        api_url: str = "https://api.telegram.org",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._timeout = timeout
        self._client = httpx.Client(
            base_url=f"{api_url.rstrip('/')}/bot{token}",
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _call(self, method: str, payload: dict[str, Any], timeout: Optional[float] = None) -> Any:
        try:
            response = self._client.post(f"/{method}", json=payload, timeout=timeout or self._timeout)
        except httpx.TimeoutException as e:
            raise TelegramError(f"{method} timed out") from e
        except httpx.HTTPError as e:
            raise TelegramError(f"{method} failed: {e.__class__.__name__}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code != 200 or not data.get("ok"):
            description = data.get("description") or f"HTTP {response.status_code}"
            if response.status_code in (401, 404):
                logger.error(f"telegram_auth_failed method={method} status={response.status_code}")
            raise TelegramError(f"{method} failed: {description}")

        return data.get("result")

    def send_message(self, chat_id: int, text: str, reply_markup: Optional[dict] = None) -> dict:
        """
        Send a text message to a chat.

        Raises:
            TelegramError: the message was not accepted by the Bot API
        """
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        return self._call("sendMessage", payload)

    def notify(self, recipient_id: int, text: str) -> bool:
        """
        Deliver a notification. Failures are logged and reported as False.
        """
        try:
            self.send_message(recipient_id, text)
        except TelegramError as e:
            logger.error(f"Could not notify {recipient_id}: {e}")
            return False
        logger.debug(f"Notified {recipient_id} successfully")
        return True

    def get_updates(self, offset: Optional[int] = None, timeout: int = 60) -> list[dict]:
        """
        Long-poll for new updates.

        Args:
            offset: Id of the first update to return (last seen update_id + 1)
            timeout: Seconds the Bot API holds the request open when idle
        """
        payload: dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        return self._call("getUpdates", payload, timeout=timeout + self._timeout) or []

    @staticmethod
    def start_keyboard() -> dict:
        return {
            "keyboard": [[{"text": SHARE_CONTACT_BUTTON, "request_contact": True}]],
            "input_field_placeholder": SHARE_CONTACT_BUTTON,
            "one_time_keyboard": False,
            "resize_keyboard": True,
        }
