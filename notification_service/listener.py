"""
Telegram inbound listener.

Long-polls the Bot API for updates on its own thread. Private chats only:
- a shared contact links the chat to the subscriber with that phone number
- /start and /help get a reply with the share-contact keyboard
- everything else is ignored
"""

import logging
import threading
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from notification_service import subscriptions
from notification_service.telegram import TelegramBot, TelegramError
from notification_service.utils import normalize_phone_number

logger = logging.getLogger(__name__)

START_MESSAGE = (
    "Hi! I deliver notifications for the events you are subscribed to. "
    "Tap the button below to share your phone number."
)
NO_SUCH_SUBSCRIBER = "The phone number %s is not registered for notifications."
REGISTER_IN_PROCESS = "Linking this chat to your subscription..."
REGISTERED_CHAT = "Done! Notifications for %s will be sent to this chat."
ALREADY_KNOWN = "I already know you, %s. Notifications are sent to this chat."
SOMETHING_WENT_WRONG = "Something went wrong. Please try again later."

ERROR_PAUSE_SECONDS = 5.0


class TelegramListener:
    def __init__(
        self,
        bot: TelegramBot,
        session_factory: Callable[[], Session],
        poll_timeout: int = 60,
    ):
        self.bot = bot
        self.session_factory = session_factory
        self.poll_timeout = poll_timeout
        self._offset: Optional[int] = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.listen_for_updates,
            name="telegram-listener",
            daemon=True,
        )
        self._thread.start()
        logger.info("Bot is listening to updates")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Bot stopped listening to updates")

    def listen_for_updates(self) -> None:
        while not self._stop.is_set():
            try:
                updates = self.bot.get_updates(offset=self._offset, timeout=self.poll_timeout)
            except TelegramError as e:
                logger.error(f"Polling updates failed: {e}")
                self._stop.wait(ERROR_PAUSE_SECONDS)
                continue
            except Exception:
                logger.exception("Polling updates failed unexpectedly")
                self._stop.wait(ERROR_PAUSE_SECONDS)
                continue

            try:
                for update in updates:
                    self._offset = update["update_id"] + 1
                    self.handle_update(update)
            except Exception:
                # Malformed feed; keep the thread alive and poll again
                logger.exception(f"Processing updates failed at offset {self._offset}")
                self._stop.wait(ERROR_PAUSE_SECONDS)

    # -------------------------------------------------------------------------
    # Update Handling
    # -------------------------------------------------------------------------

    def handle_update(self, update: dict[str, Any]) -> None:
        """Route one update. A failing update is logged and skipped."""
        message = update.get("message")
        if not message:
            return

        chat = message.get("chat") or {}
        chat_id = chat.get("id")
        if chat.get("type") != "private" or chat_id is None:
            return

        try:
            if message.get("contact"):
                with self.session_factory() as db:
                    self.handle_contact(db, chat_id, message["contact"])
            elif message.get("text") is not None:
                self.handle_message(chat_id, message["text"])
        except Exception:
            logger.exception(f"Failed to handle update {update.get('update_id')}")

    def handle_contact(self, db: Session, chat_id: int, contact: dict[str, Any]) -> None:
        phone_number = normalize_phone_number(contact.get("phone_number", ""))

        try:
            subscriber = subscriptions.get_subscriber_by_phone(db, phone_number)
        except Exception:
            logger.exception(f"Subscriber lookup failed for {phone_number}")
            self._reply(chat_id, SOMETHING_WENT_WRONG)
            return

        if subscriber is None:
            logger.info(f"Contact shared by unknown phone {phone_number}")
            self._reply(chat_id, NO_SUCH_SUBSCRIBER % phone_number)
            return

        self._reply(chat_id, REGISTER_IN_PROCESS)

        try:
            linked = subscriptions.link_chat_recipient(db, chat_id, subscriber.subscriber_id)
        except Exception:
            logger.exception(f"Linking chat {chat_id} to subscriber {subscriber.subscriber_id} failed")
            self._reply(chat_id, SOMETHING_WENT_WRONG)
            return

        if linked:
            self._reply(chat_id, REGISTERED_CHAT % phone_number)
        else:
            self._reply(chat_id, ALREADY_KNOWN % phone_number)

    def handle_message(self, chat_id: int, text: str) -> None:
        if text in ("/start", "/help"):
            self._reply(chat_id, START_MESSAGE, reply_markup=self.bot.start_keyboard())

    def _reply(self, chat_id: int, text: str, reply_markup: Optional[dict] = None) -> None:
        try:
            self.bot.send_message(chat_id, text, reply_markup=reply_markup)
        except TelegramError as e:
            logger.error(f"Could not reply to chat {chat_id}: {e}")
