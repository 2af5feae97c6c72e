"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any app module is imported,
and the settings cache is cleared so they take effect.
"""

import os
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
TEST_DB_PATH = Path(__file__).resolve().parent / "test_notifications.db"

os.environ.setdefault("DATABASE_URL", f"sqlite:///{TEST_DB_PATH}")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("BOT_TOKEN", "123456:test-token")
os.environ["TELEGRAM_POLLING_ENABLED"] = "false"
os.environ.setdefault("EVENTS_PATH", str(ROOT / "events.json"))
os.environ.setdefault("TEMPLATES_PATH", str(ROOT / "templates.json"))

# Clear settings cache before any app imports to ensure test env vars are used
from notification_service.config import get_settings
get_settings.cache_clear()

from fastapi.testclient import TestClient

from notification_service.dispatch import DispatchPipeline
from notification_service.storage import Base, SessionLocal, engine
from notification_service.telegram import TelegramBot, TelegramError


class FakeBot:
    """
    Stands in for TelegramBot. Records every message and fails sends to
    the chat ids listed in `fail_for`.
    """

    def __init__(self):
        self.sent: list[tuple[int, str]] = []
        self.markups: list = []
        self.fail_for: set[int] = set()

    def send_message(self, chat_id, text, reply_markup=None):
        if chat_id in self.fail_for:
            raise TelegramError(f"sendMessage failed: chat {chat_id} blocked the bot")
        self.sent.append((chat_id, text))
        self.markups.append(reply_markup)
        return {"message_id": len(self.sent), "chat": {"id": chat_id}, "text": text}

    def notify(self, recipient_id, text):
        try:
            self.send_message(recipient_id, text)
        except TelegramError:
            return False
        return True

    def start_keyboard(self):
        return TelegramBot.start_keyboard()

    def texts_for(self, chat_id):
        return [text for sent_to, text in self.sent if sent_to == chat_id]


@pytest.fixture
def fake_bot():
    return FakeBot()


@pytest.fixture
def db():
    """Session on fresh tables, dropped after the test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(fake_bot):
    """
    Test client with the catalog loaded from events.json/templates.json and
    the Telegram client replaced by a FakeBot.
    """
    from notification_service.main import app, get_pipeline

    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        pipeline = app.state.pipeline
        fake_pipeline = DispatchPipeline(pipeline.registry, pipeline.templates, fake_bot)
        app.dependency_overrides[get_pipeline] = lambda: fake_pipeline
        yield test_client

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
