"""
Tests for the event fire pipeline.
"""

import pytest
from pydantic import BaseModel, ConfigDict

from notification_service import events, subscriptions
from notification_service.dispatch import DispatchPipeline, ResolvedEvent
from notification_service.errors import (
    DeliveryFailed,
    EventNotFound,
    InternalError,
    InvalidPayload,
    TemplateUnavailable,
)
from notification_service.payload import PayloadRegistry, PayloadSchema
from notification_service.schemas import CatalogEntry
from notification_service.templates import TemplateRenderError, build_template_store


class OrderCreated(BaseModel):
    model_config = ConfigDict(extra="forbid")

    order_id: int
    username: str
    amount: int


ORDER = {"order_id": 7, "username": "ann", "amount": 1500}


@pytest.fixture
def registry():
    registry = PayloadRegistry()
    registry.register(
        1,
        PayloadSchema(name="OrderCreated", model=OrderCreated, fields=("order_id", "username", "amount")),
    )
    return registry


@pytest.fixture
def templates():
    return build_template_store({"templates": [{"event_id": 1, "text": "Order %d for %s: %d"}]})


@pytest.fixture
def pipeline(registry, templates, fake_bot):
    return DispatchPipeline(registry, templates, fake_bot)


@pytest.fixture
def event(db, pipeline):
    events.register_event(db, CatalogEntry(event_id=1, name="order_created", translate="Order created"))
    return pipeline.resolve_event(db, "order_created")


def add_subscriber(db, phone, chat_id=None, event_id=1):
    subscriber_id = subscriptions.register_subscriber(db, phone)
    subscriptions.subscribe_to_event(db, subscriber_id, event_id)
    if chat_id is not None:
        subscriptions.link_chat_recipient(db, chat_id, subscriber_id)
    return subscriber_id


class TestResolveEvent:
    def test_resolves_name_and_id(self, db, pipeline, event):
        assert event == ResolvedEvent(event_id=1, identifier="order_created")
        assert pipeline.resolve_event(db, "1").event_id == 1

    def test_unknown_event(self, db, pipeline, event):
        with pytest.raises(EventNotFound):
            pipeline.resolve_event(db, "order_cancelled")


class TestFire:
    """Test the fire flow end to end against the directories."""

    def test_single_linked_subscriber(self, db, pipeline, event, fake_bot):
        add_subscriber(db, "+15551234", chat_id=1001)

        result = pipeline.fire(db, event, ORDER)

        assert fake_bot.sent == [(1001, "Order 7 for ann: 1500")]
        assert result.status == "delivered"
        assert (result.recipients, result.delivered, result.failed) == (1, 1, [])

    def test_no_subscribers_is_noop(self, db, pipeline, event, fake_bot):
        result = pipeline.fire(db, event, ORDER)

        assert result.status == "no_subscribers"
        assert fake_bot.sent == []

    def test_no_linked_subscribers_is_noop(self, db, pipeline, event, fake_bot):
        add_subscriber(db, "+15551234")

        result = pipeline.fire(db, event, ORDER)

        assert result.status == "no_recipients"
        assert fake_bot.sent == []

    def test_short_circuit_skips_payload_validation(self, db, pipeline, event, fake_bot):
        result = pipeline.fire(db, event, {"garbage": True})
        assert result.status == "no_subscribers"

    def test_only_subscribers_of_the_event_are_notified(self, db, pipeline, event, fake_bot):
        events.register_event(db, CatalogEntry(event_id=2, name="worker_login"))
        add_subscriber(db, "+15551234", chat_id=1001)
        add_subscriber(db, "+15559876", chat_id=2002, event_id=2)

        pipeline.fire(db, event, ORDER)

        assert [chat_id for chat_id, _ in fake_bot.sent] == [1001]

    def test_unlinked_subscribers_skipped(self, db, pipeline, event, fake_bot):
        add_subscriber(db, "+15551234", chat_id=1001)
        add_subscriber(db, "+15559876")

        result = pipeline.fire(db, event, ORDER)

        assert result.recipients == 1
        assert [chat_id for chat_id, _ in fake_bot.sent] == [1001]

    def test_delivery_continues_after_failure(self, db, pipeline, event, fake_bot):
        add_subscriber(db, "+15551234", chat_id=1001)
        add_subscriber(db, "+15559876", chat_id=2002)
        add_subscriber(db, "+15550000", chat_id=3003)
        fake_bot.fail_for = {2002}

        result = pipeline.fire(db, event, ORDER)

        assert result.status == "partial"
        assert result.delivered == 2
        assert result.failed == [2002]
        assert sorted(chat_id for chat_id, _ in fake_bot.sent) == [1001, 3003]

    def test_every_delivery_failed(self, db, pipeline, event, fake_bot):
        add_subscriber(db, "+15551234", chat_id=1001)
        fake_bot.fail_for = {1001}

        with pytest.raises(DeliveryFailed):
            pipeline.fire(db, event, ORDER)

    def test_invalid_payload(self, db, pipeline, event, fake_bot):
        add_subscriber(db, "+15551234", chat_id=1001)

        with pytest.raises(InvalidPayload):
            pipeline.fire(db, event, {"order_id": 7, "amount": 1500})
        assert fake_bot.sent == []

    def test_missing_template_is_unavailable(self, db, registry, fake_bot, event):
        pipeline = DispatchPipeline(registry, build_template_store({"templates": []}), fake_bot)
        add_subscriber(db, "+15551234", chat_id=1001)

        with pytest.raises(TemplateUnavailable):
            pipeline.fire(db, event, ORDER)
        assert fake_bot.sent == []

    def test_missing_schema_is_internal(self, db, templates, fake_bot, event):
        pipeline = DispatchPipeline(PayloadRegistry(), templates, fake_bot)
        add_subscriber(db, "+15551234", chat_id=1001)

        with pytest.raises(InternalError):
            pipeline.fire(db, event, ORDER)

    def test_template_schema_mismatch(self, db, registry, fake_bot, event):
        templates = build_template_store({"templates": [{"event_id": 1, "text": "Order %d"}]})
        pipeline = DispatchPipeline(registry, templates, fake_bot)
        add_subscriber(db, "+15551234", chat_id=1001)

        with pytest.raises(TemplateRenderError):
            pipeline.fire(db, event, ORDER)
        assert fake_bot.sent == []
