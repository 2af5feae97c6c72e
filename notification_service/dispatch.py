"""
Event fire pipeline.

    resolve event -> load subscribers -> load chat recipients -> find template
    -> decode payload -> render message -> deliver to every recipient

An event nobody can receive is a successful no-op. Delivery continues past
failed recipients; the result lists the recipients whose send failed.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Union

from sqlalchemy.orm import Session

from notification_service import events, subscriptions
from notification_service.errors import (
    DeliveryFailed,
    EventNotFound,
    InternalError,
    TemplateUnavailable,
)
from notification_service.metrics import record_fire_outcome, record_notification
from notification_service.models import ChatRecipient
from notification_service.payload import PayloadRegistry
from notification_service.telegram import TelegramBot
from notification_service.templates import TemplateStore, render

logger = logging.getLogger(__name__)

DELIVERED = "delivered"
PARTIAL = "partial"
FAILED = "failed"
NO_SUBSCRIBERS = "no_subscribers"
NO_RECIPIENTS = "no_recipients"


@dataclass(frozen=True)
class ResolvedEvent:
    """The fire target after it was checked against the event directory."""
    event_id: int
    identifier: str


@dataclass
class FireResult:
    status: str
    event: ResolvedEvent
    recipients: int = 0
    delivered: int = 0
    failed: list[int] = field(default_factory=list)


class DispatchPipeline:
    def __init__(self, registry: PayloadRegistry, templates: TemplateStore, bot: TelegramBot):
        self.registry = registry
        self.templates = templates
        self.bot = bot

    def resolve_event(self, db: Session, identifier: Union[int, str]) -> ResolvedEvent:
        """
        Raises:
            EventNotFound: no event with that name or id
        """
        event_id = events.does_exist(db, identifier)
        if event_id is None:
            raise EventNotFound(identifier)
        return ResolvedEvent(event_id=event_id, identifier=str(identifier))

    def fire(self, db: Session, event: ResolvedEvent, body: Any) -> FireResult:
        """
        Fire an event: notify every subscriber that has a linked chat.

        Raises:
            TemplateUnavailable: the event has no template loaded
            InvalidPayload: body does not match the event's payload schema
            InternalError: no payload schema, or template/schema mismatch
            DeliveryFailed: every send failed
        """
        subscribers = subscriptions.get_event_subscribers(db, event.event_id)
        if not subscribers:
            logger.info(f"Event {event.identifier} has no subscribers, nothing to fire")
            return self._finish(FireResult(status=NO_SUBSCRIBERS, event=event))

        recipients = subscriptions.get_chat_recipients(db, subscriptions.select_phones(subscribers))
        if not recipients:
            logger.info(f"Event {event.identifier} has no subscribers with a linked chat")
            return self._finish(FireResult(status=NO_RECIPIENTS, event=event))

        text = self.templates.find(event.event_id)
        if text is None:
            logger.error(f"Template for event {event.event_id} not found")
            raise TemplateUnavailable(event.event_id)

        schema = self.registry.resolve(event.event_id)
        if schema is None:
            logger.error(f"Payload schema for event {event.event_id} not registered")
            raise InternalError(f"no payload schema registered for event {event.event_id}")

        payload = schema.decode(body)
        message = render(event.event_id, text, schema.template_args(payload))

        result = self.deliver_all(event, recipients, message)
        self._finish(result)
        if result.status == FAILED:
            raise DeliveryFailed()
        return result

    def deliver_all(self, event: ResolvedEvent, recipients: list[ChatRecipient], message: str) -> FireResult:
        result = FireResult(status=DELIVERED, event=event, recipients=len(recipients))
        for recipient in recipients:
            sent = self.bot.notify(recipient.recipient_id, message)
            record_notification(sent)
            if sent:
                result.delivered += 1
            else:
                logger.warning(
                    f"Delivery of event {event.identifier} to chat {recipient.recipient_id} "
                    f"(subscriber {recipient.subscriber_id}) failed"
                )
                result.failed.append(recipient.recipient_id)

        if result.failed:
            result.status = FAILED if result.delivered == 0 else PARTIAL
        logger.info(
            f"Event {event.identifier} fired: {result.delivered}/{result.recipients} delivered"
        )
        return result

    @staticmethod
    def _finish(result: FireResult) -> FireResult:
        record_fire_outcome(result.status)
        return result
