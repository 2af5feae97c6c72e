"""
Subscription directory: subscribers, their event subscriptions and their
linked Telegram chats.

Uniqueness (phone numbers, subscriber/event pairs, one chat per subscriber)
is enforced by the database constraints. Inserts that lose a race or repeat
an existing row surface as IntegrityError and are reported as "already
exists" outcomes, never as failures.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from notification_service import events
from notification_service.errors import (
    EventNotFound,
    InvalidPhoneNumber,
    SubscriberAlreadyExists,
    SubscriptionAlreadyExists,
)
from notification_service.models import ChatRecipient, Event, Subscriber, Subscription
from notification_service.utils import is_valid_phone_number

logger = logging.getLogger(__name__)


# =============================================================================
# Subscriber Repository Functions
# =============================================================================

def get_subscriber_by_phone(db: Session, phone_number: str) -> Optional[Subscriber]:
    return db.query(Subscriber).filter(Subscriber.phone_number == phone_number).first()


def register_subscriber(db: Session, phone_number: str) -> int:
    """
    Create a subscriber. Callers check for an existing one first.

    Returns:
        The new subscriber_id

    Raises:
        SubscriberAlreadyExists: the phone number is already registered
    """
    subscriber = Subscriber(phone_number=phone_number)
    try:
        db.add(subscriber)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.info(f"Subscriber already registered: {phone_number}")
        raise SubscriberAlreadyExists() from e

    logger.info(f"Subscriber registered: id={subscriber.subscriber_id}, phone={phone_number}")
    return subscriber.subscriber_id


# =============================================================================
# Subscription Repository Functions
# =============================================================================

def subscribe_to_event(db: Session, subscriber_id: int, event_id: int) -> Optional[int]:
    """
    Subscribe a subscriber to an event (insert-if-absent).

    Returns:
        The new subscription_id, or None if the subscription already existed
    """
    subscription = Subscription(subscriber_id=subscriber_id, event_id=event_id)
    try:
        db.add(subscription)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Subscription already exists: subscriber={subscriber_id}, event={event_id}")
        return None

    logger.info(
        f"Subscription created: id={subscription.subscription_id}, "
        f"subscriber={subscriber_id}, event={event_id}"
    )
    return subscription.subscription_id


def cancel_subscription(db: Session, subscription_id: int) -> bool:
    """
    Delete a subscription by id.

    Returns:
        True if a row was removed, False if there was no such subscription
    """
    deleted = (
        db.query(Subscription)
        .filter(Subscription.subscription_id == subscription_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info(f"Cancel subscription {subscription_id}: {'removed' if deleted else 'not found'}")
    return deleted > 0


def get_event_subscribers(db: Session, event_id: int) -> list[Subscriber]:
    return (
        db.query(Subscriber)
        .join(Subscription, Subscription.subscriber_id == Subscriber.subscriber_id)
        .filter(Subscription.event_id == event_id)
        .order_by(Subscriber.subscriber_id.asc())
        .all()
    )


def select_phones(subscribers: Iterable[Subscriber]) -> set[str]:
    return {subscriber.phone_number for subscriber in subscribers}


# =============================================================================
# Chat Recipient Repository Functions
# =============================================================================

def link_chat_recipient(db: Session, recipient_id: int, subscriber_id: int) -> bool:
    """
    Link a Telegram chat to a subscriber.

    Returns:
        True if linked now, False if the subscriber already had a chat linked
    """
    try:
        db.add(ChatRecipient(recipient_id=recipient_id, subscriber_id=subscriber_id))
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Subscriber {subscriber_id} already has a chat linked")
        return False

    logger.info(f"Chat {recipient_id} linked to subscriber {subscriber_id}")
    return True


def get_chat_recipients(db: Session, phone_numbers: set[str]) -> list[ChatRecipient]:
    """Linked chats of the subscribers with the given phone numbers."""
    if not phone_numbers:
        return []
    return (
        db.query(ChatRecipient)
        .join(Subscriber, Subscriber.subscriber_id == ChatRecipient.subscriber_id)
        .filter(Subscriber.phone_number.in_(sorted(phone_numbers)))
        .order_by(ChatRecipient.subscriber_id.asc())
        .all()
    )


# =============================================================================
# Reporting Views
# =============================================================================

def get_subscribers(db: Session) -> list[dict]:
    """Every subscriber with a flag telling whether a chat is linked."""
    rows = (
        db.query(Subscriber.phone_number, ChatRecipient.recipient_id)
        .outerjoin(ChatRecipient, ChatRecipient.subscriber_id == Subscriber.subscriber_id)
        .order_by(Subscriber.phone_number.asc())
        .all()
    )
    return [
        {"phone_number": row.phone_number, "has_chat_link": row.recipient_id is not None}
        for row in rows
    ]


def get_subscribers_joined(db: Session) -> list[dict]:
    """
    Subscribers that have at least one subscription, each with the list of
    their subscriptions and the subscribed events.
    """
    rows = (
        db.query(
            Subscriber.phone_number,
            ChatRecipient.recipient_id,
            Subscription.subscription_id,
            Event.event_id,
            Event.name,
            Event.translate,
        )
        .join(Subscription, Subscription.subscriber_id == Subscriber.subscriber_id)
        .join(Event, Event.event_id == Subscription.event_id)
        .outerjoin(ChatRecipient, ChatRecipient.subscriber_id == Subscriber.subscriber_id)
        .order_by(Subscriber.phone_number.asc(), Subscription.subscription_id.asc())
        .all()
    )

    subscribers: list[dict] = []
    for row in rows:
        # Rows are ordered by phone, so one subscriber's rows are adjacent
        if not subscribers or subscribers[-1]["phone_number"] != row.phone_number:
            subscribers.append({
                "phone_number": row.phone_number,
                "has_chat_link": row.recipient_id is not None,
                "subscriptions": [],
            })
        subscribers[-1]["subscriptions"].append({
            "subscription_id": row.subscription_id,
            "event": {"event_id": row.event_id, "name": row.name, "translate": row.translate},
        })
    return subscribers


# =============================================================================
# Subscribe Flow
# =============================================================================

@dataclass(frozen=True)
class SubscribeResult:
    subscription_id: int
    subscriber_id: int
    event_id: int
    subscriber_created: bool


def subscribe(db: Session, event_identifier: Union[int, str], phone_number: str) -> SubscribeResult:
    """
    Subscribe a phone number to an event, registering the subscriber on
    first sight.

    Raises:
        InvalidPhoneNumber: phone number is not E.164
        EventNotFound: no event with that name or id
        SubscriptionAlreadyExists: the phone is already subscribed to the event
    """
    if not is_valid_phone_number(phone_number):
        raise InvalidPhoneNumber()

    event_id = events.does_exist(db, event_identifier)
    if event_id is None:
        raise EventNotFound(event_identifier)

    subscriber_created = False
    subscriber = get_subscriber_by_phone(db, phone_number)
    if subscriber is not None:
        subscriber_id = subscriber.subscriber_id
    else:
        try:
            subscriber_id = register_subscriber(db, phone_number)
            subscriber_created = True
        except SubscriberAlreadyExists:
            # A concurrent request registered the same phone in between
            subscriber_id = get_subscriber_by_phone(db, phone_number).subscriber_id

    subscription_id = subscribe_to_event(db, subscriber_id, event_id)
    if subscription_id is None:
        raise SubscriptionAlreadyExists()

    logger.debug(f"Subscriber with phone {phone_number} has subscribed to event {event_id}")
    return SubscribeResult(
        subscription_id=subscription_id,
        subscriber_id=subscriber_id,
        event_id=event_id,
        subscriber_created=subscriber_created,
    )
