"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String, UniqueConstraint

from notification_service.storage import Base


class Event(Base):
    """
    Catalog of events that can be subscribed to and fired.

    Table: events
    Rows are replayed from the event catalog file at startup.
    """
    __tablename__ = "events"

    event_id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String, nullable=False, unique=True, index=True)
    translate = Column(String, nullable=False, default="")


class Subscriber(Base):
    """
    A notification recipient identified by phone number.

    Table: subscribers
    """
    __tablename__ = "subscribers"

    subscriber_id = Column(Integer, primary_key=True, autoincrement=True)
    phone_number = Column(String, nullable=False, unique=True, index=True)


class Subscription(Base):
    """
    Many-to-many link between subscribers and events.

    Table: subscriptions
    Unique per (subscriber_id, event_id), enforced by the store.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("subscriber_id", "event_id", name="uq_subscriptions_subscriber_event"),
    )

    subscription_id = Column(Integer, primary_key=True, autoincrement=True)
    subscriber_id = Column(
        Integer,
        ForeignKey("subscribers.subscriber_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_id = Column(
        Integer,
        ForeignKey("events.event_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class ChatRecipient(Base):
    """
    Telegram chat linked to a subscriber.

    Table: chat_recipients
    At most one link per subscriber (subscriber_id is the primary key).
    """
    __tablename__ = "chat_recipients"

    subscriber_id = Column(
        Integer,
        ForeignKey("subscribers.subscriber_id", ondelete="CASCADE"),
        primary_key=True,
        autoincrement=False,
    )
    recipient_id = Column(BigInteger, nullable=False, index=True)
