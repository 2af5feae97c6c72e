"""
Payload registry: the expected fire payload for every event.

Each event id maps to a PayloadSchema, which pairs a pydantic model (the
structural shape plus business rules) with the ordered field names whose
values fill the event's template placeholders. The order in `fields` must
agree with the placeholders of the event's template in templates.json.

Every event listed in events.json needs an entry here, otherwise startup
fails.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from notification_service.errors import InvalidPayload
from notification_service.utils import is_valid_phone_number

logger = logging.getLogger(__name__)

MASTER_ORDER_CREATED = 1
USER_ORDER_CREATED = 2
WORKER_LOGIN = 3

LOGIN_TIME_FORMAT = "%d.%m.%Y %H:%M"


# =============================================================================
# Payload Models
# =============================================================================

class MasterOrderCreatedPayload(BaseModel):
    """Payload for event 1: a new order, sent to the shop staff."""
    model_config = ConfigDict(extra="forbid")

    order_id: int = Field(..., gt=0)
    username: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    amount: int = Field(..., ge=0)

    @field_validator("phone_number")
    @classmethod
    def validate_phone_number(cls, v: str) -> str:
        if not is_valid_phone_number(v):
            raise ValueError("phone_number must be in E.164 format, e.g. +15551234")
        return v


class UserOrderCreatedPayload(BaseModel):
    """Payload for event 2: order confirmation for the customer."""
    model_config = ConfigDict(extra="forbid")

    order_id: int = Field(..., gt=0)
    amount: int = Field(..., ge=0)


class WorkerLoginPayload(BaseModel):
    """
    Payload for event 3: a worker logged in.

    time_offset is the worker's UTC offset in hours; the login time is
    rendered in the worker's local time.
    """
    model_config = ConfigDict(extra="forbid")

    username: str = Field(..., min_length=1)
    login_at: datetime
    time_offset: int = Field(..., ge=-12, le=14)

    @property
    def login_at_local(self) -> str:
        login_at = self.login_at
        if login_at.tzinfo is not None:
            login_at = login_at.astimezone(timezone.utc).replace(tzinfo=None)
        return (login_at + timedelta(hours=self.time_offset)).strftime(LOGIN_TIME_FORMAT)


# =============================================================================
# Registry
# =============================================================================

@dataclass(frozen=True)
class PayloadSchema:
    """
    Expected payload for one event.

    Attributes:
        name: Schema name, used in logs
        model: Pydantic model the request body is decoded into
        fields: Attribute names of the decoded model, in template placeholder order
    """
    name: str
    model: Type[BaseModel]
    fields: tuple[str, ...]

    def decode(self, body: Any) -> BaseModel:
        """
        Decode a fire request body into the schema's model.

        Raises:
            InvalidPayload: body is not an object, has missing/unknown fields,
                wrong types, or breaks a business rule
        """
        if not isinstance(body, Mapping):
            raise InvalidPayload("payload must be a JSON object")
        try:
            return self.model.model_validate(body)
        except ValidationError as e:
            logger.debug(f"{self.name} rejected payload: {e.errors()}")
            raise InvalidPayload(f"invalid request payload: {_summarize(e)}") from e

    def template_args(self, payload: BaseModel) -> tuple:
        return tuple(getattr(payload, field) for field in self.fields)


class PayloadRegistry:
    """Maps event ids to payload schemas. Populated once at startup."""

    def __init__(self):
        self._store: dict[int, PayloadSchema] = {}

    def register(self, event_id: int, schema: PayloadSchema) -> None:
        if event_id in self._store:
            logger.warning(f"Payload schema for event {event_id} replaced by {schema.name}")
        self._store[event_id] = schema

    def resolve(self, event_id: int) -> Optional[PayloadSchema]:
        return self._store.get(event_id)

    def __contains__(self, event_id: int) -> bool:
        return event_id in self._store

    def __len__(self) -> int:
        return len(self._store)


def build_payload_registry() -> PayloadRegistry:
    """Build the registry with the payload schema of every built-in event."""
    registry = PayloadRegistry()
    registry.register(
        MASTER_ORDER_CREATED,
        PayloadSchema(
            name="MasterOrderCreatedPayload",
            model=MasterOrderCreatedPayload,
            fields=("order_id", "username", "phone_number", "amount"),
        ),
    )
    registry.register(
        USER_ORDER_CREATED,
        PayloadSchema(
            name="UserOrderCreatedPayload",
            model=UserOrderCreatedPayload,
            fields=("order_id", "amount"),
        ),
    )
    registry.register(
        WORKER_LOGIN,
        PayloadSchema(
            name="WorkerLoginPayload",
            model=WorkerLoginPayload,
            fields=("username", "login_at_local"),
        ),
    )
    return registry


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "body"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)
