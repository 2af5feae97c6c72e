"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses
- File models for the startup event catalog and template files
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SubscribeRequest(BaseModel):
    """
    Body of POST /subscriptions.

    event_identifier is either the event name or its numeric id.
    The phone number format is checked by the subscribe flow so that it can
    answer with its own reason code.
    """
    event_identifier: Union[int, str] = Field(
        ...,
        description="Event name or numeric event id"
    )
    phone_number: str = Field(
        ...,
        min_length=1,
        description="Subscriber phone number in E.164 format"
    )

    @field_validator("event_identifier")
    @classmethod
    def validate_identifier(cls, v: Union[int, str]) -> str:
        text = str(v).strip()
        if not text:
            raise ValueError("event_identifier must not be empty")
        return text

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"event_identifier": "master_order_created", "phone_number": "+15551234"}
            ]
        }
    }


class RegisterSubscriberRequest(BaseModel):
    """Body of POST /subscriptions/subscribers."""
    phone_number: str = Field(..., min_length=1, description="Phone number in E.164 format")


# =============================================================================
# Pydantic Response Models
# =============================================================================

class StatusResponse(BaseModel):
    status: str = Field(default="ok", description="Operation status")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")
    reason: str = Field(..., description="Stable machine-readable reason code")
    request_id: Optional[str] = Field(None, description="Request id for log correlation")


class EventResponse(BaseModel):
    event_id: int
    name: str
    translate: str

    model_config = ConfigDict(from_attributes=True)


class EventsListResponse(BaseModel):
    events: list[EventResponse] = Field(default_factory=list)


class SubscribeResponse(BaseModel):
    """Response model for a created subscription."""
    subscription_id: int
    subscriber_id: int
    event_id: int


class SubscriberCreatedResponse(BaseModel):
    subscriber_id: int
    phone_number: str


class FireResponse(BaseModel):
    """
    Response model for POST /events/fire/{event_identifier}.

    status is one of:
    - delivered: every linked recipient got the message
    - partial: some sends failed, the rest were delivered
    - no_subscribers: nobody subscribed to the event
    - no_recipients: subscribers exist but none has a linked chat
    """
    status: str
    event: str
    recipients: int = Field(0, ge=0, description="Linked chat recipients resolved")
    delivered: int = Field(0, ge=0, description="Messages sent successfully")
    failed: list[int] = Field(default_factory=list, description="Recipient ids whose send failed")


class SubscriberSummary(BaseModel):
    phone_number: str
    has_chat_link: bool


class SubscribersListResponse(BaseModel):
    subscribers: list[SubscriberSummary] = Field(default_factory=list)


class SubscriptionView(BaseModel):
    subscription_id: int
    event: EventResponse


class SubscriberDetails(BaseModel):
    """Subscriber joined with its subscriptions and their events."""
    phone_number: str
    has_chat_link: bool
    subscriptions: list[SubscriptionView] = Field(default_factory=list)


class SubscribersJoinedResponse(BaseModel):
    subscribers: list[SubscriberDetails] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


# =============================================================================
# Startup File Models
# =============================================================================

class CatalogEntry(BaseModel):
    event_id: int = Field(..., ge=1)
    name: str = Field(..., min_length=1)
    translate: str = ""


class EventCatalog(BaseModel):
    """Shape of the events file: {"events": [{event_id, name, translate}]}"""
    events: list[CatalogEntry]


class TemplateEntry(BaseModel):
    event_id: int = Field(..., ge=1)
    text: str = Field(..., min_length=1)


class TemplateCatalog(BaseModel):
    """Shape of the templates file: {"templates": [{event_id, text}]}"""
    templates: list[TemplateEntry]
