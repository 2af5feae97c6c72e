import logging
from contextlib import asynccontextmanager
from typing import Annotated, Any, Optional

from fastapi import Body, Depends, FastAPI, Request, Response, status
from sqlalchemy.orm import Session

from notification_service import events, subscriptions
from notification_service.config import settings
from notification_service.dispatch import DispatchPipeline
from notification_service.errors import (
    InvalidPhoneNumber,
    RecoveryMiddleware,
    ServiceError,
    SubscriberAlreadyExists,
    SubscriptionNotFound,
    register_error_handlers,
)
from notification_service.listener import TelegramListener
from notification_service.logging_utils import setup_logging, RequestLoggingMiddleware, log_fire_data
from notification_service.metrics import get_metrics, get_metrics_content_type, record_subscription_outcome
from notification_service.payload import build_payload_registry
from notification_service.schemas import (
    ErrorResponse,
    EventResponse,
    EventsListResponse,
    FireResponse,
    HealthResponse,
    RegisterSubscriberRequest,
    StatusResponse,
    SubscribeRequest,
    SubscribeResponse,
    SubscriberCreatedResponse,
    SubscribersJoinedResponse,
    SubscribersListResponse,
)
from notification_service.storage import SessionLocal, check_db_health, get_db, init_db
from notification_service.telegram import TelegramBot
from notification_service.templates import build_template_store
from notification_service.utils import is_valid_phone_number


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables, build payload registry and template store,
      load the event catalog, start the Telegram listener
    - Shutdown: stop the listener, close the Bot API client
    Any catalog problem aborts startup.
    """
    init_db()

    registry = build_payload_registry()
    templates = build_template_store(settings.TEMPLATES_PATH)
    with SessionLocal() as db:
        events.load_catalog(db, settings.EVENTS_PATH, registry, templates)

    bot = TelegramBot(
        token=settings.BOT_TOKEN,
        api_url=settings.TELEGRAM_API_URL,
        timeout=settings.TELEGRAM_TIMEOUT_SECONDS,
    )
    app.state.pipeline = DispatchPipeline(registry, templates, bot)

    listener = None
    if settings.TELEGRAM_POLLING_ENABLED:
        listener = TelegramListener(bot, SessionLocal, poll_timeout=settings.TELEGRAM_POLL_TIMEOUT)
        listener.start()

    logger.info("Notification service is ready")
    yield

    if listener is not None:
        listener.stop(timeout=settings.TELEGRAM_TIMEOUT_SECONDS)
    bot.close()
    logger.info("Notification service has shut down")


app = FastAPI(
    title="Notification Service",
    description="Fires templated event notifications to subscribers' Telegram chats",
    version="1.0.0",
    lifespan=lifespan,
)

# Recovery sits inside the logging middleware so recovered 500s are logged too
app.add_middleware(RecoveryMiddleware)
app.add_middleware(RequestLoggingMiddleware)
register_error_handlers(app)


def get_pipeline(request: Request) -> DispatchPipeline:
    return request.app.state.pipeline


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(request: Request, response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. The event catalog, templates and payload schemas are loaded
    2. DB is reachable and schema is applied

    Otherwise returns 503 (Service Unavailable).
    """
    if getattr(request.app.state, "pipeline", None) is None:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="Event catalog not loaded")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Event Routes
# =============================================================================

@app.get("/events", response_model=EventsListResponse)
async def get_available_events(db: Session = Depends(get_db)) -> EventsListResponse:
    """List every event that can be subscribed to and fired."""
    available = events.list_available(db)
    logger.info(f"GET /events: returned {len(available)} events")
    return EventsListResponse(events=[EventResponse.model_validate(event) for event in available])


@app.post(
    "/events/fire/{event_identifier}",
    response_model=FireResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Unknown event or invalid payload"},
        500: {"model": ErrorResponse, "description": "Internal error or every delivery failed"},
        503: {"model": ErrorResponse, "description": "Template missing for the event"},
    },
)
def fire_event(
    event_identifier: str,
    request: Request,
    payload: Annotated[Optional[dict[str, Any]], Body()] = None,
    db: Session = Depends(get_db),
    pipeline: DispatchPipeline = Depends(get_pipeline),
) -> FireResponse:
    """
    Fire an event and notify its subscribers over Telegram.

    The body is the event-specific payload. Returns 200 when messages were
    sent or nobody could be notified; recipients whose send failed are listed
    in `failed`.
    """
    try:
        event = pipeline.resolve_event(db, event_identifier)
        result = pipeline.fire(db, event, payload)
    except ServiceError as e:
        log_fire_data(request, event=event_identifier, result=e.reason)
        raise

    log_fire_data(
        request,
        event=event_identifier,
        result=result.status,
        recipients=result.recipients,
        delivered=result.delivered,
        failed=len(result.failed),
    )
    return FireResponse(
        status=result.status,
        event=event_identifier,
        recipients=result.recipients,
        delivered=result.delivered,
        failed=result.failed,
    )


# =============================================================================
# Subscription Routes
# =============================================================================

@app.post(
    "/subscriptions",
    response_model=SubscribeResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid phone number or unknown event"},
        409: {"model": ErrorResponse, "description": "Already subscribed"},
    },
)
async def subscribe(body: SubscribeRequest, db: Session = Depends(get_db)) -> SubscribeResponse:
    """Subscribe a phone number to an event, registering the subscriber if new."""
    try:
        result = subscriptions.subscribe(db, body.event_identifier, body.phone_number)
    except ServiceError as e:
        record_subscription_outcome(e.reason)
        raise

    record_subscription_outcome("created")
    return SubscribeResponse(
        subscription_id=result.subscription_id,
        subscriber_id=result.subscriber_id,
        event_id=result.event_id,
    )


@app.delete(
    "/subscriptions/{subscription_id}",
    response_model=StatusResponse,
    responses={400: {"model": ErrorResponse, "description": "No such subscription"}},
)
async def cancel_subscription(subscription_id: int, db: Session = Depends(get_db)) -> StatusResponse:
    if not subscriptions.cancel_subscription(db, subscription_id):
        raise SubscriptionNotFound()
    return StatusResponse(status="ok")


@app.get("/subscriptions/subscribers", response_model=SubscribersListResponse)
async def get_subscribers(db: Session = Depends(get_db)) -> SubscribersListResponse:
    """Every subscriber and whether a Telegram chat is linked."""
    return SubscribersListResponse(subscribers=subscriptions.get_subscribers(db))


@app.get("/subscriptions/subscribers/joined", response_model=SubscribersJoinedResponse)
async def get_subscribers_joined(db: Session = Depends(get_db)) -> SubscribersJoinedResponse:
    """Subscribers with their subscriptions and the subscribed events."""
    return SubscribersJoinedResponse(subscribers=subscriptions.get_subscribers_joined(db))


@app.post(
    "/subscriptions/subscribers",
    response_model=SubscriberCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid phone number"},
        409: {"model": ErrorResponse, "description": "Subscriber already registered"},
    },
)
async def register_subscriber(
    body: RegisterSubscriberRequest,
    db: Session = Depends(get_db),
) -> SubscriberCreatedResponse:
    """Register a subscriber ahead of any subscription."""
    if not is_valid_phone_number(body.phone_number):
        raise InvalidPhoneNumber()
    if subscriptions.get_subscriber_by_phone(db, body.phone_number) is not None:
        raise SubscriberAlreadyExists()

    subscriber_id = subscriptions.register_subscriber(db, body.phone_number)
    return SubscriberCreatedResponse(subscriber_id=subscriber_id, phone_number=body.phone_number)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
