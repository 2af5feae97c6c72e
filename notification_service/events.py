"""
Event directory: the persisted catalog of events that can be fired.

The catalog is replayed from events.json on every startup. An event is only
registered after both its payload schema and its template are known, so any
event visible to callers can be fired.
"""

import json
import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from notification_service.errors import CatalogError
from notification_service.models import Event
from notification_service.payload import PayloadRegistry
from notification_service.schemas import CatalogEntry, EventCatalog
from notification_service.templates import TemplateStore

logger = logging.getLogger(__name__)

# Largest value the INTEGER event_id column holds
MAX_EVENT_ID = 2**31 - 1


def register_event(db: Session, entry: CatalogEntry) -> bool:
    """
    Insert an event unless one with the same id or name already exists.

    Returns:
        True if the event was inserted, False if it was already there
    """
    try:
        db.add(Event(event_id=entry.event_id, name=entry.name, translate=entry.translate))
        db.commit()
        logger.info(f"Event registered: id={entry.event_id}, name={entry.name}")
        return True
    except IntegrityError:
        db.rollback()
        logger.debug(f"Event already registered: id={entry.event_id}, name={entry.name}")
        return False


def does_exist(db: Session, identifier: Union[int, str]) -> Optional[int]:
    """
    Resolve an event name or numeric id to its event_id.

    Digit-only identifiers are looked up by id, anything else by name.

    Returns:
        The event_id, or None if no such event exists
    """
    text = str(identifier).strip()
    if not text:
        return None

    query = db.query(Event.event_id)
    if text.isascii() and text.isdigit():
        event_id = int(text)
        if event_id > MAX_EVENT_ID:
            return None
        query = query.filter(Event.event_id == event_id)
    else:
        query = query.filter(Event.name == text)

    event_id = query.scalar()
    logger.debug(f"Event lookup {text!r}: {'found ' + str(event_id) if event_id is not None else 'not found'}")
    return event_id


def get_event(db: Session, event_id: int) -> Optional[Event]:
    return db.get(Event, event_id)


def list_available(db: Session) -> list[Event]:
    """All catalog events ordered by id; an empty list if there are none."""
    return db.query(Event).order_by(Event.event_id.asc()).all()


def read_catalog(source: Union[str, Path, Mapping[str, Any]]) -> EventCatalog:
    """
    Parse the event catalog from a JSON file path or an already parsed mapping.

    Raises:
        CatalogError: file missing/unreadable, invalid JSON or wrong shape
    """
    if isinstance(source, Mapping):
        content = source
    else:
        path = Path(source)
        if not path.is_file():
            raise CatalogError(f"file {path} does not exist")
        try:
            with path.open(encoding="utf-8") as f:
                content = json.load(f)
        except OSError as e:
            raise CatalogError(f"could not read {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise CatalogError(f"invalid JSON in {path}: {e}") from e

    try:
        return EventCatalog.model_validate(content)
    except ValidationError as e:
        raise CatalogError(f"malformed event catalog: {e}") from e


def load_catalog(
    db: Session,
    source: Union[str, Path, Mapping[str, Any]],
    registry: PayloadRegistry,
    templates: TemplateStore,
) -> list[CatalogEntry]:
    """
    Validate every catalog event and register it.

    For each entry, in order: the payload schema must be registered, the
    template must be loaded, then the event is upserted.

    Raises:
        CatalogError: unreadable catalog, or an event without schema/template
    """
    catalog = read_catalog(source)

    for entry in catalog.events:
        if registry.resolve(entry.event_id) is None:
            raise CatalogError(
                f"event {entry.event_id} ({entry.name}) has no payload schema registered"
            )
        if templates.find(entry.event_id) is None:
            raise CatalogError(
                f"event {entry.event_id} ({entry.name}) has no template"
            )
        register_event(db, entry)
        logger.info(f"Event {entry.name} is ready to be fired")

    return catalog.events
