"""
Template store: one printf-style message template per event.

Templates are read once at startup from templates.json:

    {"templates": [{"event_id": 1, "text": "New order #%d from %s (%s): %d"}]}

Placeholders are filled positionally with the values listed in the event's
PayloadSchema.fields, in that order.
"""

import json
import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from notification_service.errors import InternalError
from notification_service.schemas import TemplateCatalog

logger = logging.getLogger(__name__)


class TemplateLoadError(Exception):
    """The template file is missing, unreadable or malformed."""


class TemplateRenderError(InternalError):
    """A template's placeholders do not match the values passed to it."""

    def __init__(self, event_id: int, cause: Exception):
        self.event_id = event_id
        super().__init__(f"template for event {event_id} could not be rendered: {cause}")


class TemplateStore:
    def __init__(self):
        self._store: dict[int, str] = {}

    def load(self, source: Union[str, Path, Mapping[str, Any]]) -> None:
        """
        Load templates from a JSON file path or an already parsed mapping.

        Raises:
            TemplateLoadError: file missing/unreadable, invalid JSON or wrong shape
        """
        if isinstance(source, Mapping):
            content = source
        else:
            content = _read_json(Path(source))

        try:
            catalog = TemplateCatalog.model_validate(content)
        except ValidationError as e:
            raise TemplateLoadError(f"malformed templates: {e}") from e

        for entry in catalog.templates:
            self._store[entry.event_id] = entry.text
        logger.info(f"Loaded {len(catalog.templates)} templates")

    def find(self, event_id: int) -> Optional[str]:
        """Return the template text, or None if the event has no template."""
        return self._store.get(event_id)

    def __contains__(self, event_id: int) -> bool:
        return event_id in self._store

    def __len__(self) -> int:
        return len(self._store)


def build_template_store(source: Union[str, Path, Mapping[str, Any]]) -> TemplateStore:
    store = TemplateStore()
    store.load(source)
    return store


def render(event_id: int, text: str, args: tuple) -> str:
    """
    Substitute args into the template positionally.

    Raises:
        TemplateRenderError: placeholder count or types do not match args
    """
    try:
        return text % args
    except (TypeError, ValueError) as e:
        raise TemplateRenderError(event_id, e) from e


def _read_json(path: Path) -> Any:
    if not path.is_file():
        raise TemplateLoadError(f"file {path} does not exist")
    try:
        with path.open(encoding="utf-8") as f:
            return json.load(f)
    except OSError as e:
        raise TemplateLoadError(f"could not read {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise TemplateLoadError(f"invalid JSON in {path}: {e}") from e
