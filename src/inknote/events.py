"""Process-wide domain event channel.

The core emits on this channel after each committed mutation; consumers
such as version recording or sync live outside the core.
"""
import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Fixed vocabulary of domain events."""

    NOTE_CREATED = "note_created"
    NOTE_CHANGED = "note_changed"
    NOTE_CONTENT_CHANGED = "note_content_changed"
    NOTE_DELETED = "note_deleted"
    CATEGORY_CREATED = "category_created"
    CATEGORY_CHANGED = "category_changed"
    CATEGORY_DELETED = "category_deleted"
    NOTEBOOK_CREATED = "notebook_created"


Handler = Callable[[Any], None]


class EventHub:
    """Publish/subscribe channel keyed by ``EventType``."""

    def __init__(self):
        self._handlers: Dict[EventType, List[Handler]] = defaultdict(list)

    def on(self, event: EventType, handler: Handler) -> None:
        """Subscribe ``handler`` to ``event``."""
        self._handlers[EventType(event)].append(handler)

    def off(self, event: EventType, handler: Handler) -> None:
        """Unsubscribe; unknown handlers are ignored."""
        handlers = self._handlers.get(EventType(event), [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: EventType, payload: Any = None) -> None:
        """Deliver ``payload`` to every subscriber of ``event``.

        Subscribers run after the store has committed, so a failing
        subscriber is logged rather than allowed to abort the mutation.
        """
        event = EventType(event)
        logger.debug(f"emit {event.value}: {payload!r}")
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(payload)
            except Exception as e:
                logger.warning(f"Handler for {event.value} failed: {e}")


# Global hub used when no hub is injected
event_hub = EventHub()
