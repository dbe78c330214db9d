"""Events published by the chat store as session state changes."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, DefaultDict, TypeVar

from .message_model import ApiState

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all store events."""


@dataclass(slots=True)
class MessageAppended(Event):
    chat_id: str
    message_id: str


@dataclass(slots=True)
class MessageDelta(Event):
    """A streamed fragment was appended to a message."""

    chat_id: str
    message_id: str
    delta: str


@dataclass(slots=True)
class MessageFinished(Event):
    chat_id: str
    message_id: str


@dataclass(slots=True)
class MessagesTruncated(Event):
    chat_id: str
    length: int


@dataclass(slots=True)
class ApiStateChanged(Event):
    state: ApiState


@dataclass(slots=True)
class ChatUpdated(Event):
    """A derived chat field (title, expression, usage totals) changed."""

    chat_id: str
    field: str


# Streaming events are too frequent to log on every publish.
_QUIET_EVENT_TYPES: set[type] = {MessageDelta}


class EventBus:
    """Synchronous publish/subscribe keyed by event type.

    Handlers run in registration order. A failing handler is logged and
    does not prevent the remaining handlers from running.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[type, list[Callable[..., None]]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> Callable[[], None]:
        """Register ``handler`` and return a callable that unregisters it."""

        self._handlers[event_type].append(handler)

        def _unsubscribe() -> None:
            self.unsubscribe(event_type, handler)

        return _unsubscribe

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            logger.debug("Handler was not subscribed to %s", event_type.__name__)

    def publish(self, event: Event) -> None:
        event_type = type(event)
        handlers = list(self._handlers.get(event_type, ()))
        if not handlers:
            return
        if event_type not in _QUIET_EVENT_TYPES:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event_type.__name__)


__all__ = [
    "ApiStateChanged",
    "ChatUpdated",
    "Event",
    "EventBus",
    "MessageAppended",
    "MessageDelta",
    "MessageFinished",
    "MessagesTruncated",
]
