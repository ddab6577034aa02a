"""Ordered, synchronous event dispatch"""

from typing import Callable, Iterable, List, Optional, Set, Tuple

import structlog

from promptops.models.events import Event, EventType

logger = structlog.get_logger(__name__)

EventHandler = Callable[[Event], None]


class EventBus:
    """
    Subscribers are called in registration order, inside `emit`, before the
    emitting operation continues.
    """

    def __init__(self):
        self._subscribers: List[Tuple[EventHandler, Optional[Set[EventType]]]] = []

    def subscribe(
        self,
        handler: EventHandler,
        event_types: Optional[Iterable[EventType]] = None,
    ) -> Callable[[], None]:
        """Register a handler; returns a callable that removes it"""
        entry = (handler, set(event_types) if event_types is not None else None)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def emit(self, event_type: EventType, template_id: Optional[str] = None, **data) -> Event:
        event = Event(event_type=event_type, template_id=template_id, data=data)

        for handler, event_types in list(self._subscribers):
            if event_types is not None and event_type not in event_types:
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler failed",
                    event_type=event_type.value,
                    template_id=template_id,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                )

        return event

    def clear(self) -> None:
        self._subscribers.clear()

    def __len__(self) -> int:
        return len(self._subscribers)
