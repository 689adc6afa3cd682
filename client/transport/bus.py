"""Multi-listener event fan-out for UI consumers."""

from __future__ import annotations

import itertools
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger()


class EventCategory(StrEnum):
    ROOM_LIST = "room_list"
    ROOM_DETAIL = "room_detail"
    CHAT = "chat"
    GAME_EVENT = "game_event"
    JOIN_RESULT = "join_result"
    CONNECTION_STATUS = "connection_status"
    INVITE = "invite"
    PRESENCE = "presence"
    POSITION = "position"


class EventBus:
    """Deliver each emitted payload to every handler registered for its category.

    Handlers are independent: one raising does not stop delivery to the
    rest. Detaching a handler never affects room membership.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventCategory, dict[int, Callable[[Any], None]]] = {
            category: {} for category in EventCategory
        }
        self._ids = itertools.count(1)

    def on(self, category: EventCategory, handler: Callable[[Any], None]) -> Callable[[], None]:
        """Register a handler. Returns a handle that removes exactly this registration."""
        registration_id = next(self._ids)
        self._handlers[category][registration_id] = handler

        def unsubscribe() -> None:
            self._handlers[category].pop(registration_id, None)

        return unsubscribe

    def off(self, category: EventCategory, handler: Callable[[Any], None]) -> None:
        """Remove the oldest registration of handler; unknown handlers are ignored."""
        handlers = self._handlers[category]
        for registration_id, registered in handlers.items():
            if registered == handler:
                del handlers[registration_id]
                return

    def emit(self, category: EventCategory, payload: Any) -> None:  # noqa: ANN401
        # Snapshot so handlers may register or detach during delivery.
        for handler in list(self._handlers[category].values()):
            try:
                handler(payload)
            except Exception:
                logger.exception("event handler failed", category=category)

    def handler_count(self, category: EventCategory) -> int:
        return len(self._handlers[category])

    def clear(self) -> None:
        for handlers in self._handlers.values():
            handlers.clear()
