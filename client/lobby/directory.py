"""Room directory: the local cache of room summaries."""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from lobby.models import RoomAction, RoomDiff, RoomListSnapshot, RoomPayload, RoomSummary
from transport.bus import EventCategory

if TYPE_CHECKING:
    from collections.abc import Callable

    from transport.bus import EventBus

logger = structlog.get_logger()

_SUMMARY_FIELDS = (
    "name",
    "game_type",
    "host_id",
    "max_players",
    "current_player_count",
    "is_locked",
    "is_playing",
    "spectator_count",
)


def _merge(existing: RoomSummary | None, room: RoomPayload) -> RoomSummary:
    """Overlay the fields present in room onto existing.

    Counts are replaced, never incremented, so a duplicated diff cannot
    double them. Counts missing from the payload are derived from the
    member lists when those are present.
    """
    base = existing or RoomSummary(room_id=room.room_id)
    changes: dict[str, Any] = {}
    for name in _SUMMARY_FIELDS:
        value = getattr(room, name)
        if value is not None:
            changes[name] = value
    if room.current_player_count is None and room.players is not None:
        changes["current_player_count"] = len(room.players)
    if room.spectator_count is None and room.spectators is not None:
        changes["spectator_count"] = len(room.spectators)
    return _clamp(dataclasses.replace(base, **changes))


def _clamp(summary: RoomSummary) -> RoomSummary:
    if summary.max_players is not None and summary.current_player_count > summary.max_players:
        logger.debug(
            "over-capacity player count clamped",
            room_id=summary.room_id,
            reported=summary.current_player_count,
            max_players=summary.max_players,
        )
        return dataclasses.replace(summary, current_player_count=summary.max_players)
    return summary


class RoomDirectory:
    """Cache of every visible room, kept in sync by diff broadcasts.

    Purely state management: subscriptions are wired by the owner, which
    feeds decoded channel messages to handle_diff_message and
    handle_snapshot_message. Every change is announced on the bus as a
    ROOM_LIST event carrying the full list.

    Diff application is an idempotent upsert keyed by room id, so
    duplicate or reordered delivery never yields two entries for one room.
    """

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._rooms: dict[str, RoomSummary] = {}
        self._active_room_id: Callable[[], str | None] = lambda: None
        self._on_active_room_changed: Callable[[RoomSummary | None], None] | None = None
        self._on_room_created: Callable[[RoomSummary], None] | None = None

    def bind_active_room(
        self,
        active_room_id: Callable[[], str | None],
        on_changed: Callable[[RoomSummary | None], None],
    ) -> None:
        """Forward changes to the locally occupied room to on_changed (None when deleted)."""
        self._active_room_id = active_room_id
        self._on_active_room_changed = on_changed

    def bind_room_created(self, on_created: Callable[[RoomSummary], None]) -> None:
        """Notify on_created whenever a create diff adds a room not yet cached."""
        self._on_room_created = on_created

    def get_all(self) -> list[RoomSummary]:
        return list(self._rooms.values())

    def get(self, room_id: str) -> RoomSummary | None:
        return self._rooms.get(room_id)

    def __len__(self) -> int:
        return len(self._rooms)

    def apply_diff(self, action: RoomAction, room: RoomPayload) -> RoomSummary | None:
        """Apply one diff. Returns the resulting summary, or None if the room is gone."""
        existing = self._rooms.get(room.room_id)

        if action == RoomAction.DELETE:
            if existing is None:
                logger.debug("delete for unknown room dropped", room_id=room.room_id)
                return None
            del self._rooms[room.room_id]
            logger.info("room removed", room_id=room.room_id)
            self._changed(room.room_id, None)
            return None

        summary = _merge(existing, room)
        if summary == existing:
            logger.debug("room diff changed nothing", room_id=room.room_id, action=action)
            return summary
        self._rooms[room.room_id] = summary
        if existing is None:
            logger.info("room added", room_id=room.room_id, action=action)
        self._changed(room.room_id, summary)
        if existing is None and action == RoomAction.CREATE and self._on_room_created is not None:
            self._on_room_created(summary)
        return summary

    def apply_snapshot(self, rooms: list[RoomPayload]) -> None:
        """Replace the whole cache with a full room-list snapshot."""
        previous = self._rooms
        self._rooms = {}
        for room in rooms:
            self._rooms[room.room_id] = _merge(self._rooms.get(room.room_id), room)
        logger.info("room list replaced", count=len(self._rooms))
        self._bus.emit(EventCategory.ROOM_LIST, self.get_all())

        # A snapshot never evicts the occupied room; only an explicit delete does.
        active = self._active_room_id()
        if active is not None and active in self._rooms and self._rooms[active] != previous.get(active):
            self._forward(self._rooms[active])

    def clear(self) -> None:
        self._rooms.clear()
        self._bus.emit(EventCategory.ROOM_LIST, [])

    # Channel handlers

    def handle_diff_message(self, body: Any) -> None:  # noqa: ANN401
        try:
            diff = RoomDiff.model_validate(body)
        except ValidationError as e:
            logger.warning("malformed room diff dropped", error=str(e))
            return
        self.apply_diff(diff.action, diff.room)

    def handle_snapshot_message(self, body: Any) -> None:  # noqa: ANN401
        try:
            snapshot = RoomListSnapshot.model_validate(body)
        except ValidationError as e:
            logger.warning("malformed room list dropped", error=str(e))
            return
        self.apply_snapshot(snapshot.rooms)

    def _changed(self, room_id: str, summary: RoomSummary | None) -> None:
        self._bus.emit(EventCategory.ROOM_LIST, self.get_all())
        if self._active_room_id() == room_id:
            self._forward(summary)

    def _forward(self, summary: RoomSummary | None) -> None:
        if self._on_active_room_changed is not None:
            self._on_active_room_changed(summary)
