"""Room models: wire payloads from the server and the local views built from them."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, Field, model_validator

from shared.messaging.wire import WireModel


class RoomAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    JOIN = "join"
    LEAVE = "leave"
    DELETE = "delete"
    SWITCH_ROLE = "switchRole"
    READY = "ready"
    START = "start"


class RoomPhase(StrEnum):
    LOBBY = "lobby"
    WAITING = "waiting"
    PLAYING = "playing"
    ENDED = "ended"


class RoomRequestResult(StrEnum):
    """Local outcome of a room request. SENT means the transport accepted it (sent or buffered)."""

    SENT = "sent"
    DROPPED = "dropped"
    INVALID = "invalid"
    ALREADY_IN_ROOM = "already_in_room"
    NOT_IN_ROOM = "not_in_room"
    WRONG_PHASE = "wrong_phase"
    NOT_HOST = "not_host"
    IS_HOST = "is_host"
    OBSERVER = "observer"
    COOLDOWN = "cooldown"
    ROOM_FULL = "room_full"


class JoinFailureReason(StrEnum):
    ROOM_NOT_FOUND = "room not found"
    ROOM_FULL = "room full"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, text: str | None) -> JoinFailureReason:
        if text:
            normalized = text.strip().lower()
            for reason in cls:
                if reason.value in normalized:
                    return reason
        return cls.UNKNOWN


# Wire payloads


class PlayerSlotPayload(WireModel):
    user_id: str
    display_name: str = Field(default="", validation_alias=AliasChoices("displayName", "display_name", "username"))
    ready: bool = False
    is_host: bool = Field(default=False, validation_alias=AliasChoices("isHost", "is_host", "host"))


class RoomPayload(WireModel):
    """One room as broadcast by the server. Any field other than room_id may be absent."""

    room_id: str = Field(min_length=1)
    name: str | None = Field(default=None, validation_alias=AliasChoices("name", "roomName"))
    game_type: str | None = Field(default=None, validation_alias=AliasChoices("gameType", "game_type", "gameName"))
    host_id: str | None = None
    max_players: int | None = Field(default=None, ge=1)
    current_player_count: int | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("currentPlayerCount", "current_player_count", "currentPlayers"),
    )
    is_locked: bool | None = None
    is_playing: bool | None = None
    spectator_count: int | None = Field(default=None, ge=0)
    players: list[PlayerSlotPayload] | None = None
    spectators: list[PlayerSlotPayload] | None = None


class RoomDiff(WireModel):
    """A room change broadcast on the directory channel.

    Accepts both the nested ``{action, room: {...}}`` shape and the flat
    shape where room fields sit next to ``action``.
    """

    action: RoomAction
    room: RoomPayload

    @model_validator(mode="before")
    @classmethod
    def nest_flat_room(cls, data: Any) -> Any:  # noqa: ANN401
        if isinstance(data, dict) and "room" not in data:
            room = {k: v for k, v in data.items() if k != "action"}
            return {"action": data.get("action", RoomAction.UPDATE), "room": room}
        return data


class RoomDetailPayload(RoomPayload):
    """Full room detail broadcast on the room's own channel."""

    action: RoomAction | None = None


class RoomListSnapshot(WireModel):
    rooms: list[RoomPayload]

    @model_validator(mode="before")
    @classmethod
    def wrap_bare_list(cls, data: Any) -> Any:  # noqa: ANN401
        if isinstance(data, list):
            return {"rooms": data}
        return data


class JoinResultPayload(WireModel):
    """Join acknowledgment addressed to one user.

    Either ``{success, roomId, error}`` or the event form whose payload is
    ``"ok"`` or ``"error: <reason>"``.
    """

    room_id: str | None = None
    success: bool
    error: str | None = None

    @model_validator(mode="before")
    @classmethod
    def from_event_payload(cls, data: Any) -> Any:  # noqa: ANN401
        if isinstance(data, dict) and "success" not in data and "payload" in data:
            payload = str(data.get("payload") or "")
            ok = payload.strip().lower() == "ok"
            error = None if ok else payload.removeprefix("error:").strip() or payload
            return {"roomId": data.get("roomId"), "success": ok, "error": error}
        return data


class InvitePayload(WireModel):
    from_user_id: str = Field(validation_alias=AliasChoices("fromUserId", "from_user_id", "senderId"))
    from_display_name: str = Field(
        default="",
        validation_alias=AliasChoices("fromDisplayName", "from_display_name", "senderName", "fromUsername"),
    )
    room_id: str
    room_name: str | None = None
    game_type: str | None = Field(default=None, validation_alias=AliasChoices("gameType", "game_type", "gameName"))


# Outbound requests


class CreateRoomRequest(WireModel):
    name: str = Field(min_length=1, max_length=50)
    game_type: str
    max_players: int = Field(ge=1, le=16)
    is_locked: bool = False
    host_id: str
    host_name: str


class JoinRoomRequest(WireModel):
    room_id: str
    user_id: str
    username: str


class RoomActionRequest(WireModel):
    room_id: str
    user_id: str


class UpdateRoomRequest(WireModel):
    room_id: str
    user_id: str
    game_type: str | None = None
    max_players: int | None = Field(default=None, ge=1, le=16)


class RoomChatRequest(WireModel):
    room_id: str
    user_id: str
    username: str
    message: str = Field(min_length=1, max_length=500)


class GameStateRequest(WireModel):
    room_id: str
    player_id: str


class InviteRequest(WireModel):
    room_id: str
    from_user_id: str
    from_display_name: str
    target_user_id: str


# Local views


@dataclass(frozen=True)
class PlayerSlot:
    user_id: str
    display_name: str
    ready: bool = False
    is_host: bool = False

    @classmethod
    def from_payload(cls, payload: PlayerSlotPayload) -> PlayerSlot:
        return cls(
            user_id=payload.user_id,
            display_name=payload.display_name,
            ready=payload.ready,
            is_host=payload.is_host,
        )


@dataclass(frozen=True)
class RoomSummary:
    """Directory entry for one room.

    current_player_count never exceeds max_players once applied.
    """

    room_id: str
    name: str = ""
    game_type: str = ""
    host_id: str | None = None
    max_players: int | None = None
    current_player_count: int = 0
    is_locked: bool = False
    is_playing: bool = False
    spectator_count: int = 0

    @property
    def is_full(self) -> bool:
        return self.max_players is not None and self.current_player_count >= self.max_players


@dataclass(frozen=True)
class RoomState:
    """Full detail of the single room the local session occupies."""

    room_id: str
    host_id: str | None = None
    players: tuple[PlayerSlot, ...] = ()
    spectators: tuple[PlayerSlot, ...] = ()
    phase: RoomPhase = RoomPhase.WAITING
    max_players: int | None = None
    game_type: str | None = None

    def has_member(self, user_id: str) -> bool:
        return self.is_player(user_id) or self.is_spectator(user_id)

    def is_player(self, user_id: str) -> bool:
        return any(slot.user_id == user_id for slot in self.players)

    def is_spectator(self, user_id: str) -> bool:
        return any(slot.user_id == user_id for slot in self.spectators)

    def player_index(self, user_id: str) -> int | None:
        for index, slot in enumerate(self.players):
            if slot.user_id == user_id:
                return index
        return None


@dataclass(frozen=True)
class JoinResult:
    room_id: str | None
    success: bool
    reason: JoinFailureReason | None = None
    error: str | None = None

    @classmethod
    def from_payload(cls, payload: JoinResultPayload) -> JoinResult:
        if payload.success:
            return cls(room_id=payload.room_id, success=True)
        return cls(
            room_id=payload.room_id,
            success=False,
            reason=JoinFailureReason.parse(payload.error),
            error=payload.error,
        )


@dataclass(frozen=True)
class RoomDetailEvent:
    """Payload of ROOM_DETAIL bus events: the new room state and what changed it."""

    room: RoomState | None
    action: RoomAction | None = None
