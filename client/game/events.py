"""Game events.

ConfirmedServerEvent is everything the server broadcasts on a room's game
channel; only these may change game state. OptimisticLocalChange values
are UI hints produced by local actions and are kept apart from the
confirmed state until the server agrees or overrides them.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, Field, TypeAdapter, model_validator

from game.types import GameActionType, GameEventType
from shared.messaging.wire import WireModel

BOARD_SIZE = 15
BOARD_CELLS = BOARD_SIZE * BOARD_SIZE


class ServerEvent(WireModel):
    room_id: str = Field(min_length=1)
    timestamp: int | None = None


# Lifecycle


class GameStartEvent(ServerEvent):
    type: Literal[GameEventType.GAME_START] = GameEventType.GAME_START
    game_type: str | None = None
    player_id: str | None = None


class GameEndEvent(ServerEvent):
    type: Literal[GameEventType.GAME_END] = GameEventType.GAME_END
    scores: dict[str, int] = Field(default_factory=dict)
    winner_id: str | None = None


class RoundStartEvent(ServerEvent):
    type: Literal[GameEventType.ROUND_START] = GameEventType.ROUND_START
    round: int = Field(default=1, ge=1, validation_alias=AliasChoices("round", "roundNumber"))


class RoundEndEvent(ServerEvent):
    type: Literal[GameEventType.ROUND_END] = GameEventType.ROUND_END
    round: int = Field(default=1, ge=1, validation_alias=AliasChoices("round", "roundNumber"))
    scores: dict[str, int] = Field(default_factory=dict)
    winner_id: str | None = None


class CountdownStartEvent(ServerEvent):
    type: Literal[GameEventType.COUNTDOWN_START] = GameEventType.COUNTDOWN_START
    player_id: str | None = None
    seconds: int = Field(default=3, ge=0)


# Omok


class BoardMoveEvent(ServerEvent):
    type: Literal[GameEventType.BOARD_MOVE, GameEventType.OMOK_MOVE]
    player_id: str
    position: int = Field(ge=0, lt=BOARD_CELLS)


class BoardStateEvent(ServerEvent):
    """Full board snapshot. cells holds the owning player id or None per cell."""

    type: Literal[GameEventType.BOARD_STATE, GameEventType.OMOK_STATE]
    cells: list[str | None] = Field(min_length=BOARD_CELLS, max_length=BOARD_CELLS)
    players: list[str] = Field(default_factory=list)
    current_turn: int = Field(default=0, ge=0)


# Aim


class TargetPayload(WireModel):
    id: str
    x: float
    y: float
    size: float = 1.0


class SpawnTargetEvent(ServerEvent):
    type: Literal[GameEventType.SPAWN_TARGET] = GameEventType.SPAWN_TARGET
    target: TargetPayload


class TargetRemovedEvent(ServerEvent):
    type: Literal[GameEventType.TARGET_REMOVED] = GameEventType.TARGET_REMOVED
    target_id: str
    player_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def target_id_from_target(cls, data: Any) -> Any:  # noqa: ANN401
        if isinstance(data, dict) and "targetId" not in data and isinstance(data.get("target"), dict):
            return {**data, "targetId": data["target"].get("id")}
        return data


class TargetSyncEvent(ServerEvent):
    """Authoritative list of active targets; replaces the local set."""

    type: Literal[GameEventType.TARGET_SYNC] = GameEventType.TARGET_SYNC
    targets: list[TargetPayload] = Field(default_factory=list)
    scores: dict[str, int] | None = None


class ScoreUpdateEvent(ServerEvent):
    type: Literal[GameEventType.SCORE_UPDATE] = GameEventType.SCORE_UPDATE
    player_id: str
    score: int = Field(validation_alias=AliasChoices("score", "payload"))


class HitAckEvent(ServerEvent):
    type: Literal[GameEventType.HIT_ACK] = GameEventType.HIT_ACK
    player_id: str
    score: int | None = Field(default=None, validation_alias=AliasChoices("score", "payload"))


# Reaction


class ReactionPrepareEvent(ServerEvent):
    type: Literal[GameEventType.REACTION_PREPARE] = GameEventType.REACTION_PREPARE


class ReactionGoEvent(ServerEvent):
    type: Literal[GameEventType.REACTION_GO] = GameEventType.REACTION_GO


class ReactionResultEvent(ServerEvent):
    type: Literal[GameEventType.REACTION_RESULT] = GameEventType.REACTION_RESULT
    winner_id: str | None = Field(default=None, validation_alias=AliasChoices("winnerId", "playerId"))
    winner_name: str | None = Field(default=None, validation_alias=AliasChoices("winnerName", "playerName"))


class ReactionEndEvent(ServerEvent):
    type: Literal[GameEventType.REACTION_END] = GameEventType.REACTION_END
    winner_id: str | None = Field(default=None, validation_alias=AliasChoices("winnerId", "playerId"))


ConfirmedServerEvent = Annotated[
    GameStartEvent
    | GameEndEvent
    | RoundStartEvent
    | RoundEndEvent
    | CountdownStartEvent
    | BoardMoveEvent
    | BoardStateEvent
    | SpawnTargetEvent
    | TargetRemovedEvent
    | TargetSyncEvent
    | ScoreUpdateEvent
    | HitAckEvent
    | ReactionPrepareEvent
    | ReactionGoEvent
    | ReactionResultEvent
    | ReactionEndEvent,
    Field(discriminator="type"),
]

_event_adapter = TypeAdapter(ConfirmedServerEvent)


def parse_game_event(data: dict[str, Any]) -> ServerEvent:
    """Parse one game channel message. Raises pydantic.ValidationError."""
    return _event_adapter.validate_python(data)


# Optimistic local changes


@dataclass(frozen=True)
class OptimisticLocalChange:
    """A local UI hint awaiting confirmation. Never written into confirmed state."""

    created_at: float = field(default_factory=time.monotonic, kw_only=True)


@dataclass(frozen=True)
class OptimisticTargetRemoval(OptimisticLocalChange):
    target_id: str


# Outbound


class GameActionRequest(WireModel):
    room_id: str
    type: GameActionType
    player_id: str
    player_name: str
    position: int | None = Field(default=None, ge=0, lt=BOARD_CELLS)
    target_id: str | None = None
    payload: str | None = None
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))
