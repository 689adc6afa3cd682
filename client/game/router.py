from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import ValidationError

from game.events import (
    BOARD_CELLS,
    BoardMoveEvent,
    BoardStateEvent,
    CountdownStartEvent,
    GameActionRequest,
    GameEndEvent,
    GameStartEvent,
    HitAckEvent,
    ReactionEndEvent,
    ReactionGoEvent,
    ReactionPrepareEvent,
    ReactionResultEvent,
    RoundEndEvent,
    RoundStartEvent,
    ScoreUpdateEvent,
    ServerEvent,
    SpawnTargetEvent,
    TargetRemovedEvent,
    TargetSyncEvent,
    parse_game_event,
)
from game.omok import OmokBoard
from game.reaction import ReactionPhase, ReactionRace
from game.targets import TargetField
from game.types import GameActionResult, GameActionType, GameEventType, GameType
from lobby.models import RoomPhase
from shared.channels import Destination
from transport.bus import EventCategory
from transport.types import SendOutcome

if TYPE_CHECKING:
    from collections.abc import Callable

    from lobby.models import RoomState
    from transport.bus import EventBus
    from transport.session import TransportSession

logger = logging.getLogger(__name__)


class RoomContext(Protocol):
    """The parts of the room session the router reads and notifies."""

    @property
    def active_room_id(self) -> str | None: ...

    @property
    def phase(self) -> RoomPhase: ...

    @property
    def room(self) -> RoomState | None: ...

    @property
    def local_user_id(self) -> str | None: ...

    @property
    def is_observer(self) -> bool: ...

    def handle_game_started(self, room_id: str) -> None: ...

    def handle_game_ended(self, room_id: str) -> None: ...


_LIFECYCLE_EVENTS = frozenset(
    {
        GameEventType.GAME_START,
        GameEventType.GAME_END,
        GameEventType.ROUND_START,
        GameEventType.ROUND_END,
        GameEventType.COUNTDOWN_START,
    },
)

_GAME_EVENTS: dict[GameType, frozenset[GameEventType]] = {
    GameType.OMOK: _LIFECYCLE_EVENTS
    | {
        GameEventType.BOARD_MOVE,
        GameEventType.OMOK_MOVE,
        GameEventType.BOARD_STATE,
        GameEventType.OMOK_STATE,
    },
    GameType.AIM: _LIFECYCLE_EVENTS
    | {
        GameEventType.SPAWN_TARGET,
        GameEventType.TARGET_REMOVED,
        GameEventType.TARGET_SYNC,
        GameEventType.SCORE_UPDATE,
        GameEventType.HIT_ACK,
    },
    GameType.REACTION: _LIFECYCLE_EVENTS
    | {
        GameEventType.REACTION_PREPARE,
        GameEventType.REACTION_GO,
        GameEventType.REACTION_RESULT,
        GameEventType.REACTION_END,
    },
}

_ALL_EVENTS = frozenset(GameEventType)


def _result(outcome: SendOutcome) -> GameActionResult:
    if outcome == SendOutcome.DROPPED:
        return GameActionResult.DROPPED
    return GameActionResult.SENT


class GameEventRouter:
    """
    Applies confirmed game events from the active room to per-game views.

    Inbound events are the only thing that changes the board, the target
    field or the reaction race. Local actions are checked against those
    views and sent to the server; they never mutate confirmed state, with
    the single exception of the optimistic target overlay, which the next
    target sync overwrites.
    """

    def __init__(self, transport: TransportSession, bus: EventBus, room: RoomContext) -> None:
        self._transport = transport
        self._bus = bus
        self._room = room

        self.board = OmokBoard()
        self.targets = TargetField()
        self.reaction = ReactionRace()
        self.round = 0
        self.scores: dict[str, int] = {}
        self.winner_id: str | None = None

        self._handlers: dict[type[ServerEvent], Callable[[Any], bool | None]] = {
            GameStartEvent: self._on_game_start,
            GameEndEvent: self._on_game_end,
            RoundStartEvent: self._on_round_start,
            RoundEndEvent: self._on_round_end,
            CountdownStartEvent: self._on_countdown,
            BoardMoveEvent: self._on_board_move,
            BoardStateEvent: self.board.apply_snapshot,
            SpawnTargetEvent: self.targets.spawn,
            TargetRemovedEvent: self.targets.remove,
            TargetSyncEvent: self.targets.sync,
            ScoreUpdateEvent: self._on_score,
            HitAckEvent: self._on_score,
            ReactionPrepareEvent: self._on_reaction_prepare,
            ReactionGoEvent: self._on_reaction_go,
            ReactionResultEvent: self.reaction.record_result,
            ReactionEndEvent: self.reaction.end,
        }

    @property
    def game_type(self) -> GameType | None:
        room = self._room.room
        if room is None or room.game_type is None:
            return None
        try:
            return GameType(room.game_type)
        except ValueError:
            return None

    def reset(self, players: list[str] | None = None) -> None:
        """Clear every view. Called when a game starts and when the room is left."""
        self.board.reset(players or ())
        self.targets.reset()
        self.reaction.reset()
        self.round = 0
        self.scores = {}
        self.winner_id = None

    # -- Inbound ----------------------------------------------------------------

    def handle_message(self, raw_message: Any) -> None:  # noqa: ANN401
        try:
            event = parse_game_event(raw_message)
        except ValidationError as e:
            logger.warning("invalid game event dropped: %s", e)
            return

        active_room_id = self._room.active_room_id
        if event.room_id != active_room_id:
            logger.debug("game event for room %s dropped, active room is %s", event.room_id, active_room_id)
            return

        game_type = self.game_type
        allowed = _GAME_EVENTS[game_type] if game_type is not None else _ALL_EVENTS
        if event.type not in allowed:
            logger.warning("event %s is not part of %s, dropped", event.type, game_type)
            return

        if self._handlers[type(event)](event) is False:
            logger.debug("%s in room %s already applied, not re-emitted", event.type, event.room_id)
            return
        self._bus.emit(EventCategory.GAME_EVENT, event)

    def _on_game_start(self, event: GameStartEvent) -> None:
        room = self._room.room
        self.reset([slot.user_id for slot in room.players] if room is not None else None)
        logger.info("game started in room %s with players %s", event.room_id, list(self.board.players))
        self._room.handle_game_started(event.room_id)

    def _on_game_end(self, event: GameEndEvent) -> None:
        self.scores = dict(event.scores)
        self.winner_id = event.winner_id
        logger.info("game ended in room %s, winner %s", event.room_id, event.winner_id)
        self._room.handle_game_ended(event.room_id)

    def _on_round_start(self, event: RoundStartEvent) -> None:
        self.round = event.round

    def _on_round_end(self, event: RoundEndEvent) -> None:
        self.round = event.round
        self.scores = dict(event.scores)
        self.winner_id = event.winner_id

    def _on_countdown(self, event: CountdownStartEvent) -> None:
        logger.debug("countdown of %ss started by %s", event.seconds, event.player_id)

    def _on_board_move(self, event: BoardMoveEvent) -> bool:
        self._ensure_board_players()
        return self.board.apply_move(event)

    def _on_score(self, event: ScoreUpdateEvent | HitAckEvent) -> None:
        if event.score is not None:
            self.targets.set_score(event.player_id, event.score)

    def _on_reaction_prepare(self, event: ReactionPrepareEvent) -> None:
        self.reaction.prepare()

    def _on_reaction_go(self, event: ReactionGoEvent) -> None:
        self.reaction.go()

    # -- Local actions ----------------------------------------------------------

    def place_stone(self, position: int) -> GameActionResult:
        """Send an omok move. The stone appears when the server echoes it back."""
        guard = self._require_playing()
        if guard is not None:
            return guard
        if not 0 <= position < BOARD_CELLS:
            return GameActionResult.OUT_OF_RANGE
        self._ensure_board_players()
        if not self.board.is_turn_of(self._room.local_user_id):
            logger.debug("move at %s refused, current turn is %s", position, self.board.current_player_id)
            return GameActionResult.NOT_YOUR_TURN
        if self.board.is_occupied(position):
            return GameActionResult.OCCUPIED
        return self._send(GameActionType.OMOK_MOVE, position=position)

    def hit_target(self, target_id: str) -> GameActionResult:
        """Hide target_id locally and report the hit to the server."""
        guard = self._require_playing()
        if guard is not None:
            return guard
        if self.targets.mark_hit(target_id) is None:
            return GameActionResult.UNKNOWN_TARGET
        return self._send(GameActionType.HIT, target_id=target_id)

    def react(self) -> GameActionResult:
        guard = self._require_playing()
        if guard is not None:
            return guard
        if self.reaction.phase != ReactionPhase.GO:
            return GameActionResult.WRONG_PHASE
        if self.reaction.has_reacted:
            return GameActionResult.ALREADY_SENT
        result = self._send(GameActionType.REACTION_HIT)
        if result == GameActionResult.SENT:
            self.reaction.mark_reacted()
        return result

    def start_reaction_round(self, *, immediate: bool = True) -> GameActionResult:
        """Host-only. The server answers with reactionPrepare and later reactionGo."""
        guard = self._require_playing(host_only=True)
        if guard is not None:
            return guard
        if self.reaction.phase in (ReactionPhase.PREPARE, ReactionPhase.GO):
            return GameActionResult.WRONG_PHASE
        return self._send(GameActionType.REACTION_START, payload="immediate" if immediate else None)

    def start_countdown(self) -> GameActionResult:
        guard = self._require_playing(host_only=True)
        if guard is not None:
            return guard
        return self._send(GameActionType.COUNTDOWN_START)

    def _ensure_board_players(self) -> None:
        # Joined mid-game without a gameStart: take the turn order from the room.
        room = self._room.room
        if not self.board.players and room is not None and room.players:
            self.board.set_players([slot.user_id for slot in room.players])

    def _require_playing(self, *, host_only: bool = False) -> GameActionResult | None:
        if self._room.is_observer:
            return GameActionResult.OBSERVER
        if self._room.active_room_id is None or self._room.phase != RoomPhase.PLAYING:
            return GameActionResult.NOT_PLAYING
        if self._room.local_user_id is None:
            return GameActionResult.NOT_PLAYING
        if host_only:
            room = self._room.room
            if room is None or room.host_id != self._room.local_user_id:
                return GameActionResult.NOT_HOST
        return None

    def _send(self, action: GameActionType, **fields: Any) -> GameActionResult:  # noqa: ANN401
        session = self._transport.session
        request = GameActionRequest(
            room_id=self._room.active_room_id,
            type=action,
            player_id=session.user_id,
            player_name=session.display_name,
            **fields,
        )
        # Never buffered while reconnecting.
        outcome = self._transport.publish(Destination.GAME_EVENT, request.to_wire(), bufferable=False)
        logger.debug("sent %s for room %s: %s", action, request.room_id, outcome)
        return _result(outcome)
