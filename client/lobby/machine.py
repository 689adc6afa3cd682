"""Room session machine: lifecycle of the one room the local session occupies."""

from __future__ import annotations

import dataclasses
import time
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from lobby.models import (
    CreateRoomRequest,
    GameStateRequest,
    InviteRequest,
    JoinResult,
    JoinResultPayload,
    JoinRoomRequest,
    PlayerSlot,
    RoomAction,
    RoomActionRequest,
    RoomChatRequest,
    RoomDetailEvent,
    RoomDetailPayload,
    RoomPhase,
    RoomRequestResult,
    RoomState,
    UpdateRoomRequest,
)
from shared import channels
from shared.channels import Destination
from shared.chat import DEFAULT_HISTORY, ChatLog, ChatPayload
from transport.bus import EventCategory
from transport.rate_limit import IntervalLimiter
from transport.types import SendOutcome

if TYPE_CHECKING:
    from collections.abc import Callable

    from lobby.directory import RoomDirectory
    from lobby.models import RoomSummary
    from transport.bus import EventBus
    from transport.session import TransportSession
    from transport.types import Session

logger = structlog.get_logger()


def _result(outcome: SendOutcome) -> RoomRequestResult:
    if outcome == SendOutcome.DROPPED:
        return RoomRequestResult.DROPPED
    return RoomRequestResult.SENT


class RoomSessionMachine:
    """Track the locally occupied room through LOBBY -> WAITING -> PLAYING -> ENDED.

    Only server messages move the machine forward: a join becomes WAITING
    when a room detail lists the local user, a game becomes PLAYING on the
    server's start broadcast and ENDED on its end broadcast. Local requests
    are fire-and-forget and return a RoomRequestResult describing whether
    they were handed to the transport or refused by a local guard.

    At most one room is active at a time; joining another room leaves the
    current one first.
    """

    def __init__(
        self,
        transport: TransportSession,
        bus: EventBus,
        directory: RoomDirectory,
        *,
        role_switch_cooldown_seconds: float = 1.0,
        chat_history_size: int = DEFAULT_HISTORY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._bus = bus
        self._directory = directory

        self._phase = RoomPhase.LOBBY
        self._room_id: str | None = None
        self._room: RoomState | None = None
        self._joining = False
        self._join_outcome: SendOutcome | None = None
        self._awaiting_created_room = False

        self._room_unsubscribers: list[Callable[[], None]] = []
        self._game_handler: Callable[[Any], None] | None = None
        self._closed_listeners: dict[int, Callable[[str], None]] = {}
        self._next_listener_id = 0
        self._switch_limiter = IntervalLimiter(role_switch_cooldown_seconds, clock=clock)
        self.chat = ChatLog(chat_history_size)

        directory.bind_active_room(lambda: self._room_id, self.apply_summary)
        directory.bind_room_created(self._on_room_created)
        transport.registry.on_resubscribed(self._on_resubscribed)

    # -- State ----------------------------------------------------------------

    @property
    def phase(self) -> RoomPhase:
        return self._phase

    @property
    def active_room_id(self) -> str | None:
        return self._room_id

    @property
    def room(self) -> RoomState | None:
        return self._room

    @property
    def is_joining(self) -> bool:
        return self._joining

    @property
    def local_user_id(self) -> str | None:
        session = self._transport.session
        return session.user_id if session is not None else None

    @property
    def is_observer(self) -> bool:
        session = self._transport.session
        return session is not None and session.is_observer

    def set_game_handler(self, handler: Callable[[Any], None]) -> None:
        """Receive every message on the active room's game channel."""
        self._game_handler = handler

    def on_room_closed(self, listener: Callable[[str], None]) -> Callable[[], None]:
        """Call listener with the room id whenever the active room is left or removed."""
        listener_id = self._next_listener_id
        self._next_listener_id += 1
        self._closed_listeners[listener_id] = listener

        def remove() -> None:
            self._closed_listeners.pop(listener_id, None)

        return remove

    # -- Outbound requests ----------------------------------------------------

    def create_room(
        self,
        name: str,
        game_type: str,
        max_players: int,
        *,
        is_locked: bool = False,
    ) -> RoomRequestResult:
        """Ask the server to create a room hosted by the local user.

        The room is entered when its create broadcast arrives naming the
        local user as host.
        """
        session = self._transport.session
        if session is None:
            return RoomRequestResult.DROPPED
        if self._room_id is not None:
            self.leave_room()
        try:
            request = CreateRoomRequest(
                name=name,
                game_type=game_type,
                max_players=max_players,
                is_locked=is_locked,
                host_id=session.user_id,
                host_name=session.display_name,
            )
        except ValidationError as e:
            logger.warning("invalid create room request", error=str(e))
            return RoomRequestResult.INVALID
        result = _result(self._transport.publish(Destination.ROOM_CREATE, request.to_wire()))
        self._awaiting_created_room = result == RoomRequestResult.SENT
        logger.info("create room requested", name=name, game_type=game_type, result=result)
        return result

    def join_room(self, room_id: str) -> RoomRequestResult:
        """Enter room_id, leaving any other room first.

        Room channels are subscribed right away so a fast broadcast is not
        missed; the phase moves to WAITING only when the server lists the
        local user as a member.
        """
        session = self._transport.session
        if session is None:
            return RoomRequestResult.DROPPED
        if self._room_id == room_id:
            logger.debug("already in room", room_id=room_id, phase=self._phase)
            return RoomRequestResult.ALREADY_IN_ROOM
        if self._room_id is not None:
            self.leave_room()

        self._room_id = room_id
        self._room = None
        self._joining = True
        self._awaiting_created_room = False
        self._subscribe_room(room_id)
        self._join_outcome = self._send_join(session, room_id)
        if self._join_outcome == SendOutcome.DROPPED:
            logger.info("join not sent, room released", room_id=room_id)
            self._close_room()
            return RoomRequestResult.DROPPED
        logger.info("joining room", room_id=room_id, outcome=self._join_outcome)
        return _result(self._join_outcome)

    def leave_room(self) -> None:
        """Leave the active room from any phase. A no-op when not in a room."""
        room_id = self._room_id
        if room_id is None:
            return
        user_id = self.local_user_id
        if user_id is not None:
            request = RoomActionRequest(room_id=room_id, user_id=user_id)
            self._transport.publish(Destination.ROOM_LEAVE, request.to_wire())
        logger.info("left room", room_id=room_id, phase=self._phase)
        self._close_room()

    def start_game(self) -> RoomRequestResult:
        """Host-only. PLAYING is entered on the server's start broadcast, never here."""
        guard = self._require_member()
        if guard is not None:
            return guard
        if self._phase not in (RoomPhase.WAITING, RoomPhase.ENDED):
            return RoomRequestResult.WRONG_PHASE
        if self.is_observer:
            return RoomRequestResult.OBSERVER
        if self._host_id() != self.local_user_id:
            logger.debug("start refused, not host", room_id=self._room_id)
            return RoomRequestResult.NOT_HOST
        return self._send_room_action(Destination.ROOM_START)

    def switch_role(self) -> RoomRequestResult:
        """Toggle the local user between players and spectators.

        Guarded locally by phase, a cooldown and room capacity; the server
        remains the authority and the new role shows up only in the next
        room detail broadcast.
        """
        guard = self._require_member()
        if guard is not None:
            return guard
        if self._phase != RoomPhase.WAITING:
            return RoomRequestResult.WRONG_PHASE
        if self.is_observer:
            return RoomRequestResult.OBSERVER
        if self._room is not None and self._room.is_spectator(self.local_user_id) and self._is_room_full():
            logger.debug("role switch refused, room full", room_id=self._room_id)
            return RoomRequestResult.ROOM_FULL
        if not self._switch_limiter.allow():
            return RoomRequestResult.COOLDOWN
        return self._send_room_action(Destination.ROOM_SWITCH_ROLE)

    def toggle_ready(self) -> RoomRequestResult:
        guard = self._require_member()
        if guard is not None:
            return guard
        if self._phase != RoomPhase.WAITING:
            return RoomRequestResult.WRONG_PHASE
        if self._host_id() == self.local_user_id:
            return RoomRequestResult.IS_HOST
        return self._send_room_action(Destination.ROOM_READY)

    def update_room_settings(self, *, game_type: str | None = None, max_players: int | None = None) -> RoomRequestResult:
        guard = self._require_member()
        if guard is not None:
            return guard
        if self._phase != RoomPhase.WAITING:
            return RoomRequestResult.WRONG_PHASE
        if self._host_id() != self.local_user_id:
            return RoomRequestResult.NOT_HOST
        try:
            request = UpdateRoomRequest(
                room_id=self._room_id,
                user_id=self.local_user_id,
                game_type=game_type,
                max_players=max_players,
            )
        except ValidationError as e:
            logger.warning("invalid room settings", error=str(e))
            return RoomRequestResult.INVALID
        return _result(self._transport.publish(Destination.ROOM_UPDATE, request.to_wire()))

    def return_to_waiting(self) -> RoomRequestResult:
        """Go back to WAITING in the same room after a round ended."""
        if self._phase != RoomPhase.ENDED:
            return RoomRequestResult.WRONG_PHASE
        self._set_phase(RoomPhase.WAITING)
        return RoomRequestResult.SENT

    def send_chat(self, text: str) -> RoomRequestResult:
        session = self._transport.session
        if self._room_id is None or session is None:
            return RoomRequestResult.NOT_IN_ROOM
        try:
            request = RoomChatRequest(
                room_id=self._room_id,
                user_id=session.user_id,
                username=session.display_name,
                message=text.strip(),
            )
        except ValidationError:
            return RoomRequestResult.INVALID
        return _result(self._transport.publish(Destination.ROOM_CHAT, request.to_wire()))

    def send_invite(self, target_user_id: str) -> RoomRequestResult:
        session = self._transport.session
        if self._room_id is None or session is None:
            return RoomRequestResult.NOT_IN_ROOM
        request = InviteRequest(
            room_id=self._room_id,
            from_user_id=session.user_id,
            from_display_name=session.display_name,
            target_user_id=target_user_id,
        )
        return _result(self._transport.publish(Destination.INVITE, request.to_wire()))

    def request_state_refresh(self) -> RoomRequestResult:
        """Ask the server to re-send the authoritative state of the active room."""
        user_id = self.local_user_id
        if self._room_id is None or user_id is None:
            return RoomRequestResult.NOT_IN_ROOM
        request = GameStateRequest(room_id=self._room_id, player_id=user_id)
        logger.info("state refresh requested", room_id=self._room_id)
        return _result(self._transport.publish(Destination.GAME_STATE, request.to_wire()))

    # -- Inbound: per-user and room channels ----------------------------------

    def handle_join_result(self, body: Any) -> None:  # noqa: ANN401
        try:
            result = JoinResult.from_payload(JoinResultPayload.model_validate(body))
        except ValidationError as e:
            logger.warning("malformed join result dropped", error=str(e))
            return
        if result.room_id is not None and result.room_id != self._room_id:
            logger.debug("join result for another room dropped", room_id=result.room_id)
            return

        if not result.success:
            if not self._joining:
                logger.debug("late join failure ignored", room_id=result.room_id, phase=self._phase)
                return
            logger.info("join rejected", room_id=self._room_id, reason=result.reason)
            self._close_room()
        self._bus.emit(EventCategory.JOIN_RESULT, result)

    def handle_room_detail(self, body: Any) -> None:  # noqa: ANN401
        try:
            payload = RoomDetailPayload.model_validate(body)
        except ValidationError as e:
            logger.warning("malformed room detail dropped", error=str(e))
            return
        if payload.room_id != self._room_id:
            logger.debug("detail for inactive room dropped", room_id=payload.room_id)
            return

        current = self._room or RoomState(room_id=payload.room_id, phase=self._phase)
        updated = dataclasses.replace(
            current,
            host_id=payload.host_id or current.host_id,
            players=(
                tuple(PlayerSlot.from_payload(p) for p in payload.players)
                if payload.players is not None
                else current.players
            ),
            spectators=(
                tuple(PlayerSlot.from_payload(p) for p in payload.spectators)
                if payload.spectators is not None
                else current.spectators
            ),
            max_players=payload.max_players or current.max_players,
            game_type=payload.game_type or current.game_type,
        )

        user_id = self.local_user_id
        is_member = user_id is not None and updated.has_member(user_id)
        lists_present = payload.players is not None or payload.spectators is not None

        if self._joining:
            if is_member:
                self._joining = False
                self._join_outcome = None
                playing = payload.is_playing or payload.action == RoomAction.START
                self._phase = RoomPhase.PLAYING if playing else RoomPhase.WAITING
                logger.info("room membership confirmed", room_id=self._room_id, phase=self._phase)
                if playing:
                    # Joined mid-game: the board was built before we subscribed.
                    self.request_state_refresh()
        elif not is_member and lists_present:
            logger.info("removed from room by server", room_id=self._room_id)
            self._close_room()
            return
        elif payload.action == RoomAction.START and self._phase in (RoomPhase.WAITING, RoomPhase.ENDED):
            self._phase = RoomPhase.PLAYING
            logger.info("game started", room_id=self._room_id)

        self._room = dataclasses.replace(updated, phase=self._phase)
        self._bus.emit(EventCategory.ROOM_DETAIL, RoomDetailEvent(room=self._room, action=payload.action))

    def handle_chat(self, body: Any) -> None:  # noqa: ANN401
        try:
            payload = ChatPayload.model_validate(body)
        except ValidationError as e:
            logger.warning("malformed room chat dropped", error=str(e))
            return
        message = payload.to_message()
        if message.room_id is None:
            message = dataclasses.replace(message, room_id=self._room_id)
        if self.chat.append(message):
            self._bus.emit(EventCategory.CHAT, message)

    def handle_game_started(self, room_id: str) -> None:
        if room_id != self._room_id or self._joining:
            return
        if self._phase in (RoomPhase.WAITING, RoomPhase.ENDED):
            logger.info("game started", room_id=room_id)
            self._set_phase(RoomPhase.PLAYING)

    def handle_game_ended(self, room_id: str) -> None:
        if room_id != self._room_id:
            return
        if self._phase == RoomPhase.PLAYING:
            logger.info("game ended", room_id=room_id)
            self._set_phase(RoomPhase.ENDED)

    def apply_summary(self, summary: RoomSummary | None) -> None:
        """Re-evaluate the active room after the directory changed it. The phase is left alone."""
        if self._room_id is None:
            return
        if summary is None:
            logger.info("active room deleted", room_id=self._room_id)
            self._close_room()
            return
        if self._room is None:
            return
        updated = dataclasses.replace(
            self._room,
            host_id=summary.host_id or self._room.host_id,
            max_players=summary.max_players or self._room.max_players,
            game_type=summary.game_type or self._room.game_type,
        )
        if updated != self._room:
            self._room = updated
            self._bus.emit(EventCategory.ROOM_DETAIL, RoomDetailEvent(room=updated, action=RoomAction.UPDATE))

    # -- Internal -------------------------------------------------------------

    def _on_room_created(self, summary: RoomSummary) -> None:
        session = self._transport.session
        if not self._awaiting_created_room or session is None or summary.host_id != session.user_id:
            return
        self._awaiting_created_room = False
        if self._room_id is not None:
            self.leave_room()
        # The create broadcast names us as host, which confirms membership.
        self._room_id = summary.room_id
        self._subscribe_room(summary.room_id)
        self._phase = RoomPhase.WAITING
        self._room = RoomState(
            room_id=summary.room_id,
            host_id=session.user_id,
            players=(PlayerSlot(session.user_id, session.display_name, is_host=True),),
            phase=self._phase,
            max_players=summary.max_players,
            game_type=summary.game_type or None,
        )
        logger.info("entered created room", room_id=summary.room_id)
        self._bus.emit(EventCategory.ROOM_DETAIL, RoomDetailEvent(room=self._room, action=RoomAction.CREATE))

    def _on_resubscribed(self) -> None:
        if self._room_id is None:
            return
        session = self._transport.session
        if self._joining:
            # A buffered join is flushed with the rest of the buffer.
            if session is not None and self._join_outcome != SendOutcome.BUFFERED:
                self._join_outcome = self._send_join(session, self._room_id)
            return
        self.request_state_refresh()

    def _send_join(self, session: Session, room_id: str) -> SendOutcome:
        request = JoinRoomRequest(room_id=room_id, user_id=session.user_id, username=session.display_name)
        return self._transport.publish(Destination.ROOM_JOIN, request.to_wire())

    def _send_room_action(self, destination: Destination) -> RoomRequestResult:
        request = RoomActionRequest(room_id=self._room_id, user_id=self.local_user_id)
        result = _result(self._transport.publish(destination, request.to_wire()))
        logger.debug("room request", destination=destination, room_id=self._room_id, result=result)
        return result

    def _require_member(self) -> RoomRequestResult | None:
        if self._room_id is None or self._joining or self.local_user_id is None:
            return RoomRequestResult.NOT_IN_ROOM
        return None

    def _host_id(self) -> str | None:
        if self._room is not None and self._room.host_id is not None:
            return self._room.host_id
        summary = self._directory.get(self._room_id) if self._room_id else None
        return summary.host_id if summary is not None else None

    def _is_room_full(self) -> bool:
        summary = self._directory.get(self._room_id) if self._room_id else None
        max_players = (self._room.max_players if self._room else None) or (summary.max_players if summary else None)
        if max_players is None:
            return False
        count = len(self._room.players) if self._room else 0
        if summary is not None:
            count = max(count, summary.current_player_count)
        return count >= max_players

    def _subscribe_room(self, room_id: str) -> None:
        registry = self._transport.registry
        detail, chat, game = channels.room_topics(room_id)
        self._room_unsubscribers = [
            registry.subscribe(detail, self.handle_room_detail),
            registry.subscribe(chat, self.handle_chat),
            registry.subscribe(game, self._dispatch_game),
        ]

    def _dispatch_game(self, body: Any) -> None:  # noqa: ANN401
        if self._game_handler is not None:
            self._game_handler(body)

    def _set_phase(self, phase: RoomPhase) -> None:
        self._phase = phase
        if self._room is not None:
            self._room = dataclasses.replace(self._room, phase=phase)
            self._bus.emit(EventCategory.ROOM_DETAIL, RoomDetailEvent(room=self._room))

    def _close_room(self) -> None:
        room_id = self._room_id
        for unsubscribe in self._room_unsubscribers:
            unsubscribe()
        self._room_unsubscribers = []
        self._room_id = None
        self._room = None
        self._joining = False
        self._join_outcome = None
        self._phase = RoomPhase.LOBBY
        self._switch_limiter.reset()
        self.chat.clear()
        if room_id is None:
            return
        self._bus.emit(EventCategory.ROOM_DETAIL, RoomDetailEvent(room=None, action=RoomAction.LEAVE))
        for listener in list(self._closed_listeners.values()):
            try:
                listener(room_id)
            except Exception:
                logger.exception("room closed listener failed", room_id=room_id)
