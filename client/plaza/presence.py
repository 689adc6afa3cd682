"""Shared-world presence: who is in the plaza, where they stand and what they say."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from plaza.models import (
    PlayerJoinRequest,
    PlazaChatRequest,
    PositionPayload,
    PositionUpdateRequest,
    PresenceAction,
    PresenceEvent,
    PresencePayload,
)
from shared import channels
from shared.channels import Destination
from shared.chat import DEFAULT_HISTORY, ChatLog, ChatPayload
from transport.bus import EventCategory
from transport.rate_limit import IntervalLimiter
from transport.types import SendOutcome

if TYPE_CHECKING:
    from collections.abc import Callable

    from plaza.models import PositionSample
    from transport.bus import EventBus
    from transport.session import TransportSession

logger = structlog.get_logger()


class PlazaPresence:
    """Presence, position and global chat on the plaza broadcast channels.

    Own echoes are ignored. Only the latest position per user is kept and
    a user's position is forgotten when they leave. Outbound positions are
    throttled to one per interval and dropped, never buffered, while
    disconnected.
    """

    def __init__(
        self,
        transport: TransportSession,
        bus: EventBus,
        *,
        position_interval_seconds: float = 0.1,
        chat_history_size: int = DEFAULT_HISTORY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._bus = bus
        self._position_limiter = IntervalLimiter(position_interval_seconds, clock=clock)
        self._players: dict[str, str] = {}
        self._positions: dict[str, PositionSample] = {}
        self._handles: list[Callable[[], None]] = []
        self.online_count: int | None = None
        self.chat = ChatLog(chat_history_size)

    @property
    def is_attached(self) -> bool:
        return bool(self._handles)

    @property
    def players(self) -> dict[str, str]:
        """Other users currently in the plaza, user id to display name."""
        return dict(self._players)

    @property
    def positions(self) -> dict[str, PositionSample]:
        return dict(self._positions)

    def attach(self) -> None:
        """Subscribe the plaza channels and announce ourselves on every (re)connect."""
        if self._handles:
            return
        registry = self._transport.registry
        self._handles = [
            registry.subscribe(channels.PLAZA_PLAYERS, self.handle_presence),
            registry.subscribe(channels.PLAZA_POSITIONS, self.handle_position),
            registry.subscribe(channels.PLAZA_CHAT, self.handle_chat),
            registry.subscribe(channels.PLAZA_ONLINE_COUNT, self.handle_online_count),
            registry.on_resubscribed(self.announce),
        ]
        if self._transport.is_connected:
            self.announce()

    def detach(self) -> None:
        for remove in self._handles:
            remove()
        self._handles = []
        self._players.clear()
        self._positions.clear()
        self._position_limiter.reset()
        self.chat.clear()
        self.online_count = None

    # -- Outbound -------------------------------------------------------------

    def announce(self) -> SendOutcome:
        session = self._transport.session
        if session is None:
            return SendOutcome.DROPPED
        request = PlayerJoinRequest(user_id=session.user_id, username=session.display_name)
        return self._transport.publish(Destination.PLAYER_JOIN, request.to_wire())

    def send_position(
        self,
        x: float,
        y: float,
        z: float,
        *,
        heading_radians: float = 0.0,
        animation_state: str = "idle",
        model_ref: str | None = None,
    ) -> bool:
        """Broadcast a local pose. Returns False when throttled or not connected."""
        session = self._transport.session
        if session is None or not self._transport.is_connected:
            return False
        if not self._position_limiter.allow():
            return False
        request = PositionUpdateRequest(
            user_id=session.user_id,
            username=session.display_name,
            x=x,
            y=y,
            z=z,
            rotation_y=heading_radians,
            animation=animation_state,
            model_path=model_ref,
        )
        outcome = self._transport.publish(Destination.PLAYER_POSITION, request.to_wire(), bufferable=False)
        return outcome == SendOutcome.SENT

    def send_chat(self, text: str) -> SendOutcome:
        session = self._transport.session
        if session is None:
            return SendOutcome.DROPPED
        try:
            request = PlazaChatRequest(user_id=session.user_id, username=session.display_name, message=text.strip())
        except ValidationError as e:
            logger.debug("plaza chat not sent", error=str(e))
            return SendOutcome.DROPPED
        return self._transport.publish(Destination.PLAZA_CHAT, request.to_wire())

    # -- Inbound --------------------------------------------------------------

    def handle_presence(self, body: Any) -> None:  # noqa: ANN401
        try:
            payload = PresencePayload.model_validate(body)
        except ValidationError as e:
            logger.warning("malformed presence event dropped", error=str(e))
            return
        event = PresenceEvent(payload.action, payload.user_id, payload.display_name)

        if self._is_own(payload.user_id):
            if payload.action == PresenceAction.DUPLICATE:
                logger.warning("server reported a duplicate login", user_id=payload.user_id)
                self._bus.emit(EventCategory.PRESENCE, event)
            return

        if payload.action == PresenceAction.JOIN:
            self._players[payload.user_id] = payload.display_name
        elif payload.action == PresenceAction.LEAVE:
            self._players.pop(payload.user_id, None)
            self._positions.pop(payload.user_id, None)
        else:
            return
        logger.debug("plaza presence", action=payload.action, user_id=payload.user_id)
        self._bus.emit(EventCategory.PRESENCE, event)

    def handle_position(self, body: Any) -> None:  # noqa: ANN401
        try:
            sample = PositionPayload.model_validate(body).to_sample()
        except ValidationError as e:
            logger.warning("malformed position dropped", error=str(e))
            return
        if self._is_own(sample.user_id):
            return
        previous = self._positions.get(sample.user_id)
        if (
            previous is not None
            and previous.timestamp is not None
            and sample.timestamp is not None
            and sample.timestamp < previous.timestamp
        ):
            logger.debug("out-of-order position dropped", user_id=sample.user_id)
            return
        self._positions[sample.user_id] = sample
        self._bus.emit(EventCategory.POSITION, sample)

    def handle_chat(self, body: Any) -> None:  # noqa: ANN401
        try:
            message = ChatPayload.model_validate(body).to_message()
        except ValidationError as e:
            logger.warning("malformed plaza chat dropped", error=str(e))
            return
        if self.chat.append(message):
            self._bus.emit(EventCategory.CHAT, message)

    def handle_online_count(self, body: Any) -> None:  # noqa: ANN401
        if isinstance(body, bool) or not isinstance(body, int):
            logger.warning("malformed online count dropped", body=body)
            return
        self.online_count = body

    def _is_own(self, user_id: str) -> bool:
        session = self._transport.session
        return session is not None and session.user_id == user_id
