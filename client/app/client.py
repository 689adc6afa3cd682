"""SyncClient: one object per logical connection, wiring every component together."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Self

import structlog
from pydantic import ValidationError

from app.settings import ClientSettings
from game.router import GameEventRouter
from lobby.directory import RoomDirectory
from lobby.machine import RoomSessionMachine
from lobby.models import InvitePayload
from plaza.presence import PlazaPresence
from shared import channels
from shared.channels import Destination
from shared.logging import bind_session_context, clear_session_context
from transport.bus import EventBus, EventCategory
from transport.session import TransportSession
from transport.topics import TopicRegistry

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from transport.session import Connector
    from transport.types import ConnectionStatus, SendOutcome, Session

logger = structlog.get_logger()


class SyncClient:
    """Session-sync core for one user.

    Owns its own topic registry and event bus; nothing is shared between
    two clients. The room directory channels are subscribed for the whole
    life of the client, per-user channels from the first connect.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        connector: Connector | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if settings is None:  # pragma: no cover
            settings = ClientSettings()
        self.settings = settings

        self.bus = EventBus()
        self.registry = TopicRegistry()
        self.transport = TransportSession(settings.transport, connector=connector, registry=self.registry, bus=self.bus)
        self.directory = RoomDirectory(self.bus)
        self.rooms = RoomSessionMachine(
            self.transport,
            self.bus,
            self.directory,
            role_switch_cooldown_seconds=settings.role_switch_cooldown_seconds,
            chat_history_size=settings.chat_history_size,
            clock=clock,
        )
        self.game = GameEventRouter(self.transport, self.bus, self.rooms)
        self.plaza = PlazaPresence(
            self.transport,
            self.bus,
            position_interval_seconds=settings.position_interval_seconds,
            chat_history_size=settings.chat_history_size,
            clock=clock,
        )

        self.rooms.set_game_handler(self.game.handle_message)
        self.rooms.on_room_closed(self._on_room_closed)
        self.registry.subscribe(channels.ROOM_DIFFS, self.directory.handle_diff_message)
        self.registry.subscribe(channels.ROOM_LIST, self.directory.handle_snapshot_message)
        self.registry.on_resubscribed(self.request_room_list)
        self.bus.on(EventCategory.CONNECTION_STATUS, self._on_connection_status)
        if settings.plaza_enabled:
            self.plaza.attach()

        self._user_id: str | None = None
        self._user_handles: list[Callable[[], None]] = []

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.disconnect()

    @property
    def session(self) -> Session | None:
        return self.transport.session

    def on(self, category: EventCategory, handler: Callable[[Any], None]) -> Callable[[], None]:
        return self.bus.on(category, handler)

    def off(self, category: EventCategory, handler: Callable[[Any], None]) -> None:
        self.bus.off(category, handler)

    async def connect(self, session: Session) -> None:
        """Connect as session, replacing any connection held under another identity or role.

        The active room is left first when the identity or role changes,
        so the old membership never outlives its connection.
        """
        current = self.transport.session
        if current is not None and current != session:
            self.rooms.leave_room()
        if self._user_id != session.user_id:
            self._subscribe_user_channels(session.user_id)
        bind_session_context(session.user_id, session.role)
        await self.transport.connect(session)

    async def disconnect(self) -> None:
        """Leave the active room and close the connection."""
        self.rooms.leave_room()
        await self.transport.disconnect()
        clear_session_context()

    def request_room_list(self) -> SendOutcome:
        return self.transport.publish(Destination.ROOM_LIST, {})

    def _subscribe_user_channels(self, user_id: str) -> None:
        for remove in self._user_handles:
            remove()
        self._user_id = user_id
        self._user_handles = [
            self.registry.subscribe(channels.join_result(user_id), self.rooms.handle_join_result),
            self.registry.subscribe(channels.invitations(user_id), self._handle_invite),
        ]

    def _handle_invite(self, body: Any) -> None:  # noqa: ANN401
        try:
            invite = InvitePayload.model_validate(body)
        except ValidationError as e:
            logger.warning("malformed invitation dropped", error=str(e))
            return
        logger.info("invitation received", room_id=invite.room_id, from_user_id=invite.from_user_id)
        self.bus.emit(EventCategory.INVITE, invite)

    def _on_room_closed(self, room_id: str) -> None:
        self.game.reset()

    def _on_connection_status(self, status: ConnectionStatus) -> None:
        if not status.terminal:
            return
        logger.warning(
            "connection lost for good, leaving room",
            room_id=self.rooms.active_room_id,
            reason=status.reason,
        )
        self.rooms.leave_room()
        clear_session_context()
