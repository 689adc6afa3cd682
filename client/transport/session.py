"""Transport session: one physical broker connection and its recovery policy."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import time
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from shared.messaging.encoder import DecodeError
from transport.bus import EventBus, EventCategory
from transport.exceptions import (
    ConnectionClosedError,
    HandshakeRejectedError,
    HandshakeTimeoutError,
    TransportError,
)
from transport.frames import (
    ConnectedFrame,
    ConnectFrame,
    DisconnectFrame,
    ErrorFrame,
    HeartbeatFrame,
    MessageFrame,
    SendFrame,
    SubscribeFrame,
    UnsubscribeFrame,
    dump_frame,
    parse_server_frame,
)
from transport.topics import TopicRegistry
from transport.types import ConnectionState, ConnectionStatus, SendOutcome, Session
from transport.websocket import connect_websocket

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine

    from shared.messaging.protocol import ConnectionProtocol
    from transport.settings import TransportSettings

    Connector = Callable[[str], Awaitable[ConnectionProtocol]]

logger = structlog.get_logger()

# Errors that mean "this connection is gone" rather than a bug in our code.
_IO_ERRORS = (ConnectionError, OSError, RuntimeError)

_BUFFERING_STATES = frozenset({ConnectionState.CONNECTING, ConnectionState.RECONNECTING})


@dataclass(frozen=True)
class _Outbound:
    frame: dict[str, Any]
    bufferable: bool


async def _close_quietly(connection: ConnectionProtocol) -> None:
    with contextlib.suppress(*_IO_ERRORS):
        await connection.close()


class TransportSession:
    """Own one broker connection: handshake, heartbeats, reconnects, outbound queue.

    Transport errors never escape to callers once connected. They move the
    session to RECONNECTING, retry on a fixed backoff, and only after the
    retry budget is spent emit a terminal DISCONNECTED status. Every
    successful (re)connect replays the topic registry before the session
    reports itself CONNECTED.

    Outbound requests are transmitted while CONNECTED, buffered while
    CONNECTING/RECONNECTING (when the caller allows it), and dropped
    otherwise.
    """

    def __init__(
        self,
        settings: TransportSettings,
        *,
        connector: Connector | None = None,
        registry: TopicRegistry | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self._settings = settings
        self._connector = connector or connect_websocket
        self.registry = registry or TopicRegistry()
        self.bus = bus or EventBus()
        self.registry.bind(self)

        self._state = ConnectionState.DISCONNECTED
        self._session: Session | None = None
        self._connection: ConnectionProtocol | None = None
        self._connect_lock = asyncio.Lock()

        self._outbound: asyncio.Queue[_Outbound] | None = None
        self._pending: deque[dict[str, Any]] = deque()
        self._last_received = 0.0

        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # -- Lifecycle ------------------------------------------------------------

    async def connect(self, session: Session) -> None:
        """Connect as session. Resolves on the first handshake acknowledgment.

        A no-op when already connected with the same session. Any other
        live or recovering connection is torn down first: role is
        connection-scoped and never upgraded in place.

        Raises HandshakeTimeoutError, HandshakeRejectedError or
        ConnectionClosedError; the session is DISCONNECTED afterwards.
        """
        async with self._connect_lock:
            if self._state == ConnectionState.CONNECTED and self._session == session:
                logger.debug("already connected", user_id=session.user_id, role=session.role)
                return

            if self._state != ConnectionState.DISCONNECTED:
                logger.info(
                    "replacing connection",
                    old_role=self._session.role if self._session else None,
                    new_role=session.role,
                )
                await self._teardown(reason="session replaced")

            self._session = session
            self._set_state(ConnectionState.CONNECTING)
            try:
                await self._establish()
            except TransportError as e:
                logger.warning("connect failed", error=str(e))
                self._abandon(reason=str(e))
                raise
            except asyncio.CancelledError:
                self._abandon(reason="connect cancelled")
                raise
            logger.info("connected", user_id=session.user_id, role=session.role)

    async def disconnect(self) -> None:
        """Close the connection and cancel heartbeat and reconnect timers."""
        async with self._connect_lock:
            await self._teardown(reason="client disconnect")
            self._session = None

    def _abandon(self, reason: str) -> None:
        self._session = None
        self._connection = None
        self._pending.clear()
        self._set_state(ConnectionState.DISCONNECTED, reason=reason)

    async def _teardown(self, reason: str | None = None) -> None:
        tasks = self._cancel_io_tasks()
        reconnect = self._reconnect_task
        self._reconnect_task = None
        if reconnect is not None and reconnect is not asyncio.current_task():
            reconnect.cancel()
            tasks.append(reconnect)
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        connection = self._connection
        outbound = self._outbound
        self._connection = None
        self._outbound = None
        self._pending.clear()
        if connection is not None:
            with contextlib.suppress(*_IO_ERRORS):
                # Requests queued before the disconnect, such as a room leave, still go out.
                while outbound is not None and not outbound.empty():
                    await connection.send_frame(outbound.get_nowait().frame)
                await connection.send_frame(dump_frame(DisconnectFrame()))
            await _close_quietly(connection)
        self._set_state(ConnectionState.DISCONNECTED, reason=reason)

    def _cancel_io_tasks(self) -> list[asyncio.Task[None]]:
        """Cancel reader/writer/heartbeat tasks, skipping the calling task."""
        current = asyncio.current_task()
        tasks = [t for t in (self._reader_task, self._writer_task, self._heartbeat_task) if t is not None]
        self._reader_task = self._writer_task = self._heartbeat_task = None
        cancelled = []
        for task in tasks:
            if task is not current:
                task.cancel()
                cancelled.append(task)
        return cancelled

    # -- Connection establishment ---------------------------------------------

    async def _establish(self) -> None:
        connection = await self._open_connection()
        self._connection = connection
        self._last_received = time.monotonic()

        issue = functools.partial(self._send_subscribe, connection)
        try:
            replayed = await self.registry.resubscribe_all(issue)
            # Refresh hooks may open topics while the replay is in flight.
            for topic in self.registry.topics - set(replayed):
                await issue(topic)
        except _IO_ERRORS as e:
            self._connection = None
            await _close_quietly(connection)
            raise ConnectionClosedError(f"connection lost during subscription replay: {e}") from e
        except asyncio.CancelledError:
            self._connection = None
            await _close_quietly(connection)
            raise

        queue: asyncio.Queue[_Outbound] = asyncio.Queue()
        while self._pending:
            queue.put_nowait(_Outbound(self._pending.popleft(), bufferable=True))
        self._outbound = queue

        self._reader_task = self._spawn(connection, "reader", self._reader_loop(connection))
        self._writer_task = self._spawn(connection, "writer", self._writer_loop(connection, queue))
        if self._settings.heartbeat_interval_seconds > 0:
            self._heartbeat_task = self._spawn(connection, "heartbeat", self._heartbeat_loop(connection))
        self._set_state(ConnectionState.CONNECTED)

    async def _open_connection(self) -> ConnectionProtocol:
        session = self._session
        if session is None:  # pragma: no cover - guarded by connect()
            raise ConnectionClosedError("no session to connect")
        timeout = self._settings.handshake_timeout_seconds
        opened: list[ConnectionProtocol] = []

        async def dial() -> ConnectionProtocol:
            connection = await self._connector(self._settings.server_url)
            opened.append(connection)
            await self._handshake(connection, session)
            return connection

        try:
            return await asyncio.wait_for(dial(), timeout=timeout)
        except TimeoutError as e:
            await self._close_all(opened)
            raise HandshakeTimeoutError(f"no handshake acknowledgment within {timeout}s") from e
        except HandshakeRejectedError:
            await self._close_all(opened)
            raise
        except _IO_ERRORS as e:
            await self._close_all(opened)
            raise ConnectionClosedError(str(e) or type(e).__name__) from e
        except asyncio.CancelledError:
            await self._close_all(opened)
            raise

    @staticmethod
    async def _close_all(connections: list[ConnectionProtocol]) -> None:
        for connection in connections:
            await _close_quietly(connection)

    async def _handshake(self, connection: ConnectionProtocol, session: Session) -> None:
        connect = ConnectFrame(
            user_id=session.user_id,
            display_name=session.display_name,
            role=session.role,
            heartbeat_ms=int(self._settings.heartbeat_interval_seconds * 1000),
        )
        await connection.send_frame(dump_frame(connect))
        while True:
            try:
                frame = parse_server_frame(await connection.receive_frame())
            except (DecodeError, ValidationError) as e:
                logger.warning("malformed frame during handshake", error=str(e))
                continue
            if isinstance(frame, ConnectedFrame):
                logger.debug("handshake acknowledged", broker_session=frame.session_id)
                return
            if isinstance(frame, ErrorFrame):
                raise HandshakeRejectedError(frame.message or "handshake rejected")

    async def _send_subscribe(self, connection: ConnectionProtocol, topic: str) -> None:
        await connection.send_frame(dump_frame(SubscribeFrame(topic=topic)))

    # -- Background loops -----------------------------------------------------

    def _spawn(
        self,
        connection: ConnectionProtocol,
        name: str,
        loop: Coroutine[Any, Any, None],
    ) -> asyncio.Task[None]:
        return asyncio.create_task(self._supervise(connection, name, loop))

    async def _supervise(
        self,
        connection: ConnectionProtocol,
        name: str,
        loop: Coroutine[Any, Any, None],
    ) -> None:
        try:
            await loop
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("transport task crashed", task=name)
            await self._handle_transport_failure(connection, f"{name} task crashed")

    async def _reader_loop(self, connection: ConnectionProtocol) -> None:
        try:
            while True:
                try:
                    raw = await connection.receive_frame()
                except DecodeError as e:
                    logger.warning("undecodable frame dropped", error=str(e))
                    continue
                self._last_received = time.monotonic()
                try:
                    frame = parse_server_frame(raw)
                except ValidationError as e:
                    logger.warning("malformed frame dropped", error=str(e))
                    continue

                if isinstance(frame, MessageFrame):
                    self.registry.dispatch(frame.topic, frame.body)
                elif isinstance(frame, ErrorFrame):
                    await self._handle_transport_failure(connection, f"broker error: {frame.message}")
                    return
        except _IO_ERRORS as e:
            await self._handle_transport_failure(connection, str(e) or type(e).__name__)

    async def _writer_loop(self, connection: ConnectionProtocol, queue: asyncio.Queue[_Outbound]) -> None:
        while True:
            item = await queue.get()
            try:
                await connection.send_frame(item.frame)
            except _IO_ERRORS as e:
                if item.bufferable:
                    self._pending.append(item.frame)
                await self._handle_transport_failure(connection, str(e) or type(e).__name__)
                return

    async def _heartbeat_loop(self, connection: ConnectionProtocol) -> None:
        interval = self._settings.heartbeat_interval_seconds
        limit = interval + self._settings.heartbeat_grace_seconds
        while True:
            await asyncio.sleep(interval)
            silent_for = time.monotonic() - self._last_received
            if silent_for > limit:
                await self._handle_transport_failure(connection, f"no heartbeat for {silent_for:.1f}s")
                return
            self._enqueue(dump_frame(HeartbeatFrame()), bufferable=False)

    async def _handle_transport_failure(self, connection: ConnectionProtocol, reason: str) -> None:
        if connection is not self._connection:
            # Already handled by another loop of the same connection.
            return
        logger.warning("transport failure", reason=reason, connection_id=connection.connection_id)
        self._connection = None
        self._salvage_outbound()
        self._cancel_io_tasks()
        await _close_quietly(connection)

        if self._settings.max_reconnect_attempts == 0:
            self._give_up(reason)
            return
        self._set_state(ConnectionState.RECONNECTING, reason=reason)
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    def _salvage_outbound(self) -> None:
        """Move queued bufferable requests back to the pending buffer."""
        queue = self._outbound
        self._outbound = None
        if queue is None:
            return
        while not queue.empty():
            item = queue.get_nowait()
            if item.bufferable:
                self._buffer(item.frame)

    async def _reconnect_loop(self) -> None:
        attempts = self._settings.max_reconnect_attempts
        for attempt in range(1, attempts + 1):
            await asyncio.sleep(self._settings.reconnect_delay_seconds)
            logger.info("reconnecting", attempt=attempt, max_attempts=attempts)
            try:
                await self._establish()
            except TransportError as e:
                logger.warning("reconnect attempt failed", attempt=attempt, error=str(e))
                continue
            logger.info("reconnected", attempt=attempt)
            self._reconnect_task = None
            return

        logger.error("reconnect attempts exhausted", attempts=attempts)
        self._reconnect_task = None
        self._give_up("reconnect attempts exhausted")

    def _give_up(self, reason: str) -> None:
        """Terminal DISCONNECTED: the session is gone and only a new connect() revives it."""
        self._session = None
        self._pending.clear()
        self._set_state(ConnectionState.DISCONNECTED, terminal=True, reason=reason)

    # -- Outbound -------------------------------------------------------------

    def publish(self, destination: str, body: dict[str, Any], *, bufferable: bool = True) -> SendOutcome:
        """Send a request to a server destination according to the connection state."""
        frame = dump_frame(SendFrame(destination=destination, body=body))
        if self._state == ConnectionState.CONNECTED:
            self._enqueue(frame, bufferable=bufferable)
            return SendOutcome.SENT
        if self._state in _BUFFERING_STATES and bufferable:
            self._buffer(frame)
            return SendOutcome.BUFFERED
        logger.debug("request dropped", destination=destination, state=self._state)
        return SendOutcome.DROPPED

    def _buffer(self, frame: dict[str, Any]) -> None:
        if len(self._pending) >= self._settings.outbound_buffer_size:
            dropped = self._pending.popleft()
            logger.warning("outbound buffer full, oldest request dropped", destination=dropped.get("destination"))
        self._pending.append(frame)

    def _enqueue(self, frame: dict[str, Any], *, bufferable: bool) -> None:
        if self._outbound is not None:
            self._outbound.put_nowait(_Outbound(frame, bufferable))

    # -- SubscriptionListener -------------------------------------------------

    def topic_added(self, topic: str) -> None:
        # While not connected the registry is replayed on the next connect.
        if self._state == ConnectionState.CONNECTED:
            self._enqueue(dump_frame(SubscribeFrame(topic=topic)), bufferable=False)

    def topic_removed(self, topic: str) -> None:
        if self._state == ConnectionState.CONNECTED:
            self._enqueue(dump_frame(UnsubscribeFrame(topic=topic)), bufferable=False)

    # -- Internal -------------------------------------------------------------

    def _set_state(
        self,
        state: ConnectionState,
        *,
        terminal: bool = False,
        reason: str | None = None,
    ) -> None:
        if state == self._state and not terminal:
            return
        previous = self._state
        self._state = state
        logger.info("connection state changed", previous=previous, state=state, reason=reason, terminal=terminal)
        self.bus.emit(
            EventCategory.CONNECTION_STATUS,
            ConnectionStatus(state=state, terminal=terminal, reason=reason),
        )
