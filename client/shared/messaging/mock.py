import asyncio
from typing import Any
from uuid import uuid4

from shared.messaging.encoder import decode, encode
from shared.messaging.protocol import ConnectionProtocol

_DROP = object()


class MockConnection(ConnectionProtocol):
    """In-memory broker connection.

    Answers the client's connect frame with a connected frame unless told to
    stay silent or reject, and records every frame the client sends.
    """

    def __init__(
        self,
        connection_id: str | None = None,
        *,
        auto_accept: bool = True,
        reject_with: str | None = None,
    ) -> None:
        self._connection_id = connection_id or str(uuid4())
        self._inbox: asyncio.Queue[bytes | object] = asyncio.Queue()
        self._outbox: list[dict[str, Any]] = []
        self._closed = False
        self._close_code: int | None = None
        self._auto_accept = auto_accept
        self._reject_with = reject_with

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def sent_messages(self) -> list[dict[str, Any]]:
        return self._outbox.copy()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def close_code(self) -> int | None:
        return self._close_code

    def sent_of_type(self, frame_type: str) -> list[dict[str, Any]]:
        return [m for m in self._outbox if m.get("type") == frame_type]

    def subscribed_topics(self) -> list[str]:
        """Topics subscribed on this connection, in the order they were issued."""
        return [m["topic"] for m in self.sent_of_type("subscribe")]

    def published(self, destination: str | None = None) -> list[dict[str, Any]]:
        """Bodies of send frames, optionally filtered by destination."""
        return [
            m["body"]
            for m in self.sent_of_type("send")
            if destination is None or m["destination"] == destination
        ]

    async def send_bytes(self, data: bytes) -> None:
        if self._closed:
            raise ConnectionError("Connection is closed")
        frame = decode(data)
        self._outbox.append(frame)
        if frame.get("type") == "connect":
            self._answer_handshake()

    async def receive_bytes(self) -> bytes:
        if self._closed:
            raise ConnectionError("Connection is closed")
        data = await self._inbox.get()
        if data is _DROP:
            self._closed = True
            raise ConnectionError("Connection dropped")
        return data

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        self._close_code = code
        # wake a pending reader
        self._inbox.put_nowait(_DROP)

    def _answer_handshake(self) -> None:
        if self._reject_with is not None:
            self.simulate_receive_nowait({"type": "error", "message": self._reject_with})
        elif self._auto_accept:
            self.simulate_receive_nowait({"type": "connected", "session_id": self._connection_id})

    async def simulate_receive(self, data: dict[str, Any]) -> None:
        """
        Simulate receiving a frame from the broker.
        """
        await self._inbox.put(encode(data))

    def simulate_receive_nowait(self, data: dict[str, Any]) -> None:
        self._inbox.put_nowait(encode(data))

    def simulate_raw(self, data: bytes) -> None:
        self._inbox.put_nowait(data)

    def simulate_message(self, topic: str, body: Any) -> None:  # noqa: ANN401
        """Deliver a broadcast on topic, as the broker would."""
        self.simulate_receive_nowait({"type": "message", "topic": topic, "body": body})

    def simulate_drop(self) -> None:
        """Make the next receive fail as if the socket closed underneath us."""
        self._inbox.put_nowait(_DROP)
