import contextlib
from uuid import uuid4

import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from shared.messaging.encoder import MAX_FRAME_BYTES
from shared.messaging.protocol import ConnectionProtocol

logger = structlog.get_logger()


class WebSocketConnection(ConnectionProtocol):
    def __init__(self, websocket: ClientConnection, connection_id: str | None = None) -> None:
        self._websocket = websocket
        self._connection_id = connection_id or str(uuid4())

    @property
    def connection_id(self) -> str:
        return self._connection_id

    async def send_bytes(self, data: bytes) -> None:
        try:
            await self._websocket.send(data)
        except ConnectionClosed:
            raise ConnectionError("WebSocket already disconnected") from None

    async def receive_bytes(self) -> bytes:
        try:
            data = await self._websocket.recv()
        except ConnectionClosed:
            raise ConnectionError("WebSocket already disconnected") from None
        if isinstance(data, str):
            return data.encode()
        return data

    async def close(self, code: int = 1000, reason: str = "") -> None:
        with contextlib.suppress(ConnectionClosed):
            await self._websocket.close(code=code, reason=reason)


async def connect_websocket(url: str) -> WebSocketConnection:
    """Open a binary websocket to the broker.

    Library-level pings are off: liveness is tracked by the transport
    session's own heartbeat frames.
    """
    try:
        websocket = await connect(url, ping_interval=None, max_size=MAX_FRAME_BYTES)
    except (InvalidHandshake, InvalidURI) as e:
        raise ConnectionError(f"websocket handshake failed: {e}") from e
    connection = WebSocketConnection(websocket)
    logger.debug("websocket opened", url=url, connection_id=connection.connection_id)
    return connection
