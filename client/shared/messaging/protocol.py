"""The link between a transport session and the broker."""

from abc import ABC, abstractmethod
from typing import Any

from shared.messaging.encoder import decode, encode


class ConnectionProtocol(ABC):
    """One physical broker connection carrying MessagePack frames.

    The websocket implementation and the in-memory mock both subclass
    this; the transport session only ever sees frames.
    """

    @property
    @abstractmethod
    def connection_id(self) -> str: ...

    @abstractmethod
    async def send_bytes(self, data: bytes) -> None:
        """Raises ConnectionError when the link has closed."""

    @abstractmethod
    async def receive_bytes(self) -> bytes:
        """Wait for the next message. Raises ConnectionError when the link has closed."""

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None: ...

    async def send_frame(self, frame: dict[str, Any]) -> None:
        await self.send_bytes(encode(frame))

    async def receive_frame(self) -> dict[str, Any]:
        """Next decoded frame. DecodeError leaves the link open for the following one."""
        return decode(await self.receive_bytes())
