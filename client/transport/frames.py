"""Control and data frames exchanged with the message broker."""

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter

from transport.types import Role


class FrameType(StrEnum):
    CONNECT = "connect"
    CONNECTED = "connected"
    DISCONNECT = "disconnect"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    SEND = "send"
    MESSAGE = "message"
    HEARTBEAT = "heartbeat"
    ERROR = "error"


# Client -> broker


class ConnectFrame(BaseModel):
    type: Literal[FrameType.CONNECT] = FrameType.CONNECT
    user_id: str = Field(min_length=1, max_length=100)
    display_name: str = Field(min_length=1, max_length=100)
    role: Role
    heartbeat_ms: int = Field(default=0, ge=0)


class DisconnectFrame(BaseModel):
    type: Literal[FrameType.DISCONNECT] = FrameType.DISCONNECT


class SubscribeFrame(BaseModel):
    type: Literal[FrameType.SUBSCRIBE] = FrameType.SUBSCRIBE
    topic: str = Field(min_length=1)


class UnsubscribeFrame(BaseModel):
    type: Literal[FrameType.UNSUBSCRIBE] = FrameType.UNSUBSCRIBE
    topic: str = Field(min_length=1)


class SendFrame(BaseModel):
    type: Literal[FrameType.SEND] = FrameType.SEND
    destination: str = Field(min_length=1)
    body: dict[str, Any] = Field(default_factory=dict)


class HeartbeatFrame(BaseModel):
    type: Literal[FrameType.HEARTBEAT] = FrameType.HEARTBEAT


# Broker -> client


class ConnectedFrame(BaseModel):
    type: Literal[FrameType.CONNECTED] = FrameType.CONNECTED
    session_id: str | None = None
    heartbeat_ms: int | None = Field(default=None, ge=0)


class MessageFrame(BaseModel):
    type: Literal[FrameType.MESSAGE] = FrameType.MESSAGE
    topic: str = Field(min_length=1)
    body: Any = None


class ErrorFrame(BaseModel):
    type: Literal[FrameType.ERROR] = FrameType.ERROR
    message: str = ""


ServerFrame = Annotated[
    ConnectedFrame | MessageFrame | HeartbeatFrame | ErrorFrame,
    Field(discriminator="type"),
]

_server_frame_adapter = TypeAdapter(ServerFrame)


def parse_server_frame(data: dict[str, Any]) -> ConnectedFrame | MessageFrame | HeartbeatFrame | ErrorFrame:
    """Parse a decoded frame from the broker. Raises pydantic.ValidationError."""
    return _server_frame_adapter.validate_python(data)


def dump_frame(frame: BaseModel) -> dict[str, Any]:
    return frame.model_dump(mode="json")
