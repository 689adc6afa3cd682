from dataclasses import dataclass
from enum import StrEnum


class Role(StrEnum):
    PLAYER = "player"
    OBSERVER = "observer"


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class SendOutcome(StrEnum):
    """What happened to an outbound request, decided by the connection state."""

    SENT = "sent"
    BUFFERED = "buffered"
    DROPPED = "dropped"


@dataclass(frozen=True)
class Session:
    """Identity of one logical connection.

    Immutable for the life of a connection; switching role means a new
    Session and a full reconnect.
    """

    user_id: str
    display_name: str
    role: Role = Role.PLAYER

    @property
    def is_observer(self) -> bool:
        return self.role == Role.OBSERVER


@dataclass(frozen=True)
class ConnectionStatus:
    """Locally generated notification emitted on every state change.

    terminal is True only when reconnection attempts are exhausted.
    """

    state: ConnectionState
    terminal: bool = False
    reason: str | None = None
