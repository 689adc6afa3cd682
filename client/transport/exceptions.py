class TransportError(Exception):
    """Base class for failures to establish a broker connection."""


class HandshakeTimeoutError(TransportError):
    """No handshake acknowledgment arrived within the configured timeout."""


class HandshakeRejectedError(TransportError):
    """The broker answered the handshake with an error frame."""


class ConnectionClosedError(TransportError):
    """The connection could not be opened or closed during the handshake."""
