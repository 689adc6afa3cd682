from shared.messaging.mock import MockConnection
from transport.tests.mocks.broker import MockConnector, RecordingTransport, settle, wait_for_state, wait_until

__all__ = [
    "MockConnection",
    "MockConnector",
    "RecordingTransport",
    "settle",
    "wait_for_state",
    "wait_until",
]
