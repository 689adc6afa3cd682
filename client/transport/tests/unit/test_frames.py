import pytest
from pydantic import ValidationError

from transport.frames import (
    ConnectedFrame,
    ConnectFrame,
    ErrorFrame,
    HeartbeatFrame,
    MessageFrame,
    SendFrame,
    dump_frame,
    parse_server_frame,
)
from transport.types import Role


class TestServerFrameParsing:
    def test_connected(self):
        frame = parse_server_frame({"type": "connected", "session_id": "s-1"})
        assert isinstance(frame, ConnectedFrame)
        assert frame.session_id == "s-1"

    def test_message_keeps_arbitrary_body(self):
        frame = parse_server_frame({"type": "message", "topic": "/topic/x", "body": [1, 2]})
        assert isinstance(frame, MessageFrame)
        assert frame.body == [1, 2]

    def test_heartbeat(self):
        assert isinstance(parse_server_frame({"type": "heartbeat"}), HeartbeatFrame)

    def test_error(self):
        frame = parse_server_frame({"type": "error", "message": "denied"})
        assert isinstance(frame, ErrorFrame)
        assert frame.message == "denied"

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            parse_server_frame({"type": "teleport"})

    def test_client_only_frame_rejected(self):
        with pytest.raises(ValidationError):
            parse_server_frame({"type": "subscribe", "topic": "/topic/x"})

    def test_message_without_topic_rejected(self):
        with pytest.raises(ValidationError):
            parse_server_frame({"type": "message", "body": {}})


class TestClientFrames:
    def test_connect_frame_dump(self):
        frame = ConnectFrame(user_id="u1", display_name="Alice", role=Role.OBSERVER, heartbeat_ms=4000)
        assert dump_frame(frame) == {
            "type": "connect",
            "user_id": "u1",
            "display_name": "Alice",
            "role": "observer",
            "heartbeat_ms": 4000,
        }

    def test_connect_requires_identity(self):
        with pytest.raises(ValidationError):
            ConnectFrame(user_id="", display_name="Alice", role=Role.PLAYER)

    def test_send_frame_dump(self):
        frame = SendFrame(destination="/app/minigame.room.join", body={"roomId": "7"})
        assert dump_frame(frame) == {
            "type": "send",
            "destination": "/app/minigame.room.join",
            "body": {"roomId": "7"},
        }
