from datetime import UTC, datetime

from shared.chat import ChatLog, ChatMessage, ChatPayload


def _message(message_id, text="hi"):
    return ChatMessage(id=message_id, user_id="u1", display_name="Alice", text=text, sent_at=datetime.now(UTC))


class TestChatPayload:
    def test_accepts_server_field_names(self):
        message = ChatPayload.model_validate(
            {"messageId": 5, "senderId": 2, "sender": "Bob", "content": "yo", "timestamp": 1700000000000},
        ).to_message()
        assert (message.id, message.user_id, message.display_name, message.text) == ("5", "2", "Bob", "yo")

    def test_id_falls_back_to_sender_and_timestamp(self):
        body = {"userId": "u2", "message": "hi", "timestamp": 1700000000000}
        first = ChatPayload.model_validate(body).to_message()
        second = ChatPayload.model_validate(body).to_message()
        assert first.id == second.id == "u2:1700000000000"

    def test_without_timestamp_each_message_is_unique(self):
        body = {"userId": "u2", "message": "hi"}
        assert ChatPayload.model_validate(body).to_message().id != ChatPayload.model_validate(body).to_message().id


class TestChatLog:
    def test_duplicate_id_is_ignored(self):
        log = ChatLog()
        assert log.append(_message("1"))
        assert not log.append(_message("1", text="again"))
        assert [m.text for m in log.messages] == ["hi"]

    def test_history_is_bounded(self):
        log = ChatLog(max_messages=2)
        for n in range(3):
            log.append(_message(str(n)))
        assert [m.id for m in log.messages] == ["1", "2"]
        # An evicted id may be appended again.
        assert log.append(_message("0"))
