"""Chat messages shared by the plaza and room channels."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

from pydantic import AliasChoices, Field

from shared.messaging.wire import WireModel

DEFAULT_HISTORY = 200


class ChatPayload(WireModel):
    id: str | None = Field(default=None, validation_alias=AliasChoices("id", "messageId"))
    room_id: str | None = None
    user_id: str = Field(validation_alias=AliasChoices("userId", "user_id", "senderId"))
    display_name: str = Field(
        default="",
        validation_alias=AliasChoices("displayName", "display_name", "username", "sender"),
    )
    text: str = Field(min_length=1, validation_alias=AliasChoices("text", "message", "content"))
    sent_at: datetime | None = Field(default=None, validation_alias=AliasChoices("sentAt", "sent_at", "timestamp"))

    def to_message(self) -> ChatMessage:
        sent_at = self.sent_at or datetime.now(UTC)
        if self.id is not None:
            message_id = self.id
        elif self.sent_at is not None:
            # Same sender and timestamp means the same message redelivered.
            message_id = f"{self.user_id}:{int(self.sent_at.timestamp() * 1000)}"
        else:
            message_id = str(uuid4())
        return ChatMessage(
            id=message_id,
            user_id=self.user_id,
            display_name=self.display_name,
            text=self.text,
            sent_at=sent_at,
            room_id=self.room_id,
        )


@dataclass(frozen=True)
class ChatMessage:
    """One chat line. room_id is None for the global plaza channel."""

    id: str
    user_id: str
    display_name: str
    text: str
    sent_at: datetime
    room_id: str | None = None


class ChatLog:
    """Append-only, bounded history for one chat scope.

    Redelivered messages (same id) are ignored.
    """

    def __init__(self, max_messages: int = DEFAULT_HISTORY) -> None:
        self._messages: deque[ChatMessage] = deque()
        self._ids: set[str] = set()
        self._max_messages = max_messages

    def append(self, message: ChatMessage) -> bool:
        """Add message; returns False for a duplicate."""
        if message.id in self._ids:
            return False
        self._messages.append(message)
        self._ids.add(message.id)
        while len(self._messages) > self._max_messages:
            evicted = self._messages.popleft()
            self._ids.discard(evicted.id)
        return True

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def clear(self) -> None:
        self._messages.clear()
        self._ids.clear()
