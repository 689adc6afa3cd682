"""Broker channel names and outbound request destinations."""

from enum import StrEnum

# Shared broadcast channels
ROOM_DIFFS = "/topic/minigame/rooms"
ROOM_LIST = "/topic/minigame/rooms-list"
PLAZA_PLAYERS = "/topic/players"
PLAZA_POSITIONS = "/topic/positions"
PLAZA_CHAT = "/topic/chat"
PLAZA_ONLINE_COUNT = "/topic/online-count"


def room_detail(room_id: str) -> str:
    return f"/topic/minigame/room/{room_id}"


def room_chat(room_id: str) -> str:
    return f"/topic/minigame/room/{room_id}/chat"


def room_game(room_id: str) -> str:
    return f"/topic/minigame/room/{room_id}/game"


def room_topics(room_id: str) -> tuple[str, str, str]:
    """All room-scoped channels, opened only while the room is active."""
    return room_detail(room_id), room_chat(room_id), room_game(room_id)


def join_result(user_id: str) -> str:
    return f"/topic/minigame/joinResult/{user_id}"


def invitations(user_id: str) -> str:
    return f"/topic/minigame/invite/{user_id}"


class Destination(StrEnum):
    """Server endpoints that accept outbound requests."""

    ROOM_LIST = "/app/minigame.rooms.list"
    ROOM_CREATE = "/app/minigame.room.create"
    ROOM_JOIN = "/app/minigame.room.join"
    ROOM_LEAVE = "/app/minigame.room.leave"
    ROOM_UPDATE = "/app/minigame.room.update"
    ROOM_READY = "/app/minigame.room.ready"
    ROOM_SWITCH_ROLE = "/app/minigame.room.switchRole"
    ROOM_START = "/app/minigame.room.start"
    ROOM_CHAT = "/app/minigame.room.chat"
    GAME_EVENT = "/app/minigame.room.game"
    GAME_STATE = "/app/minigame.room.state"
    INVITE = "/app/minigame.invite"
    PLAYER_JOIN = "/app/player.join"
    PLAYER_POSITION = "/app/player.position"
    PLAZA_CHAT = "/app/chat.message"
