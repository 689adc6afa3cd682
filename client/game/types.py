from enum import StrEnum


class GameType(StrEnum):
    OMOK = "omok"
    AIM = "aim"
    REACTION = "reaction"


class GameEventType(StrEnum):
    """Event types broadcast by the server on a room's game channel."""

    GAME_START = "gameStart"
    GAME_END = "gameEnd"
    ROUND_START = "roundStart"
    ROUND_END = "roundEnd"
    COUNTDOWN_START = "countdownStart"
    # omok
    BOARD_MOVE = "boardMove"
    OMOK_MOVE = "omokMove"
    BOARD_STATE = "boardState"
    OMOK_STATE = "omokState"
    # aim
    SPAWN_TARGET = "spawnTarget"
    TARGET_REMOVED = "targetRemoved"
    TARGET_SYNC = "targetSync"
    SCORE_UPDATE = "scoreUpdate"
    HIT_ACK = "hitAck"
    # reaction
    REACTION_PREPARE = "reactionPrepare"
    REACTION_GO = "reactionGo"
    REACTION_RESULT = "reactionResult"
    REACTION_END = "reactionEnd"


class GameActionType(StrEnum):
    """Event types the client sends to the game destination."""

    OMOK_MOVE = "omokMove"
    HIT = "hit"
    COUNTDOWN_START = "countdownStart"
    REACTION_START = "reactionStart"
    REACTION_HIT = "reactionHit"


class GameActionResult(StrEnum):
    """Local outcome of a gameplay action. SENT means the transport accepted it."""

    SENT = "sent"
    DROPPED = "dropped"
    NOT_PLAYING = "not_playing"
    OBSERVER = "observer"
    NOT_HOST = "not_host"
    NOT_YOUR_TURN = "not_your_turn"
    OCCUPIED = "occupied"
    OUT_OF_RANGE = "out_of_range"
    UNKNOWN_TARGET = "unknown_target"
    WRONG_PHASE = "wrong_phase"
    ALREADY_SENT = "already_sent"
