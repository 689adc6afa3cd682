"""15x15 placement board for omok."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from game.events import BOARD_CELLS, BOARD_SIZE

if TYPE_CHECKING:
    from collections.abc import Sequence

    from game.events import BoardMoveEvent, BoardStateEvent

logger = structlog.get_logger()


def position_of(row: int, col: int) -> int:
    return row * BOARD_SIZE + col


class OmokBoard:
    """Board occupancy and turn pointer, changed only by server echoes.

    Sending a move never touches the board: the echo of each move,
    including our own, places the stone and advances the turn together.
    Winner detection is left to the server's game-end event.
    """

    def __init__(self, players: Sequence[str] = ()) -> None:
        self._cells: list[str | None] = [None] * BOARD_CELLS
        self._players: list[str] = list(players)
        self._current_turn = 0

    @property
    def cells(self) -> tuple[str | None, ...]:
        return tuple(self._cells)

    @property
    def players(self) -> tuple[str, ...]:
        return tuple(self._players)

    @property
    def current_turn(self) -> int:
        return self._current_turn

    @property
    def current_player_id(self) -> str | None:
        if not self._players:
            return None
        return self._players[self._current_turn]

    @property
    def stone_count(self) -> int:
        return sum(1 for cell in self._cells if cell is not None)

    def stone_at(self, position: int) -> str | None:
        return self._cells[position]

    def is_occupied(self, position: int) -> bool:
        return self._cells[position] is not None

    def is_turn_of(self, user_id: str) -> bool:
        return bool(self._players) and self._players[self._current_turn] == user_id

    def set_players(self, players: Sequence[str]) -> None:
        self._players = list(players)
        self._current_turn = 0

    def reset(self, players: Sequence[str] = ()) -> None:
        self._cells = [None] * BOARD_CELLS
        self._players = list(players)
        self._current_turn = 0

    def apply_move(self, event: BoardMoveEvent) -> bool:
        """Apply a confirmed move. Returns False if the cell was already taken."""
        if self._cells[event.position] is not None:
            # Duplicate echo or a move the server should have rejected.
            logger.debug(
                "move on occupied cell ignored",
                position=event.position,
                player_id=event.player_id,
                occupant=self._cells[event.position],
            )
            return False
        self._cells[event.position] = event.player_id
        if self._players:
            if event.player_id in self._players:
                mover = self._players.index(event.player_id)
            else:
                mover = self._current_turn
            self._current_turn = (mover + 1) % len(self._players)
        return True

    def apply_snapshot(self, event: BoardStateEvent) -> None:
        self._cells = list(event.cells)
        if event.players:
            self._players = list(event.players)
        self._current_turn = event.current_turn % len(self._players) if self._players else 0
        logger.info("board replaced from snapshot", stones=self.stone_count, current_turn=self._current_turn)
