"""Timed reaction race."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from game.events import ReactionEndEvent, ReactionResultEvent


class ReactionPhase(StrEnum):
    IDLE = "idle"
    PREPARE = "prepare"
    GO = "go"
    ENDED = "ended"


class ReactionRace:
    """Round state for the reaction game: prepare, go, then a single winner."""

    def __init__(self) -> None:
        self.phase = ReactionPhase.IDLE
        self.winner_id: str | None = None
        self.winner_name: str | None = None
        self.rounds_played = 0
        self._reacted = False

    @property
    def has_reacted(self) -> bool:
        return self._reacted

    def reset(self) -> None:
        self.phase = ReactionPhase.IDLE
        self.winner_id = None
        self.winner_name = None
        self.rounds_played = 0
        self._reacted = False

    def prepare(self) -> None:
        self.phase = ReactionPhase.PREPARE
        self.winner_id = None
        self.winner_name = None
        self._reacted = False

    def go(self) -> None:
        self.phase = ReactionPhase.GO

    def mark_reacted(self) -> None:
        self._reacted = True

    def record_result(self, event: ReactionResultEvent) -> None:
        self.winner_id = event.winner_id
        self.winner_name = event.winner_name

    def end(self, event: ReactionEndEvent) -> None:
        self.phase = ReactionPhase.ENDED
        if event.winner_id is not None:
            self.winner_id = event.winner_id
        self.rounds_played += 1
