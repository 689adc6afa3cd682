"""Target field for the aim game."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from game.events import OptimisticTargetRemoval

if TYPE_CHECKING:
    from game.events import SpawnTargetEvent, TargetPayload, TargetRemovedEvent, TargetSyncEvent

logger = structlog.get_logger()


@dataclass(frozen=True)
class Target:
    id: str
    x: float
    y: float
    size: float = 1.0

    @classmethod
    def from_payload(cls, payload: TargetPayload) -> Target:
        return cls(id=payload.id, x=payload.x, y=payload.y, size=payload.size)


class TargetField:
    """Server-confirmed targets plus an overlay of optimistic local hits.

    A local hit only hides the target from visible_targets. The confirmed
    set changes on spawn/removal events, and a target sync replaces it
    outright and discards the overlay, which brings back any target we
    hid but somebody else actually hit.
    """

    def __init__(self) -> None:
        self._targets: dict[str, Target] = {}
        self._pending_removals: dict[str, OptimisticTargetRemoval] = {}
        self._scores: dict[str, int] = {}

    @property
    def targets(self) -> list[Target]:
        """Confirmed targets."""
        return list(self._targets.values())

    @property
    def visible_targets(self) -> list[Target]:
        return [t for t in self._targets.values() if t.id not in self._pending_removals]

    @property
    def pending_removals(self) -> list[OptimisticTargetRemoval]:
        return list(self._pending_removals.values())

    @property
    def scores(self) -> dict[str, int]:
        return dict(self._scores)

    def is_visible(self, target_id: str) -> bool:
        return target_id in self._targets and target_id not in self._pending_removals

    def reset(self) -> None:
        self._targets.clear()
        self._pending_removals.clear()
        self._scores.clear()

    def mark_hit(self, target_id: str) -> OptimisticTargetRemoval | None:
        """Hide a visible target pending server confirmation."""
        if not self.is_visible(target_id):
            return None
        change = OptimisticTargetRemoval(target_id=target_id)
        self._pending_removals[target_id] = change
        return change

    def spawn(self, event: SpawnTargetEvent) -> None:
        self._targets[event.target.id] = Target.from_payload(event.target)

    def remove(self, event: TargetRemovedEvent) -> None:
        self._targets.pop(event.target_id, None)
        self._pending_removals.pop(event.target_id, None)

    def sync(self, event: TargetSyncEvent) -> None:
        restored = [tid for tid in self._pending_removals if any(t.id == tid for t in event.targets)]
        if restored:
            logger.debug("optimistic hits reverted by sync", target_ids=restored)
        self._targets = {t.id: Target.from_payload(t) for t in event.targets}
        self._pending_removals.clear()
        if event.scores is not None:
            self._scores = dict(event.scores)

    def set_score(self, player_id: str, score: int) -> None:
        self._scores[player_id] = score
