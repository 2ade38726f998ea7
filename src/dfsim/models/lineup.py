"""Lineup containers produced by the optimizer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from .player import PlayerRecord


@dataclass(frozen=True)
class SlotAssignment:
    slot: str
    player: PlayerRecord


@dataclass(frozen=True)
class Lineup:
    lineup_id: str
    assignments: Tuple[SlotAssignment, ...]
    score: float
    strategy: str

    @property
    def players(self) -> Tuple[PlayerRecord, ...]:
        return tuple(assignment.player for assignment in self.assignments)

    @property
    def player_ids(self) -> Tuple[str, ...]:
        return tuple(assignment.player.player_id for assignment in self.assignments)

    @property
    def signature(self) -> Tuple[str, ...]:
        """Slot-independent identity used for diversity checks."""
        return tuple(sorted(self.player_ids))

    @property
    def salary(self) -> int:
        return sum(assignment.player.salary for assignment in self.assignments)

    @property
    def projection(self) -> float:
        return float(sum(assignment.player.projection for assignment in self.assignments))

    def shared_players(self, other: "Lineup") -> int:
        return len(set(self.player_ids) & set(other.player_ids))
