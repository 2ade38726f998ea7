"""Stacking rules: how many players a lineup draws from one team or game."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Sequence, Tuple

from dfsim.errors import ConfigurationError


class StackType(str, Enum):
    TEAM = "team"
    GAME = "game"
    MINI = "mini"

    @classmethod
    def parse(cls, value: "StackType | str") -> "StackType":
        if isinstance(value, StackType):
            return value
        key = str(value).strip().lower()
        for stack_type in cls:
            if key == stack_type.value:
                return stack_type
        raise ConfigurationError(f"Unknown stack type {value!r}; expected team, game or mini")


@dataclass(frozen=True)
class StackingRule:
    """One stacking requirement checked against every finished lineup.

    ``team``: with ``teams`` set, each listed team fields between
    ``min_players`` and ``max_players``; otherwise some team reaches
    ``min_players`` and no team exceeds ``max_players``.

    ``game``: the same counts per game (a team and its opponent). With
    ``teams`` set, the lineup must include a game involving one of those
    teams and every such game must be in range.

    ``mini``: some game has players from both of its teams and a count
    between ``min_players`` and ``max_players`` (a bring-back pairing).
    """

    type: StackType = StackType.TEAM
    min_players: int = 2
    max_players: Optional[int] = None
    teams: Tuple[str, ...] = ()

    @classmethod
    def create(
        cls,
        type: "StackType | str",
        min_players: int = 2,
        max_players: Optional[int] = None,
        teams: Iterable[str] = (),
    ) -> "StackingRule":
        rule = cls(
            type=StackType.parse(type),
            min_players=int(min_players),
            max_players=None if max_players is None else int(max_players),
            teams=tuple(sorted({team.strip().upper() for team in teams if team.strip()})),
        )
        return rule.validate()

    def validate(self, slot_count: Optional[int] = None) -> "StackingRule":
        if self.min_players < 1:
            raise ConfigurationError(f"Stack min_players must be at least 1, got {self.min_players}")
        if self.max_players is not None and self.max_players < self.min_players:
            raise ConfigurationError(
                f"Stack max_players ({self.max_players}) is below min_players ({self.min_players})"
            )
        if slot_count is not None and self.min_players > slot_count:
            raise ConfigurationError(f"Stack needs {self.min_players} players but a lineup has {slot_count} slots")
        if self.type is StackType.MINI and self.min_players < 2:
            raise ConfigurationError("A mini stack needs at least 2 players")
        return self

    def _within(self, count: int) -> bool:
        return count >= self.min_players and (self.max_players is None or count <= self.max_players)

    def satisfied_by(self, teams: Sequence[str], games: Sequence[Tuple[str, ...]]) -> bool:
        """Check one lineup given each player's team and game key."""

        if self.type is StackType.MINI:
            return self._has_bring_back(teams, games)
        if self.type is StackType.TEAM:
            counts = Counter(teams)
            if self.teams:
                return all(self._within(counts.get(team, 0)) for team in self.teams)
        else:
            counts = Counter(games)
            if self.teams:
                listed = [count for game, count in counts.items() if set(game) & set(self.teams)]
                return bool(listed) and all(self._within(count) for count in listed)
        if self.max_players is not None and any(count > self.max_players for count in counts.values()):
            return False
        return max(counts.values(), default=0) >= self.min_players

    def _has_bring_back(self, teams: Sequence[str], games: Sequence[Tuple[str, ...]]) -> bool:
        sides: dict[Tuple[str, ...], set[str]] = {}
        for team, game in zip(teams, games):
            sides.setdefault(game, set()).add(team)
        counts = Counter(games)
        return any(
            len(sides[game]) >= 2 and self._within(count)
            for game, count in counts.items()
            if not self.teams or set(game) & set(self.teams)
        )


def lineup_satisfies(
    rules: Sequence[StackingRule],
    teams: Sequence[str],
    games: Sequence[Tuple[str, ...]],
) -> bool:
    return all(rule.satisfied_by(teams, games) for rule in rules)


__all__ = ["StackType", "StackingRule", "lineup_satisfies"]
