"""Roster slot templates for supported sport/platform combinations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Tuple

from dfsim.errors import UnknownRosterError
from dfsim.models import PlayerRecord


@dataclass(frozen=True)
class RosterSlot:
    name: str
    eligible: FrozenSet[str]
    priority: int

    def accepts(self, player: PlayerRecord) -> bool:
        return not self.eligible.isdisjoint(player.positions)


@dataclass(frozen=True)
class SlotTemplate:
    sport: str
    platform: str
    salary_cap: int
    slots: Tuple[RosterSlot, ...]

    @property
    def slot_count(self) -> int:
        return len(self.slots)

    @property
    def slot_names(self) -> Tuple[str, ...]:
        return tuple(slot.name for slot in self.slots)


def _slot(name: str, *positions: str, priority: int = 1) -> RosterSlot:
    return RosterSlot(name=name, eligible=frozenset(positions or (name,)), priority=priority)


_PLATFORM_ALIASES = {
    "DK": "DRAFTKINGS",
    "DRAFTKINGS": "DRAFTKINGS",
    "FD": "FANDUEL",
    "FANDUEL": "FANDUEL",
}

_SPORT_ALIASES = {
    "NBA": "NBA",
    "NFL": "NFL",
    "MLB": "MLB",
    "NHL": "NHL",
    "GOLF": "GOLF",
    "PGA": "GOLF",
}

_MLB_OF = ("OF", "LF", "CF", "RF")

_TEMPLATES: Dict[Tuple[str, str], SlotTemplate] = {
    ("NBA", "DRAFTKINGS"): SlotTemplate(
        sport="NBA",
        platform="DRAFTKINGS",
        salary_cap=50_000,
        slots=(
            _slot("PG"),
            _slot("SG"),
            _slot("SF"),
            _slot("PF"),
            _slot("C"),
            _slot("G", "PG", "SG", priority=2),
            _slot("F", "SF", "PF", priority=2),
            _slot("UTIL", "PG", "SG", "SF", "PF", "C", priority=3),
        ),
    ),
    ("NBA", "FANDUEL"): SlotTemplate(
        sport="NBA",
        platform="FANDUEL",
        salary_cap=60_000,
        slots=(
            _slot("PG"),
            _slot("PG"),
            _slot("SG"),
            _slot("SG"),
            _slot("SF"),
            _slot("SF"),
            _slot("PF"),
            _slot("PF"),
            _slot("C"),
        ),
    ),
    ("NFL", "DRAFTKINGS"): SlotTemplate(
        sport="NFL",
        platform="DRAFTKINGS",
        salary_cap=50_000,
        slots=(
            _slot("QB"),
            _slot("RB"),
            _slot("RB"),
            _slot("WR"),
            _slot("WR"),
            _slot("WR"),
            _slot("TE"),
            _slot("FLEX", "RB", "WR", "TE", priority=2),
            _slot("DST", "DST", "D", "DEF"),
        ),
    ),
    ("NFL", "FANDUEL"): SlotTemplate(
        sport="NFL",
        platform="FANDUEL",
        salary_cap=60_000,
        slots=(
            _slot("QB"),
            _slot("RB"),
            _slot("RB"),
            _slot("WR"),
            _slot("WR"),
            _slot("WR"),
            _slot("TE"),
            _slot("FLEX", "RB", "WR", "TE", priority=2),
            _slot("D/ST", "DST", "D", "DEF"),
        ),
    ),
    ("MLB", "DRAFTKINGS"): SlotTemplate(
        sport="MLB",
        platform="DRAFTKINGS",
        salary_cap=50_000,
        slots=(
            _slot("P", "P", "SP", "RP"),
            _slot("P", "P", "SP", "RP"),
            _slot("C"),
            _slot("1B"),
            _slot("2B"),
            _slot("3B"),
            _slot("SS"),
            _slot("OF", *_MLB_OF),
            _slot("OF", *_MLB_OF),
            _slot("OF", *_MLB_OF),
        ),
    ),
    ("MLB", "FANDUEL"): SlotTemplate(
        sport="MLB",
        platform="FANDUEL",
        salary_cap=35_000,
        slots=(
            _slot("P", "P", "SP", "RP"),
            _slot("C/1B", "C", "1B"),
            _slot("2B"),
            _slot("3B"),
            _slot("SS"),
            _slot("OF", *_MLB_OF),
            _slot("OF", *_MLB_OF),
            _slot("OF", *_MLB_OF),
            _slot("UTIL", "C", "1B", "2B", "3B", "SS", *_MLB_OF, priority=2),
        ),
    ),
    ("NHL", "DRAFTKINGS"): SlotTemplate(
        sport="NHL",
        platform="DRAFTKINGS",
        salary_cap=50_000,
        slots=(
            _slot("C"),
            _slot("C"),
            _slot("W", "W", "LW", "RW"),
            _slot("W", "W", "LW", "RW"),
            _slot("W", "W", "LW", "RW"),
            _slot("D"),
            _slot("D"),
            _slot("G"),
            _slot("UTIL", "C", "W", "LW", "RW", "D", priority=2),
        ),
    ),
    ("NHL", "FANDUEL"): SlotTemplate(
        sport="NHL",
        platform="FANDUEL",
        salary_cap=55_000,
        slots=(
            _slot("C"),
            _slot("C"),
            _slot("W", "W", "LW", "RW"),
            _slot("W", "W", "LW", "RW"),
            _slot("W", "W", "LW", "RW"),
            _slot("W", "W", "LW", "RW"),
            _slot("D"),
            _slot("D"),
            _slot("G"),
        ),
    ),
    ("GOLF", "DRAFTKINGS"): SlotTemplate(
        sport="GOLF",
        platform="DRAFTKINGS",
        salary_cap=50_000,
        slots=tuple(_slot("G") for _ in range(6)),
    ),
    ("GOLF", "FANDUEL"): SlotTemplate(
        sport="GOLF",
        platform="FANDUEL",
        salary_cap=60_000,
        slots=tuple(_slot("G") for _ in range(6)),
    ),
}


def normalize_sport(sport: str) -> str:
    key = sport.strip().upper()
    return _SPORT_ALIASES.get(key, key)


def normalize_platform(platform: str) -> str:
    key = platform.strip().upper()
    return _PLATFORM_ALIASES.get(key, key)


def get_slot_template(sport: str, platform: str) -> SlotTemplate:
    """Return the ordered slot template for ``sport`` on ``platform``.

    Raises :class:`UnknownRosterError` for unsupported combinations so callers
    never proceed with an empty roster.
    """

    key = (normalize_sport(sport), normalize_platform(platform))
    if key not in _TEMPLATES:
        raise UnknownRosterError(sport, platform)
    return _TEMPLATES[key]


def iter_templates() -> Iterable[SlotTemplate]:
    return _TEMPLATES.values()


def eligible_slots(template: SlotTemplate, player: PlayerRecord) -> Tuple[int, ...]:
    return tuple(idx for idx, slot in enumerate(template.slots) if slot.accepts(player))
