"""Sport-specific correlation rules.

All literal weights live on :class:`CorrelationPolicy` so they can be tuned
per deployment through a policy profile.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from dfsim.models import PlayerRecord

PairTable = Dict[Tuple[str, str], float]

_POSITION_ALIASES: Dict[str, Dict[str, str]] = {
    "NFL": {"D": "DST", "DEF": "DST", "D/ST": "DST"},
    "MLB": {"SP": "P", "RP": "P", "LF": "OF", "CF": "OF", "RF": "OF"},
    "NHL": {"LW": "W", "RW": "W"},
}


def _default_teammates() -> Dict[str, PairTable]:
    return {
        "NBA": {
            ("PG", "SG"): 0.35,
            ("PG", "SF"): 0.25,
            ("PG", "PF"): 0.20,
            ("PG", "C"): 0.30,
            ("SG", "SF"): 0.20,
            ("SG", "PF"): 0.15,
            ("SG", "C"): 0.25,
            ("SF", "PF"): 0.20,
            ("SF", "C"): 0.20,
            ("PF", "C"): 0.35,
        },
        "NFL": {
            ("QB", "RB"): 0.10,
            ("QB", "WR"): 0.50,
            ("QB", "TE"): 0.40,
            ("QB", "K"): 0.15,
            ("QB", "DST"): -0.20,
            ("RB", "RB"): -0.30,
            ("RB", "WR"): -0.10,
            ("RB", "TE"): -0.05,
            ("RB", "DST"): 0.15,
            ("WR", "WR"): 0.25,
            ("WR", "TE"): 0.10,
            ("WR", "DST"): -0.10,
            ("TE", "DST"): -0.05,
        },
        "MLB": {
            ("P", "P"): -0.50,
            ("P", "C"): 0.20,
            ("P", "*"): 0.05,
            ("C", "*"): 0.10,
            ("OF", "OF"): 0.35,
            ("1B", "2B"): 0.30,
            ("1B", "3B"): 0.30,
            ("2B", "SS"): 0.30,
        },
        "NHL": {
            ("C", "C"): 0.20,
            ("C", "W"): 0.45,
            ("C", "D"): 0.25,
            ("C", "G"): 0.30,
            ("W", "W"): 0.40,
            ("W", "D"): 0.20,
            ("W", "G"): 0.30,
            ("D", "D"): 0.35,
            ("D", "G"): 0.35,
        },
    }


def _default_opponents() -> Dict[str, PairTable]:
    return {
        "NFL": {
            ("QB", "WR"): 0.25,
            ("QB", "TE"): 0.25,
            ("RB", "DST"): -0.30,
            ("QB", "DST"): -0.30,
            ("DST", "*"): -0.15,
        },
        "MLB": {("P", "*"): -0.25},
        "NHL": {("G", "*"): -0.20},
    }


@dataclass(frozen=True)
class CorrelationPolicy:
    teammates: Mapping[str, PairTable] = field(default_factory=_default_teammates)
    opponents: Mapping[str, PairTable] = field(default_factory=_default_opponents)
    teammate_default: Mapping[str, float] = field(
        default_factory=lambda: {"NBA": 0.20, "NFL": 0.10, "MLB": 0.25, "NHL": 0.20}
    )
    opponent_default: Mapping[str, float] = field(
        default_factory=lambda: {"NBA": 0.15, "NFL": 0.10, "MLB": 0.10, "NHL": 0.15}
    )
    max_opponent: float = 0.30
    golf_baseline: float = 0.05
    golf_tee_window: float = 0.15
    golf_same_wave: float = 0.08
    golf_weather: float = 0.25
    base_jitter: float = 1e-6
    max_jitter: float = 0.10
    sport_max_jitter: Mapping[str, float] = field(default_factory=dict)
    eigen_clip: bool = True
    eigen_floor: float = 1e-4

    def jitter_cap(self, sport: Optional[str] = None) -> float:
        """Largest diagonal jitter allowed before sampling falls back to independence."""
        if sport is None:
            return self.max_jitter
        return float(self.sport_max_jitter.get(sport.upper(), self.max_jitter))

    def with_overrides(self, overrides: Mapping[str, Any]) -> "CorrelationPolicy":
        return replace(self, **dict(overrides))


@dataclass(frozen=True)
class CorrelationContext:
    """Slate conditions that feed correlation rules."""

    weather_severity: float = 0.0
    tee_time_window_minutes: float = 30.0
    pair_overrides: Mapping[Tuple[str, str], float] = field(default_factory=dict)


def primary_position(player: PlayerRecord) -> str:
    position = player.positions[0] if player.positions else player.position
    return _POSITION_ALIASES.get(player.sport, {}).get(position, position)


def _lookup(table: PairTable, a: str, b: str) -> Optional[float]:
    for key in ((a, b), (b, a), (a, "*"), (b, "*")):
        if key in table:
            return table[key]
    return None


def _wave(player: PlayerRecord) -> Optional[str]:
    if player.wave:
        return player.wave.strip().upper()
    if player.tee_time is not None:
        return "AM" if player.tee_time.hour < 12 else "PM"
    return None


def _minutes_apart(a: datetime, b: datetime) -> float:
    return abs((a - b).total_seconds()) / 60.0


def golf_correlation(
    a: PlayerRecord,
    b: PlayerRecord,
    policy: CorrelationPolicy,
    context: CorrelationContext,
) -> float:
    value = policy.golf_baseline
    if a.tee_time is not None and b.tee_time is not None:
        if _minutes_apart(a.tee_time, b.tee_time) <= context.tee_time_window_minutes:
            value += policy.golf_tee_window
    wave_a, wave_b = _wave(a), _wave(b)
    if wave_a is not None and wave_a == wave_b:
        value += policy.golf_same_wave
        if context.weather_severity > 0:
            value += policy.golf_weather * min(1.0, context.weather_severity)
    return value


def team_correlation(
    a: PlayerRecord,
    b: PlayerRecord,
    policy: CorrelationPolicy,
) -> float:
    sport = a.sport
    pos_a, pos_b = primary_position(a), primary_position(b)
    if a.team == b.team:
        value = _lookup(policy.teammates.get(sport, {}), pos_a, pos_b)
        if value is None:
            value = policy.teammate_default.get(sport, 0.10)
        return value
    if a.opponent == b.team or b.opponent == a.team:
        value = _lookup(policy.opponents.get(sport, {}), pos_a, pos_b)
        if value is None:
            value = min(policy.max_opponent, max(0.0, policy.opponent_default.get(sport, 0.10)))
        return value
    return 0.0


def pair_correlation(
    a: PlayerRecord,
    b: PlayerRecord,
    policy: CorrelationPolicy,
    context: CorrelationContext,
) -> float:
    """Return the rule-based correlation between two distinct players."""

    if a.player_id == b.player_id:
        return 1.0
    override = context.pair_overrides.get((a.player_id, b.player_id))
    if override is None:
        override = context.pair_overrides.get((b.player_id, a.player_id))
    if override is not None:
        value = override
    elif a.sport == "GOLF":
        value = golf_correlation(a, b, policy, context)
    else:
        value = team_correlation(a, b, policy)
    return max(-1.0, min(1.0, float(value)))
