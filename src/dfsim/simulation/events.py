"""Random event adjustments applied to sampled player outcomes.

Rates and effects are policy constants on :class:`EventConfig`; they are
indexed by sport and position and can be overridden from a policy profile.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Optional, Sequence, Tuple

import numpy as np

from dfsim.correlation import primary_position
from dfsim.models import PlayerRecord

_WILDCARD = "*"
_CERTAIN_STATUSES = {"O", "OUT", "IR", "INJ", "SUSP"}


def _injury_rates() -> Dict[str, Dict[str, float]]:
    return {
        "NFL": {"QB": 0.02, "RB": 0.05, "WR": 0.04, "TE": 0.04, "K": 0.005, "DST": 0.0},
        "NBA": {_WILDCARD: 0.03},
        "MLB": {"P": 0.04, _WILDCARD: 0.02},
        "NHL": {"G": 0.01, _WILDCARD: 0.02},
        "GOLF": {_WILDCARD: 0.03},
    }


def _status_multipliers() -> Dict[str, float]:
    return {
        "P": 1.5,
        "PROBABLE": 1.5,
        "Q": 3.0,
        "QUESTIONABLE": 3.0,
        "GTD": 3.0,
        "D": 8.0,
        "DOUBTFUL": 8.0,
    }


def _weather_penalties() -> Dict[str, Dict[str, float]]:
    return {
        "NFL": {"QB": 0.12, "WR": 0.12, "TE": 0.08, "K": 0.20, "RB": -0.03, "DST": -0.08},
        "MLB": {"P": -0.03, _WILDCARD: 0.08},
        "GOLF": {_WILDCARD: 0.10},
    }


def _blowout_rates() -> Dict[str, float]:
    return {"NBA": 0.12, "NFL": 0.15, "MLB": 0.10, "NHL": 0.10}


def _blowout_effects() -> Dict[str, Dict[str, Tuple[float, float]]]:
    # (winning side multiplier, losing side multiplier)
    return {
        "NBA": {_WILDCARD: (0.85, 0.85)},
        "NFL": {
            "QB": (0.92, 1.05),
            "RB": (1.10, 0.85),
            "WR": (0.95, 1.08),
            "TE": (0.95, 1.05),
            "K": (1.10, 0.90),
            "DST": (1.15, 0.80),
        },
        "MLB": {"P": (1.10, 0.75), _WILDCARD: (1.15, 0.90)},
        "NHL": {"G": (1.10, 0.70), _WILDCARD: (1.00, 0.95)},
    }


@dataclass(frozen=True)
class BonusEvent:
    """Occasional boost: ``multiply`` scales outcomes, ``add`` adds points."""

    sport: str
    positions: FrozenSet[str]
    probability: float
    kind: str
    low: float
    high: float
    per_game: bool = False


def _bonus_events() -> Tuple[BonusEvent, ...]:
    return (
        BonusEvent("NBA", frozenset({_WILDCARD}), 0.05, "multiply", 1.10, 1.30, per_game=True),
        BonusEvent("NFL", frozenset({"DST"}), 0.10, "add", 6.0, 12.0),
        BonusEvent("NHL", frozenset({"G"}), 0.05, "add", 5.0, 10.0),
    )


@dataclass(frozen=True)
class WeatherContext:
    severity: float = 0.0
    affected_teams: Optional[FrozenSet[str]] = None

    def affects(self, player: PlayerRecord) -> bool:
        if self.affected_teams is None:
            return True
        return player.team in self.affected_teams or (player.opponent or "") in self.affected_teams


@dataclass(frozen=True)
class EventConfig:
    injury_rates: Mapping[str, Mapping[str, float]] = field(default_factory=_injury_rates)
    status_multipliers: Mapping[str, float] = field(default_factory=_status_multipliers)
    early_exit_retained: Tuple[float, float] = (0.0, 0.5)
    weather: Optional[WeatherContext] = None
    weather_penalties: Mapping[str, Mapping[str, float]] = field(default_factory=_weather_penalties)
    blowout_rates: Mapping[str, float] = field(default_factory=_blowout_rates)
    blowout_effects: Mapping[str, Mapping[str, Tuple[float, float]]] = field(default_factory=_blowout_effects)
    bonus_events: Tuple[BonusEvent, ...] = field(default_factory=_bonus_events)
    enable_injuries: bool = True
    enable_blowouts: bool = True
    enable_bonuses: bool = True


def _by_position(table: Mapping[str, Mapping[str, object]], player: PlayerRecord, default: object) -> object:
    by_position = table.get(player.sport, {})
    position = primary_position(player)
    if position in by_position:
        return by_position[position]
    return by_position.get(_WILDCARD, default)


def injury_probability(player: PlayerRecord, config: EventConfig) -> float:
    """Base early-exit rate for the position escalated by injury status."""

    status = player.status
    if status in _CERTAIN_STATUSES:
        return 1.0
    base = float(_by_position(config.injury_rates, player, 0.02))
    return min(1.0, base * config.status_multipliers.get(status, 1.0))


def _group_key(player: PlayerRecord) -> Tuple[str, ...]:
    if player.sport == "GOLF":
        wave = (player.wave or "").upper()
        if not wave and player.tee_time is not None:
            wave = "AM" if player.tee_time.hour < 12 else "PM"
        return (wave or "FIELD",)
    return player.game_key


@dataclass(frozen=True)
class EventPlan:
    """Per-player event tables compiled once per simulation run."""

    injury: np.ndarray
    retained: Tuple[float, float]
    group: np.ndarray
    side: np.ndarray
    group_count: int
    weather_severity: float
    weather_factor: np.ndarray
    blowout_rate: np.ndarray
    blowout_win: np.ndarray
    blowout_lose: np.ndarray
    bonus_masks: Tuple[np.ndarray, ...]
    bonus_events: Tuple[BonusEvent, ...]
    enable_injuries: bool
    enable_blowouts: bool


def compile_events(players: Sequence[PlayerRecord], config: EventConfig) -> EventPlan:
    groups: Dict[Tuple[str, ...], int] = {}
    group = np.zeros(len(players), dtype=int)
    side = np.zeros(len(players), dtype=int)
    injury = np.zeros(len(players))
    weather_factor = np.ones(len(players))
    blowout_win = np.ones(len(players))
    blowout_lose = np.ones(len(players))
    weather = config.weather
    for idx, player in enumerate(players):
        key = _group_key(player)
        group[idx] = groups.setdefault(key, len(groups))
        side[idx] = 0 if player.team == key[0] else 1
        injury[idx] = injury_probability(player, config)
        if weather is not None and weather.severity > 0 and weather.affects(player):
            weather_factor[idx] = 1.0 - float(_by_position(config.weather_penalties, player, 0.0))
        win, lose = _by_position(config.blowout_effects, player, (1.0, 1.0))
        blowout_win[idx] = win
        blowout_lose[idx] = lose

    rates = np.zeros(len(groups))
    for key, gid in groups.items():
        sport = next(p.sport for p, g in zip(players, group) if g == gid)
        rates[gid] = 0.0 if len(key) < 2 else config.blowout_rates.get(sport, 0.0)

    masks = []
    events = []
    for event in config.bonus_events:
        mask = np.array(
            [
                player.sport == event.sport
                and (_WILDCARD in event.positions or primary_position(player) in event.positions)
                for player in players
            ],
            dtype=bool,
        )
        if mask.any():
            masks.append(mask)
            events.append(event)

    return EventPlan(
        injury=injury,
        retained=config.early_exit_retained,
        group=group,
        side=side,
        group_count=len(groups),
        weather_severity=0.0 if weather is None else min(1.0, max(0.0, weather.severity)),
        weather_factor=weather_factor,
        blowout_rate=rates,
        blowout_win=blowout_win,
        blowout_lose=blowout_lose,
        bonus_masks=tuple(masks) if config.enable_bonuses else (),
        bonus_events=tuple(events) if config.enable_bonuses else (),
        enable_injuries=config.enable_injuries,
        enable_blowouts=config.enable_blowouts,
    )


def apply_events(outcomes: np.ndarray, plan: EventPlan, rng: np.random.Generator) -> np.ndarray:
    """Adjust an ``(iterations, players)`` outcome block and return it."""

    n_iter, n_players = outcomes.shape
    if n_players == 0:
        return outcomes
    result = outcomes.copy()

    if plan.enable_injuries and plan.injury.any():
        hit = rng.random((n_iter, n_players)) < plan.injury
        retained = rng.uniform(plan.retained[0], plan.retained[1], size=(n_iter, n_players))
        result = np.where(hit, result * retained, result)

    if plan.weather_severity > 0:
        bad_weather = rng.random((n_iter, plan.group_count)) < plan.weather_severity
        result = np.where(bad_weather[:, plan.group], result * plan.weather_factor, result)

    if plan.enable_blowouts and plan.blowout_rate.any():
        blowout = rng.random((n_iter, plan.group_count)) < plan.blowout_rate
        winner = (rng.random((n_iter, plan.group_count)) < 0.5).astype(int)
        won = winner[:, plan.group] == plan.side
        factor = np.where(won, plan.blowout_win, plan.blowout_lose)
        result = np.where(blowout[:, plan.group], result * factor, result)

    for event, mask in zip(plan.bonus_events, plan.bonus_masks):
        if event.per_game:
            fired = (rng.random((n_iter, plan.group_count)) < event.probability)[:, plan.group]
        else:
            fired = rng.random((n_iter, n_players)) < event.probability
        fired = fired & mask
        amount = rng.uniform(event.low, event.high, size=(n_iter, n_players))
        if event.kind == "add":
            result = np.where(fired, result + amount, result)
        else:
            result = np.where(fired, result * amount, result)
    return result
