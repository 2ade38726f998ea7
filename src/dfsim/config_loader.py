"""Persist and load policy profiles that tune correlation and event constants."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

from dfsim.correlation import CorrelationPolicy
from dfsim.errors import ConfigurationError
from dfsim.simulation.events import BonusEvent, EventConfig, WeatherContext

_PAIR_TABLES = ("teammates", "opponents")
_SPORT_TABLES = ("injury_rates", "weather_penalties")


def _parse_pair(key: str) -> Tuple[str, str]:
    parts = [part.strip().upper() for part in key.split("-")]
    if len(parts) != 2 or not all(parts):
        raise ConfigurationError(f"Invalid position pair {key!r}; expected e.g. 'QB-WR'")
    return parts[0], parts[1]


def _format_pair(pair: Tuple[str, str]) -> str:
    return f"{pair[0]}-{pair[1]}"


def _merge_pair_tables(defaults: Mapping[str, Mapping], overrides: Mapping[str, Mapping[str, float]]) -> Dict:
    merged = {sport: dict(table) for sport, table in defaults.items()}
    for sport, table in overrides.items():
        target = merged.setdefault(sport.upper(), {})
        for key, value in table.items():
            target[_parse_pair(key)] = float(value)
    return merged


def _merge_sport_tables(defaults: Mapping[str, Mapping], overrides: Mapping[str, Mapping[str, Any]]) -> Dict:
    merged = {sport: dict(table) for sport, table in defaults.items()}
    for sport, table in overrides.items():
        merged.setdefault(sport.upper(), {}).update({pos.upper(): value for pos, value in table.items()})
    return merged


@dataclass
class PolicyProfile:
    """JSON-backed overrides for :class:`CorrelationPolicy` and :class:`EventConfig`.

    Pair tables use ``"QB-WR"`` style keys; every other entry maps onto the
    dataclass field of the same name.
    """

    correlation: Dict[str, Any] = field(default_factory=dict)
    events: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> "PolicyProfile":
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid policy profile {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Policy profile {path} must contain a JSON object")
        return cls(
            correlation=data.get("correlation", {}),
            events=data.get("events", {}),
        )

    def save(self, path: Path) -> None:
        payload = {
            "correlation": self.correlation,
            "events": self.events,
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    @classmethod
    def from_policies(cls, correlation: CorrelationPolicy, events: EventConfig) -> "PolicyProfile":
        """Snapshot fully-resolved policies, e.g. to write a starting profile."""

        corr: Dict[str, Any] = {
            name: {sport: {_format_pair(pair): value for pair, value in table.items()}
                   for sport, table in getattr(correlation, name).items()}
            for name in _PAIR_TABLES
        }
        corr.update(
            teammate_default=dict(correlation.teammate_default),
            opponent_default=dict(correlation.opponent_default),
            max_opponent=correlation.max_opponent,
            golf_baseline=correlation.golf_baseline,
            golf_tee_window=correlation.golf_tee_window,
            golf_same_wave=correlation.golf_same_wave,
            golf_weather=correlation.golf_weather,
            base_jitter=correlation.base_jitter,
            max_jitter=correlation.max_jitter,
            sport_max_jitter=dict(correlation.sport_max_jitter),
            eigen_clip=correlation.eigen_clip,
            eigen_floor=correlation.eigen_floor,
        )
        evt: Dict[str, Any] = {
            "injury_rates": {sport: dict(table) for sport, table in events.injury_rates.items()},
            "status_multipliers": dict(events.status_multipliers),
            "early_exit_retained": list(events.early_exit_retained),
            "weather_penalties": {sport: dict(table) for sport, table in events.weather_penalties.items()},
            "blowout_rates": dict(events.blowout_rates),
            "blowout_effects": {
                sport: {pos: list(pair) for pos, pair in table.items()}
                for sport, table in events.blowout_effects.items()
            },
            "bonus_events": [
                {
                    "sport": event.sport,
                    "positions": sorted(event.positions),
                    "probability": event.probability,
                    "kind": event.kind,
                    "low": event.low,
                    "high": event.high,
                    "per_game": event.per_game,
                }
                for event in events.bonus_events
            ],
            "enable_injuries": events.enable_injuries,
            "enable_blowouts": events.enable_blowouts,
            "enable_bonuses": events.enable_bonuses,
        }
        if events.weather is not None:
            teams = events.weather.affected_teams
            evt["weather"] = {
                "severity": events.weather.severity,
                "affected_teams": None if teams is None else sorted(teams),
            }
        return cls(correlation=corr, events=evt)

    def correlation_policy(self, base: CorrelationPolicy | None = None) -> CorrelationPolicy:
        base = base or CorrelationPolicy()
        overrides: Dict[str, Any] = {}
        for name, value in self.correlation.items():
            if name in _PAIR_TABLES:
                overrides[name] = _merge_pair_tables(getattr(base, name), value)
            elif name in ("teammate_default", "opponent_default", "sport_max_jitter"):
                overrides[name] = {**getattr(base, name), **{k.upper(): float(v) for k, v in value.items()}}
            elif name == "eigen_clip":
                overrides[name] = bool(value)
            elif hasattr(base, name):
                overrides[name] = float(value)
            else:
                raise ConfigurationError(f"Unknown correlation policy field: {name}")
        return base.with_overrides(overrides)

    def event_config(self, base: EventConfig | None = None) -> EventConfig:
        base = base or EventConfig()
        overrides: Dict[str, Any] = {}
        for name, value in self.events.items():
            if name in _SPORT_TABLES:
                overrides[name] = _merge_sport_tables(getattr(base, name), value)
            elif name == "blowout_effects":
                overrides[name] = _merge_sport_tables(
                    base.blowout_effects,
                    {sport: {pos: tuple(pair) for pos, pair in table.items()} for sport, table in value.items()},
                )
            elif name == "status_multipliers":
                overrides[name] = {**base.status_multipliers, **{k.upper(): float(v) for k, v in value.items()}}
            elif name == "blowout_rates":
                overrides[name] = {**base.blowout_rates, **{k.upper(): float(v) for k, v in value.items()}}
            elif name == "early_exit_retained":
                low, high = value
                overrides[name] = (float(low), float(high))
            elif name == "bonus_events":
                overrides[name] = tuple(
                    BonusEvent(
                        sport=item["sport"].upper(),
                        positions=frozenset(pos.upper() for pos in item.get("positions", ["*"])),
                        probability=float(item["probability"]),
                        kind=item.get("kind", "add"),
                        low=float(item["low"]),
                        high=float(item["high"]),
                        per_game=bool(item.get("per_game", False)),
                    )
                    for item in value
                )
            elif name == "weather":
                teams = value.get("affected_teams")
                overrides[name] = WeatherContext(
                    severity=float(value.get("severity", 0.0)),
                    affected_teams=None if teams is None else frozenset(t.upper() for t in teams),
                )
            elif name in ("enable_injuries", "enable_blowouts", "enable_bonuses"):
                overrides[name] = bool(value)
            else:
                raise ConfigurationError(f"Unknown event config field: {name}")
        return replace(base, **overrides)


__all__ = ["PolicyProfile"]
