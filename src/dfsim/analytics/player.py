"""Ceiling, floor, volatility and value metrics for individual players."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from dfsim.models import PlayerRecord

logger = logging.getLogger(__name__)

MIN_HISTORY_SAMPLES = 5
FLOOR_PERCENTILE = 15.0
CEILING_PERCENTILE = 85.0
# z-score of the 85th percentile of a standard normal
_Z85 = 1.0364

_DEFAULT_SPREAD = 0.40

_POSITION_SPREADS: Dict[str, Dict[str, float]] = {
    "NFL": {"QB": 0.35, "RB": 0.45, "WR": 0.50, "TE": 0.50, "DST": 0.60, "D": 0.60, "DEF": 0.60, "K": 0.30},
    "NBA": {"PG": 0.30, "SG": 0.33, "SF": 0.33, "PF": 0.30, "C": 0.30},
    "MLB": {"P": 0.45, "SP": 0.45, "RP": 0.60, "C": 0.65, "1B": 0.60, "2B": 0.60, "3B": 0.60, "SS": 0.60, "OF": 0.60},
    "NHL": {"C": 0.55, "W": 0.55, "LW": 0.55, "RW": 0.55, "D": 0.60, "G": 0.50},
    "GOLF": {"G": 0.35},
}

# points per $1,000 of salary for a typical starter
_VALUE_BASELINES: Dict[str, float] = {
    "NBA": 5.0,
    "NFL": 2.5,
    "MLB": 2.5,
    "NHL": 2.5,
    "GOLF": 8.0,
}


@dataclass(frozen=True)
class PlayerAnalytics:
    player_id: str
    projection: float
    floor: float
    ceiling: float
    volatility: float
    implied_volatility: float
    value_rating: float
    ownership: float
    ceiling_probability: float
    floor_probability: float
    consistency: float
    upside_ratio: float
    downside_risk: float
    safety: float
    sample_size: int

    @property
    def effective_volatility(self) -> float:
        return self.volatility if self.volatility > 0 else self.implied_volatility


@dataclass(frozen=True)
class NotRatable:
    player_id: str
    reason: str


AnalyticsResult = Union[PlayerAnalytics, NotRatable]


def default_spread(sport: str, position: str) -> float:
    table = _POSITION_SPREADS.get(sport.upper(), {})
    spreads = [table[pos] for pos in position.upper().split("/") if pos in table]
    return max(spreads) if spreads else _DEFAULT_SPREAD


def _volatility(series: np.ndarray) -> float:
    if series.size < 2:
        return 0.0
    mean = float(series.mean())
    if mean <= 0:
        return 0.0
    std = float(series.std(ddof=1))
    if std <= 0 or not math.isfinite(std):
        return 0.0
    return std / mean


def _range_from_history(series: np.ndarray) -> Tuple[float, float]:
    floor, ceiling = np.percentile(series, [FLOOR_PERCENTILE, CEILING_PERCENTILE])
    return float(floor), float(ceiling)


def _estimate_ownership(value_rating: float) -> float:
    """Rough ownership from value: typical value lands near 10%."""
    estimate = 0.02 + 0.08 * value_rating ** 2
    return max(0.01, min(0.50, estimate))


def _tail_probability(z: float) -> float:
    probability = 0.5 * math.erfc(z / math.sqrt(2.0))
    return max(0.05, min(0.35, probability))


def compute_analytics(
    player: PlayerRecord,
    history: Optional[Sequence[float]] = None,
    *,
    min_samples: int = MIN_HISTORY_SAMPLES,
) -> AnalyticsResult:
    """Derive floor/ceiling/volatility/value for ``player``.

    Degenerate players (no salary or no projection) come back as
    :class:`NotRatable` rather than raising.
    """

    if player.salary <= 0:
        return NotRatable(player.player_id, "salary must be positive")
    if player.projection <= 0 or not math.isfinite(player.projection):
        return NotRatable(player.player_id, "projection must be positive")

    projection = float(player.projection)
    series = np.asarray([value for value in (history or ()) if math.isfinite(value)], dtype=float)

    if series.size >= min_samples:
        floor, ceiling = _range_from_history(series)
    elif (
        player.floor is not None
        and player.ceiling is not None
        and player.floor < projection < player.ceiling
    ):
        floor, ceiling = float(player.floor), float(player.ceiling)
    else:
        spread = default_spread(player.sport, player.position)
        floor, ceiling = projection * (1.0 - spread), projection * (1.0 + spread)

    if floor > projection:
        floor = projection * 0.75
    if ceiling < projection:
        ceiling = projection * 1.25

    volatility = _volatility(series)
    if player.volatility:
        implied = float(player.volatility)
    else:
        implied = max(0.0, (ceiling - floor) / (2.0 * _Z85 * projection))

    baseline = _VALUE_BASELINES.get(player.sport, 3.0)
    value_rating = projection / player.salary * 1000.0 / baseline
    ownership = player.ownership if player.ownership is not None else _estimate_ownership(value_rating)

    sigma = volatility if volatility > 0 else implied
    sigma_points = max(sigma * projection, 1e-9)
    ceiling_probability = _tail_probability((ceiling - projection) / sigma_points)
    floor_probability = _tail_probability((projection - floor) / sigma_points)

    return PlayerAnalytics(
        player_id=player.player_id,
        projection=projection,
        floor=floor,
        ceiling=ceiling,
        volatility=volatility,
        implied_volatility=implied,
        value_rating=value_rating,
        ownership=float(ownership),
        ceiling_probability=ceiling_probability,
        floor_probability=floor_probability,
        consistency=1.0 / (1.0 + sigma),
        upside_ratio=ceiling / projection,
        downside_risk=projection - floor,
        safety=floor / projection,
        sample_size=int(series.size),
    )


def analyze_pool(
    players: Sequence[PlayerRecord],
    histories: Optional[Mapping[str, Sequence[float]]] = None,
) -> Tuple[Dict[str, PlayerAnalytics], List[NotRatable]]:
    """Split a pool into rated analytics and the players that cannot be rated."""

    histories = histories or {}
    rated: Dict[str, PlayerAnalytics] = {}
    skipped: List[NotRatable] = []
    for player in players:
        result = compute_analytics(player, histories.get(player.player_id))
        if isinstance(result, NotRatable):
            skipped.append(result)
        else:
            rated[player.player_id] = result
    if skipped:
        logger.info("Skipped %s not-ratable players (%s rated)", len(skipped), len(rated))
    return rated, skipped
