"""Objective functions that turn a player into a single optimizer score."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Sequence, Tuple

from dfsim.analytics import PlayerAnalytics
from dfsim.correlation import CorrelationMatrix
from dfsim.errors import ConfigurationError
from dfsim.models import PlayerRecord


class Strategy(str, Enum):
    MAXIMIZE_CEILING = "ceiling"
    MAXIMIZE_FLOOR = "floor"
    CONTRARIAN = "contrarian"
    CORRELATION_WEIGHTED = "correlation"
    BALANCED = "balanced"
    VALUE = "value"

    @classmethod
    def parse(cls, value: "Strategy | str") -> "Strategy":
        if isinstance(value, Strategy):
            return value
        key = str(value).strip().lower()
        for strategy in cls:
            if key in {strategy.value, strategy.name.lower()}:
                return strategy
        raise ConfigurationError(f"Unknown strategy {value!r}")


@dataclass(frozen=True)
class StrategyWeights:
    ownership_threshold: float = 0.10
    contrarian_pivot: float = 0.25
    correlation_weight: float = 0.25
    value_threshold: float = 1.0
    risk_tolerance: float = 0.5

    def validate(self) -> "StrategyWeights":
        for name in ("ownership_threshold", "correlation_weight", "risk_tolerance"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be between 0 and 1, got {value}")
        if not 0.0 < self.contrarian_pivot <= 1.0:
            raise ConfigurationError(f"contrarian_pivot must be in (0, 1], got {self.contrarian_pivot}")
        if self.value_threshold < 0:
            raise ConfigurationError(f"value_threshold must be non-negative, got {self.value_threshold}")
        return self


@dataclass(frozen=True)
class ScoringContext:
    """Partial lineup state visible to the scorer."""

    selected_ids: Tuple[str, ...] = ()
    correlation: Optional[CorrelationMatrix] = None
    weights: StrategyWeights = StrategyWeights()

    def with_selected(self, player_id: str) -> "ScoringContext":
        return ScoringContext(self.selected_ids + (player_id,), self.correlation, self.weights)


_EMPTY_CONTEXT = ScoringContext()

_INJURY_PENALTIES = {
    "Q": 0.10,
    "QUESTIONABLE": 0.10,
    "GTD": 0.10,
    "D": 0.20,
    "DOUBTFUL": 0.20,
}


def _ceiling(player: PlayerRecord, a: PlayerAnalytics, ctx: ScoringContext) -> float:
    score = 0.6 * a.ceiling + 0.25 * a.projection + 0.15 * a.ceiling_probability * a.projection
    score += 0.2 * a.upside_ratio
    if a.ownership > 0.25:
        score -= a.ownership ** 1.5 * a.projection * 0.1
    return score


def _floor(player: PlayerRecord, a: PlayerAnalytics, ctx: ScoringContext) -> float:
    volatility = min(1.0, a.effective_volatility)
    score = 0.5 * a.floor + 0.3 * a.consistency * a.projection + 0.2 * a.projection
    score += (1.0 - volatility) * a.projection * 0.1
    score -= _INJURY_PENALTIES.get(player.status, 0.0) * a.projection
    return score


def _contrarian(player: PlayerRecord, a: PlayerAnalytics, ctx: ScoringContext) -> float:
    weights = ctx.weights
    base = 0.6 * a.projection
    score = base
    if a.ownership < weights.ownership_threshold:
        score += base * 0.5 * (2.0 ** ((weights.ownership_threshold - a.ownership) / 0.05) - 1.0)
    score -= base * 0.4 * (a.ownership / weights.contrarian_pivot) ** 2
    score += 0.3 * a.upside_ratio
    return score


def pairwise_bonus(correlations: Iterable[float], projection: float, weight: float) -> float:
    """Bonus for a player given its correlations to the players already picked."""
    return float(sum(correlations)) * projection * weight


def correlation_bonus(player_id: str, projection: float, ctx: ScoringContext) -> float:
    if ctx.correlation is None or not ctx.selected_ids:
        return 0.0
    correlations = (ctx.correlation.get(player_id, other) for other in ctx.selected_ids)
    return pairwise_bonus(correlations, projection, ctx.weights.correlation_weight)


def _correlation(player: PlayerRecord, a: PlayerAnalytics, ctx: ScoringContext) -> float:
    score = 0.5 * a.projection + 0.1 * a.value_rating * a.projection
    return score + correlation_bonus(player.player_id, a.projection, ctx)


def _balanced(player: PlayerRecord, a: PlayerAnalytics, ctx: ScoringContext) -> float:
    risk = ctx.weights.risk_tolerance
    score = 0.4 * a.projection + 0.4 * (risk * a.ceiling + (1.0 - risk) * a.floor)
    score += 0.2 * a.value_rating * a.projection
    if a.ownership > 0.35:
        score -= 0.05 * a.projection
    elif a.ownership < 0.10:
        score += 0.03 * a.projection
    return score


def _value(player: PlayerRecord, a: PlayerAnalytics, ctx: ScoringContext) -> float:
    score = 0.8 * a.value_rating * a.projection + 0.2 * a.floor
    excess = a.value_rating - ctx.weights.value_threshold
    if excess > 0:
        score += excess * a.projection * 0.1
    return score


_SCORERS: Dict[Strategy, Callable[[PlayerRecord, PlayerAnalytics, ScoringContext], float]] = {
    Strategy.MAXIMIZE_CEILING: _ceiling,
    Strategy.MAXIMIZE_FLOOR: _floor,
    Strategy.CONTRARIAN: _contrarian,
    Strategy.CORRELATION_WEIGHTED: _correlation,
    Strategy.BALANCED: _balanced,
    Strategy.VALUE: _value,
}


def score_player(
    player: PlayerRecord,
    analytics: PlayerAnalytics,
    strategy: Strategy,
    context: ScoringContext = _EMPTY_CONTEXT,
) -> float:
    """Score ``player`` for ``strategy`` given the partial lineup in ``context``."""

    return max(0.0, _SCORERS[strategy](player, analytics, context))


def standalone_score(
    player: PlayerRecord,
    analytics: PlayerAnalytics,
    strategy: Strategy,
    weights: StrategyWeights = StrategyWeights(),
) -> float:
    return score_player(player, analytics, strategy, ScoringContext(weights=weights))


def max_correlation_bonus(
    player_id: str,
    projection: float,
    partner_ids: Sequence[str],
    picks: int,
    correlation: Optional[CorrelationMatrix],
    weight: float,
) -> float:
    """Upper bound on the correlation bonus over ``picks`` partners."""

    if correlation is None or picks <= 0:
        return 0.0
    positives = sorted(
        (value for value in (correlation.get(player_id, other) for other in partner_ids if other != player_id) if value > 0),
        reverse=True,
    )
    return pairwise_bonus(positives[:picks], projection, weight)
