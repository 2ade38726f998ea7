"""Strategy scoring for the optimizer."""

from .objectives import (
    ScoringContext,
    Strategy,
    StrategyWeights,
    correlation_bonus,
    max_correlation_bonus,
    pairwise_bonus,
    score_player,
    standalone_score,
)

__all__ = [
    "ScoringContext",
    "Strategy",
    "StrategyWeights",
    "correlation_bonus",
    "max_correlation_bonus",
    "pairwise_bonus",
    "score_player",
    "standalone_score",
]
