"""Player correlation modelling."""

from .matrix import (
    CorrelationMatrix,
    CorrelationResult,
    Decomposition,
    build_correlation,
    decompose,
    lineup_correlation,
)
from .rules import CorrelationContext, CorrelationPolicy, pair_correlation, primary_position

__all__ = [
    "CorrelationContext",
    "CorrelationMatrix",
    "CorrelationPolicy",
    "CorrelationResult",
    "Decomposition",
    "build_correlation",
    "decompose",
    "lineup_correlation",
    "pair_correlation",
    "primary_position",
]
