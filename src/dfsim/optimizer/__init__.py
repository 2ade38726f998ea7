"""Lineup optimizer built on a memoized branch-and-bound slot search."""

from .service import OptimizeResult, OptimizeStats, optimize, perturb_projections
from .stacking import StackingRule, StackType

__all__ = ["OptimizeResult", "OptimizeStats", "StackType", "StackingRule", "optimize", "perturb_projections"]
