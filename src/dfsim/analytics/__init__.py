"""Per-player derived metrics."""

from .player import NotRatable, PlayerAnalytics, analyze_pool, compute_analytics, default_spread

__all__ = ["NotRatable", "PlayerAnalytics", "analyze_pool", "compute_analytics", "default_spread"]
