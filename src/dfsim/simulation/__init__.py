"""Correlated Monte Carlo simulation of lineup outcomes."""

from .distributions import DistributionFamily, DistributionPolicy, PlayerDistribution, build_distribution, build_distributions
from .engine import RoiSummary, SimulationBatch, SimulationResult, simulate_lineup, simulate_lineups
from .events import BonusEvent, EventConfig, WeatherContext, apply_events, compile_events, injury_probability
from .field import ContestConfig, FieldSample, PayoutTier, TierMix, default_payouts, generate_field

__all__ = [
    "BonusEvent",
    "ContestConfig",
    "DistributionFamily",
    "DistributionPolicy",
    "EventConfig",
    "FieldSample",
    "PayoutTier",
    "PlayerDistribution",
    "RoiSummary",
    "SimulationBatch",
    "SimulationResult",
    "TierMix",
    "WeatherContext",
    "apply_events",
    "build_distribution",
    "build_distributions",
    "compile_events",
    "default_payouts",
    "generate_field",
    "injury_probability",
    "simulate_lineup",
    "simulate_lineups",
]
