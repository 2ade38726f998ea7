"""Pydantic models for API I/O."""

from .correlation import CorrelationRequest, CorrelationResponse
from .optimize import (
    LineupPlayerResponse,
    LineupResponse,
    OptimizeRequest,
    OptimizeResponse,
    PlayerUsageResponse,
    StackingRulePayload,
    StrategyWeightsPayload,
)
from .simulation import (
    ContestPayload,
    RoiResponse,
    SimulateRequest,
    SimulateResponse,
    SimulationResultResponse,
    WeatherPayload,
)

__all__ = [
    "ContestPayload",
    "CorrelationRequest",
    "CorrelationResponse",
    "LineupPlayerResponse",
    "LineupResponse",
    "OptimizeRequest",
    "OptimizeResponse",
    "PlayerUsageResponse",
    "RoiResponse",
    "SimulateRequest",
    "SimulateResponse",
    "SimulationResultResponse",
    "StackingRulePayload",
    "StrategyWeightsPayload",
    "WeatherPayload",
]
