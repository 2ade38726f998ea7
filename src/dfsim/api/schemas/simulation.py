from __future__ import annotations

from typing import Dict, List, Literal

from pydantic import BaseModel, Field

from .optimize import OptimizeRequest, OptimizeResponse


class ContestPayload(BaseModel):
    field_size: int = Field(ge=2)
    entry_fee: float = Field(gt=0.0)
    contest_type: Literal["gpp", "cash"] = "gpp"
    field_sample_size: int | None = Field(default=None, ge=10)


class WeatherPayload(BaseModel):
    severity: float = Field(default=0.0, ge=0.0, le=1.0)
    affected_teams: List[str] | None = None


class SimulateRequest(OptimizeRequest):
    iterations: int = Field(default=10_000, ge=1, le=1_000_000)
    seed: int | None = Field(default=None, ge=0)
    target_score: float | None = None
    events: bool = False
    weather: WeatherPayload | None = None
    contest: ContestPayload | None = None


class RoiResponse(BaseModel):
    mean: float
    std: float
    p10: float
    p50: float
    p90: float
    profit_probability: float
    expected_payout: float


class SimulationResultResponse(BaseModel):
    lineup_id: str
    iterations: int
    mean: float
    std: float
    min: float
    max: float
    percentiles: Dict[int, float]
    target_score: float
    prob_exceed_target: float
    avg_correlation: float
    risk_score: float
    roi: RoiResponse | None = None
    win_probability: float | None = None
    cash_probability: float | None = None
    top1_probability: float | None = None
    top10_probability: float | None = None
    incomplete: bool = False
    degraded_to_independent: bool = False
    correlation_method: str = "cholesky"


class SimulateResponse(BaseModel):
    optimize: OptimizeResponse
    results: List[SimulationResultResponse]
    iterations_requested: int
    iterations_completed: int
    incomplete: bool
    degraded_to_independent: bool
    correlation_method: str
    seed_entropy: int | None = None
    field_tiers: Dict[str, int] = {}
    elapsed: float = 0.0
