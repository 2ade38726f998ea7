from __future__ import annotations

from typing import Dict, List, Literal

from pydantic import BaseModel, Field

from dfsim.models import PlayerRecord


class StrategyWeightsPayload(BaseModel):
    ownership_threshold: float = Field(default=0.10, ge=0.0, le=1.0)
    contrarian_pivot: float = Field(default=0.25, gt=0.0, le=1.0)
    correlation_weight: float = Field(default=0.25, ge=0.0, le=1.0)
    value_threshold: float = Field(default=1.0, ge=0.0)
    risk_tolerance: float = Field(default=0.5, ge=0.0, le=1.0)


class StackingRulePayload(BaseModel):
    type: Literal["team", "game", "mini"] = "team"
    min_players: int = Field(default=2, ge=1)
    max_players: int | None = Field(default=None, ge=1)
    teams: List[str] = []


class OptimizeRequest(BaseModel):
    sport: str = Field(default="NFL")
    platform: str = Field(default="DK")
    players: List[PlayerRecord]
    lineups: int = Field(default=20, ge=1)
    strategy: str = Field(default="balanced")
    min_different_players: int = Field(default=1, ge=1)
    salary_cap: int | None = Field(default=None, gt=0)
    lock_player_ids: list[str] | None = None
    exclude_player_ids: list[str] | None = None
    max_exposure: float | None = Field(default=None, gt=0.0, le=1.0)
    max_from_one_team: int | None = Field(default=None, ge=1)
    min_salary: int | None = Field(default=None, ge=0)
    stacking_rules: List[StackingRulePayload] = []
    min_exposure: Dict[str, float] | None = None
    player_max_exposure: Dict[str, float] | None = None
    team_max_exposure: Dict[str, float] | None = None
    histories: Dict[str, List[float]] | None = None
    weights: StrategyWeightsPayload | None = None
    workers: int | None = Field(default=None, ge=1, le=32)
    timeout: float | None = Field(default=None, gt=0.0)


class LineupPlayerResponse(BaseModel):
    slot: str
    player_id: str
    name: str
    team: str
    position: str
    salary: int
    projection: float
    ownership: float | None


class LineupResponse(BaseModel):
    lineup_id: str
    strategy: str
    score: float
    salary: int
    projection: float
    players: List[LineupPlayerResponse]


class PlayerUsageResponse(BaseModel):
    player_id: str
    name: str
    team: str
    count: int
    exposure: float


class OptimizeResponse(BaseModel):
    lineups: List[LineupResponse]
    requested: int
    shortfall: int
    feasible: bool
    infeasible_slots: List[str] = []
    infeasible_reason: str | None = None
    incomplete: bool = False
    excluded_player_ids: List[str] = []
    exposure_violations: List[str] = []
    player_usage: List[PlayerUsageResponse] = []
    elapsed: float = 0.0
