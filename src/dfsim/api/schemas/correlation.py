from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from dfsim.models import PlayerRecord


class CorrelationRequest(BaseModel):
    sport: str
    players: List[PlayerRecord] = Field(min_length=1)
    weather_severity: float = Field(default=0.0, ge=0.0, le=1.0)
    tee_time_window_minutes: float = Field(default=30.0, gt=0.0)


class CorrelationResponse(BaseModel):
    player_ids: List[str]
    matrix: List[List[float]]
    method: str
    jitter: float
    repaired: bool
    degraded_to_independent: bool
