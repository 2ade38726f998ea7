"""Canonical player model shared by the optimizer and simulation layers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field, field_validator
from pydantic.config import ConfigDict

_SPORT_ALIASES = {"PGA": "GOLF"}


class PlayerRecord(BaseModel):
    """Normalized player for a single contest snapshot."""

    player_id: str = Field(..., min_length=1)
    name: str = ""
    sport: str
    position: str = Field(..., min_length=1)
    team: str
    opponent: Optional[str] = None
    salary: int = Field(..., ge=0)
    projection: float
    floor: Optional[float] = None
    ceiling: Optional[float] = None
    volatility: Optional[float] = Field(default=None, ge=0.0)
    ownership: Optional[float] = None
    injury_status: Optional[str] = None
    tee_time: Optional[datetime] = None
    wave: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @field_validator("sport")
    @classmethod
    def _normalize_sport(cls, value: str) -> str:
        value = value.strip().upper()
        return _SPORT_ALIASES.get(value, value)

    @field_validator("position", "team", "opponent")
    @classmethod
    def _upper(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip().upper()

    @field_validator("ownership")
    @classmethod
    def _normalize_ownership(cls, value: Optional[float]) -> Optional[float]:
        if value is None:
            return None
        if value < 0:
            return 0.0
        return value if value <= 1.0 else min(1.0, value / 100.0)

    @property
    def positions(self) -> Tuple[str, ...]:
        return tuple(part for part in self.position.split("/") if part)

    @property
    def game_key(self) -> Tuple[str, ...]:
        if not self.opponent:
            return (self.team,)
        return tuple(sorted((self.team, self.opponent)))

    @property
    def status(self) -> str:
        return (self.injury_status or "").strip().upper()
