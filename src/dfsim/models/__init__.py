"""Data models for players and lineups."""

from .lineup import Lineup, SlotAssignment
from .player import PlayerRecord

__all__ = ["Lineup", "PlayerRecord", "SlotAssignment"]
