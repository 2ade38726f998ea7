"""Exceptions raised for invalid requests.

Only configuration problems are raised. Infeasible constraints, shortfalls,
numerical degradation and deadlines are reported on the result objects.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised when a request cannot be processed as configured."""


class UnknownRosterError(ConfigurationError, KeyError):
    """Raised when no slot template exists for a sport/platform pair."""

    def __init__(self, sport: str, platform: str):
        self.sport = sport
        self.platform = platform
        super().__init__(f"No slot template configured for sport={sport!r}, platform={platform!r}")

    def __str__(self) -> str:
        return self.args[0]


__all__ = ["ConfigurationError", "UnknownRosterError"]
