"""Per-player outcome distributions used by the Monte Carlo engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
import math
from typing import Any, Dict, Mapping, Optional, Sequence

import numpy as np
from scipy import stats

from dfsim.analytics import PlayerAnalytics
from dfsim.models import PlayerRecord

logger = logging.getLogger(__name__)

_U_EPS = 1e-9


class DistributionFamily(str, Enum):
    NORMAL = "normal"
    LOGNORMAL = "lognormal"
    BETA = "beta"
    GAMMA = "gamma"
    EXPONENTIAL = "exponential"
    EMPIRICAL = "empirical"


def _default_families() -> Dict[str, DistributionFamily]:
    return {
        "NBA": DistributionFamily.NORMAL,
        "NFL": DistributionFamily.NORMAL,
        "MLB": DistributionFamily.GAMMA,
        "NHL": DistributionFamily.GAMMA,
        "GOLF": DistributionFamily.NORMAL,
    }


def _position_families() -> Dict[str, Dict[str, DistributionFamily]]:
    return {
        "NFL": {
            "RB": DistributionFamily.LOGNORMAL,
            "WR": DistributionFamily.LOGNORMAL,
            "TE": DistributionFamily.LOGNORMAL,
        },
        "MLB": {
            "P": DistributionFamily.NORMAL,
            "SP": DistributionFamily.NORMAL,
            "RP": DistributionFamily.EXPONENTIAL,
        },
        "NHL": {"G": DistributionFamily.NORMAL},
    }


def _variance_multipliers() -> Dict[str, Dict[str, float]]:
    return {
        "NFL": {"K": 0.6, "QB": 0.9},
        "NBA": {"C": 0.9},
        "MLB": {"SP": 0.9},
    }


@dataclass(frozen=True)
class DistributionPolicy:
    families: Mapping[str, DistributionFamily] = field(default_factory=_default_families)
    position_families: Mapping[str, Mapping[str, DistributionFamily]] = field(default_factory=_position_families)
    variance_multipliers: Mapping[str, Mapping[str, float]] = field(default_factory=_variance_multipliers)
    min_std_fraction: float = 0.10
    min_std_points: float = 0.5
    beta_volatility: float = 0.5
    floor_stretch: float = 0.8
    ceiling_stretch: float = 1.2
    empirical_min_samples: int = 20


@dataclass(frozen=True)
class PlayerDistribution:
    """Outcome distribution for one player, clamped to ``[floor, ceiling]``."""

    player_id: str
    family: DistributionFamily
    mean: float
    std: float
    floor: float
    ceiling: float
    frozen: Any = None
    samples: Optional[np.ndarray] = None

    def ppf(self, u: Any) -> np.ndarray:
        """Inverse CDF at ``u``, clamped to the distribution bounds."""

        u = np.clip(np.asarray(u, dtype=float), _U_EPS, 1.0 - _U_EPS)
        if self.family is DistributionFamily.EMPIRICAL and self.samples is not None:
            values = np.quantile(self.samples, u)
        else:
            values = self.frozen.ppf(u)
        values = np.where(np.isfinite(values), values, self.mean)
        return np.clip(values, self.floor, self.ceiling)

    def sample(self, rng: np.random.Generator, size: int) -> np.ndarray:
        return self.ppf(rng.random(size))


def _lookup(table: Mapping[str, Mapping[str, Any]], sport: str, positions: Sequence[str]) -> Any:
    by_position = table.get(sport, {})
    for position in positions:
        if position in by_position:
            return by_position[position]
    return None


def _normal(mean: float, std: float) -> Any:
    return stats.norm(loc=mean, scale=std)


def _lognormal(mean: float, std: float) -> Any:
    sigma2 = math.log(1.0 + (std / mean) ** 2)
    return stats.lognorm(s=math.sqrt(sigma2), scale=mean / math.sqrt(1.0 + (std / mean) ** 2))


def _gamma(mean: float, std: float) -> Any:
    return stats.gamma(a=(mean / std) ** 2, scale=std ** 2 / mean)


def _exponential(mean: float, std: float) -> Any:
    return stats.expon(loc=mean - std, scale=std)


def _beta(mean: float, std: float, low: float, high: float) -> Optional[Any]:
    width = high - low
    if width <= 0:
        return None
    m = (mean - low) / width
    if not 0.0 < m < 1.0:
        return None
    var = (std / width) ** 2
    max_var = m * (1.0 - m)
    if var >= max_var:
        var = 0.9 * max_var
    common = max_var / var - 1.0
    return stats.beta(a=m * common, b=(1.0 - m) * common, loc=low, scale=width)


def _bounds(analytics: PlayerAnalytics, policy: DistributionPolicy) -> tuple[float, float]:
    low = analytics.floor - (1.0 - policy.floor_stretch) * abs(analytics.floor)
    high = analytics.ceiling + (policy.ceiling_stretch - 1.0) * abs(analytics.ceiling)
    return low, max(high, low)


def choose_family(
    player: PlayerRecord,
    analytics: PlayerAnalytics,
    policy: DistributionPolicy,
    history_size: int = 0,
) -> DistributionFamily:
    if history_size >= policy.empirical_min_samples:
        return DistributionFamily.EMPIRICAL
    family = _lookup(policy.position_families, player.sport, player.positions)
    if family is None:
        family = policy.families.get(player.sport, DistributionFamily.NORMAL)
    if family is DistributionFamily.NORMAL and analytics.effective_volatility > policy.beta_volatility:
        family = DistributionFamily.BETA
    return family


def build_distribution(
    player: PlayerRecord,
    analytics: PlayerAnalytics,
    *,
    history: Optional[Sequence[float]] = None,
    policy: Optional[DistributionPolicy] = None,
) -> PlayerDistribution:
    policy = policy or DistributionPolicy()
    history_values = np.sort(np.asarray([v for v in (history or ()) if math.isfinite(v)], dtype=float))
    family = choose_family(player, analytics, policy, int(history_values.size))

    mean = analytics.projection
    multiplier = _lookup(policy.variance_multipliers, player.sport, player.positions) or 1.0
    std = max(
        analytics.effective_volatility * mean * multiplier,
        policy.min_std_fraction * mean,
        policy.min_std_points,
    )
    low, high = _bounds(analytics, policy)

    frozen = None
    samples = None
    if family is DistributionFamily.EMPIRICAL:
        samples = history_values
        low = min(low, float(samples[0]))
        high = max(high, float(samples[-1]))
    elif family is DistributionFamily.LOGNORMAL:
        frozen = _lognormal(mean, std)
    elif family is DistributionFamily.GAMMA:
        frozen = _gamma(mean, std)
    elif family is DistributionFamily.EXPONENTIAL:
        frozen = _exponential(mean, std)
    elif family is DistributionFamily.BETA:
        frozen = _beta(mean, std, low, high)
        if frozen is None:
            family = DistributionFamily.NORMAL
    if family is DistributionFamily.NORMAL:
        frozen = _normal(mean, std)

    return PlayerDistribution(
        player_id=player.player_id,
        family=family,
        mean=mean,
        std=std,
        floor=low,
        ceiling=high,
        frozen=frozen,
        samples=samples,
    )


def build_distributions(
    players: Sequence[PlayerRecord],
    analytics: Mapping[str, PlayerAnalytics],
    *,
    histories: Optional[Mapping[str, Sequence[float]]] = None,
    policy: Optional[DistributionPolicy] = None,
) -> Dict[str, PlayerDistribution]:
    policy = policy or DistributionPolicy()
    histories = histories or {}
    distributions: Dict[str, PlayerDistribution] = {}
    families: Dict[str, int] = {}
    for player in players:
        rated = analytics.get(player.player_id)
        if rated is None:
            continue
        dist = build_distribution(player, rated, history=histories.get(player.player_id), policy=policy)
        distributions[player.player_id] = dist
        families[dist.family.value] = families.get(dist.family.value, 0) + 1
    logger.debug("Built %s distributions (%s)", len(distributions), families)
    return distributions
