"""Synthetic contest fields for payout modelling."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import time
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from dfsim.analytics import PlayerAnalytics
from dfsim.config import Settings, SlotTemplate
from dfsim.errors import ConfigurationError
from dfsim.models import PlayerRecord
from dfsim.optimizer import optimize, perturb_projections
from dfsim.scoring import Strategy

logger = logging.getLogger(__name__)

TIER_SHARK = "shark"
TIER_RECREATIONAL = "recreational"
TIER_BEGINNER = "beginner"

_FILL_ATTEMPTS = 100
_SHARK_ROUNDS = 3
_SHARK_LINEUPS_PER_ROUND = 20


@dataclass(frozen=True)
class PayoutTier:
    min_rank: int
    max_rank: int
    payout: float


@dataclass(frozen=True)
class TierMix:
    shark: float
    recreational: float
    beginner: float

    def counts(self, total: int) -> Tuple[int, int, int]:
        weights = np.array([self.shark, self.recreational, self.beginner], dtype=float)
        if weights.sum() <= 0 or (weights < 0).any():
            raise ConfigurationError("Tier mix weights must be non-negative and not all zero")
        weights = weights / weights.sum()
        shark = int(round(total * weights[0]))
        recreational = int(round(total * weights[1]))
        shark = min(shark, total)
        recreational = min(recreational, total - shark)
        return shark, recreational, total - shark - recreational


_DEFAULT_MIX = {
    "gpp": TierMix(shark=0.10, recreational=0.50, beginner=0.40),
    "cash": TierMix(shark=0.25, recreational=0.55, beginner=0.20),
}


def default_payouts(contest_type: str, field_size: int, entry_fee: float) -> Tuple[PayoutTier, ...]:
    """Top-heavy tournament table or a flat double-up table."""

    if contest_type == "cash":
        paid = max(1, int(field_size * 0.45))
        return (PayoutTier(1, paid, round(entry_fee * 1.8, 2)),)

    paid = max(1, int(field_size * 0.20))
    prize_pool = entry_fee * field_size * 0.85
    min_cash = entry_fee * 1.5
    ranks = np.arange(1, paid + 1, dtype=float)
    weights = 1.0 / ranks ** 1.1
    if prize_pool > min_cash * paid:
        amounts = min_cash + (prize_pool - min_cash * paid) * weights / weights.sum()
    else:
        amounts = np.full(paid, prize_pool / paid)

    tiers: List[PayoutTier] = []
    start = 1
    width = 1
    while start <= paid:
        end = min(paid, start + width - 1)
        tiers.append(PayoutTier(start, end, round(float(amounts[start - 1 : end].mean()), 2)))
        start = end + 1
        if start > 10:
            width *= 2
    return tuple(tiers)


@dataclass(frozen=True)
class ContestConfig:
    field_size: int
    entry_fee: float
    contest_type: str = "gpp"
    payouts: Optional[Tuple[PayoutTier, ...]] = None
    tier_mix: Optional[TierMix] = None
    field_sample_size: Optional[int] = None

    def validate(self) -> "ContestConfig":
        if self.contest_type not in _DEFAULT_MIX:
            raise ConfigurationError(f"Unknown contest type {self.contest_type!r}")
        if self.field_size < 2:
            raise ConfigurationError(f"field_size must be at least 2, got {self.field_size}")
        if self.entry_fee <= 0:
            raise ConfigurationError(f"entry_fee must be positive, got {self.entry_fee}")
        for tier in self.payouts or ():
            if tier.min_rank < 1 or tier.max_rank < tier.min_rank or tier.payout < 0:
                raise ConfigurationError(f"Invalid payout tier {tier}")
        return self

    @property
    def mix(self) -> TierMix:
        return self.tier_mix or _DEFAULT_MIX[self.contest_type]

    def payout_tiers(self) -> Tuple[PayoutTier, ...]:
        return self.payouts or default_payouts(self.contest_type, self.field_size, self.entry_fee)

    def payout_table(self) -> np.ndarray:
        """Payout by rank (index 0 is first place)."""

        tiers = self.payout_tiers()
        size = max(tier.max_rank for tier in tiers)
        table = np.zeros(size)
        for tier in tiers:
            table[tier.min_rank - 1 : tier.max_rank] = tier.payout
        return table

    @property
    def cash_line(self) -> int:
        return max(tier.max_rank for tier in self.payout_tiers() if tier.payout > 0)


@dataclass(frozen=True)
class FieldSample:
    lineups: np.ndarray
    tiers: Tuple[str, ...]
    field_size: int

    @property
    def sample_size(self) -> int:
        return int(self.lineups.shape[0])

    def tier_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for tier in self.tiers:
            counts[tier] = counts.get(tier, 0) + 1
        return counts


def _eligible_by_slot(template: SlotTemplate, players: Sequence[PlayerRecord], cap: int) -> List[np.ndarray]:
    return [
        np.array([idx for idx, p in enumerate(players) if slot.accepts(p) and p.salary <= cap], dtype=int)
        for slot in template.slots
    ]


def _random_fill(
    eligible: Sequence[np.ndarray],
    salaries: np.ndarray,
    weights: np.ndarray,
    cap: int,
    rng: np.random.Generator,
) -> Optional[np.ndarray]:
    """Weighted random lineup respecting the cap and distinct players."""

    min_after = np.zeros(len(eligible) + 1)
    for slot in range(len(eligible) - 1, -1, -1):
        min_after[slot] = min_after[slot + 1] + salaries[eligible[slot]].min()

    for _ in range(_FILL_ATTEMPTS):
        chosen: List[int] = []
        spent = 0
        for slot, options in enumerate(eligible):
            budget = cap - spent - min_after[slot + 1]
            mask = (salaries[options] <= budget) & ~np.isin(options, chosen)
            pool = options[mask]
            if pool.size == 0:
                break
            probs = weights[pool] / weights[pool].sum()
            pick = int(rng.choice(pool, p=probs))
            chosen.append(pick)
            spent += int(salaries[pick])
        else:
            return np.array(chosen, dtype=int)
    return None


def _shark_lineups(
    players: Sequence[PlayerRecord],
    template: SlotTemplate,
    cap: int,
    count: int,
    rng: np.random.Generator,
    settings: Settings,
) -> List[np.ndarray]:
    index = {p.player_id: idx for idx, p in enumerate(players)}
    rounds = min(_SHARK_ROUNDS, count)
    per_round = min(_SHARK_LINEUPS_PER_ROUND, max(1, math.ceil(count / max(rounds, 1))))
    found: Dict[Tuple[str, ...], np.ndarray] = {}
    for _ in range(rounds):
        perturbed = perturb_projections(
            players,
            seed=int(rng.integers(1, 2**31 - 1)),
            pct_low=settings.field_perturbation,
            pct_high=settings.field_perturbation / 2.0,
        )
        result = optimize(
            perturbed,
            sport=template.sport,
            platform=template.platform,
            salary_cap=cap,
            num_lineups=per_round,
            min_different_players=2,
            strategy=Strategy.BALANCED,
            workers=1,
            settings=settings,
        )
        for lineup in result.lineups:
            found.setdefault(lineup.signature, np.array([index[pid] for pid in lineup.player_ids], dtype=int))
    return list(found.values())


def generate_field(
    players: Sequence[PlayerRecord],
    template: SlotTemplate,
    analytics: Mapping[str, PlayerAnalytics],
    contest: ContestConfig,
    rng: np.random.Generator,
    *,
    salary_cap: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> FieldSample:
    """Build a representative sample of the contest field.

    ``players`` must all be ratable. Rows of the returned matrix index into
    ``players`` in slot order.
    """

    settings = settings or Settings.from_env()
    contest.validate()
    start = time.perf_counter()
    cap = template.salary_cap if salary_cap is None else salary_cap
    sample_size = min(contest.field_size, contest.field_sample_size or settings.field_sample_size)
    shark_count, rec_count, beginner_count = contest.mix.counts(sample_size)

    salaries = np.array([p.salary for p in players], dtype=int)
    projections = np.array([analytics[p.player_id].projection for p in players])
    ownership = np.array([max(analytics[p.player_id].ownership, 0.005) for p in players])
    eligible = _eligible_by_slot(template, players, cap)
    if any(options.size == 0 for options in eligible):
        raise ConfigurationError("Cannot build a contest field: some roster slots have no eligible players")

    rows: List[np.ndarray] = []
    tiers: List[str] = []

    if shark_count:
        shark_pool = _shark_lineups(players, template, cap, shark_count, rng, settings)
        if shark_pool:
            picks = rng.integers(0, len(shark_pool), size=shark_count)
            rows.extend(shark_pool[int(i)] for i in picks)
            tiers.extend([TIER_SHARK] * shark_count)
        else:
            logger.warning("Optimizer found no shark lineups; filling that tier with recreational lineups")
            rec_count += shark_count

    for count, weights, tier in (
        (rec_count, ownership * projections, TIER_RECREATIONAL),
        (beginner_count, np.sqrt(np.maximum(projections, 0.01)), TIER_BEGINNER),
    ):
        for _ in range(count):
            lineup = _random_fill(eligible, salaries, weights, cap, rng)
            if lineup is None:
                continue
            rows.append(lineup)
            tiers.append(tier)

    if not rows:
        raise ConfigurationError("Unable to generate any contest field lineups within the salary cap")
    matrix = np.vstack(rows)
    logger.info(
        "Generated field sample of %s lineups (field size %s, sharks %s, recreational %s, beginners %s) in %.2fs",
        matrix.shape[0],
        contest.field_size,
        tiers.count(TIER_SHARK),
        tiers.count(TIER_RECREATIONAL),
        tiers.count(TIER_BEGINNER),
        time.perf_counter() - start,
    )
    return FieldSample(lineups=matrix, tiers=tuple(tiers), field_size=contest.field_size)
