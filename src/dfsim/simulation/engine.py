"""Monte Carlo simulation of lineup outcomes with correlated player samples."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import math
import threading
import time
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from scipy import stats

from dfsim.analytics import analyze_pool
from dfsim.config import Settings, get_slot_template, normalize_sport
from dfsim.correlation import (
    CorrelationMatrix,
    CorrelationPolicy,
    CorrelationResult,
    Decomposition,
    build_correlation,
    decompose,
    lineup_correlation,
)
from dfsim.errors import ConfigurationError
from dfsim.models import Lineup, PlayerRecord
from dfsim.parallel import deadline_from, run_jobs

from .distributions import DistributionPolicy, PlayerDistribution, build_distributions
from .events import EventConfig, EventPlan, apply_events, compile_events
from .field import ContestConfig, FieldSample, generate_field

logger = logging.getLogger(__name__)

PERCENTILES = (10, 25, 50, 75, 90, 95, 99)


@dataclass(frozen=True)
class RoiSummary:
    mean: float
    std: float
    p10: float
    p50: float
    p90: float
    profit_probability: float
    expected_payout: float


@dataclass(frozen=True)
class SimulationResult:
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
    roi: Optional[RoiSummary] = None
    win_probability: Optional[float] = None
    cash_probability: Optional[float] = None
    top1_probability: Optional[float] = None
    top10_probability: Optional[float] = None
    incomplete: bool = False
    degraded_to_independent: bool = False
    correlation_method: str = "cholesky"


@dataclass(frozen=True)
class SimulationBatch:
    results: Tuple[SimulationResult, ...]
    iterations_requested: int
    iterations_completed: int
    incomplete: bool
    degraded_to_independent: bool
    correlation_method: str
    seed_entropy: int
    field_tiers: Dict[str, int] = field(default_factory=dict)
    elapsed: float = 0.0


@dataclass(frozen=True)
class SimulationInputs:
    """Read-only data shared by every chunk of one simulation run."""

    factor: np.ndarray
    distributions: Tuple[PlayerDistribution, ...]
    lineup_index: np.ndarray
    event_plan: Optional[EventPlan] = None
    field_index: Optional[np.ndarray] = None
    field_size: int = 0
    payout_table: Optional[np.ndarray] = None


@dataclass
class ChunkResult:
    index: int
    scores: np.ndarray
    payouts: Optional[np.ndarray] = None
    ranks: Optional[np.ndarray] = None
    complete: bool = True


def sample_outcomes(inputs: SimulationInputs, size: int, rng: np.random.Generator) -> np.ndarray:
    """Correlated, clamped, event-adjusted outcomes of shape ``(size, players)``."""

    n_players = inputs.factor.shape[0]
    independent = rng.standard_normal((size, n_players))
    correlated = independent @ inputs.factor.T
    uniforms = stats.norm.cdf(correlated)
    outcomes = np.empty_like(uniforms)
    for column, dist in enumerate(inputs.distributions):
        outcomes[:, column] = dist.ppf(uniforms[:, column])
    if inputs.event_plan is not None:
        outcomes = apply_events(outcomes, inputs.event_plan, rng)
    return outcomes


def _lineup_scores(outcomes: np.ndarray, index: np.ndarray) -> np.ndarray:
    totals = np.zeros((outcomes.shape[0], index.shape[0]))
    for slot in range(index.shape[1]):
        totals += outcomes[:, index[:, slot]]
    return totals


def run_chunk(inputs: SimulationInputs, chunk_index: int, size: int, seed: np.random.SeedSequence) -> ChunkResult:
    rng = np.random.default_rng(seed)
    outcomes = sample_outcomes(inputs, size, rng)
    scores = _lineup_scores(outcomes, inputs.lineup_index).T
    if inputs.field_index is None or inputs.payout_table is None:
        return ChunkResult(chunk_index, scores)

    field_scores = _lineup_scores(outcomes, inputs.field_index)
    n_field = field_scores.shape[1]
    ranks = np.empty(scores.shape, dtype=int)
    for row in range(scores.shape[0]):
        # field entries strictly ahead, scaled from the sample to the full field
        beaten_by = (field_scores > scores[row][:, None]).sum(axis=1)
        ranks[row] = 1 + np.floor(beaten_by * (inputs.field_size - 1) / n_field + 0.5).astype(int)
    table = inputs.payout_table
    payouts = np.where(ranks <= table.size, table[np.minimum(ranks, table.size) - 1], 0.0)
    return ChunkResult(chunk_index, scores, payouts, ranks)


def _run_planned_chunk(inputs: SimulationInputs, chunk: Tuple[int, int, np.random.SeedSequence]) -> ChunkResult:
    chunk_index, size, seed = chunk
    return run_chunk(inputs, chunk_index, size, seed)


def _resolve_decomposition(
    correlation: Union[CorrelationResult, CorrelationMatrix, None],
    universe: Sequence[PlayerRecord],
    sport: str,
    policy: Optional[CorrelationPolicy] = None,
) -> Tuple[CorrelationMatrix, Decomposition]:
    ids = [p.player_id for p in universe]
    if correlation is None:
        built = build_correlation(universe, sport, policy=policy)
        return built.matrix, built.decomposition
    matrix = correlation.matrix if isinstance(correlation, CorrelationResult) else correlation
    missing = [pid for pid in ids if pid not in matrix]
    if missing:
        raise ConfigurationError(f"Correlation matrix is missing players: {', '.join(missing[:5])}")
    if isinstance(correlation, CorrelationResult) and matrix.player_ids == tuple(ids):
        return matrix, correlation.decomposition
    restricted = matrix.restrict(ids)
    return restricted, decompose(restricted, policy, sport)


def _chunk_plan(iterations: int, chunk_size: int, root: np.random.SeedSequence) -> List[Tuple[int, int, np.random.SeedSequence]]:
    count = math.ceil(iterations / chunk_size)
    seeds = root.spawn(count)
    plan = []
    for idx in range(count):
        size = min(chunk_size, iterations - idx * chunk_size)
        plan.append((idx, size, seeds[idx]))
    return plan


def _summarize(
    lineup: Lineup,
    scores: np.ndarray,
    payouts: Optional[np.ndarray],
    ranks: Optional[np.ndarray],
    contest: Optional[ContestConfig],
    matrix: CorrelationMatrix,
    target_score: Optional[float],
    incomplete: bool,
    decomposition: Decomposition,
) -> SimulationResult:
    target = lineup.projection if target_score is None else float(target_score)
    avg_corr = lineup_correlation(matrix, lineup.player_ids)
    mean = float(scores.mean())
    std = float(scores.std())
    risk = 100.0 * std / max(abs(mean), 1e-9) * max(0.0, 1.0 + avg_corr)
    percentile_values = np.percentile(scores, PERCENTILES)

    roi = None
    win = cash = top1 = top10 = None
    if payouts is not None and ranks is not None and contest is not None:
        fee = contest.entry_fee
        roi_values = (payouts - fee) / fee * 100.0
        roi_pcts = np.percentile(roi_values, (10, 50, 90))
        roi = RoiSummary(
            mean=float(roi_values.mean()),
            std=float(roi_values.std()),
            p10=float(roi_pcts[0]),
            p50=float(roi_pcts[1]),
            p90=float(roi_pcts[2]),
            profit_probability=float((payouts > fee).mean()),
            expected_payout=float(payouts.mean()),
        )
        win = float((ranks == 1).mean())
        cash = float((ranks <= contest.cash_line).mean())
        top1 = float((ranks <= max(1, math.ceil(contest.field_size * 0.01))).mean())
        top10 = float((ranks <= max(1, math.ceil(contest.field_size * 0.10))).mean())

    return SimulationResult(
        lineup_id=lineup.lineup_id,
        iterations=int(scores.size),
        mean=mean,
        std=std,
        min=float(scores.min()),
        max=float(scores.max()),
        percentiles={p: float(v) for p, v in zip(PERCENTILES, percentile_values)},
        target_score=target,
        prob_exceed_target=float((scores > target).mean()),
        avg_correlation=avg_corr,
        risk_score=risk,
        roi=roi,
        win_probability=win,
        cash_probability=cash,
        top1_probability=top1,
        top10_probability=top10,
        incomplete=incomplete,
        degraded_to_independent=decomposition.degraded,
        correlation_method=decomposition.method,
    )


def simulate_lineups(
    lineups: Sequence[Lineup],
    players: Sequence[PlayerRecord],
    *,
    sport: Optional[str] = None,
    platform: Optional[str] = None,
    correlation: Union[CorrelationResult, CorrelationMatrix, None] = None,
    iterations: Optional[int] = None,
    events: Optional[EventConfig] = None,
    contest: Optional[ContestConfig] = None,
    target_score: Optional[float] = None,
    seed: Optional[int] = None,
    workers: Optional[int] = None,
    chunk_size: Optional[int] = None,
    deadline: Optional[float] = None,
    timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    histories: Optional[Mapping[str, Sequence[float]]] = None,
    distribution_policy: Optional[DistributionPolicy] = None,
    correlation_policy: Optional[CorrelationPolicy] = None,
    salary_cap: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> SimulationBatch:
    """Simulate every lineup against the same correlated iterations.

    Iterations are split into fixed-size chunks seeded from ``seed``, so the
    aggregates do not depend on ``workers``. When the deadline passes the
    finished chunks are summarised and the batch is flagged incomplete.
    """

    start = time.perf_counter()
    settings = settings or Settings.from_env()
    if not lineups:
        raise ConfigurationError("No lineups to simulate")
    if not players:
        raise ConfigurationError("Player pool is empty")
    iterations = settings.iterations if iterations is None else iterations
    if iterations < 1:
        raise ConfigurationError(f"iterations must be at least 1, got {iterations}")
    chunk_size = max(1, chunk_size or settings.sim_chunk_size)
    workers = max(1, workers or settings.workers)
    sport = normalize_sport(sport or lineups[0].players[0].sport)
    if contest is not None:
        contest.validate()
        if platform is None:
            raise ConfigurationError("platform is required to simulate a contest field")

    rated, _ = analyze_pool(players, histories)
    lineup_ids = {pid for lineup in lineups for pid in lineup.player_ids}
    unknown = sorted(lineup_ids - rated.keys())
    if unknown:
        raise ConfigurationError(f"Lineup players missing from the rated pool: {', '.join(unknown[:5])}")
    if contest is None:
        universe = [p for p in players if p.player_id in lineup_ids]
    else:
        universe = [p for p in players if p.player_id in rated]
    position = {p.player_id: idx for idx, p in enumerate(universe)}

    matrix, decomposition = _resolve_decomposition(correlation, universe, sport, correlation_policy)
    distributions = build_distributions(universe, rated, histories=histories, policy=distribution_policy)
    seed_root = np.random.SeedSequence(seed)
    field_seed, chunk_seed = seed_root.spawn(2)

    field_sample: Optional[FieldSample] = None
    payout_table = None
    if contest is not None:
        template = get_slot_template(sport, platform)
        field_sample = generate_field(
            universe,
            template,
            rated,
            contest,
            np.random.default_rng(field_seed),
            salary_cap=salary_cap,
            settings=settings,
        )
        payout_table = contest.payout_table()

    inputs = SimulationInputs(
        factor=decomposition.factor,
        distributions=tuple(distributions[p.player_id] for p in universe),
        lineup_index=np.array([[position[pid] for pid in lineup.player_ids] for lineup in lineups], dtype=int),
        event_plan=None if events is None else compile_events(universe, events),
        field_index=None if field_sample is None else field_sample.lineups,
        field_size=0 if contest is None else contest.field_size,
        payout_table=payout_table,
    )

    plan = _chunk_plan(iterations, chunk_size, chunk_seed)
    stop_at = deadline_from(timeout, deadline)
    logger.info(
        "Starting simulation: lineups=%s, players=%s, iterations=%s, chunks=%s, workers=%s, correlation=%s, contest=%s",
        len(lineups),
        len(universe),
        iterations,
        len(plan),
        workers,
        decomposition.method,
        "none" if contest is None else f"{contest.contest_type}/{contest.field_size}",
    )
    outcome = run_jobs(
        _run_planned_chunk,
        plan,
        shared=inputs,
        workers=workers,
        deadline=stop_at,
        cancel_event=cancel_event,
        label="simulation",
    )
    chunks = sorted(outcome.results, key=lambda item: item.index)
    completed = sum(chunk.scores.shape[1] for chunk in chunks)
    incomplete = outcome.incomplete or completed < iterations

    results: List[SimulationResult] = []
    if chunks:
        scores = np.concatenate([chunk.scores for chunk in chunks], axis=1)
        payouts = ranks = None
        if contest is not None:
            payouts = np.concatenate([chunk.payouts for chunk in chunks], axis=1)
            ranks = np.concatenate([chunk.ranks for chunk in chunks], axis=1)
        for row, lineup in enumerate(lineups):
            results.append(
                _summarize(
                    lineup,
                    scores[row],
                    None if payouts is None else payouts[row],
                    None if ranks is None else ranks[row],
                    contest,
                    matrix,
                    target_score,
                    incomplete,
                    decomposition,
                )
            )
    elapsed = time.perf_counter() - start
    if incomplete:
        logger.warning("Simulation stopped early after %s/%s iterations", completed, iterations)
    logger.info("Simulated %s lineups x %s iterations in %.2fs", len(lineups), completed, elapsed)
    return SimulationBatch(
        results=tuple(results),
        iterations_requested=iterations,
        iterations_completed=completed,
        incomplete=incomplete,
        degraded_to_independent=decomposition.degraded,
        correlation_method=decomposition.method,
        seed_entropy=int(seed_root.entropy),
        field_tiers={} if field_sample is None else field_sample.tier_counts(),
        elapsed=elapsed,
    )


def simulate_lineup(lineup: Lineup, players: Sequence[PlayerRecord], **kwargs) -> SimulationResult:
    """Simulate a single lineup; see :func:`simulate_lineups` for options."""

    batch = simulate_lineups([lineup], players, **kwargs)
    if not batch.results:
        return SimulationResult(
            lineup_id=lineup.lineup_id,
            iterations=0,
            mean=float("nan"),
            std=float("nan"),
            min=float("nan"),
            max=float("nan"),
            percentiles={},
            target_score=lineup.projection,
            prob_exceed_target=float("nan"),
            avg_correlation=0.0,
            risk_score=float("nan"),
            incomplete=True,
            degraded_to_independent=batch.degraded_to_independent,
            correlation_method=batch.correlation_method,
        )
    return batch.results[0]
