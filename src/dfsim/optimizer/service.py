"""Lineup generation on top of the memoized slot search."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import random
import threading
import time
from collections import defaultdict
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

from dfsim.analytics import PlayerAnalytics, analyze_pool
from dfsim.config import Settings, SlotTemplate, get_slot_template, normalize_sport
from dfsim.correlation import CorrelationMatrix, CorrelationResult, build_correlation
from dfsim.errors import ConfigurationError
from dfsim.models import Lineup, PlayerRecord, SlotAssignment
from dfsim.parallel import deadline_from, run_jobs
from dfsim.scoring import Strategy, StrategyWeights, max_correlation_bonus, standalone_score

from .search import (
    BranchResult,
    Candidate,
    SearchProblem,
    exposure_floor,
    exposure_limit,
    initial_pool_limit,
    merge_branches,
    search_branch,
)
from .stacking import StackingRule

logger = logging.getLogger(__name__)

_OUT_STATUSES = {"O", "OUT", "IR", "INJ", "SUSP"}


@dataclass(frozen=True)
class OptimizeStats:
    branches: int = 0
    nodes: int = 0
    memo_hits: int = 0
    memo_size: int = 0
    pruned: int = 0
    pool_limit: int = 0
    passes: int = 0
    stack_rejected: int = 0
    elapsed: float = 0.0


@dataclass(frozen=True)
class OptimizeResult:
    lineups: Tuple[Lineup, ...]
    requested: int
    shortfall: int
    infeasible_slots: Tuple[str, ...] = ()
    infeasible_reason: Optional[str] = None
    incomplete: bool = False
    excluded_player_ids: Tuple[str, ...] = ()
    exposure_violations: Tuple[str, ...] = ()
    stats: OptimizeStats = field(default_factory=OptimizeStats)

    @property
    def feasible(self) -> bool:
        return self.infeasible_reason is None


@dataclass(frozen=True)
class SearchTask:
    """Payload every search worker receives once per pass."""

    problem: SearchProblem
    pool_limit: int
    deadline: Optional[float]


def _run_search_branch(task: SearchTask, branch: int) -> BranchResult:
    return search_branch(task.problem, branch, pool_limit=task.pool_limit, deadline=task.deadline)


def _perturbation_window(percentile: float, pct_low: float, pct_high: float) -> float:
    """Return the max fractional perturbation for a projection percentile."""
    if percentile <= 0.25:
        t = percentile / 0.25
        return pct_low * (1.5 - 0.5 * t)
    if percentile >= 0.75:
        t = (percentile - 0.75) / 0.25
        return pct_high * (1.0 - 0.5 * t)
    t = (percentile - 0.25) / 0.5
    return pct_low + (pct_high - pct_low) * t


def perturb_projections(
    records: Sequence[PlayerRecord],
    *,
    seed: int,
    pct_low: float,
    pct_high: float,
) -> list[PlayerRecord]:
    """Return copies of ``records`` with projections randomly nudged.

    Low projections move more than high ones; ``pct_low``/``pct_high`` are
    fractions applied at the 25th/75th projection percentile.
    """

    pct_low = max(0.0, pct_low)
    pct_high = max(0.0, pct_high)
    players = list(records)
    if not players or max(pct_low, pct_high) <= 0:
        return players

    rng = random.Random(seed)
    ranked = sorted(range(len(players)), key=lambda idx: (players[idx].projection, players[idx].player_id))
    max_rank = max(len(players) - 1, 1)
    windows = {idx: _perturbation_window(rank / max_rank, pct_low, pct_high) for rank, idx in enumerate(ranked)}

    perturbed: list[PlayerRecord] = []
    for idx, player in enumerate(players):
        magnitude = windows[idx]
        if magnitude <= 0.0:
            perturbed.append(player)
            continue
        offset = max(-0.99, min(0.99, rng.uniform(-magnitude, magnitude)))
        perturbed.append(player.model_copy(update={"projection": max(0.0, player.projection * (1.0 + offset))}))
    return perturbed


def _validate(
    players: Sequence[PlayerRecord],
    template: SlotTemplate,
    salary_cap: int,
    num_lineups: int,
    min_different_players: int,
    max_exposure: Optional[float],
    max_from_one_team: Optional[int],
) -> None:
    if not players:
        raise ConfigurationError("Player pool is empty")
    if salary_cap <= 0:
        raise ConfigurationError(f"Salary cap must be positive, got {salary_cap}")
    if num_lineups < 1:
        raise ConfigurationError(f"num_lineups must be at least 1, got {num_lineups}")
    if not 0 <= min_different_players <= template.slot_count:
        raise ConfigurationError(
            f"min_different_players must be between 0 and {template.slot_count}, got {min_different_players}"
        )
    if max_exposure is not None and not 0.0 < max_exposure <= 1.0:
        raise ConfigurationError(f"max_exposure must be in (0, 1], got {max_exposure}")
    if max_from_one_team is not None and max_from_one_team < 1:
        raise ConfigurationError(f"max_from_one_team must be at least 1, got {max_from_one_team}")
    wrong_sport = [p.player_id for p in players if normalize_sport(p.sport) != template.sport]
    if wrong_sport:
        raise ConfigurationError(
            f"{len(wrong_sport)} players are not {template.sport} players: {', '.join(wrong_sport[:5])}"
        )
    seen: set[str] = set()
    for player in players:
        if player.player_id in seen:
            raise ConfigurationError(f"Duplicate player id {player.player_id!r} in pool")
        seen.add(player.player_id)


def _validate_exposures(
    pool_ids: set[str],
    player_min: Mapping[str, float],
    player_max: Mapping[str, float],
    team_max: Mapping[str, float],
    max_exposure: Optional[float],
) -> None:
    unknown = sorted((set(player_min) | set(player_max)) - pool_ids)
    if unknown:
        raise ConfigurationError(f"Exposure limits name players not in pool: {', '.join(unknown[:5])}")
    for pid, fraction in player_min.items():
        if not 0.0 <= fraction <= 1.0:
            raise ConfigurationError(f"min_exposure for {pid} must be in [0, 1], got {fraction}")
        ceiling = player_max.get(pid, max_exposure)
        if ceiling is not None and fraction > ceiling:
            raise ConfigurationError(f"min_exposure for {pid} ({fraction}) exceeds its max exposure ({ceiling})")
    for pid, fraction in player_max.items():
        if not 0.0 < fraction <= 1.0:
            raise ConfigurationError(f"max exposure for {pid} must be in (0, 1], got {fraction}")
    for team, fraction in team_max.items():
        if not 0.0 < fraction <= 1.0:
            raise ConfigurationError(f"team exposure for {team} must be in (0, 1], got {fraction}")


def _slot_labels(template: SlotTemplate, indices: Iterable[int]) -> Tuple[str, ...]:
    labels: list[str] = []
    for idx in indices:
        name = template.slots[idx].name
        if name not in labels:
            labels.append(name)
    return tuple(labels)


def _unmatched_slots(eligible: Sequence[Sequence[int]]) -> list[int]:
    """Slots left empty by a maximum matching of slots to distinct players."""

    owner: Dict[int, int] = {}

    def assign(slot: int, seen: set[int]) -> bool:
        for player in eligible[slot]:
            if player in seen:
                continue
            seen.add(player)
            if player not in owner or assign(owner[player], seen):
                owner[player] = slot
                return True
        return False

    return [slot for slot in range(len(eligible)) if not assign(slot, set())]


def _slot_candidates(
    eligible: Sequence[int],
    players: Sequence[PlayerRecord],
    analytics: Sequence[PlayerAnalytics],
    scores: Sequence[float],
    forced: set[int],
    limit: int,
) -> Tuple[int, ...]:
    by_score = sorted(eligible, key=lambda i: (-scores[i], players[i].salary, players[i].player_id))
    by_value = sorted(eligible, key=lambda i: (-analytics[i].value_rating, players[i].salary, players[i].player_id))
    cheapest = min(eligible, key=lambda i: (players[i].salary, -scores[i], players[i].player_id))
    reserve = max(2, limit // 4)
    chosen = set(by_score[:limit]) | set(by_value[:reserve]) | {cheapest} | (forced & set(eligible))
    return tuple(sorted(chosen, key=lambda i: (-analytics[i].value_rating, players[i].salary, players[i].player_id)))


@dataclass(frozen=True)
class ExposureLimits:
    """Per-player and per-team lineup counts for one request.

    Fractions are converted to counts against the requested lineup total.
    Locked players carry no player limits.
    """

    player_caps: Dict[int, int] = field(default_factory=dict)
    player_floors: Dict[int, int] = field(default_factory=dict)
    team_caps: Dict[str, int] = field(default_factory=dict)


def _exposure_limits(
    active: Sequence[PlayerRecord],
    locked: set[int],
    num_lineups: int,
    max_exposure: Optional[float],
    player_max: Mapping[str, float],
    player_min: Mapping[str, float],
    team_max: Mapping[str, float],
) -> ExposureLimits:
    caps: Dict[int, int] = {}
    floors: Dict[int, int] = {}
    for idx, player in enumerate(active):
        if idx in locked:
            continue
        fraction = player_max.get(player.player_id, max_exposure)
        if fraction is not None:
            caps[idx] = exposure_limit(fraction, num_lineups)
        required = exposure_floor(player_min.get(player.player_id, 0.0), num_lineups)
        if required:
            floors[idx] = min(required, caps.get(idx, num_lineups))
    teams = {team.strip().upper(): exposure_limit(fraction, num_lineups) for team, fraction in team_max.items()}
    return ExposureLimits(player_caps=caps, player_floors=floors, team_caps=teams)


def _select_diverse(
    candidates: Sequence[Candidate],
    num_lineups: int,
    *,
    slot_count: int,
    min_different_players: int,
    limits: ExposureLimits,
    teams: Sequence[str],
) -> list[Candidate]:
    """Greedy pass in rank order applying diversity and exposure limits.

    Players with a minimum exposure get first claim: their best admissible
    lineups are reserved before the rank-order fill. The result keeps rank
    order either way.
    """

    max_shared = slot_count - min_different_players
    taken: set[int] = set()
    accepted_sets: list[set[int]] = []
    usage: defaultdict[int, int] = defaultdict(int)
    team_usage: defaultdict[str, int] = defaultdict(int)

    def try_accept(position: int) -> bool:
        members = set(candidates[position].assignment)
        lineup_teams = {teams[idx] for idx in members}
        if max_shared < slot_count - 1 and any(len(members & other) > max_shared for other in accepted_sets):
            return False
        if any(usage[idx] >= limits.player_caps[idx] for idx in members if idx in limits.player_caps):
            return False
        if any(team_usage[team] >= limits.team_caps[team] for team in lineup_teams if team in limits.team_caps):
            return False
        taken.add(position)
        accepted_sets.append(members)
        for idx in members:
            usage[idx] += 1
        for team in lineup_teams:
            team_usage[team] += 1
        return True

    for idx, required in sorted(limits.player_floors.items(), key=lambda item: (-item[1], item[0])):
        for position, candidate in enumerate(candidates):
            if usage[idx] >= required or len(taken) >= num_lineups:
                break
            if position not in taken and idx in candidate.assignment:
                try_accept(position)

    for position in range(len(candidates)):
        if len(taken) >= num_lineups:
            break
        if position not in taken:
            try_accept(position)
    return [candidates[position] for position in sorted(taken)]


def _exposure_violations(
    selected: Sequence[Candidate],
    limits: ExposureLimits,
    active: Sequence[PlayerRecord],
    player_min: Mapping[str, float],
) -> list[str]:
    if not selected or not limits.player_floors:
        return []
    usage: defaultdict[int, int] = defaultdict(int)
    for candidate in selected:
        for idx in candidate.assignment:
            usage[idx] += 1
    violations = []
    for idx in sorted(limits.player_floors):
        player = active[idx]
        share = usage[idx] / len(selected)
        if share + 1e-9 < player_min[player.player_id]:
            violations.append(
                f"Player {player.name or player.player_id} has {share:.1%} exposure, "
                f"requires {player_min[player.player_id]:.1%}"
            )
    return violations


def _infeasible(
    num_lineups: int,
    slots: Tuple[str, ...],
    reason: str,
    excluded: Sequence[str],
    start: float,
) -> OptimizeResult:
    logger.warning("No feasible lineup: %s (slots %s)", reason, ", ".join(slots) or "-")
    return OptimizeResult(
        lineups=(),
        requested=num_lineups,
        shortfall=num_lineups,
        infeasible_slots=slots,
        infeasible_reason=reason,
        excluded_player_ids=tuple(excluded),
        stats=OptimizeStats(elapsed=time.perf_counter() - start),
    )


def optimize(
    players: Sequence[PlayerRecord],
    *,
    sport: str,
    platform: str,
    salary_cap: Optional[int] = None,
    num_lineups: int = 20,
    min_different_players: int = 1,
    strategy: Union[Strategy, str] = Strategy.BALANCED,
    correlation: Union[CorrelationMatrix, CorrelationResult, None] = None,
    histories: Optional[Mapping[str, Sequence[float]]] = None,
    weights: Optional[StrategyWeights] = None,
    lock_player_ids: Optional[Iterable[str]] = None,
    exclude_player_ids: Optional[Iterable[str]] = None,
    max_exposure: Optional[float] = None,
    max_from_one_team: Optional[int] = None,
    min_salary: Optional[int] = None,
    stacking_rules: Optional[Sequence[StackingRule]] = None,
    min_exposure: Optional[Mapping[str, float]] = None,
    player_max_exposure: Optional[Mapping[str, float]] = None,
    team_max_exposure: Optional[Mapping[str, float]] = None,
    candidates_per_slot: Optional[int] = None,
    workers: Optional[int] = None,
    deadline: Optional[float] = None,
    timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    settings: Optional[Settings] = None,
) -> OptimizeResult:
    """Build up to ``num_lineups`` distinct lineups ranked by objective score.

    Configuration problems raise :class:`ConfigurationError`. Everything else
    (infeasible slots, too few distinct lineups, an expired deadline, unmet
    minimum exposures) is reported on the returned :class:`OptimizeResult`.

    ``min_exposure``, ``player_max_exposure`` and ``team_max_exposure`` map
    player ids or team codes to fractions of the requested lineups; a team
    counts once per lineup it appears in.
    """

    start = time.perf_counter()
    settings = settings or Settings.from_env()
    template = get_slot_template(sport, platform)
    cap = template.salary_cap if salary_cap is None else int(salary_cap)
    _validate(players, template, cap, num_lineups, min_different_players, max_exposure, max_from_one_team)
    strategy = Strategy.parse(strategy)
    weights = (weights or StrategyWeights()).validate()
    limit = max(1, candidates_per_slot or settings.candidates_per_slot)
    workers = max(1, workers or settings.workers)
    stop_at = deadline_from(timeout, deadline)

    pool_ids = {p.player_id for p in players}
    locked_ids = set(lock_player_ids or ())
    excluded_ids = set(exclude_player_ids or ())
    missing_locks = sorted(locked_ids - pool_ids)
    if missing_locks:
        raise ConfigurationError(f"Locked players not in pool: {', '.join(missing_locks)}")
    if locked_ids & excluded_ids:
        raise ConfigurationError(f"Players both locked and excluded: {', '.join(sorted(locked_ids & excluded_ids))}")
    if len(locked_ids) > template.slot_count:
        raise ConfigurationError(f"Cannot lock {len(locked_ids)} players into {template.slot_count} slots")
    stacks = tuple(rule.validate(template.slot_count) for rule in stacking_rules or ())
    player_min = dict(min_exposure or {})
    player_max = dict(player_max_exposure or {})
    team_max = dict(team_max_exposure or {})
    _validate_exposures(pool_ids, player_min, player_max, team_max, max_exposure)

    rated, not_ratable = analyze_pool(players, histories)
    excluded = sorted(
        {item.player_id for item in not_ratable}
        | excluded_ids
        | {p.player_id for p in players if p.status in _OUT_STATUSES}
    )
    unavailable_locks = sorted(locked_ids & set(excluded))
    if unavailable_locks:
        raise ConfigurationError(f"Locked players are unavailable: {', '.join(unavailable_locks)}")
    unavailable_floors = sorted(pid for pid, fraction in player_min.items() if fraction > 0 and pid in excluded)
    if unavailable_floors:
        raise ConfigurationError(
            f"Players with a minimum exposure are unavailable: {', '.join(unavailable_floors)}"
        )

    excluded_set = set(excluded)
    active = [p for p in players if p.player_id not in excluded_set]
    if not active:
        return _infeasible(num_lineups, template.slot_names, "no ratable players in pool", excluded, start)
    active_analytics = [rated[p.player_id] for p in active]
    scores = [standalone_score(p, a, strategy, weights) for p, a in zip(active, active_analytics)]
    locked = {idx for idx, p in enumerate(active) if p.player_id in locked_ids}
    floored = {idx for idx, p in enumerate(active) if player_min.get(p.player_id, 0.0) > 0}

    eligible = [
        [idx for idx, p in enumerate(active) if slot.accepts(p) and p.salary <= cap]
        for slot in template.slots
    ]
    empty = [idx for idx, options in enumerate(eligible) if not options]
    if empty:
        return _infeasible(
            num_lineups, _slot_labels(template, empty), "no eligible players within the salary cap", excluded, start
        )
    unmatched = _unmatched_slots(eligible)
    if unmatched:
        return _infeasible(
            num_lineups, _slot_labels(template, unmatched), "not enough distinct eligible players", excluded, start
        )
    cheapest_roster = sum(min(active[idx].salary for idx in options) for options in eligible)
    if cheapest_roster > cap:
        return _infeasible(num_lineups, template.slot_names, "cheapest roster exceeds the salary cap", excluded, start)

    candidates = tuple(
        _slot_candidates(options, active, active_analytics, scores, locked | floored, limit) for options in eligible
    )

    matrix: Optional[CorrelationMatrix] = None
    if isinstance(correlation, CorrelationResult):
        matrix = correlation.matrix
    elif isinstance(correlation, CorrelationMatrix):
        matrix = correlation
    corr_values = None
    bound_scores = list(scores)
    if strategy is Strategy.CORRELATION_WEIGHTED:
        if matrix is None:
            matrix = build_correlation(active, template.sport).matrix
        active_ids = [p.player_id for p in active]
        missing = [pid for pid in active_ids if pid not in matrix]
        if missing:
            raise ConfigurationError(f"Correlation matrix is missing players: {', '.join(missing[:5])}")
        corr_values = matrix.submatrix(active_ids)
        partner_ids = sorted({active[idx].player_id for options in candidates for idx in options})
        for idx, player in enumerate(active):
            bound_scores[idx] += max_correlation_bonus(
                player.player_id,
                active_analytics[idx].projection,
                partner_ids,
                template.slot_count - 1,
                matrix,
                weights.correlation_weight,
            )

    problem = SearchProblem(
        player_ids=tuple(p.player_id for p in active),
        salaries=tuple(p.salary for p in active),
        teams=tuple(p.team for p in active),
        projections=tuple(a.projection for a in active_analytics),
        base_scores=tuple(scores),
        bound_scores=tuple(bound_scores),
        candidates=candidates,
        salary_cap=cap,
        min_salary=int(min_salary or 0),
        max_from_one_team=max_from_one_team,
        locked=frozenset(locked),
        correlation=corr_values,
        correlation_weight=weights.correlation_weight,
        games=tuple(p.game_key for p in active),
        stacks=stacks,
    )
    limits = _exposure_limits(active, locked, num_lineups, max_exposure, player_max, player_min, team_max)
    branch_count = len(candidates[0])

    logger.info(
        "Starting lineup search: %s %s, lineups=%s, strategy=%s, pool=%s (excluded %s), slots=%s, "
        "candidates=%s, workers=%s",
        template.sport,
        template.platform,
        num_lineups,
        strategy.value,
        len(active),
        len(excluded),
        template.slot_count,
        "/".join(str(len(c)) for c in candidates),
        workers,
    )

    pool_limit = initial_pool_limit(num_lineups, settings.pool_multiplier, settings.max_pool_size)
    selected: list[Candidate] = []
    violations: list[str] = []
    incomplete = False
    passes = 0
    totals = defaultdict(int)
    while True:
        passes += 1
        outcome = run_jobs(
            _run_search_branch,
            list(range(branch_count)),
            shared=SearchTask(problem, pool_limit, stop_at),
            workers=workers,
            deadline=stop_at,
            cancel_event=cancel_event,
            label="search",
        )
        branch_results = sorted(outcome.results, key=lambda item: item.branch)
        incomplete = outcome.incomplete or len(branch_results) < branch_count
        for branch in branch_results:
            totals["nodes"] += branch.stats.nodes
            totals["memo_hits"] += branch.stats.memo_hits
            totals["memo_size"] += branch.stats.memo_size
            totals["pruned"] += branch.stats.pruned
            totals["stack_rejected"] += branch.stats.stack_rejected
        merged, truncated = merge_branches(branch_results, pool_limit)
        selected = _select_diverse(
            merged,
            num_lineups,
            slot_count=template.slot_count,
            min_different_players=min_different_players,
            limits=limits,
            teams=problem.teams,
        )
        violations = _exposure_violations(selected, limits, active, player_min)
        logger.info(
            "Search pass %s: pool=%s limit=%s selected=%s/%s truncated=%s incomplete=%s (%.2fs)",
            passes,
            len(merged),
            pool_limit,
            len(selected),
            num_lineups,
            truncated,
            incomplete,
            time.perf_counter() - start,
        )
        if (len(selected) >= num_lineups and not violations) or not truncated or incomplete:
            break
        if pool_limit >= settings.max_pool_size:
            logger.warning(
                "Lineup pool limit %s reached with %s/%s lineups selected",
                pool_limit,
                len(selected),
                num_lineups,
            )
            break
        pool_limit = min(settings.max_pool_size, pool_limit * 2)

    lineups = tuple(
        Lineup(
            lineup_id=f"L{idx + 1:03}",
            assignments=tuple(
                SlotAssignment(slot=slot.name, player=active[player_idx])
                for slot, player_idx in zip(template.slots, candidate.assignment)
            ),
            score=candidate.score,
            strategy=strategy.value,
        )
        for idx, candidate in enumerate(selected)
    )
    elapsed = time.perf_counter() - start
    stats = OptimizeStats(
        branches=branch_count,
        nodes=totals["nodes"],
        memo_hits=totals["memo_hits"],
        memo_size=totals["memo_size"],
        pruned=totals["pruned"],
        pool_limit=pool_limit,
        stack_rejected=totals["stack_rejected"],
        passes=passes,
        elapsed=elapsed,
    )
    shortfall = num_lineups - len(lineups)
    reason = None
    if not lineups and not incomplete:
        reason = "no lineup satisfies the roster constraints"
    for message in violations:
        logger.warning("Minimum exposure not met: %s", message)
    if shortfall:
        logger.warning("Built %s/%s lineups (shortfall %s, incomplete=%s)", len(lineups), num_lineups, shortfall, incomplete)
    logger.info(
        "Completed %s lineups in %.2fs (nodes %s, memo hits %s, passes %s)",
        len(lineups),
        elapsed,
        stats.nodes,
        stats.memo_hits,
        passes,
    )
    return OptimizeResult(
        lineups=lineups,
        requested=num_lineups,
        shortfall=shortfall,
        infeasible_reason=reason,
        incomplete=incomplete,
        excluded_player_ids=tuple(excluded),
        exposure_violations=tuple(violations),
        stats=stats,
    )
