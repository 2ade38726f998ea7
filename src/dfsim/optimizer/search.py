"""Memoized branch-and-bound search over roster slots.

A :class:`SearchProblem` is a flattened, picklable view of one optimizer
request: per-slot candidate lists (player indices), salaries, teams and the
score tables the search needs. :func:`search_branch` explores every lineup
whose first slot holds one fixed candidate and keeps the best ``pool_limit``
distinct lineups it finds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import heapq
import math
import time
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

import numpy as np

from dfsim.scoring import pairwise_bonus

from .stacking import StackingRule, lineup_satisfies

_NEG_INF = float("-inf")
_DEADLINE_CHECK_INTERVAL = 2048
_TRACKED_PER_SLOT = 2

LineupKey = Tuple[float, int, Tuple[str, ...]]


def lineup_key(score: float, salary: int, signature: Tuple[str, ...]) -> LineupKey:
    """Sort key: higher score first, then lower salary, then player ids."""
    return (-round(score, 6), salary, signature)


@dataclass(frozen=True)
class SearchProblem:
    player_ids: Tuple[str, ...]
    salaries: Tuple[int, ...]
    teams: Tuple[str, ...]
    projections: Tuple[float, ...]
    base_scores: Tuple[float, ...]
    bound_scores: Tuple[float, ...]
    candidates: Tuple[Tuple[int, ...], ...]
    salary_cap: int
    min_salary: int = 0
    max_from_one_team: Optional[int] = None
    locked: FrozenSet[int] = frozenset()
    correlation: Optional[np.ndarray] = None
    correlation_weight: float = 0.0
    games: Tuple[Tuple[str, ...], ...] = ()
    stacks: Tuple[StackingRule, ...] = ()

    @property
    def slot_count(self) -> int:
        return len(self.candidates)

    @property
    def incremental(self) -> bool:
        return self.correlation is not None


@dataclass(frozen=True)
class Candidate:
    key: LineupKey
    assignment: Tuple[int, ...]
    score: float
    salary: int


@dataclass
class BranchStats:
    nodes: int = 0
    memo_hits: int = 0
    memo_size: int = 0
    pruned: int = 0
    stack_rejected: int = 0


@dataclass
class BranchResult:
    branch: int
    candidates: List[Candidate]
    truncated: bool
    complete: bool
    stats: BranchStats = field(default_factory=BranchStats)


class _DeadlineReached(Exception):
    pass


class _Worst:
    """Heap entry ordering the worst lineup at the heap root."""

    __slots__ = ("key", "signature")

    def __init__(self, key: LineupKey, signature: Tuple[str, ...]):
        self.key = key
        self.signature = signature

    def __lt__(self, other: "_Worst") -> bool:
        return self.key > other.key


class _BestPool:
    def __init__(self, limit: int):
        self.limit = limit
        self.entries: Dict[Tuple[str, ...], Candidate] = {}
        self._heap: List[_Worst] = []
        self.truncated = False

    def _clean(self) -> None:
        while self._heap:
            top = self._heap[0]
            current = self.entries.get(top.signature)
            if current is not None and current.key == top.key:
                return
            heapq.heappop(self._heap)

    @property
    def full(self) -> bool:
        return len(self.entries) >= self.limit

    def worst_score(self) -> float:
        self._clean()
        return -self._heap[0].key[0]

    def offer(self, candidate: Candidate) -> None:
        signature = candidate.key[2]
        existing = self.entries.get(signature)
        if existing is not None and existing.key <= candidate.key:
            return
        if existing is None and self.full:
            self._clean()
            if candidate.key >= self._heap[0].key:
                self.truncated = True
                return
        self.entries[signature] = candidate
        heapq.heappush(self._heap, _Worst(candidate.key, signature))
        while len(self.entries) > self.limit:
            self._clean()
            evicted = heapq.heappop(self._heap)
            del self.entries[evicted.signature]
            self.truncated = True


def _symmetric_slots(problem: SearchProblem) -> Tuple[bool, ...]:
    return tuple(
        idx > 0 and problem.candidates[idx] == problem.candidates[idx - 1]
        for idx in range(problem.slot_count)
    )


def _future_candidates(problem: SearchProblem) -> Tuple[FrozenSet[int], ...]:
    future: List[FrozenSet[int]] = [frozenset()] * (problem.slot_count + 1)
    running: set[int] = set()
    for idx in range(problem.slot_count - 1, -1, -1):
        running.update(problem.candidates[idx])
        future[idx] = frozenset(running)
    return tuple(future)


def _tracked_candidates(problem: SearchProblem) -> FrozenSet[int]:
    """Top candidates per slot by bound score; the bound memo keys on these only."""

    tracked: set[int] = set()
    for candidates in problem.candidates:
        ranked = sorted(candidates, key=lambda c: (-problem.bound_scores[c], c))
        tracked.update(ranked[:_TRACKED_PER_SLOT])
    return frozenset(tracked)


def _max_salary_suffix(problem: SearchProblem) -> Tuple[int, ...]:
    suffix = [0] * (problem.slot_count + 1)
    for idx in range(problem.slot_count - 1, -1, -1):
        options = [problem.salaries[c] for c in problem.candidates[idx]]
        suffix[idx] = suffix[idx + 1] + (max(options) if options else 0)
    return tuple(suffix)


class _BranchSearch:
    def __init__(
        self,
        problem: SearchProblem,
        pool_limit: int,
        deadline: Optional[float],
    ):
        self.problem = problem
        self.pool = _BestPool(pool_limit)
        self.deadline = deadline
        self.stats = BranchStats()
        self.symmetric = _symmetric_slots(problem)
        tracked = _tracked_candidates(problem)
        self.future = tuple(future & tracked for future in _future_candidates(problem))
        self.max_salary_suffix = _max_salary_suffix(problem)
        # per-branch table: (slot index, remaining budget, used tracked candidates) -> bound
        self.memo: Dict[Tuple[int, int, FrozenSet[int]], float] = {}

    def bound(self, slot: int, budget: int, used: FrozenSet[int]) -> float:
        """Relaxed best completion score.

        Only players in ``used`` are ruled out, so untracked players already in
        the lineup may be counted again. That keeps the value an upper bound.
        """

        if slot == self.problem.slot_count:
            return 0.0
        key = (slot, budget, used)
        cached = self.memo.get(key)
        if cached is not None:
            self.stats.memo_hits += 1
            return cached
        best = _NEG_INF
        next_used = used & self.future[slot + 1]
        salaries = self.problem.salaries
        bounds = self.problem.bound_scores
        for cand in self.problem.candidates[slot]:
            if cand in used or salaries[cand] > budget:
                continue
            rest = self.bound(slot + 1, budget - salaries[cand], next_used)
            if rest == _NEG_INF:
                continue
            value = bounds[cand] + rest
            if value > best:
                best = value
        self.memo[key] = best
        return best

    def incremental_score(self, cand: int, chosen: Sequence[int]) -> float:
        problem = self.problem
        if not problem.incremental or not chosen:
            return problem.base_scores[cand]
        corr = problem.correlation
        correlations = (corr[cand, other] for other in chosen)
        bonus = pairwise_bonus(correlations, problem.projections[cand], problem.correlation_weight)
        return max(0.0, problem.base_scores[cand] + bonus)

    def _tick(self) -> None:
        self.stats.nodes += 1
        if self.deadline is not None and self.stats.nodes % _DEADLINE_CHECK_INTERVAL == 0:
            if time.time() >= self.deadline:
                raise _DeadlineReached()

    def _complete(self, chosen: List[int], score: float, spent: int) -> None:
        problem = self.problem
        if spent < problem.min_salary:
            return
        if problem.locked and not problem.locked.issubset(chosen):
            return
        if problem.stacks and not lineup_satisfies(
            problem.stacks, [problem.teams[c] for c in chosen], [problem.games[c] for c in chosen]
        ):
            self.stats.stack_rejected += 1
            return
        signature = tuple(sorted(problem.player_ids[c] for c in chosen))
        self.pool.offer(
            Candidate(
                key=lineup_key(score, spent, signature),
                assignment=tuple(chosen),
                score=score,
                salary=spent,
            )
        )

    def descend(
        self,
        slot: int,
        chosen: List[int],
        used: set[int],
        team_counts: Dict[str, int],
        score: float,
        spent: int,
        min_position: int,
    ) -> None:
        self._tick()
        problem = self.problem
        if slot == problem.slot_count:
            self._complete(chosen, score, spent)
            return

        remaining_slots = problem.slot_count - slot
        if problem.locked and len(problem.locked.difference(used)) > remaining_slots:
            return
        if spent + self.max_salary_suffix[slot] < problem.min_salary:
            return

        budget = problem.salary_cap - spent
        optimistic = self.bound(slot, budget, frozenset(used) & self.future[slot])
        if optimistic == _NEG_INF:
            return
        if self.pool.full and score + optimistic < self.pool.worst_score() - 1e-9:
            self.stats.pruned += 1
            self.pool.truncated = True
            return

        team_cap = problem.max_from_one_team
        candidates = problem.candidates[slot]
        start = min_position if self.symmetric[slot] else 0
        for position in range(start, len(candidates)):
            cand = candidates[position]
            if cand in used:
                continue
            salary = problem.salaries[cand]
            if salary > budget:
                continue
            team = problem.teams[cand]
            if team_cap is not None and team_counts.get(team, 0) >= team_cap:
                continue
            gained = self.incremental_score(cand, chosen)
            chosen.append(cand)
            used.add(cand)
            team_counts[team] = team_counts.get(team, 0) + 1
            next_min = position + 1 if slot + 1 < problem.slot_count and self.symmetric[slot + 1] else 0
            self.descend(slot + 1, chosen, used, team_counts, score + gained, spent + salary, next_min)
            team_counts[team] -= 1
            used.discard(cand)
            chosen.pop()


def search_branch(
    problem: SearchProblem,
    branch: int,
    *,
    pool_limit: int,
    deadline: Optional[float] = None,
) -> BranchResult:
    """Search all lineups whose first slot holds ``problem.candidates[0][branch]``."""

    search = _BranchSearch(problem, pool_limit, deadline)
    first = problem.candidates[0][branch]
    complete = True
    team_counts = {problem.teams[first]: 1}
    next_min = branch + 1 if problem.slot_count > 1 and search.symmetric[1] else 0
    if problem.salaries[first] <= problem.salary_cap:
        try:
            search.descend(
                1,
                [first],
                {first},
                team_counts,
                search.incremental_score(first, ()),
                problem.salaries[first],
                next_min,
            )
        except _DeadlineReached:
            complete = False
    search.stats.memo_size = len(search.memo)
    ordered = sorted(search.pool.entries.values(), key=lambda item: item.key)
    return BranchResult(
        branch=branch,
        candidates=ordered,
        truncated=search.pool.truncated,
        complete=complete,
        stats=search.stats,
    )


def merge_branches(results: Sequence[BranchResult], pool_limit: int) -> Tuple[List[Candidate], bool]:
    """Merge per-branch pools into the global best ``pool_limit`` lineups."""

    best: Dict[Tuple[str, ...], Candidate] = {}
    truncated = False
    for result in results:
        truncated = truncated or result.truncated
        for candidate in result.candidates:
            signature = candidate.key[2]
            existing = best.get(signature)
            if existing is None or candidate.key < existing.key:
                best[signature] = candidate
    ordered = sorted(best.values(), key=lambda item: item.key)
    if len(ordered) > pool_limit:
        truncated = True
        ordered = ordered[:pool_limit]
    return ordered, truncated


def initial_pool_limit(num_lineups: int, multiplier: int, max_pool: int) -> int:
    """Size of the per-pass lineup pool; never smaller than the request."""
    return max(num_lineups, min(max_pool, max(num_lineups * multiplier, num_lineups + 50)))


def exposure_limit(fraction: float, total: int) -> int:
    return max(1, int(math.floor(fraction * total + 1e-9)))


def exposure_floor(fraction: float, total: int) -> int:
    """Lineups a player must appear in to reach ``fraction`` of ``total``."""
    if fraction <= 0:
        return 0
    return min(total, int(math.ceil(fraction * total - 1e-9)))
