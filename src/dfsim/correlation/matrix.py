"""Correlation matrix construction and decomposition for correlated sampling."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np

from dfsim.config.roster import normalize_sport
from dfsim.errors import ConfigurationError
from dfsim.models import PlayerRecord

from .rules import CorrelationContext, CorrelationPolicy, pair_correlation

logger = logging.getLogger(__name__)

METHOD_CHOLESKY = "cholesky"
METHOD_JITTERED = "cholesky_jittered"
METHOD_CLIPPED = "eigen_clipped"
METHOD_INDEPENDENT = "independent"


class CorrelationMatrix:
    """Symmetric, unit-diagonal correlation matrix indexed by player id."""

    def __init__(self, player_ids: Sequence[str], values: np.ndarray):
        values = np.array(values, dtype=float)
        n = len(player_ids)
        if values.shape != (n, n):
            raise ConfigurationError(f"Correlation matrix shape {values.shape} does not match {n} players")
        values = np.clip((values + values.T) / 2.0, -1.0, 1.0)
        np.fill_diagonal(values, 1.0)
        values.setflags(write=False)
        self.player_ids: Tuple[str, ...] = tuple(player_ids)
        self.values = values
        self._index: Dict[str, int] = {pid: idx for idx, pid in enumerate(self.player_ids)}

    def __len__(self) -> int:
        return len(self.player_ids)

    def __contains__(self, player_id: object) -> bool:
        return player_id in self._index

    def index(self, player_id: str) -> int:
        return self._index[player_id]

    def get(self, a: str, b: str) -> float:
        if a == b:
            return 1.0
        ia, ib = self._index.get(a), self._index.get(b)
        if ia is None or ib is None:
            return 0.0
        return float(self.values[ia, ib])

    def submatrix(self, player_ids: Iterable[str]) -> np.ndarray:
        indices = [self._index[pid] for pid in player_ids]
        return self.values[np.ix_(indices, indices)]

    def restrict(self, player_ids: Sequence[str]) -> "CorrelationMatrix":
        return CorrelationMatrix(player_ids, self.submatrix(player_ids))

    @classmethod
    def identity(cls, player_ids: Sequence[str]) -> "CorrelationMatrix":
        return cls(player_ids, np.eye(len(player_ids)))


@dataclass(frozen=True)
class Decomposition:
    factor: np.ndarray
    method: str
    jitter: float = 0.0

    @property
    def degraded(self) -> bool:
        return self.method == METHOD_INDEPENDENT

    @property
    def sampling_matrix(self) -> np.ndarray:
        return self.factor @ self.factor.T


@dataclass(frozen=True)
class CorrelationResult:
    matrix: CorrelationMatrix
    decomposition: Decomposition

    @property
    def degraded_to_independent(self) -> bool:
        return self.decomposition.degraded

    @property
    def repaired(self) -> bool:
        return self.decomposition.method in (METHOD_JITTERED, METHOD_CLIPPED)

    @property
    def jitter(self) -> float:
        return self.decomposition.jitter


def decompose(
    matrix: CorrelationMatrix,
    policy: Optional[CorrelationPolicy] = None,
    sport: Optional[str] = None,
) -> Decomposition:
    """Cholesky factor of ``matrix``, repairing or degrading when not PSD.

    On failure a diagonal jitter sized to the most negative eigenvalue (capped
    per sport by the policy) is added, the result is rescaled back to a unit
    diagonal and factorised once more. Rescaling shrinks every off-diagonal
    entry by ``1 / (1 + jitter)``. When the deficit is larger than the cap,
    negative eigenvalues are clipped to ``policy.eigen_floor`` instead, which
    only moves the matrix along its offending directions. If neither repair
    factorises, the identity factor is returned and the decomposition is
    marked degraded.
    """

    policy = policy or CorrelationPolicy()
    values = np.array(matrix.values, dtype=float)
    n = values.shape[0]
    if n == 0:
        return Decomposition(np.zeros((0, 0)), METHOD_CHOLESKY)
    if not np.isfinite(values).all():
        logger.warning("Correlation matrix has non-finite entries; sampling players independently")
        return Decomposition(np.eye(n), METHOD_INDEPENDENT)
    try:
        return Decomposition(np.linalg.cholesky(values), METHOD_CHOLESKY)
    except np.linalg.LinAlgError:
        pass

    min_eig = float(np.linalg.eigvalsh(values).min())
    needed = max(policy.base_jitter, -min_eig + policy.base_jitter)
    jitter = min(policy.jitter_cap(sport), needed)
    if jitter >= needed:
        try:
            factor = np.linalg.cholesky((values + jitter * np.eye(n)) / (1.0 + jitter))
        except np.linalg.LinAlgError:
            pass
        else:
            logger.info("Correlation matrix repaired with diagonal jitter %.6f (min eigenvalue %.4f)", jitter, min_eig)
            return Decomposition(factor, METHOD_JITTERED, jitter)

    if policy.eigen_clip:
        try:
            factor = np.linalg.cholesky(_clip_spectrum(values, policy.eigen_floor))
        except np.linalg.LinAlgError:
            pass
        else:
            logger.info(
                "Correlation matrix repaired by eigenvalue clipping (min eigenvalue %.4f, jitter cap %.4f)",
                min_eig,
                jitter,
            )
            return Decomposition(factor, METHOD_CLIPPED, jitter)

    logger.warning(
        "Correlation matrix not positive semi-definite (min eigenvalue %.4f, jitter %.4f); "
        "sampling players independently",
        min_eig,
        jitter,
    )
    return Decomposition(np.eye(n), METHOD_INDEPENDENT, jitter)


def _clip_spectrum(values: np.ndarray, floor: float) -> np.ndarray:
    """Nearest unit-diagonal matrix with every eigenvalue at least ``floor``."""

    eigenvalues, eigenvectors = np.linalg.eigh(values)
    clipped = (eigenvectors * np.maximum(eigenvalues, floor)) @ eigenvectors.T
    scale = np.sqrt(np.diag(clipped))
    clipped = clipped / np.outer(scale, scale)
    clipped = (clipped + clipped.T) / 2.0
    np.fill_diagonal(clipped, 1.0)
    return clipped


def build_correlation(
    players: Sequence[PlayerRecord],
    sport: Optional[str] = None,
    context: Optional[CorrelationContext] = None,
    policy: Optional[CorrelationPolicy] = None,
) -> CorrelationResult:
    """Build the pool correlation matrix and its sampling decomposition."""

    if not players:
        raise ConfigurationError("Player pool is empty")
    context = context or CorrelationContext()
    policy = policy or CorrelationPolicy()
    if sport is not None:
        expected = normalize_sport(sport)
        mismatched = [p.player_id for p in players if p.sport != expected]
        if mismatched:
            raise ConfigurationError(
                f"{len(mismatched)} players do not belong to sport {expected}: {', '.join(mismatched[:5])}"
            )

    start = time.perf_counter()
    n = len(players)
    values = np.eye(n)
    for i in range(n):
        for j in range(i + 1, n):
            value = pair_correlation(players[i], players[j], policy, context)
            values[i, j] = value
            values[j, i] = value

    matrix = CorrelationMatrix([p.player_id for p in players], values)
    decomposition = decompose(matrix, policy, sport or players[0].sport)
    logger.info(
        "Built %sx%s correlation matrix in %.3fs (method=%s)",
        n,
        n,
        time.perf_counter() - start,
        decomposition.method,
    )
    return CorrelationResult(matrix=matrix, decomposition=decomposition)


def lineup_correlation(matrix: CorrelationMatrix, player_ids: Sequence[str]) -> float:
    """Average pairwise correlation among ``player_ids``."""

    ids = list(player_ids)
    if len(ids) < 2:
        return 0.0
    total = 0.0
    pairs = 0
    for i in range(len(ids)):
        for j in range(i + 1, len(ids)):
            total += matrix.get(ids[i], ids[j])
            pairs += 1
    return total / pairs
