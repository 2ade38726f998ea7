"""Environment-driven tunables for the optimizer and simulator."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os

logger = logging.getLogger(__name__)

_WORKERS_ENV = "DFSIM_WORKERS"
_CANDIDATES_ENV = "DFSIM_CANDIDATES_PER_SLOT"
_POOL_MULTIPLIER_ENV = "DFSIM_POOL_MULTIPLIER"
_MAX_POOL_ENV = "DFSIM_MAX_POOL"
_SIM_CHUNK_ENV = "DFSIM_SIM_CHUNK"
_FIELD_SAMPLE_ENV = "DFSIM_FIELD_SAMPLE"
_ITERATIONS_ENV = "DFSIM_ITERATIONS"
_PERTURBATION_ENV = "DFSIM_FIELD_PERTURBATION"
_LOG_LEVEL_ENV = "DFSIM_LOG_LEVEL"


def _env_float(name: str, default: float, *, clamp_min: float | None = None, clamp_max: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid float for %s: %s; using default %.2f", name, raw, default)
        return default
    if clamp_min is not None:
        value = max(clamp_min, value)
    if clamp_max is not None:
        value = min(clamp_max, value)
    return value


def _env_int(name: str, default: int, *, min_value: int | None = None, max_value: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid int for %s: %s; using default %d", name, raw, default)
        return default
    if min_value is not None:
        value = max(min_value, value)
    if max_value is not None:
        value = min(max_value, value)
    return value


def default_workers() -> int:
    return max(1, os.cpu_count() or 1)


@dataclass(frozen=True)
class Settings:
    workers: int = field(default_factory=default_workers)
    candidates_per_slot: int = 12
    pool_multiplier: int = 4
    max_pool_size: int = 50_000
    sim_chunk_size: int = 500
    field_sample_size: int = 1_000
    iterations: int = 10_000
    field_perturbation: float = 0.15
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        cpu_count = default_workers()
        level = os.getenv(_LOG_LEVEL_ENV, cls.log_level).upper()
        if level not in logging.getLevelNamesMapping():
            logger.warning("Invalid log level for %s: %s; using INFO", _LOG_LEVEL_ENV, level)
            level = "INFO"
        return cls(
            workers=_env_int(_WORKERS_ENV, cpu_count, min_value=1, max_value=cpu_count),
            candidates_per_slot=_env_int(_CANDIDATES_ENV, cls.candidates_per_slot, min_value=1),
            pool_multiplier=_env_int(_POOL_MULTIPLIER_ENV, cls.pool_multiplier, min_value=1),
            max_pool_size=_env_int(_MAX_POOL_ENV, cls.max_pool_size, min_value=1_000),
            sim_chunk_size=_env_int(_SIM_CHUNK_ENV, cls.sim_chunk_size, min_value=1),
            field_sample_size=_env_int(_FIELD_SAMPLE_ENV, cls.field_sample_size, min_value=10),
            iterations=_env_int(_ITERATIONS_ENV, cls.iterations, min_value=1),
            field_perturbation=_env_float(_PERTURBATION_ENV, cls.field_perturbation, clamp_min=0.0, clamp_max=0.9),
            log_level=level,
        )
