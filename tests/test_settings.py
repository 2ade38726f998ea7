import pytest

from dfsim.config import Settings
from dfsim.config.settings import default_workers


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("DFSIM_WORKERS", "DFSIM_SIM_CHUNK", "DFSIM_FIELD_PERTURBATION", "DFSIM_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


def test_workers_default_to_cpu_count():
    assert Settings().workers == default_workers()
    assert Settings.from_env().workers == default_workers()


def test_workers_from_env(monkeypatch):
    monkeypatch.setenv("DFSIM_WORKERS", "1")
    assert Settings.from_env().workers == 1

    monkeypatch.setenv("DFSIM_WORKERS", "lots")
    assert Settings.from_env().workers == default_workers()

    monkeypatch.setenv("DFSIM_WORKERS", str(default_workers() + 64))
    assert Settings.from_env().workers == default_workers()

    monkeypatch.setenv("DFSIM_WORKERS", "0")
    assert Settings.from_env().workers == 1


def test_other_env_values_are_clamped(monkeypatch):
    monkeypatch.setenv("DFSIM_FIELD_PERTURBATION", "5")
    monkeypatch.setenv("DFSIM_SIM_CHUNK", "0")
    monkeypatch.setenv("DFSIM_LOG_LEVEL", "chatty")
    settings = Settings.from_env()

    assert settings.field_perturbation == 0.9
    assert settings.sim_chunk_size == 1
    assert settings.log_level == "INFO"
