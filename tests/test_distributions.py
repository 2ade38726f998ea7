import numpy as np
import pytest

from dfsim.analytics import compute_analytics
from dfsim.models import PlayerRecord
from dfsim.simulation import DistributionFamily, DistributionPolicy, build_distribution, build_distributions


def _player(**overrides) -> PlayerRecord:
    data = dict(player_id="p1", name="Player", sport="NFL", position="QB", team="KC", salary=7000, projection=20.0)
    data.update(overrides)
    return PlayerRecord(**data)


def _build(player: PlayerRecord, history=None):
    return build_distribution(player, compute_analytics(player, history), history=history)


def test_family_selection_by_sport_and_position():
    assert _build(_player()).family is DistributionFamily.NORMAL
    assert _build(_player(position="WR")).family is DistributionFamily.LOGNORMAL
    assert _build(_player(sport="MLB", position="RP", salary=4000, projection=6.0)).family is DistributionFamily.EXPONENTIAL
    assert _build(_player(sport="NHL", position="C", salary=5000, projection=10.0)).family is DistributionFamily.GAMMA


def test_high_volatility_normal_becomes_beta():
    player = _player(sport="NBA", position="PG", salary=8000, projection=40.0, floor=5.0, ceiling=80.0)
    dist = _build(player)
    assert dist.family is DistributionFamily.BETA


def test_long_history_uses_empirical_distribution():
    history = [float(v) for v in range(10, 35)]
    dist = _build(_player(), history)
    assert dist.family is DistributionFamily.EMPIRICAL
    assert dist.floor <= 10.0
    assert dist.ceiling >= 34.0
    assert float(dist.ppf(0.5)) == pytest.approx(np.median(history))


def test_std_respects_minimums_and_multiplier():
    qb = _player()
    analytics = compute_analytics(qb)
    dist = build_distribution(qb, analytics)
    assert dist.std == pytest.approx(analytics.effective_volatility * 20.0 * 0.9)

    steady = _player(player_id="k1", position="K", salary=4500, projection=8.0, volatility=0.01)
    assert build_distribution(steady, compute_analytics(steady)).std == pytest.approx(0.8)


def test_samples_are_clamped_and_centered():
    player = _player()
    dist = _build(player)
    rng = np.random.default_rng(11)
    samples = dist.sample(rng, 20_000)
    assert samples.min() >= dist.floor
    assert samples.max() <= dist.ceiling
    assert samples.mean() == pytest.approx(20.0, rel=0.03)


def test_ppf_handles_extreme_quantiles():
    dist = _build(_player(position="WR"))
    values = dist.ppf(np.array([0.0, 1.0]))
    assert np.all(np.isfinite(values))
    assert values[0] >= dist.floor
    assert values[1] <= dist.ceiling


def test_build_distributions_skips_unrated_players():
    rated = _player(player_id="a")
    unrated = _player(player_id="b", salary=0)
    analytics = {"a": compute_analytics(rated)}
    dists = build_distributions([rated, unrated], analytics, policy=DistributionPolicy())
    assert set(dists) == {"a"}


@pytest.mark.parametrize("family", list(DistributionFamily))
def test_every_family_is_clamped_to_its_range(family):
    player = _player(floor=12.0, ceiling=30.0)
    history = None
    policy = DistributionPolicy(position_families={"NFL": {"QB": family}})
    if family is DistributionFamily.EMPIRICAL:
        history = [float(v) for v in range(5, 45)]
    dist = build_distribution(player, compute_analytics(player, history), history=history, policy=policy)
    assert dist.family is family

    samples = dist.sample(np.random.default_rng(3), 20_000)
    assert np.all(np.isfinite(samples))
    assert samples.min() >= dist.floor
    assert samples.max() <= dist.ceiling
    assert dist.floor < dist.mean < dist.ceiling
