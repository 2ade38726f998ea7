import math

import pytest

from dfsim.analytics import NotRatable, analyze_pool, compute_analytics, default_spread
from dfsim.models import PlayerRecord


def _player(**overrides) -> PlayerRecord:
    data = dict(player_id="p1", name="Player", sport="NBA", position="PG", team="BOS", salary=8000, projection=40.0)
    data.update(overrides)
    return PlayerRecord(**data)


def test_zero_salary_is_not_ratable():
    result = compute_analytics(_player(salary=0))
    assert isinstance(result, NotRatable)
    assert result.player_id == "p1"


def test_non_positive_projection_is_not_ratable():
    assert isinstance(compute_analytics(_player(projection=0.0)), NotRatable)
    assert isinstance(compute_analytics(_player(projection=-3.0)), NotRatable)


def test_default_spread_by_position():
    assert default_spread("NFL", "WR") == pytest.approx(0.50)
    assert default_spread("NBA", "PG/SG") == pytest.approx(0.33)
    assert default_spread("XFL", "QB") == pytest.approx(0.40)


def test_range_from_default_spread_without_history():
    result = compute_analytics(_player())
    assert result.floor == pytest.approx(40.0 * 0.70)
    assert result.ceiling == pytest.approx(40.0 * 1.30)
    assert result.volatility == 0.0
    assert result.implied_volatility == pytest.approx(24.0 / (2 * 1.0364 * 40.0))
    assert result.sample_size == 0


def test_range_uses_player_supplied_floor_and_ceiling():
    result = compute_analytics(_player(floor=30.0, ceiling=55.0))
    assert result.floor == 30.0
    assert result.ceiling == 55.0


def test_history_drives_floor_ceiling_and_volatility():
    history = [30.0, 35.0, 40.0, 45.0, 50.0, 38.0, 42.0]
    result = compute_analytics(_player(), history)
    assert result.sample_size == 7
    assert result.floor < 40.0 < result.ceiling
    assert result.volatility > 0
    assert result.effective_volatility == result.volatility


def test_short_history_falls_back_to_default():
    result = compute_analytics(_player(), [10.0, 90.0])
    assert result.floor == pytest.approx(28.0)
    assert result.volatility > 0


def test_value_rating_and_estimated_ownership():
    result = compute_analytics(_player(salary=8000, projection=40.0))
    assert result.value_rating == pytest.approx(1.0)
    assert result.ownership == pytest.approx(0.10)
    given = compute_analytics(_player(ownership=0.33))
    assert given.ownership == pytest.approx(0.33)


def test_tail_probabilities_are_clamped():
    result = compute_analytics(_player())
    assert 0.05 <= result.ceiling_probability <= 0.35
    assert 0.05 <= result.floor_probability <= 0.35


def test_analyze_pool_splits_rated_and_skipped():
    pool = [_player(player_id="a"), _player(player_id="b", salary=0), _player(player_id="c", projection=0.0)]
    rated, skipped = analyze_pool(pool)
    assert set(rated) == {"a"}
    assert {item.player_id for item in skipped} == {"b", "c"}


def test_degenerate_floor_and_ceiling_use_default_spread():
    result = compute_analytics(_player(floor=40.0, ceiling=40.0), [])
    assert result.floor == pytest.approx(40.0 * 0.70)
    assert result.ceiling == pytest.approx(40.0 * 1.30)
    for value in (result.implied_volatility, result.ceiling_probability, result.floor_probability, result.consistency):
        assert math.isfinite(value)


def test_constant_history_has_zero_volatility():
    result = compute_analytics(_player(), [40.0] * 8)
    assert result.volatility == 0.0
    assert result.floor == result.ceiling == 40.0
    assert result.effective_volatility == result.implied_volatility == 0.0
    for value in (result.ceiling_probability, result.floor_probability, result.consistency, result.safety):
        assert math.isfinite(value)
