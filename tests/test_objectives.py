import numpy as np
import pytest

from dfsim.analytics import compute_analytics
from dfsim.correlation import CorrelationMatrix
from dfsim.errors import ConfigurationError
from dfsim.models import PlayerRecord
from dfsim.optimizer.search import SearchProblem, _BranchSearch
from dfsim.scoring import (
    ScoringContext,
    Strategy,
    StrategyWeights,
    correlation_bonus,
    max_correlation_bonus,
    pairwise_bonus,
    score_player,
    standalone_score,
)


def _player(**overrides) -> PlayerRecord:
    data = dict(player_id="p1", name="Player", sport="NFL", position="WR", team="KC", salary=6000, projection=15.0)
    data.update(overrides)
    return PlayerRecord(**data)


def test_strategy_parse_accepts_values_and_names():
    assert Strategy.parse("ceiling") is Strategy.MAXIMIZE_CEILING
    assert Strategy.parse("Maximize_Floor") is Strategy.MAXIMIZE_FLOOR
    assert Strategy.parse(Strategy.VALUE) is Strategy.VALUE
    with pytest.raises(ConfigurationError):
        Strategy.parse("yolo")


def test_scores_are_never_negative():
    player = _player(ownership=0.95)
    analytics = compute_analytics(player)
    for strategy in Strategy:
        assert score_player(player, analytics, strategy) >= 0.0


def test_contrarian_prefers_low_ownership():
    low = _player(player_id="low", ownership=0.02)
    high = _player(player_id="high", ownership=0.40)
    low_score = standalone_score(low, compute_analytics(low), Strategy.CONTRARIAN)
    high_score = standalone_score(high, compute_analytics(high), Strategy.CONTRARIAN)
    assert low_score > high_score


def test_floor_penalizes_questionable_players():
    healthy = _player()
    questionable = _player(injury_status="Q")
    a = compute_analytics(healthy)
    assert standalone_score(questionable, a, Strategy.MAXIMIZE_FLOOR) == pytest.approx(
        standalone_score(healthy, a, Strategy.MAXIMIZE_FLOOR) - 0.10 * a.projection
    )


def test_ceiling_rewards_upside():
    steady = _player(player_id="steady", floor=13.0, ceiling=17.0)
    boom = _player(player_id="boom", floor=5.0, ceiling=30.0)
    assert standalone_score(boom, compute_analytics(boom), Strategy.MAXIMIZE_CEILING) > standalone_score(
        steady, compute_analytics(steady), Strategy.MAXIMIZE_CEILING
    )


def test_value_strategy_prefers_cheap_production():
    cheap = _player(player_id="cheap", salary=4000)
    pricey = _player(player_id="pricey", salary=8000)
    assert standalone_score(cheap, compute_analytics(cheap), Strategy.VALUE) > standalone_score(
        pricey, compute_analytics(pricey), Strategy.VALUE
    )


def test_balanced_risk_tolerance_moves_between_floor_and_ceiling():
    player = _player()
    analytics = compute_analytics(player)
    cautious = standalone_score(player, analytics, Strategy.BALANCED, StrategyWeights(risk_tolerance=0.0))
    bold = standalone_score(player, analytics, Strategy.BALANCED, StrategyWeights(risk_tolerance=1.0))
    assert bold - cautious == pytest.approx(0.4 * (analytics.ceiling - analytics.floor))


def test_correlation_bonus_uses_selected_partners():
    matrix = CorrelationMatrix(["qb", "wr", "rb"], [[1.0, 0.5, 0.1], [0.5, 1.0, -0.1], [0.1, -0.1, 1.0]])
    ctx = ScoringContext(correlation=matrix, weights=StrategyWeights(correlation_weight=0.2))
    assert correlation_bonus("wr", 10.0, ctx) == 0.0
    ctx = ctx.with_selected("qb")
    assert correlation_bonus("wr", 10.0, ctx) == pytest.approx(0.5 * 10.0 * 0.2)

    player = _player(player_id="wr", projection=10.0)
    analytics = compute_analytics(player)
    alone = score_player(player, analytics, Strategy.CORRELATION_WEIGHTED, ScoringContext(correlation=matrix))
    stacked = score_player(
        player, analytics, Strategy.CORRELATION_WEIGHTED, ScoringContext(("qb",), matrix, StrategyWeights())
    )
    assert stacked > alone


def test_pairwise_bonus():
    assert pairwise_bonus([0.5, -0.1], 10.0, 0.2) == pytest.approx(0.4 * 10.0 * 0.2)
    assert pairwise_bonus([], 10.0, 0.2) == 0.0
    assert pairwise_bonus(iter([0.3]), 0.0, 1.0) == 0.0


def test_search_scores_partial_lineups_like_the_scorer():
    ids = ["qb", "wr", "rb"]
    matrix = CorrelationMatrix(ids, [[1.0, 0.5, 0.1], [0.5, 1.0, -0.1], [0.1, -0.1, 1.0]])
    weights = StrategyWeights(correlation_weight=0.3)
    players = [_player(player_id=pid, projection=proj) for pid, proj in zip(ids, (22.0, 15.0, 12.0))]
    analytics = [compute_analytics(player) for player in players]
    base = [standalone_score(p, a, Strategy.CORRELATION_WEIGHTED, weights) for p, a in zip(players, analytics)]
    problem = SearchProblem(
        player_ids=tuple(ids),
        salaries=(6000, 6000, 6000),
        teams=("KC", "KC", "KC"),
        projections=tuple(a.projection for a in analytics),
        base_scores=tuple(base),
        bound_scores=tuple(base),
        candidates=((0, 1, 2), (0, 1, 2), (0, 1, 2)),
        salary_cap=50_000,
        correlation=np.array(matrix.values),
        correlation_weight=weights.correlation_weight,
    )
    search = _BranchSearch(problem, pool_limit=5, deadline=None)

    for cand, chosen in ((1, [0]), (2, [0, 1]), (0, [1, 2]), (2, [])):
        context = ScoringContext(tuple(ids[idx] for idx in chosen), matrix, weights)
        expected = score_player(players[cand], analytics[cand], Strategy.CORRELATION_WEIGHTED, context)
        assert search.incremental_score(cand, chosen) == pytest.approx(expected)


def test_max_correlation_bonus_counts_positive_partners_only():
    matrix = CorrelationMatrix(["a", "b", "c"], [[1.0, 0.4, -0.3], [0.4, 1.0, 0.0], [-0.3, 0.0, 1.0]])
    assert max_correlation_bonus("a", 10.0, ["a", "b", "c"], 2, matrix, 0.5) == pytest.approx(0.4 * 10.0 * 0.5)
    assert max_correlation_bonus("a", 10.0, ["b"], 0, matrix, 0.5) == 0.0


def test_weights_validation():
    with pytest.raises(ConfigurationError):
        StrategyWeights(risk_tolerance=1.5).validate()
    with pytest.raises(ConfigurationError):
        StrategyWeights(contrarian_pivot=0.0).validate()
