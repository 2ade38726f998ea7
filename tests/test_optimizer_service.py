import random
import time
from collections import Counter

import pytest

from dfsim.config import Settings
from dfsim.errors import ConfigurationError, UnknownRosterError
from dfsim.models import PlayerRecord
from dfsim.optimizer import StackingRule, optimize, perturb_projections
from dfsim.optimizer.service import _perturbation_window
from dfsim.scoring import Strategy

SETTINGS = Settings(workers=1)


def _nfl(player_id: str, position: str, team: str, opponent: str, salary: int, projection: float, **extra) -> PlayerRecord:
    return PlayerRecord(
        player_id=player_id,
        name=player_id.upper(),
        sport="NFL",
        position=position,
        team=team,
        opponent=opponent,
        salary=salary,
        projection=projection,
        **extra,
    )


def _sample_pool() -> list[PlayerRecord]:
    return [
        _nfl("qb1", "QB", "KC", "BUF", 8000, 24.0),
        _nfl("qb2", "QB", "BUF", "KC", 7600, 22.5),
        _nfl("qb3", "QB", "DAL", "NYG", 6000, 17.0),
        _nfl("rb1", "RB", "SF", "PHI", 8200, 21.0),
        _nfl("rb2", "RB", "KC", "BUF", 6800, 16.5),
        _nfl("rb3", "RB", "PHI", "SF", 6200, 15.0),
        _nfl("rb4", "RB", "NYG", "DAL", 5000, 11.5),
        _nfl("rb5", "RB", "BUF", "KC", 4500, 10.0),
        _nfl("wr1", "WR", "KC", "BUF", 7800, 19.5),
        _nfl("wr2", "WR", "BUF", "KC", 7200, 18.0),
        _nfl("wr3", "WR", "DAL", "NYG", 6500, 16.0),
        _nfl("wr4", "WR", "SF", "PHI", 5900, 14.0),
        _nfl("wr5", "WR", "PHI", "SF", 5200, 12.5),
        _nfl("wr6", "WR", "NYG", "DAL", 4300, 10.0),
        _nfl("wr7", "WR", "DAL", "NYG", 3500, 8.0),
        _nfl("te1", "TE", "KC", "BUF", 6000, 14.0),
        _nfl("te2", "TE", "SF", "PHI", 4800, 10.5),
        _nfl("te3", "TE", "NYG", "DAL", 3000, 6.5),
        _nfl("dst1", "DST", "SF", "PHI", 3500, 8.0),
        _nfl("dst2", "DEF", "DAL", "NYG", 3000, 7.0),
        _nfl("dst3", "DST", "BUF", "KC", 2500, 6.0),
    ]


def _nba(player_id: str, position: str, salary: int = 5000, projection: float = 25.0) -> PlayerRecord:
    return PlayerRecord(
        player_id=player_id, sport="NBA", position=position, team="T" + player_id[-1], salary=salary, projection=projection
    )


def test_optimize_generates_valid_distinct_lineups():
    result = optimize(_sample_pool(), sport="NFL", platform="DK", num_lineups=5, settings=SETTINGS)

    assert result.feasible
    assert len(result.lineups) == 5
    assert result.shortfall == 0
    assert [lineup.lineup_id for lineup in result.lineups] == ["L001", "L002", "L003", "L004", "L005"]
    signatures = {lineup.signature for lineup in result.lineups}
    assert len(signatures) == 5
    for lineup in result.lineups:
        assert lineup.salary <= 50_000
        assert len(lineup.player_ids) == 9
        assert len(set(lineup.player_ids)) == 9
        assert [a.slot for a in lineup.assignments] == ["QB", "RB", "RB", "WR", "WR", "WR", "TE", "FLEX", "DST"]
        assert lineup.strategy == "balanced"
    scores = [lineup.score for lineup in result.lineups]
    assert scores == sorted(scores, reverse=True)


def test_optimize_respects_locks_and_excludes():
    result = optimize(
        _sample_pool(),
        sport="NFL",
        platform="DK",
        num_lineups=3,
        lock_player_ids={"qb3"},
        exclude_player_ids={"rb1"},
        settings=SETTINGS,
    )

    assert len(result.lineups) == 3
    for lineup in result.lineups:
        ids = set(lineup.player_ids)
        assert "qb3" in ids
        assert "rb1" not in ids
    assert "rb1" in result.excluded_player_ids


def test_out_players_are_excluded():
    pool = _sample_pool()
    pool[0] = _nfl("qb1", "QB", "KC", "BUF", 8000, 24.0, injury_status="OUT")
    result = optimize(pool, sport="NFL", platform="DK", num_lineups=2, settings=SETTINGS)
    assert "qb1" in result.excluded_player_ids
    assert all("qb1" not in lineup.player_ids for lineup in result.lineups)


def test_team_cap_and_exposure_limits():
    result = optimize(
        _sample_pool(),
        sport="NFL",
        platform="DK",
        num_lineups=4,
        max_from_one_team=2,
        max_exposure=0.5,
        settings=SETTINGS,
    )

    usage = Counter(pid for lineup in result.lineups for pid in lineup.player_ids)
    assert all(count <= 2 for count in usage.values())
    for lineup in result.lineups:
        teams = Counter(player.team for player in lineup.players)
        assert max(teams.values()) <= 2


def test_min_salary_is_enforced():
    result = optimize(_sample_pool(), sport="NFL", platform="DK", num_lineups=3, min_salary=49_000, settings=SETTINGS)
    assert result.lineups
    assert all(49_000 <= lineup.salary <= 50_000 for lineup in result.lineups)


def test_shortfall_reported_when_pool_is_exhausted():
    pool = [_nba(f"{pos.lower()}{i}", pos) for pos in ("PG", "SG", "SF", "PF") for i in (1, 2)]
    pool += [_nba(f"c{i}", "C", projection=20.0 + i) for i in range(10)]

    result = optimize(pool, sport="NBA", platform="FD", num_lineups=50, min_different_players=1, settings=SETTINGS)

    assert result.feasible
    assert len(result.lineups) == 10
    assert result.shortfall == 40
    assert not result.incomplete
    assert len({lineup.signature for lineup in result.lineups}) == 10


def test_fully_disjoint_lineups():
    pool = [
        PlayerRecord(player_id=f"g{i}", sport="GOLF", position="G", team="USA", salary=8000 - i * 100, projection=70.0 - i)
        for i in range(12)
    ]

    result = optimize(pool, sport="GOLF", platform="DK", num_lineups=5, min_different_players=6, settings=SETTINGS)

    assert len(result.lineups) == 2
    assert result.shortfall == 3
    first, second = result.lineups
    assert first.shared_players(second) == 0


def test_infeasible_slot_is_reported():
    pool = [p for p in _sample_pool() if p.position != "QB"]
    pool += [_nfl("qbx", "QB", "KC", "BUF", 60_000, 30.0), _nfl("qby", "QB", "BUF", "KC", 55_000, 28.0)]

    result = optimize(pool, sport="NFL", platform="DK", num_lineups=3, settings=SETTINGS)

    assert not result.feasible
    assert result.lineups == ()
    assert result.infeasible_slots == ("QB",)
    assert result.infeasible_reason == "no eligible players within the salary cap"
    assert result.shortfall == 3


def test_expired_deadline_returns_incomplete():
    result = optimize(
        _sample_pool(), sport="NFL", platform="DK", num_lineups=3, deadline=time.time() - 1.0, settings=SETTINGS
    )
    assert result.incomplete
    assert result.feasible
    assert result.lineups == ()


def test_correlation_strategy_runs_with_built_matrix():
    result = optimize(
        _sample_pool(), sport="NFL", platform="DK", num_lineups=3, strategy="correlation", settings=SETTINGS
    )
    assert len(result.lineups) == 3
    assert all(lineup.strategy == Strategy.CORRELATION_WEIGHTED.value for lineup in result.lineups)


def test_worker_count_does_not_change_results():
    single = optimize(_sample_pool(), sport="NFL", platform="DK", num_lineups=4, workers=1, settings=SETTINGS)
    multi = optimize(_sample_pool(), sport="NFL", platform="DK", num_lineups=4, workers=2, settings=SETTINGS)
    assert [lineup.signature for lineup in single.lineups] == [lineup.signature for lineup in multi.lineups]


def test_configuration_errors_raise():
    pool = _sample_pool()
    with pytest.raises(ConfigurationError):
        optimize(pool + [pool[0]], sport="NFL", platform="DK", settings=SETTINGS)
    with pytest.raises(ConfigurationError):
        optimize(pool, sport="NFL", platform="DK", min_different_players=10, settings=SETTINGS)
    with pytest.raises(ConfigurationError):
        optimize(pool, sport="NBA", platform="DK", settings=SETTINGS)
    with pytest.raises(ConfigurationError):
        optimize(pool, sport="NFL", platform="DK", lock_player_ids={"nobody"}, settings=SETTINGS)
    with pytest.raises(ConfigurationError):
        optimize([], sport="NFL", platform="DK", settings=SETTINGS)
    with pytest.raises(UnknownRosterError):
        optimize(pool, sport="NFL", platform="YAHOO", settings=SETTINGS)


def test_perturbation_window_shapes_variance():
    low = _perturbation_window(0.25, 0.4, 0.1)
    assert pytest.approx(low, rel=1e-6) == 0.4

    bottom = _perturbation_window(0.0, 0.4, 0.1)
    assert pytest.approx(bottom, rel=1e-6) == 0.4 * 1.5

    mid = _perturbation_window(0.5, 0.4, 0.1)
    assert pytest.approx(mid, rel=1e-6) == 0.25

    top = _perturbation_window(0.75, 0.4, 0.1)
    assert pytest.approx(top, rel=1e-6) == 0.1

    summit = _perturbation_window(1.0, 0.4, 0.1)
    assert pytest.approx(summit, rel=1e-6) == 0.1 * 0.5


def test_perturb_projections_respects_percentiles():
    records = [
        PlayerRecord(player_id=f"p{i}", sport="NBA", position="PG", team="TEAM", salary=5000 + i, projection=float(i))
        for i in range(1, 6)
    ]

    perturbed = perturb_projections(records, seed=17, pct_low=0.4, pct_high=0.1)
    assert len(perturbed) == len(records)

    rng = random.Random(17)
    max_rank = max(len(records) - 1, 1)
    for rank, (original, updated) in enumerate(zip(records, perturbed)):
        window = _perturbation_window(rank / max_rank, 0.4, 0.1)
        expected_offset = max(-0.99, min(0.99, rng.uniform(-window, window)))
        actual_offset = (updated.projection / original.projection) - 1.0
        assert pytest.approx(actual_offset, rel=1e-9) == expected_offset
    assert [p.projection for p in records] == [1.0, 2.0, 3.0, 4.0, 5.0]


def test_perturb_projections_zero_window_is_identity():
    records = _sample_pool()
    assert perturb_projections(records, seed=3, pct_low=0.0, pct_high=0.0) == records


def _slate(teams: int = 6, seed: int = 7) -> list[PlayerRecord]:
    """Full-slate NFL pool: per team 2 QB, 5 RB, 6 WR, 2 TE and a defense."""

    rng = random.Random(seed)
    counts = {"QB": 2, "RB": 5, "WR": 6, "TE": 2, "DST": 1}
    pool = []
    for t in range(teams):
        team = f"T{t}"
        opponent = f"T{t + 1 if t % 2 == 0 else t - 1}"
        for position, count in counts.items():
            for n in range(count):
                salary = rng.randrange(3000, 8600, 100)
                pool.append(
                    _nfl(f"{team.lower()}{position.lower()}{n}", position, team, opponent, salary,
                         round(salary / 400.0 + rng.uniform(-3.0, 3.0), 2))
                )
    return pool


def test_team_stack_with_listed_team():
    rule = StackingRule.create("team", min_players=3, teams=["kc"])
    result = optimize(_sample_pool(), sport="NFL", platform="DK", num_lineups=3, stacking_rules=[rule], settings=SETTINGS)

    assert len(result.lineups) == 3
    for lineup in result.lineups:
        assert Counter(player.team for player in lineup.players)["KC"] >= 3


def test_team_stack_max_players_without_teams():
    rule = StackingRule.create("team", min_players=1, max_players=2)
    result = optimize(_sample_pool(), sport="NFL", platform="DK", num_lineups=4, stacking_rules=[rule], settings=SETTINGS)

    assert result.lineups
    for lineup in result.lineups:
        assert max(Counter(player.team for player in lineup.players).values()) <= 2


def test_game_and_mini_stacks():
    rules = [StackingRule.create("game", min_players=4), StackingRule.create("mini", min_players=2)]
    result = optimize(_sample_pool(), sport="NFL", platform="DK", num_lineups=3, stacking_rules=rules, settings=SETTINGS)

    assert result.lineups
    for lineup in result.lineups:
        games = Counter(player.game_key for player in lineup.players)
        assert max(games.values()) >= 4
        both_sides = [
            game for game in games
            if len({player.team for player in lineup.players if player.game_key == game}) == 2
        ]
        assert both_sides


def test_unsatisfiable_stack_reports_no_lineups():
    rule = StackingRule.create("team", min_players=5, teams=["NYG"])
    result = optimize(_sample_pool(), sport="NFL", platform="DK", num_lineups=2, stacking_rules=[rule], settings=SETTINGS)

    assert result.lineups == ()
    assert result.infeasible_reason == "no lineup satisfies the roster constraints"
    assert result.stats.stack_rejected > 0


def test_stacking_rule_validation():
    with pytest.raises(ConfigurationError):
        StackingRule.create("team", min_players=4, max_players=2)
    with pytest.raises(ConfigurationError):
        StackingRule.create("tower")
    with pytest.raises(ConfigurationError):
        StackingRule.create("mini", min_players=1)
    with pytest.raises(ConfigurationError):
        optimize(
            _sample_pool(),
            sport="NFL",
            platform="DK",
            stacking_rules=[StackingRule.create("team", min_players=10)],
            settings=SETTINGS,
        )


def test_min_exposure_reserves_lineups():
    result = optimize(
        _sample_pool(), sport="NFL", platform="DK", num_lineups=4, min_exposure={"te3": 0.5}, settings=SETTINGS
    )

    assert len(result.lineups) == 4
    assert sum("te3" in lineup.player_ids for lineup in result.lineups) >= 2
    assert result.exposure_violations == ()
    scores = [lineup.score for lineup in result.lineups]
    assert scores == sorted(scores, reverse=True)


def test_player_and_team_exposure_caps():
    result = optimize(
        _sample_pool(),
        sport="NFL",
        platform="DK",
        num_lineups=4,
        player_max_exposure={"qb1": 0.25},
        team_max_exposure={"sf": 0.5},
        settings=SETTINGS,
    )

    assert result.lineups
    assert sum("qb1" in lineup.player_ids for lineup in result.lineups) <= 1
    assert sum(any(p.team == "SF" for p in lineup.players) for lineup in result.lineups) <= 2


def test_unmet_min_exposure_is_reported():
    result = optimize(
        _sample_pool(),
        sport="NFL",
        platform="DK",
        num_lineups=4,
        min_exposure={"te3": 0.5},
        team_max_exposure={"NYG": 0.25},
        settings=Settings(workers=1, max_pool_size=1_000),
    )

    assert sum(any(p.team == "NYG" for p in lineup.players) for lineup in result.lineups) <= 1
    assert len(result.exposure_violations) == 1
    assert "TE3" in result.exposure_violations[0]


def test_exposure_configuration_errors():
    pool = _sample_pool()
    with pytest.raises(ConfigurationError):
        optimize(pool, sport="NFL", platform="DK", min_exposure={"nobody": 0.2}, settings=SETTINGS)
    with pytest.raises(ConfigurationError):
        optimize(pool, sport="NFL", platform="DK", min_exposure={"qb1": 0.6}, max_exposure=0.5, settings=SETTINGS)
    with pytest.raises(ConfigurationError):
        optimize(pool, sport="NFL", platform="DK", team_max_exposure={"KC": 0.0}, settings=SETTINGS)
    with pytest.raises(ConfigurationError):
        optimize(
            pool, sport="NFL", platform="DK", min_exposure={"qb1": 0.5}, exclude_player_ids={"qb1"}, settings=SETTINGS
        )


def test_deadline_mid_search_keeps_worker_lineups():
    start = time.time()
    result = optimize(
        _slate(),
        sport="NFL",
        platform="DK",
        num_lineups=1000,
        candidates_per_slot=30,
        workers=2,
        timeout=8.0,
        settings=SETTINGS,
    )

    assert result.incomplete
    assert result.lineups
    assert all(lineup.salary <= 50_000 for lineup in result.lineups)
    assert len({lineup.signature for lineup in result.lineups}) == len(result.lineups)
    assert time.time() - start < 40.0
