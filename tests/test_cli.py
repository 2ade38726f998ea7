import csv
import json
from pathlib import Path

import pytest

from dfsim.cli import _stack_rule, load_pool, main
from dfsim.errors import ConfigurationError


def _players() -> list[dict]:
    rows = [
        ("qb1", "QB", "KC", "BUF", 6500, 24.0),
        ("qb2", "QB", "BUF", "KC", 6000, 22.5),
        ("rb1", "RB", "SF", "PHI", 6000, 21.0),
        ("rb2", "RB", "KC", "BUF", 5000, 16.5),
        ("rb3", "RB", "PHI", "SF", 4500, 15.0),
        ("wr1", "WR", "KC", "BUF", 6000, 19.5),
        ("wr2", "WR", "BUF", "KC", 5500, 18.0),
        ("wr3", "WR", "DAL", "NYG", 4500, 16.0),
        ("wr4", "WR", "SF", "PHI", 4000, 14.0),
        ("te1", "TE", "KC", "BUF", 4500, 14.0),
        ("te2", "TE", "SF", "PHI", 3500, 10.5),
        ("dst1", "DST", "SF", "PHI", 3000, 8.0),
    ]
    return [
        {
            "player_id": pid,
            "name": pid.upper(),
            "sport": "NFL",
            "position": pos,
            "team": team,
            "opponent": opp,
            "salary": salary,
            "projection": projection,
        }
        for pid, pos, team, opp, salary, projection in rows
    ]


def test_load_pool_accepts_list_and_object(tmp_path: Path):
    listed = tmp_path / "list.json"
    listed.write_text(json.dumps(_players()), encoding="utf-8")
    players, histories = load_pool(listed)
    assert len(players) == 12
    assert histories == {}

    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(json.dumps({"players": _players(), "histories": {"qb1": [20, 25, 30]}}), encoding="utf-8")
    players, histories = load_pool(wrapped)
    assert len(players) == 12
    assert histories == {"qb1": [20.0, 25.0, 30.0]}

    broken = tmp_path / "broken.json"
    broken.write_text(json.dumps([{"player_id": "x"}]), encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_pool(broken)


def test_main_writes_lineups_and_upload(tmp_path: Path):
    pool = tmp_path / "players.json"
    pool.write_text(json.dumps(_players()), encoding="utf-8")
    output = tmp_path / "lineups.csv"
    upload = tmp_path / "upload.csv"

    main(
        [
            str(pool),
            "--lineups", "2",
            "--workers", "1",
            "--simulate", "200",
            "--seed", "7",
            "--output", str(output),
            "--contest-export", str(upload),
        ]
    )

    with output.open(newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 2
    assert all(row["sim_mean"] not in ("", "-") for row in rows)
    assert all(len(row["player_ids"].split()) == 9 for row in rows)

    upload_rows = list(csv.reader(upload.read_text(encoding="utf-8").splitlines()))
    assert upload_rows[0][0] == "EntryName"
    assert len(upload_rows) == 3


def test_main_exits_on_bad_roster(tmp_path: Path):
    pool = tmp_path / "players.json"
    pool.write_text(json.dumps(_players()), encoding="utf-8")
    with pytest.raises(SystemExit):
        main([str(pool), "--platform", "YAHOO", "--output", str(tmp_path / "out.csv")])


def test_stack_option_parsing():
    rule = _stack_rule("team:3@kc,buf")
    assert rule.type.value == "team"
    assert rule.min_players == 3
    assert rule.max_players is None
    assert rule.teams == ("BUF", "KC")

    mini = _stack_rule("mini:2:4")
    assert (mini.min_players, mini.max_players, mini.teams) == (2, 4, ())
    assert _stack_rule("game").min_players == 2


def test_main_applies_stacks_and_exposure(tmp_path: Path, capsys):
    pool = tmp_path / "players.json"
    pool.write_text(json.dumps(_players()), encoding="utf-8")
    output = tmp_path / "lineups.csv"

    main(
        [
            str(pool),
            "--lineups", "2",
            "--workers", "1",
            "--stack", "team:3@KC",
            "--player-exposure", "rb1=0.5",
            "--output", str(output),
        ]
    )

    with output.open(newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 2
    kc = {"qb1", "rb2", "wr1", "te1"}
    for row in rows:
        assert len(kc & set(row["player_ids"].split())) >= 3
    assert sum("rb1" in row["player_ids"].split() for row in rows) <= 1
    assert "Built 2/2 lineups" in capsys.readouterr().out


def test_main_rejects_malformed_stack(tmp_path: Path):
    pool = tmp_path / "players.json"
    pool.write_text(json.dumps(_players()), encoding="utf-8")
    with pytest.raises(SystemExit):
        main([str(pool), "--stack", "tower:2", "--output", str(tmp_path / "out.csv")])
    with pytest.raises(SystemExit):
        main([str(pool), "--team-exposure", "KC", "--output", str(tmp_path / "out.csv")])
