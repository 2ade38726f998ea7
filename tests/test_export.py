import csv
from io import StringIO

import pytest

from dfsim.models import Lineup, PlayerRecord, SlotAssignment
from dfsim.pool import ContestExportError, export_lineups_to_csv
from dfsim.pool.export import _slot_headers


def _player(player_id: str, position: str) -> PlayerRecord:
    return PlayerRecord(player_id=player_id, sport="NFL", position=position, team="KC", salary=5000, projection=10.0)


def _lineup(lineup_id: str, pairs: list[tuple[str, PlayerRecord]]) -> Lineup:
    return Lineup(
        lineup_id=lineup_id,
        assignments=tuple(SlotAssignment(slot, player) for slot, player in pairs),
        score=0.0,
        strategy="balanced",
    )


QB = _player("qb", "QB")
RB1 = _player("rb1", "RB")
RB2 = _player("rb2", "RB")
RB3 = _player("rb3", "RB")
WR1 = _player("wr1", "WR")
WR2 = _player("wr2", "WR")
WR3 = _player("wr3", "WR")
TE = _player("te", "TE")
DST = _player("dst", "DST")

SLOTTED = [
    ("QB", QB), ("RB", RB1), ("RB", RB2), ("WR", WR1), ("WR", WR2), ("WR", WR3), ("TE", TE), ("FLEX", RB3), ("DST", DST),
]


def _rows(text: str) -> list[list[str]]:
    return list(csv.reader(StringIO(text)))


def test_slot_headers_number_duplicates():
    assert _slot_headers(("QB", "RB", "RB", "FLEX", "D/ST")) == ("QB", "RB1", "RB2", "FLEX", "DST")
    assert _slot_headers(("UTIL", "UTIL", "UTIL")) == ("UTIL", "UTIL", "UTIL")


def test_export_draftkings_nfl():
    rows = _rows(export_lineups_to_csv([_lineup("L001", SLOTTED)], sport="NFL", platform="DK"))
    assert rows[0] == ["EntryName", "QB", "RB1", "RB2", "WR1", "WR2", "WR3", "TE", "FLEX", "DST"]
    assert rows[1] == ["L001", "qb", "rb1", "rb2", "wr1", "wr2", "wr3", "te", "rb3", "dst"]


def test_export_fanduel_uses_dst_header_and_entry_names():
    fanduel = [(("D/ST" if slot == "DST" else slot), player) for slot, player in SLOTTED]
    text = export_lineups_to_csv(
        [_lineup("L001", fanduel), _lineup("L002", fanduel)], sport="NFL", platform="FD", entry_names=["alpha", "beta"]
    )
    rows = _rows(text)
    assert rows[0][-1] == "DST"
    assert [row[0] for row in rows[1:]] == ["alpha", "beta"]


def test_unlabelled_lineup_is_placed_by_eligibility():
    shuffled = [("?", WR3), ("?", RB3), ("?", DST), ("?", QB), ("?", RB1), ("?", TE), ("?", WR1), ("?", RB2), ("?", WR2)]
    rows = _rows(export_lineups_to_csv([_lineup("L009", shuffled)], sport="NFL", platform="DK"))
    assert rows[1] == ["L009", "qb", "rb3", "rb1", "wr3", "wr1", "wr2", "te", "rb2", "dst"]


def test_export_errors():
    lineup = _lineup("L001", SLOTTED)
    with pytest.raises(ContestExportError):
        export_lineups_to_csv([lineup], sport="NFL", platform="DK", entry_names=["a", "b"])
    with pytest.raises(ContestExportError):
        export_lineups_to_csv([_lineup("L002", SLOTTED[:-1])], sport="NFL", platform="DK")
    two_qbs = SLOTTED[:-1] + [("DST", _player("qb2", "QB"))]
    with pytest.raises(ContestExportError):
        export_lineups_to_csv([_lineup("L003", two_qbs)], sport="NFL", platform="DK")
