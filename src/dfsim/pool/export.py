"""Contest CSV export helpers for lineup pools."""

from __future__ import annotations

import csv
from io import StringIO
from typing import Optional, Sequence

from dfsim.config import SlotTemplate, get_slot_template
from dfsim.models import Lineup, PlayerRecord


class ContestExportError(RuntimeError):
    """Raised when a lineup cannot be exported for a contest template."""


_HEADER_ALIASES = {
    "D/ST": "DST",
    "DEF": "DST",
}
_SHARED_HEADERS = {"FLEX", "UTIL"}


def _slot_headers(slot_order: Sequence[str]) -> tuple[str, ...]:
    counts: dict[str, int] = {}
    headers: list[str] = []
    for slot in slot_order:
        key = _HEADER_ALIASES.get(slot, slot)
        counts[key] = counts.get(key, 0) + 1
        if slot_order.count(slot) > 1 and key not in _SHARED_HEADERS:
            headers.append(f"{key}{counts[key]}")
        else:
            headers.append(key)
    return tuple(headers)


def _assign_slots(lineup: Lineup, template: SlotTemplate) -> list[PlayerRecord]:
    """Return players matched to roster slots preserving template order.

    Slot labels already on the lineup are honoured first; anything left is
    placed by position eligibility with backtracking so flex slots resolve.
    """

    if len(lineup.assignments) != template.slot_count:
        raise ContestExportError(
            f"Lineup {lineup.lineup_id} has {len(lineup.assignments)} players; "
            f"{template.platform} {template.sport} needs {template.slot_count}"
        )

    if tuple(a.slot for a in lineup.assignments) == template.slot_names and all(
        slot.accepts(a.player) for slot, a in zip(template.slots, lineup.assignments)
    ):
        return list(lineup.players)

    players = list(lineup.players)
    chosen: list[Optional[int]] = [None] * template.slot_count
    used: set[int] = set()

    def place(slot_idx: int) -> bool:
        if slot_idx == template.slot_count:
            return True
        slot = template.slots[slot_idx]
        for idx, player in enumerate(players):
            if idx in used or not slot.accepts(player):
                continue
            used.add(idx)
            chosen[slot_idx] = idx
            if place(slot_idx + 1):
                return True
            used.discard(idx)
        return False

    if not place(0):
        raise ContestExportError(f"Lineup {lineup.lineup_id} cannot fill every {template.sport} roster slot")
    return [players[idx] for idx in chosen if idx is not None]


def export_lineups_to_csv(
    lineups: Sequence[Lineup],
    *,
    sport: str,
    platform: str,
    entry_names: Sequence[str] | None = None,
) -> str:
    """Convert lineups to a contest upload CSV for ``platform``."""

    if entry_names is not None and len(entry_names) != len(lineups):
        raise ContestExportError("entry_names length must match lineups length")

    template = get_slot_template(sport, platform)

    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(("EntryName", *_slot_headers(template.slot_names)))

    for idx, lineup in enumerate(lineups):
        entry_name = entry_names[idx] if entry_names is not None else lineup.lineup_id
        row = [entry_name]
        for player in _assign_slots(lineup, template):
            row.append(player.player_id)
        writer.writerow(row)

    return buffer.getvalue()


__all__ = [
    "ContestExportError",
    "export_lineups_to_csv",
]
