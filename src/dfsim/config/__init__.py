"""Configuration helpers for slot templates and runtime tunables."""

from .roster import (
    RosterSlot,
    SlotTemplate,
    eligible_slots,
    get_slot_template,
    iter_templates,
    normalize_platform,
    normalize_sport,
)
from .settings import Settings

__all__ = [
    "RosterSlot",
    "Settings",
    "SlotTemplate",
    "eligible_slots",
    "get_slot_template",
    "iter_templates",
    "normalize_platform",
    "normalize_sport",
]
