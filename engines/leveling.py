"""Level curve and rank titles.

Levels 1-45 come from an explicit threshold table. Past the table every
level costs the same amount as the last tabulated step, so XP-per-level
never drops when a learner leaves the table.
"""

from __future__ import annotations

from bisect import bisect_right
from typing import Any, Dict, Sequence, Tuple

LEVEL_THRESHOLDS: Tuple[int, ...] = (
    0, 100, 250, 450, 700, 1000, 1400, 1900, 2500, 3200,
    4000, 5000, 6200, 7600, 9200, 11000, 13000, 15200, 17600, 20200,
    23000, 26000, 29200, 32600, 36200, 40000, 44000, 48200, 52600, 57200,
    62000, 67000, 72200, 77600, 83200, 89000, 95000, 101200, 107600, 114200,
    121000, 128000, 135200, 142600, 150200,
)

MAX_TABULATED_LEVEL = len(LEVEL_THRESHOLDS)
EXTRAPOLATED_XP_PER_LEVEL = LEVEL_THRESHOLDS[-1] - LEVEL_THRESHOLDS[-2]

# Descending (minimum level, title) pairs.
LEVEL_TITLES: Sequence[Tuple[int, str]] = (
    (100, "Safety Legend"),
    (50, "Safety Guardian"),
    (25, "Safety Champion"),
    (20, "Safety Master"),
    (15, "Safety Expert"),
    (10, "Safety Professional"),
    (5, "Safety Practitioner"),
    (1, "Safety Apprentice"),
)


def xp_for_level(level: int) -> int:
    """Total XP at which ``level`` is reached."""

    if level <= 1:
        return 0
    if level <= MAX_TABULATED_LEVEL:
        return LEVEL_THRESHOLDS[level - 1]
    return LEVEL_THRESHOLDS[-1] + (level - MAX_TABULATED_LEVEL) * EXTRAPOLATED_XP_PER_LEVEL


def xp_for_next_level(level: int) -> int:
    return xp_for_level(max(1, level) + 1)


def level_for_xp(total_xp: int) -> int:
    """Greatest level whose threshold is <= ``total_xp``; 1 for anything below 100."""

    xp = max(0, int(total_xp))
    if xp < LEVEL_THRESHOLDS[-1]:
        return max(1, bisect_right(LEVEL_THRESHOLDS, xp))
    beyond = (xp - LEVEL_THRESHOLDS[-1]) // EXTRAPOLATED_XP_PER_LEVEL
    return MAX_TABULATED_LEVEL + beyond


def level_title(level: int) -> str:
    for minimum, title in LEVEL_TITLES:
        if level >= minimum:
            return title
    return LEVEL_TITLES[-1][1]


def check_level_up(previous_xp: int, new_xp: int) -> Dict[str, Any]:
    previous_level = level_for_xp(previous_xp)
    new_level = level_for_xp(new_xp)
    if new_level > previous_level:
        return {
            "leveled_up": True,
            "previous_level": previous_level,
            "new_level": new_level,
            "new_title": level_title(new_level),
        }
    return {"leveled_up": False}


def level_progress(total_xp: int) -> Dict[str, Any]:
    """Where a learner sits between the current and the next level."""

    level = level_for_xp(total_xp)
    current_level_xp = xp_for_level(level)
    next_level_xp = xp_for_next_level(level)
    xp_in_level = max(0, int(total_xp)) - current_level_xp
    xp_needed = next_level_xp - current_level_xp
    return {
        "level": level,
        "title": level_title(level),
        "total_xp": int(total_xp),
        "current_level_xp": current_level_xp,
        "next_level_xp": next_level_xp,
        "xp_in_current_level": xp_in_level,
        "xp_needed_for_next": xp_needed,
        "progress_percent": int(xp_in_level * 100 // xp_needed) if xp_needed else 100,
    }


__all__ = [
    "LEVEL_THRESHOLDS",
    "EXTRAPOLATED_XP_PER_LEVEL",
    "level_for_xp",
    "level_title",
    "xp_for_level",
    "xp_for_next_level",
    "check_level_up",
    "level_progress",
]
