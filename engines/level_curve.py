"""XP level curve.

Level 1 is free; reaching level ``n`` (n >= 2) costs ``floor(100 * 1.2**(n-2))``
XP more than level ``n - 1``. Levels stop at 50.
"""

from __future__ import annotations

import math
from typing import List, Sequence, Tuple

from schemas import LevelInfo

MAX_LEVEL = 50
BASE_XP = 100
MULTIPLIER = 1.2

_LEVEL_TITLES: Sequence[Tuple[int, str]] = (
    (5, "Beginner"),
    (10, "Apprentice"),
    (15, "Student"),
    (20, "Practitioner"),
    (25, "Connoisseur"),
    (30, "Specialist"),
    (35, "Veteran"),
    (40, "Master"),
    (45, "Grandmaster"),
)


def xp_cost_of_level(level: int) -> int:
    """XP required to go from ``level - 1`` to ``level``."""

    if level <= 1:
        return 0
    return math.floor(BASE_XP * MULTIPLIER ** (level - 2))


def _build_thresholds() -> List[int]:
    thresholds = [0, 0]  # index 0 unused, level 1 costs nothing
    for level in range(2, MAX_LEVEL + 1):
        thresholds.append(thresholds[-1] + xp_cost_of_level(level))
    return thresholds


_THRESHOLDS = _build_thresholds()


def total_xp_for_level(level: int) -> int:
    """Cumulative XP needed to reach ``level``."""

    level = max(1, min(level, MAX_LEVEL))
    return _THRESHOLDS[level]


def level_title(level: int) -> str:
    for upper, title in _LEVEL_TITLES:
        if level <= upper:
            return title
    return "Legend"


def level_for(xp: int) -> LevelInfo:
    level = 1
    while level < MAX_LEVEL and _THRESHOLDS[level + 1] <= xp:
        level += 1

    is_max_level = level >= MAX_LEVEL
    xp_for_current = _THRESHOLDS[level]
    xp_for_next = xp_for_current if is_max_level else _THRESHOLDS[level + 1]

    if is_max_level:
        progress_percent = 100
    else:
        span = xp_for_next - xp_for_current
        progress_percent = min(100, math.floor((xp - xp_for_current) * 100 / span))

    return LevelInfo(
        level=level,
        current_xp=xp,
        xp_for_current_level=xp_for_current,
        xp_for_next_level=xp_for_next,
        progress_percent=progress_percent,
        xp_needed=0 if is_max_level else xp_for_next - xp,
        is_max_level=is_max_level,
        title=level_title(level),
    )
