"""Daily-login streak and daily bonus claim."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from engines import ledger
from schemas import LearnerProgress

MILESTONE_EVERY = 7
DEFAULT_XP_BONUS = 50
MILESTONE_XP_BONUS = 100
MILESTONE_LIFE_BONUS = 1


@dataclass
class DailyBonus:
    progress: LearnerProgress
    granted: bool
    streak: int
    xp_bonus: int = 0
    life_bonus: int = 0
    lives_granted: int = 0

    @property
    def is_milestone(self) -> bool:
        return self.granted and self.streak % MILESTONE_EVERY == 0


def claim_daily_bonus(
    progress: LearnerProgress,
    now: datetime,
    today: Optional[date] = None,
) -> DailyBonus:
    """Extend the streak and pay the daily bonus, once per calendar day.

    A claim on the day after ``last_study_date`` extends the streak; any gap
    restarts it at 1. Every seventh consecutive day pays the milestone bonus.
    """

    today = today or now.date()
    if progress.last_study_date == today:
        return DailyBonus(progress, False, progress.daily_streak)

    updated = progress.model_copy(deep=True)
    if updated.last_study_date == today - timedelta(days=1):
        updated.daily_streak += 1
    else:
        updated.daily_streak = 1
    updated.last_study_date = today

    milestone = updated.daily_streak % MILESTONE_EVERY == 0
    xp_bonus = MILESTONE_XP_BONUS if milestone else DEFAULT_XP_BONUS
    life_bonus = MILESTONE_LIFE_BONUS if milestone else 0

    updated = ledger.grant_xp(updated, xp_bonus).progress
    lives = ledger.grant_lives(updated, life_bonus)
    return DailyBonus(
        progress=lives.progress,
        granted=True,
        streak=lives.progress.daily_streak,
        xp_bonus=xp_bonus,
        life_bonus=life_bonus,
        lives_granted=lives.amount,
    )
