"""Resource ledger for credits, lives, XP and mastery.

All functions are pure: they take a ``LearnerProgress`` snapshot and return a
``LedgerResult`` holding a new snapshot, leaving the input untouched. Spends
that cannot be afforded raise ``InsufficientResource``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from engines.errors import InsufficientResource
from schemas import MAX_CREDITS, MAX_LIVES, MAX_MASTERY, LearnerProgress

logger = logging.getLogger(__name__)

DAILY_CREDITS = 10
MONTHLY_CREDIT_CAP = MAX_CREDITS
LIFE_REGEN_INTERVAL = timedelta(hours=2)
XP_CONVERSION_COST = 1000
XP_CONVERSION_CREDITS = 15


@dataclass
class LedgerResult:
    progress: LearnerProgress
    applied: bool
    amount: int = 0


def _copy(progress: LearnerProgress) -> LearnerProgress:
    return progress.model_copy(deep=True)


def _clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


def _check_amount(amount: int) -> None:
    if amount < 0:
        raise ValueError("grant amounts must be non-negative")


# ----- scheduled regeneration ---------------------------------------------
def apply_daily_regeneration(
    progress: LearnerProgress,
    now: datetime,
    today: Optional[date] = None,
) -> LedgerResult:
    """Run the monthly reset and the daily credit grant, at most once per day.

    Calling it again on the same day changes nothing because both steps are
    keyed on the stored reset dates.
    """

    if progress.is_premium:
        return LedgerResult(progress, False)

    today = today or now.date()
    updated = _copy(progress)
    changed = False

    last_reset = updated.last_credits_reset_date
    if last_reset is None or (last_reset.year, last_reset.month) != (today.year, today.month):
        updated.credits_used_this_month = 0
        updated.credits_received_today = 0
        updated.last_credits_reset_date = today
        changed = True

    granted = 0
    if updated.last_daily_credit_date != today:
        allowance = max(0, min(DAILY_CREDITS, MONTHLY_CREDIT_CAP - updated.credits_used_this_month))
        before = updated.credits
        updated.credits = _clamp(before + allowance, 0, MAX_CREDITS)
        granted = updated.credits - before
        updated.credits_received_today = granted
        updated.last_daily_credit_date = today
        changed = True

    if changed:
        logger.debug(
            "Daily regeneration for %s on %s granted %d credits",
            updated.learner_id,
            today.isoformat(),
            granted,
        )
    return LedgerResult(updated if changed else progress, changed, granted)


def regenerate_lives(progress: LearnerProgress, now: datetime) -> LedgerResult:
    """Grant one life per full regeneration interval since ``last_life_lost_at``.

    The timestamp advances by the intervals consumed, so partial progress
    towards the next life is kept across calls.
    """

    if progress.is_premium or progress.lives >= MAX_LIVES:
        return LedgerResult(progress, False)

    updated = _copy(progress)
    if updated.last_life_lost_at is None:
        updated.last_life_lost_at = now
        return LedgerResult(updated, True)

    elapsed = now - updated.last_life_lost_at
    if elapsed < LIFE_REGEN_INTERVAL:
        return LedgerResult(progress, False)

    intervals = int(elapsed // LIFE_REGEN_INTERVAL)
    gained = min(intervals, MAX_LIVES - updated.lives)
    updated.lives += gained
    updated.last_life_lost_at = updated.last_life_lost_at + LIFE_REGEN_INTERVAL * gained
    logger.debug("Regenerated %d lives for %s", gained, updated.learner_id)
    return LedgerResult(updated, gained > 0, gained)


def next_life_at(progress: LearnerProgress) -> Optional[datetime]:
    if progress.is_premium or progress.lives >= MAX_LIVES or progress.last_life_lost_at is None:
        return None
    return progress.last_life_lost_at + LIFE_REGEN_INTERVAL


# ----- spends ---------------------------------------------------------------
def spend_credit(progress: LearnerProgress) -> LedgerResult:
    if progress.is_premium:
        return LedgerResult(progress, True)
    if progress.credits <= 0:
        raise InsufficientResource("credits", required=1, available=progress.credits)

    updated = _copy(progress)
    updated.credits -= 1
    updated.credits_used_this_month += 1
    return LedgerResult(updated, True, 1)


def lose_life(progress: LearnerProgress, now: datetime) -> LedgerResult:
    """Take one life; the regeneration clock starts when leaving full lives."""

    if progress.is_premium or progress.lives <= 0:
        return LedgerResult(progress, False)

    updated = _copy(progress)
    was_full = updated.lives >= MAX_LIVES
    updated.lives -= 1
    if was_full or updated.last_life_lost_at is None:
        updated.last_life_lost_at = now
    return LedgerResult(updated, True, 1)


def convert_xp_to_credits(progress: LearnerProgress) -> LedgerResult:
    if progress.xp < XP_CONVERSION_COST:
        raise InsufficientResource("xp", required=XP_CONVERSION_COST, available=progress.xp)

    updated = _copy(progress)
    updated.xp -= XP_CONVERSION_COST
    result = grant_credits(updated, XP_CONVERSION_CREDITS)
    return LedgerResult(result.progress, True, result.amount)


# ----- grants ---------------------------------------------------------------
def grant_credits(progress: LearnerProgress, amount: int) -> LedgerResult:
    _check_amount(amount)
    updated = _copy(progress)
    updated.credits = _clamp(updated.credits + amount, 0, MAX_CREDITS)
    granted = updated.credits - progress.credits
    return LedgerResult(updated, granted > 0, granted)


def grant_lives(progress: LearnerProgress, amount: int) -> LedgerResult:
    _check_amount(amount)
    updated = _copy(progress)
    updated.lives = _clamp(updated.lives + amount, 0, MAX_LIVES)
    granted = updated.lives - progress.lives
    return LedgerResult(updated, granted > 0, granted)


def grant_xp(progress: LearnerProgress, amount: int) -> LedgerResult:
    _check_amount(amount)
    updated = _copy(progress)
    updated.xp += amount
    return LedgerResult(updated, amount > 0, amount)


def adjust_mastery(progress: LearnerProgress, delta: int) -> LedgerResult:
    updated = _copy(progress)
    updated.mastery_level = _clamp(updated.mastery_level + delta, 0, MAX_MASTERY)
    moved = updated.mastery_level - progress.mastery_level
    return LedgerResult(updated, moved != 0, moved)
