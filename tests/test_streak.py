import unittest
from datetime import date, datetime, timedelta, timezone

from engines import streak
from schemas import LearnerProgress

NOW = datetime(2024, 3, 11, 10, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


class DailyBonusTests(unittest.TestCase):
    def _progress(self, **overrides):
        return LearnerProgress(learner_id="alice", **overrides)

    def test_first_claim_starts_streak(self):
        bonus = streak.claim_daily_bonus(self._progress(), NOW, TODAY)

        self.assertTrue(bonus.granted)
        self.assertEqual(bonus.streak, 1)
        self.assertEqual(bonus.xp_bonus, streak.DEFAULT_XP_BONUS)
        self.assertEqual(bonus.progress.xp, 50)
        self.assertEqual(bonus.progress.last_study_date, TODAY)

    def test_second_claim_same_day_is_not_granted(self):
        first = streak.claim_daily_bonus(self._progress(), NOW, TODAY).progress
        second = streak.claim_daily_bonus(first, NOW + timedelta(hours=3), TODAY)

        self.assertFalse(second.granted)
        self.assertEqual(second.progress.xp, first.xp)
        self.assertEqual(second.streak, 1)

    def test_consecutive_day_extends_streak(self):
        progress = self._progress(daily_streak=3, last_study_date=TODAY - timedelta(days=1))
        bonus = streak.claim_daily_bonus(progress, NOW, TODAY)

        self.assertEqual(bonus.streak, 4)

    def test_gap_resets_streak(self):
        progress = self._progress(daily_streak=9, last_study_date=TODAY - timedelta(days=2))
        bonus = streak.claim_daily_bonus(progress, NOW, TODAY)

        self.assertEqual(bonus.streak, 1)
        self.assertFalse(bonus.is_milestone)

    def test_seventh_day_pays_milestone_bonus(self):
        progress = self._progress(daily_streak=6, last_study_date=TODAY - timedelta(days=1), lives=3)
        bonus = streak.claim_daily_bonus(progress, NOW, TODAY)

        self.assertTrue(bonus.is_milestone)
        self.assertEqual(bonus.xp_bonus, streak.MILESTONE_XP_BONUS)
        self.assertEqual(bonus.progress.xp, 100)
        self.assertEqual(bonus.progress.lives, 4)
        self.assertEqual(bonus.lives_granted, 1)

    def test_milestone_life_is_capped_at_full_lives(self):
        progress = self._progress(daily_streak=13, last_study_date=date(2024, 3, 10))
        bonus = streak.claim_daily_bonus(progress, NOW, TODAY)

        self.assertEqual(bonus.streak, 14)
        self.assertEqual(bonus.life_bonus, 1)
        self.assertEqual(bonus.lives_granted, 0)
        self.assertEqual(bonus.progress.lives, 5)


if __name__ == "__main__":
    unittest.main()
