from dataclasses import replace
from datetime import datetime, timezone

from engines import achievements
from engines.achievements import CATALOG, CATALOG_BY_ID, AchievementStats
from schemas import LearnerProgress


def _stats(**overrides) -> AchievementStats:
    base = AchievementStats(
        exercise_count=0,
        has_chatted=False,
        mastery_level=0,
        xp=0,
        daily_streak=0,
        has_perfect_score=False,
        hour_of_day=12,
    )
    return replace(base, **overrides)


def test_catalog_ids_are_unique():
    ids = [achievement.id for achievement in CATALOG]
    assert len(ids) == len(set(ids)) == 19
    assert set(CATALOG_BY_ID) == set(ids)


def test_nothing_unlocked_for_fresh_learner():
    assert achievements.evaluate(_stats(), []) == []


def test_unlocks_are_returned_in_catalog_order():
    unlocked = achievements.evaluate(_stats(exercise_count=10, has_chatted=True), [])
    assert [a.id for a in unlocked] == ["first_chat", "first_exercise", "exercises_5", "exercises_10"]
    assert achievements.total_xp(unlocked) == 10 + 20 + 50 + 100


def test_already_earned_achievements_are_skipped():
    unlocked = achievements.evaluate(_stats(exercise_count=6), ["first_exercise"])
    assert [a.id for a in unlocked] == ["exercises_5"]


def test_evaluation_is_idempotent_on_same_snapshot():
    stats = _stats(daily_streak=7, xp=600, mastery_level=55)
    first = achievements.evaluate(stats, [])
    second = achievements.evaluate(stats, [])
    assert first == second
    assert achievements.evaluate(stats, [a.id for a in first]) == []


def test_time_of_day_rules():
    night = {a.id for a in achievements.evaluate(_stats(hour_of_day=2), [])}
    early = {a.id for a in achievements.evaluate(_stats(hour_of_day=5), [])}
    noon = {a.id for a in achievements.evaluate(_stats(hour_of_day=12), [])}

    assert night == {"night_owl"}
    assert early == {"night_owl", "early_bird"}
    assert noon == set()


def test_stats_use_local_hour():
    from zoneinfo import ZoneInfo

    progress = LearnerProgress(learner_id="alice", exercise_count=3)
    now = datetime(2024, 3, 11, 22, 30, tzinfo=timezone.utc)
    stats = AchievementStats.from_progress(progress, now, ZoneInfo("Europe/Berlin"))

    assert stats.hour_of_day == 23
    assert stats.exercise_count == 3


def test_achievement_serialises_without_predicate():
    data = CATALOG_BY_ID["perfect_score"].to_dict()
    assert data["xp_reward"] == 75
    assert "predicate" not in data
