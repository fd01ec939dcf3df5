"""Achievement catalog and rule evaluation.

The evaluator is a pure function of a statistics snapshot. It only ever looks
at "is this id already earned", never at counters, so evaluating twice on the
same unpersisted snapshot yields the same answer.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Callable, Iterable, List, Mapping, Optional, Sequence

from schemas import LearnerProgress


@dataclass(frozen=True)
class AchievementStats:
    """Read-only projection of learner state used by the rules."""

    exercise_count: int
    has_chatted: bool
    mastery_level: int
    xp: int
    daily_streak: int
    has_perfect_score: bool
    hour_of_day: int

    @classmethod
    def from_progress(
        cls,
        progress: LearnerProgress,
        now: datetime,
        tz: Optional[tzinfo] = None,
    ) -> "AchievementStats":
        local = now.astimezone(tz) if tz is not None else now
        return cls(
            exercise_count=progress.exercise_count,
            has_chatted=progress.has_chatted,
            mastery_level=progress.mastery_level,
            xp=progress.xp,
            daily_streak=progress.daily_streak,
            has_perfect_score=progress.has_perfect_score,
            hour_of_day=local.hour,
        )


@dataclass(frozen=True)
class Achievement:
    id: str
    title: str
    description: str
    icon: str
    xp_reward: int
    category: str
    predicate: Callable[[AchievementStats], bool]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "icon": self.icon,
            "xp_reward": self.xp_reward,
            "category": self.category,
        }


def _at_least(field: str, threshold: int) -> Callable[[AchievementStats], bool]:
    return lambda stats: getattr(stats, field) >= threshold


def _hour_between(start: int, end: int) -> Callable[[AchievementStats], bool]:
    return lambda stats: start <= stats.hour_of_day < end


CATALOG: Sequence[Achievement] = (
    Achievement("first_chat", "First Conversation", "Started a first conversation with the tutor", "💬", 10, "start",
                lambda stats: stats.has_chatted),
    Achievement("first_exercise", "First Exercise", "Completed a first exercise", "📝", 20, "exercises",
                _at_least("exercise_count", 1)),
    Achievement("exercises_5", "Dedicated Practitioner", "Completed 5 exercises", "🎯", 50, "exercises",
                _at_least("exercise_count", 5)),
    Achievement("exercises_10", "Exercise Master", "Completed 10 exercises", "🏆", 100, "exercises",
                _at_least("exercise_count", 10)),
    Achievement("exercises_25", "Tireless", "Completed 25 exercises", "⭐", 200, "exercises",
                _at_least("exercise_count", 25)),
    Achievement("streak_3", "Consistent", "Kept a 3 day streak", "🔥", 30, "streak",
                _at_least("daily_streak", 3)),
    Achievement("streak_7", "Full Week", "Kept a 7 day streak", "🌟", 70, "streak",
                _at_least("daily_streak", 7)),
    Achievement("streak_14", "Two Strong Weeks", "Kept a 14 day streak", "💪", 150, "streak",
                _at_least("daily_streak", 14)),
    Achievement("streak_30", "Perfect Month", "Kept a 30 day streak", "👑", 300, "streak",
                _at_least("daily_streak", 30)),
    Achievement("ki_20", "Rounded Beginner", "Reached mastery level 20", "🌱", 50, "mastery",
                _at_least("mastery_level", 20)),
    Achievement("ki_50", "Intermediate", "Reached mastery level 50", "🌿", 100, "mastery",
                _at_least("mastery_level", 50)),
    Achievement("ki_80", "Advanced", "Reached mastery level 80", "🌳", 200, "mastery",
                _at_least("mastery_level", 80)),
    Achievement("ki_100", "Supreme Master", "Reached mastery level 100", "🎓", 500, "mastery",
                _at_least("mastery_level", 100)),
    Achievement("xp_100", "First Hundred", "Reached 100 XP", "⚡", 25, "xp",
                _at_least("xp", 100)),
    Achievement("xp_500", "Half a Thousand", "Reached 500 XP", "💫", 50, "xp",
                _at_least("xp", 500)),
    Achievement("xp_1000", "Thousand", "Reached 1000 XP", "🌟", 100, "xp",
                _at_least("xp", 1000)),
    Achievement("perfect_score", "Perfection", "Scored 100 on an exercise", "💯", 75, "special",
                lambda stats: stats.has_perfect_score),
    Achievement("night_owl", "Night Owl", "Studied after midnight", "🦉", 30, "special",
                _hour_between(0, 6)),
    Achievement("early_bird", "Early Bird", "Studied before 7 in the morning", "🐦", 30, "special",
                _hour_between(4, 7)),
)

CATALOG_BY_ID: Mapping[str, Achievement] = {achievement.id: achievement for achievement in CATALOG}


def evaluate(
    stats: AchievementStats,
    already_earned: Iterable[str],
    catalog: Sequence[Achievement] = CATALOG,
) -> List[Achievement]:
    """Return achievements newly satisfied by ``stats``, in catalog order."""

    earned = set(already_earned)
    return [
        achievement
        for achievement in catalog
        if achievement.id not in earned and achievement.predicate(stats)
    ]


def total_xp(achievements: Iterable[Achievement]) -> int:
    return sum(achievement.xp_reward for achievement in achievements)
