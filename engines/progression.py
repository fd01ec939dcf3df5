"""Progression engine facade.

This module owns every mutation of a learner's progression state. Each public
command runs as one read-modify-write transaction over the learner snapshot:

1. load the snapshot and its version from the store,
2. catch up on regeneration (daily credits, lives) before any capacity check,
3. apply the command's pure transition,
4. evaluate achievements and grant their XP in the same transition,
5. compare-and-swap the new snapshot (plus quiz session, wrong answers and an
   audit event) back into the store.

A store conflict retries the whole command against a fresh snapshot, a
bounded number of times. Commands for one learner are serialised in-process
by a per-learner lock; different learners never share state.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import db

from engines import achievements, ad_rewards, daily_quiz, ledger, streak
from engines.achievements import Achievement, AchievementStats
from engines.clock import Clock, SystemClock, today_for
from engines.errors import ConcurrencyConflict, InsufficientResource, InvalidState, NotFound, TransientFailure
from engines.level_curve import level_for
from env_validation import get_env_int
from schemas import MAX_LIVES, DailyQuizSession, LearnerProgress, QuizQuestion, WrongAnswer

_LOGGER = logging.getLogger(__name__)
_REWARD_LOGGER = logging.getLogger("progression.rewards")

EXERCISE_BASE_XP: Dict[str, int] = {"easy": 10, "medium": 20, "hard": 30}
_DIFFICULTY_ALIASES = {
    "easy": "easy",
    "facil": "easy",
    "medium": "medium",
    "medio": "medium",
    "hard": "hard",
    "dificil": "hard",
}
MASTERY_ON_CORRECT = 2
MASTERY_ON_INCORRECT = -1
MICRO_LESSON_CREDITS = 1
MICRO_LESSON_LIVES = 1


def normalize_difficulty(value: str) -> str:
    key = str(value or "").strip().lower()
    try:
        return _DIFFICULTY_ALIASES[key]
    except KeyError:
        raise ValueError(f"Unknown exercise difficulty: {value!r}") from None


@dataclass
class CommandContext:
    learner_id: str
    progress: LearnerProgress
    now: datetime
    today: date


@dataclass
class Change:
    """What a command transition produced, before achievements are applied."""

    progress: LearnerProgress
    details: Dict[str, Any] = field(default_factory=dict)
    quiz_session: Optional[DailyQuizSession] = None
    wrong_answers: Sequence[WrongAnswer] = ()
    persist: bool = True


@dataclass
class CommandResult:
    """Outcome of a facade command."""

    command: str
    progress: LearnerProgress
    details: Dict[str, Any] = field(default_factory=dict)
    unlocked: List[Achievement] = field(default_factory=list)
    achievement_xp: int = 0
    quiz_session: Optional[DailyQuizSession] = None
    version: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "command": self.command,
            **self.details,
            "balances": balances(self.progress),
            "unlocked_achievements": [achievement.to_dict() for achievement in self.unlocked],
            "achievement_xp": self.achievement_xp,
        }
        if self.quiz_session is not None:
            payload["quiz"] = describe_quiz(self.quiz_session)
        return payload


def balances(progress: LearnerProgress) -> Dict[str, Any]:
    return {
        "xp": progress.xp,
        "level": level_for(progress.xp).level,
        "mastery_level": progress.mastery_level,
        "lives": progress.lives,
        "credits": progress.credits,
        "daily_streak": progress.daily_streak,
        "is_premium": progress.is_premium,
    }


def describe_quiz(session: DailyQuizSession, *, reveal_answers: bool = False) -> Dict[str, Any]:
    data = session.model_dump(mode="json")
    if not (reveal_answers or session.is_completed):
        for question in data["questions"]:
            question.pop("correct_answer", None)
            question.pop("explanation", None)
    data["session_id"] = session.session_id
    data["total_questions"] = session.total_questions
    return data


class ProgressionEngine:
    """Single authoritative API over a learner's progression state.

    Parameters
    ----------
    store:
        Persistence backend exposing ``create_learner``, ``load_progress``,
        ``load_quiz_session``, ``save_learner_state`` and
        ``list_wrong_answers``. Defaults to the SQLite ``db`` module.
    clock:
        Source of the current instant; its timezone defines calendar days.
    max_retries:
        How often a command is retried after a store conflict before a
        ``TransientFailure`` is raised.
    """

    def __init__(
        self,
        store: Any = None,
        clock: Optional[Clock] = None,
        max_retries: Optional[int] = None,
        catalog: Sequence[Achievement] = achievements.CATALOG,
    ) -> None:
        if max_retries is None:
            max_retries = get_env_int("STORE_MAX_RETRIES", 3)
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        self.store = store if store is not None else db
        self.clock: Clock = clock if clock is not None else SystemClock(os.getenv("PROGRESS_TIMEZONE"))
        self.max_retries = int(max_retries)
        self.catalog = tuple(catalog)
        # learner_id -> [lock, number of commands holding or waiting on it]
        self._locks: Dict[str, List[Any]] = {}
        self._locks_guard = threading.Lock()

    # ----- public API --------------------------------------------------
    def register_learner(self, learner_id: str, *, is_premium: bool = False) -> CommandResult:
        """Create the learner if needed (idempotent) and return the caught-up snapshot."""

        learner_id = _clean_id(learner_id)
        created = self.store.create_learner(LearnerProgress(learner_id=learner_id, is_premium=is_premium))
        if created:
            _LOGGER.info("Registered learner %s (premium=%s)", learner_id, is_premium)
        result = self.get_snapshot(learner_id)
        result.details["created"] = bool(created)
        return result

    def get_snapshot(self, learner_id: str) -> CommandResult:
        return self._execute(
            learner_id,
            "get_snapshot",
            lambda ctx: Change(ctx.progress, persist=False),
            evaluate_achievements=False,
        )

    def spend_credit(self, learner_id: str) -> CommandResult:
        """Pay for one tutor-chat turn."""

        def transition(ctx: CommandContext) -> Change:
            result = ledger.spend_credit(ctx.progress)
            progress = result.progress
            if not progress.has_chatted:
                progress = progress.model_copy(update={"has_chatted": True})
            return Change(progress, {"credits": progress.credits, "credits_spent": result.amount})

        return self._execute(learner_id, "spend_credit", transition)

    def report_exercise_result(self, learner_id: str, correct: bool, difficulty: str) -> CommandResult:
        level = normalize_difficulty(difficulty)

        def transition(ctx: CommandContext) -> Change:
            progress = ctx.progress
            if not progress.is_premium and progress.lives <= 0:
                raise InsufficientResource("lives", required=1, available=progress.lives)

            base = EXERCISE_BASE_XP[level]
            xp_earned = base if correct else base // 2
            progress = ledger.grant_xp(progress, xp_earned).progress
            mastery = ledger.adjust_mastery(
                progress, MASTERY_ON_CORRECT if correct else MASTERY_ON_INCORRECT
            )
            progress = mastery.progress.model_copy(
                update={
                    "exercise_count": mastery.progress.exercise_count + 1,
                    "has_perfect_score": mastery.progress.has_perfect_score or bool(correct),
                }
            )
            life_lost = False
            if not correct:
                lost = ledger.lose_life(progress, ctx.now)
                progress, life_lost = lost.progress, lost.applied
            return Change(
                progress,
                {
                    "correct": bool(correct),
                    "difficulty": level,
                    "xp_earned": xp_earned,
                    "mastery_delta": mastery.amount,
                    "life_lost": life_lost,
                },
            )

        return self._execute(learner_id, "report_exercise_result", transition)

    def claim_daily_bonus(self, learner_id: str) -> CommandResult:
        def transition(ctx: CommandContext) -> Change:
            bonus = streak.claim_daily_bonus(ctx.progress, ctx.now, ctx.today)
            details = {
                "granted": bonus.granted,
                "streak": bonus.streak,
                "xp_bonus": bonus.xp_bonus,
                "life_bonus": bonus.life_bonus,
                "milestone": bonus.is_milestone,
            }
            if not bonus.granted:
                details["reason"] = "already claimed today"
            return Change(bonus.progress, details, persist=bonus.granted)

        return self._execute(learner_id, "claim_daily_bonus", transition)

    def convert_xp_to_credits(self, learner_id: str) -> CommandResult:
        def transition(ctx: CommandContext) -> Change:
            result = ledger.convert_xp_to_credits(ctx.progress)
            return Change(
                result.progress,
                {"xp_spent": ledger.XP_CONVERSION_COST, "credits_granted": result.amount},
            )

        return self._execute(learner_id, "convert_xp_to_credits", transition)

    def complete_micro_lesson(self, learner_id: str) -> CommandResult:
        def transition(ctx: CommandContext) -> Change:
            lives = ledger.grant_lives(ctx.progress, MICRO_LESSON_LIVES)
            credits = ledger.grant_credits(lives.progress, MICRO_LESSON_CREDITS)
            return Change(
                credits.progress,
                {"lives_granted": lives.amount, "credits_granted": credits.amount},
            )

        return self._execute(learner_id, "complete_micro_lesson", transition)

    def set_premium(self, learner_id: str, is_premium: bool) -> CommandResult:
        def transition(ctx: CommandContext) -> Change:
            progress = ctx.progress.model_copy(update={"is_premium": bool(is_premium)})
            if not is_premium and progress.lives < MAX_LIVES and progress.last_life_lost_at is None:
                progress.last_life_lost_at = ctx.now
            return Change(
                progress,
                {"is_premium": bool(is_premium)},
                persist=ctx.progress.is_premium != bool(is_premium),
            )

        return self._execute(learner_id, "set_premium", transition, evaluate_achievements=False)

    def check_achievements(self, learner_id: str) -> CommandResult:
        return self._execute(learner_id, "check_achievements", lambda ctx: Change(ctx.progress, persist=False))

    def issue_ad_ticket(
        self, learner_id: str, *, rewarded: bool = True, nonce: Optional[str] = None
    ) -> CommandResult:
        """Record a finished rewarded ad as an unclaimed ticket.

        Repeating a report with the same ``nonce`` returns the original ticket.
        """

        def transition(ctx: CommandContext) -> Change:
            if not rewarded:
                raise InvalidState("the ad did not complete with a reward")
            issued = ad_rewards.issue_ticket(ctx.progress, ctx.now, nonce=nonce)
            watched = ad_rewards.tickets_issued_on(issued.progress, ctx.today, self.clock.tz)
            return Change(
                issued.progress,
                {
                    "ticket_id": issued.ticket_id,
                    "duplicate": issued.duplicate,
                    "claimed": issued.progress.ad_tickets[issued.ticket_id].claimed,
                    "ads_watched_today": watched,
                },
                persist=not issued.duplicate,
            )

        return self._execute(learner_id, "issue_ad_ticket", transition, evaluate_achievements=False)

    def claim_ad_ticket(self, learner_id: str, ticket_id: str, reward_kind: str) -> CommandResult:
        def transition(ctx: CommandContext) -> Change:
            claim = ad_rewards.claim_ticket(ctx.progress, ticket_id, reward_kind, ctx.now)
            return Change(
                claim.progress,
                {"ticket_id": ticket_id, "reward_kind": claim.reward_kind.value, "amount": claim.amount},
            )

        return self._execute(learner_id, "claim_ad_ticket", transition)

    def get_quiz_session(self, learner_id: str) -> Optional[DailyQuizSession]:
        """Today's quiz session, or ``None`` when none was started."""

        learner_id = _clean_id(learner_id)
        if self.store.load_progress(learner_id) is None:
            raise NotFound(f"unknown learner {learner_id}", details={"learner_id": learner_id})
        return self.store.load_quiz_session(learner_id, today_for(self.clock))

    def start_quiz(
        self,
        learner_id: str,
        subject: str,
        difficulty: str,
        questions: Sequence[QuizQuestion],
    ) -> CommandResult:
        def transition(ctx: CommandContext) -> Change:
            existing = self.store.load_quiz_session(ctx.learner_id, ctx.today)
            session = daily_quiz.start_session(
                ctx.learner_id, ctx.today, subject, difficulty, questions, existing=existing
            )
            return Change(
                ctx.progress,
                {"session_id": session.session_id, "total_questions": session.total_questions},
                quiz_session=session,
            )

        return self._execute(learner_id, "start_quiz", transition, evaluate_achievements=False)

    def submit_quiz_answer(self, learner_id: str, index: int, answer: Any) -> CommandResult:
        def transition(ctx: CommandContext) -> Change:
            session = self._todays_session(ctx)
            outcome = daily_quiz.submit_answer(session, index, answer)
            return Change(
                ctx.progress,
                {
                    "index": index,
                    "is_correct": outcome.is_correct,
                    "score": outcome.session.score,
                    "answered": len(outcome.session.answers),
                    "total_questions": outcome.session.total_questions,
                },
                quiz_session=outcome.session,
                wrong_answers=[outcome.wrong_answer] if outcome.wrong_answer else (),
            )

        return self._execute(learner_id, "submit_quiz_answer", transition, evaluate_achievements=False)

    def complete_quiz(self, learner_id: str) -> CommandResult:
        def transition(ctx: CommandContext) -> Change:
            session = self._todays_session(ctx)
            reward = daily_quiz.complete(session, ctx.progress, ctx.now)
            progress = reward.progress
            if reward.is_perfect and not progress.has_perfect_score:
                progress = progress.model_copy(update={"has_perfect_score": True})
            return Change(
                progress,
                {
                    "score": reward.session.score,
                    "total_questions": reward.session.total_questions,
                    "xp_reward": reward.xp_reward,
                    "credits_reward": reward.credits_reward,
                    "credits_granted": reward.credits_granted,
                },
                quiz_session=reward.session,
            )

        return self._execute(learner_id, "complete_quiz", transition)

    def list_wrong_answers(self, learner_id: str, limit: int = 20) -> List[WrongAnswer]:
        learner_id = _clean_id(learner_id)
        if self.store.load_progress(learner_id) is None:
            raise NotFound(f"unknown learner {learner_id}", details={"learner_id": learner_id})
        return self.store.list_wrong_answers(learner_id, limit=limit)

    def describe(self, progress: LearnerProgress) -> Dict[str, Any]:
        """Snapshot view with derived fields for display."""

        now = self.clock.now()
        next_life = ledger.next_life_at(progress)
        data = progress.model_dump(mode="json")
        data["level"] = level_for(progress.xp).model_dump()
        data["next_life_at"] = next_life.isoformat() if next_life else None
        data["ads_watched_today"] = ad_rewards.tickets_issued_on(
            progress, today_for(self.clock, now), self.clock.tz
        )
        return data

    # ----- helpers -----------------------------------------------------
    @contextmanager
    def _learner_lock(self, learner_id: str) -> Iterator[None]:
        """Hold the learner's lock; the entry is dropped once nobody uses it."""

        with self._locks_guard:
            entry = self._locks.get(learner_id)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[learner_id] = entry
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[learner_id]

    def _todays_session(self, ctx: CommandContext) -> DailyQuizSession:
        session = self.store.load_quiz_session(ctx.learner_id, ctx.today)
        if session is None:
            raise InvalidState(f"no daily quiz was started on {ctx.today.isoformat()}")
        return session

    def _catch_up(self, progress: LearnerProgress, now: datetime, today: date) -> tuple[LearnerProgress, bool]:
        daily = ledger.apply_daily_regeneration(progress, now, today)
        lives = ledger.regenerate_lives(daily.progress, now)
        return lives.progress, daily.applied or lives.applied

    def _award_achievements(
        self, progress: LearnerProgress, now: datetime
    ) -> tuple[LearnerProgress, List[Achievement], int]:
        stats = AchievementStats.from_progress(progress, now, self.clock.tz)
        unlocked = achievements.evaluate(stats, progress.earned_achievement_ids, self.catalog)
        if not unlocked:
            return progress, [], 0
        xp = achievements.total_xp(unlocked)
        updated = ledger.grant_xp(progress, xp).progress
        updated.earned_achievement_ids.extend(achievement.id for achievement in unlocked)
        return updated, unlocked, xp

    def _execute(
        self,
        learner_id: str,
        command: str,
        transition: Callable[[CommandContext], Change],
        *,
        evaluate_achievements: bool = True,
    ) -> CommandResult:
        learner_id = _clean_id(learner_id)
        with self._learner_lock(learner_id):
            for attempt in range(self.max_retries + 1):
                loaded = self.store.load_progress(learner_id)
                if loaded is None:
                    raise NotFound(f"unknown learner {learner_id}", details={"learner_id": learner_id})
                stored, version = loaded

                now = self.clock.now()
                today = today_for(self.clock, now)
                progress, caught_up = self._catch_up(stored, now, today)

                change = transition(CommandContext(learner_id, progress, now, today))
                progress = change.progress

                unlocked: List[Achievement] = []
                achievement_xp = 0
                if evaluate_achievements:
                    progress, unlocked, achievement_xp = self._award_achievements(progress, now)

                result = CommandResult(
                    command=command,
                    progress=progress,
                    details=dict(change.details),
                    unlocked=unlocked,
                    achievement_xp=achievement_xp,
                    quiz_session=change.quiz_session,
                    version=version,
                )
                if not (change.persist or caught_up or unlocked or change.quiz_session is not None):
                    return result

                events = [(command, self._event_payload(result, caught_up))]
                try:
                    result.version = self.store.save_learner_state(
                        progress,
                        version,
                        quiz_session=change.quiz_session,
                        wrong_answers=change.wrong_answers,
                        events=events,
                    )
                except ConcurrencyConflict:
                    _LOGGER.warning(
                        "Store conflict on %s for learner %s (attempt %d/%d)",
                        command,
                        learner_id,
                        attempt + 1,
                        self.max_retries + 1,
                    )
                    continue

                self._log_rewards(stored, result)
                return result

        _LOGGER.error("Giving up on %s for learner %s after %d attempts", command, learner_id, self.max_retries + 1)
        raise TransientFailure(
            f"{command} could not be applied for learner {learner_id}; please retry",
            details={"learner_id": learner_id, "attempts": self.max_retries + 1},
        )

    @staticmethod
    def _event_payload(result: CommandResult, caught_up: bool) -> Dict[str, Any]:
        payload = dict(result.details)
        payload["caught_up"] = caught_up
        if result.unlocked:
            payload["unlocked"] = [achievement.id for achievement in result.unlocked]
            payload["achievement_xp"] = result.achievement_xp
        return payload

    @staticmethod
    def _log_rewards(before: LearnerProgress, result: CommandResult) -> None:
        after = result.progress
        deltas = {
            "xp": after.xp - before.xp,
            "credits": after.credits - before.credits,
            "lives": after.lives - before.lives,
            "mastery_level": after.mastery_level - before.mastery_level,
        }
        if not any(deltas.values()) and not result.unlocked:
            return
        record = {
            "learner_id": after.learner_id,
            "command": result.command,
            "deltas": deltas,
            "unlocked": [achievement.id for achievement in result.unlocked],
            "version": result.version,
        }
        _REWARD_LOGGER.info(json.dumps(record, ensure_ascii=False))


def _clean_id(learner_id: str) -> str:
    cleaned = str(learner_id or "").strip()
    if not cleaned:
        raise ValueError("learner_id must not be empty")
    return cleaned
