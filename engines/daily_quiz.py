"""Daily quiz session lifecycle.

A learner has at most one session per calendar day. It moves from
in-progress to completed exactly once; a completed session is never changed
again. Question content comes from an external generator and is treated as
opaque apart from each question's own answer comparison.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional, Sequence

from engines import ledger
from engines.errors import AlreadyExists, InvalidState, OutOfRange
from schemas import DailyQuizSession, LearnerProgress, QuizQuestion, WrongAnswer

BASE_XP_REWARD = 50
XP_PER_CORRECT = 10
PERFECT_CREDITS_REWARD = 1


@dataclass
class AnswerOutcome:
    session: DailyQuizSession
    is_correct: bool
    wrong_answer: Optional[WrongAnswer] = None


@dataclass
class QuizReward:
    session: DailyQuizSession
    progress: LearnerProgress
    xp_reward: int
    credits_reward: int
    credits_granted: int

    @property
    def is_perfect(self) -> bool:
        return self.session.score == self.session.total_questions


def start_session(
    learner_id: str,
    today: date,
    subject: str,
    difficulty: str,
    questions: Sequence[QuizQuestion],
    existing: Optional[DailyQuizSession] = None,
) -> DailyQuizSession:
    if existing is not None and existing.quiz_date == today:
        raise AlreadyExists(
            f"a daily quiz for {today.isoformat()} already exists",
            details={"session_id": existing.session_id},
        )
    if not questions:
        raise InvalidState("a daily quiz needs at least one question")
    return DailyQuizSession(
        learner_id=learner_id,
        quiz_date=today,
        subject=subject,
        difficulty=difficulty,
        questions=list(questions),
    )


def submit_answer(session: DailyQuizSession, index: int, answer: Any) -> AnswerOutcome:
    """Record the answer to question ``index`` and score it.

    Incorrect multiple-choice answers come back as a ``WrongAnswer`` so the
    caller can keep them for spaced review.
    """

    if session.is_completed:
        raise InvalidState("the daily quiz is already completed")
    if not 0 <= index < session.total_questions:
        raise OutOfRange(
            f"question index {index} is outside 0..{session.total_questions - 1}",
            details={"index": index, "total_questions": session.total_questions},
        )
    if index in session.answers:
        raise InvalidState(f"question {index} was already answered", details={"index": index})

    question = session.questions[index]
    is_correct = question.is_correct(answer)

    updated = session.model_copy(deep=True)
    updated.answers[index] = answer
    if is_correct:
        updated.score += 1

    wrong = None
    if not is_correct and question.type == "multiple_choice":
        wrong = WrongAnswer(
            learner_id=session.learner_id,
            question=question.question,
            options=list(question.options),
            correct_answer=question.correct_answer,
            user_answer=answer,
            subject=session.subject,
            topic=session.subject,
            difficulty=session.difficulty,
            explanation=question.explanation,
        )
    return AnswerOutcome(updated, is_correct, wrong)


def compute_rewards(session: DailyQuizSession) -> tuple[int, int]:
    xp_reward = BASE_XP_REWARD + XP_PER_CORRECT * session.score
    credits_reward = PERFECT_CREDITS_REWARD if session.score == session.total_questions else 0
    return xp_reward, credits_reward


def complete(
    session: DailyQuizSession,
    progress: LearnerProgress,
    now: Optional[datetime] = None,
) -> QuizReward:
    if session.is_completed:
        raise InvalidState("the daily quiz is already completed")
    if not session.all_answered:
        missing = [idx for idx in range(session.total_questions) if idx not in session.answers]
        raise InvalidState(
            "every question must be answered before completing the quiz",
            details={"unanswered": missing},
        )

    xp_reward, credits_reward = compute_rewards(session)
    updated_progress = ledger.grant_xp(progress, xp_reward).progress
    credits = ledger.grant_credits(updated_progress, credits_reward)

    finished = session.model_copy(deep=True)
    finished.is_completed = True
    finished.completed_at = now
    finished.xp_reward = xp_reward
    finished.credits_reward = credits_reward
    return QuizReward(finished, credits.progress, xp_reward, credits_reward, credits.amount)
