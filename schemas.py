"""Pydantic schemas for learner progression state and helper utilities."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Set, Type, TypeVar, Union

from pydantic import AliasChoices, BaseModel, Field, ValidationError, ValidationInfo, field_validator

__all__ = [
    "MAX_LIVES",
    "MAX_CREDITS",
    "MAX_MASTERY",
    "AdTicket",
    "LearnerProgress",
    "QuizQuestion",
    "DailyQuizSession",
    "LevelInfo",
    "WrongAnswer",
    "GeneratedQuiz",
    "parse_json_safe",
]

MAX_LIVES = 5
MAX_CREDITS = 50
MAX_MASTERY = 100

QuizAnswer = Union[bool, int, str]


class AdTicket(BaseModel):
    issued_at: datetime
    claimed: bool = False
    claimed_at: Optional[datetime] = None
    reward_kind: Optional[str] = None
    nonce: Optional[str] = None


class LearnerProgress(BaseModel):
    """Root aggregate holding every resource counter of one learner."""

    learner_id: str
    xp: int = Field(default=0, ge=0)
    mastery_level: int = Field(
        default=0,
        ge=0,
        le=MAX_MASTERY,
        description="KI skill indicator, adjusted by exercise outcomes independently of XP.",
    )
    lives: int = Field(default=MAX_LIVES, ge=0, le=MAX_LIVES)
    last_life_lost_at: Optional[datetime] = None
    credits: int = Field(default=0, ge=0, le=MAX_CREDITS)
    credits_used_this_month: int = Field(default=0, ge=0)
    credits_received_today: int = Field(default=0, ge=0)
    last_credits_reset_date: Optional[date] = None
    last_daily_credit_date: Optional[date] = None
    is_premium: bool = False
    daily_streak: int = Field(default=0, ge=0)
    last_study_date: Optional[date] = None
    earned_achievement_ids: List[str] = Field(
        default_factory=list,
        description="Append-only, in the order achievements were granted.",
    )
    ad_tickets: Dict[str, AdTicket] = Field(default_factory=dict)
    exercise_count: int = Field(default=0, ge=0)
    has_chatted: bool = False
    has_perfect_score: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def earned_set(self) -> Set[str]:
        return set(self.earned_achievement_ids)


class QuizQuestion(BaseModel):
    """One externally generated quiz question.

    The comparison rule depends on ``type``: multiple choice compares the
    option index, true/false compares booleans and fill-in-the-blank compares
    trimmed strings case-insensitively.
    """

    id: Optional[str] = None
    type: Literal["multiple_choice", "true_false", "fill_blank"] = "multiple_choice"
    question: str
    options: List[str] = Field(default_factory=list)
    correct_answer: QuizAnswer = Field(
        validation_alias=AliasChoices("correct_answer", "correctAnswer"),
    )
    explanation: str = ""

    @field_validator("correct_answer")
    @classmethod
    def _check_answer_shape(cls, value: Any, info: ValidationInfo) -> Any:
        kind = info.data.get("type", "multiple_choice")
        if kind == "multiple_choice" and (isinstance(value, bool) or not isinstance(value, int)):
            raise ValueError("multiple_choice questions need an integer option index")
        if kind == "true_false" and not isinstance(value, bool):
            raise ValueError("true_false questions need a boolean answer")
        if kind == "fill_blank" and not isinstance(value, str):
            raise ValueError("fill_blank questions need a string answer")
        return value

    def is_correct(self, answer: Any) -> bool:
        if self.type == "multiple_choice":
            if isinstance(answer, bool):
                return False
            try:
                return int(answer) == self.correct_answer
            except (TypeError, ValueError):
                return False
        if self.type == "true_false":
            if isinstance(answer, str):
                lowered = answer.strip().lower()
                if lowered not in {"true", "false"}:
                    return False
                answer = lowered == "true"
            return isinstance(answer, bool) and answer is self.correct_answer
        return str(answer).strip().casefold() == str(self.correct_answer).strip().casefold()


class DailyQuizSession(BaseModel):
    learner_id: str
    quiz_date: date
    subject: str
    difficulty: str
    questions: List[QuizQuestion]
    answers: Dict[int, QuizAnswer] = Field(default_factory=dict)
    score: int = Field(default=0, ge=0)
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    xp_reward: int = 0
    credits_reward: int = 0

    @property
    def session_id(self) -> str:
        return f"{self.learner_id}:{self.quiz_date.isoformat()}"

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def all_answered(self) -> bool:
        return all(index in self.answers for index in range(self.total_questions))


class LevelInfo(BaseModel):
    level: int
    current_xp: int
    xp_for_current_level: int
    xp_for_next_level: int
    progress_percent: int
    xp_needed: int
    is_max_level: bool
    title: str


class WrongAnswer(BaseModel):
    learner_id: str
    question: str
    options: List[str] = Field(default_factory=list)
    correct_answer: QuizAnswer
    user_answer: QuizAnswer
    subject: str
    topic: str
    difficulty: str
    explanation: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class GeneratedQuiz(BaseModel):
    """Payload returned by the external quiz generator."""

    questions: List[QuizQuestion] = Field(min_length=1)


_T = TypeVar("_T", bound=BaseModel)


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def _find_first_json_object(text: str) -> tuple[str, int, int]:
    start = text.find("{")
    while start != -1:
        depth = 0
        for idx in range(start, len(text)):
            char = text[idx]
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    candidate = text[start : idx + 1]
                    try:
                        json.loads(candidate)
                    except Exception:
                        break
                    return candidate, start, idx + 1
        start = text.find("{", start + 1)
    raise ValueError("No JSON object found in provided text")


def parse_json_safe(text: str, model: Type[_T]) -> _T:
    """Parse ``text`` into ``model`` with a fallback JSON extraction pass.

    A surrounding Markdown code fence is tolerated; any other trailing
    content after the first JSON object is rejected.
    """

    cleaned = _strip_code_fence(text)
    first_error: Exception | None = None
    try:
        return model.model_validate_json(cleaned)
    except (ValidationError, ValueError, TypeError) as exc:
        first_error = exc

    try:
        snippet, _, end = _find_first_json_object(cleaned)
    except ValueError:
        if first_error:
            raise first_error
        raise

    if cleaned[end:].strip():
        if isinstance(first_error, ValidationError):
            raise first_error
        raise ValueError("Trailing content detected after JSON object")

    return model.model_validate_json(snippet)
