# app.py — Progression & Rewards API
# - One authoritative ProgressionEngine behind every route
# - Typed progression errors mapped to HTTP status codes
# - Quiz generation and ad callbacks as external collaborators

import logging
import threading
from contextlib import asynccontextmanager
from typing import Any, Callable, List, Literal, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

import ad_verification
import db
from content_generator import DEFAULT_QUESTION_COUNT, ContentGenerator
from engines.errors import AlreadyExists, OutOfRange, ProgressionError
from engines.level_curve import level_for
from engines.progression import CommandResult, ProgressionEngine, describe_quiz
from env_validation import get_env_bool
from schemas import QuizAnswer, QuizQuestion

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        # Validate environment variables first
        from env_validation import validate_environment
        validate_environment()

        db.init()
        engine = _engine()
        logger.info(
            "Progression engine ready (timezone=%s, max_retries=%d)",
            engine.clock.tz,
            engine.max_retries,
        )
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Progression & Rewards Engine", version="1.0.0", lifespan=_lifespan)

# Built on first use so PROGRESS_TIMEZONE is read after validate_environment().
ENGINE: Optional[ProgressionEngine] = None
_ENGINE_LOCK = threading.Lock()


def _engine() -> ProgressionEngine:
    global ENGINE
    with _ENGINE_LOCK:
        if ENGINE is None:
            ENGINE = ProgressionEngine()
        return ENGINE


_REWARD_LOGGER = logging.getLogger("progression.rewards")
if get_env_bool("REWARD_LOG_STDOUT", True) and not _REWARD_LOGGER.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _REWARD_LOGGER.addHandler(_handler)
_REWARD_LOGGER.setLevel(logging.INFO)
_REWARD_LOGGER.propagate = False


def _generator() -> ContentGenerator:
    return ContentGenerator()


def _run(command: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    try:
        return command(*args, **kwargs)
    except ProgressionError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_dict()) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _result(result: CommandResult) -> dict:
    return result.to_dict()


# ---------- Request bodies ----------
class RegisterLearnerBody(BaseModel):
    is_premium: bool = False


class ExerciseResultBody(BaseModel):
    correct: bool
    difficulty: Literal["easy", "medium", "hard", "facil", "medio", "dificil"] = "medium"


class PremiumBody(BaseModel):
    is_premium: bool


class AdCompletionBody(BaseModel):
    rewarded: bool = True
    nonce: Optional[str] = None
    signature: Optional[str] = None


class AdClaimBody(BaseModel):
    reward_kind: Literal["credits", "life", "xp"]


class StartQuizBody(BaseModel):
    subject: str
    difficulty: str = "medium"
    questions: List[QuizQuestion] = Field(min_length=1)


class GenerateQuizBody(BaseModel):
    subject: str
    difficulty: str = "medium"
    count: int = Field(default=DEFAULT_QUESTION_COUNT, ge=1, le=20)
    language: Optional[str] = None


class QuizAnswerBody(BaseModel):
    index: int
    answer: QuizAnswer


# ---------- Learners ----------
@app.post("/learners/{learner_id}")
def register_learner(learner_id: str, body: Optional[RegisterLearnerBody] = None):
    body = body or RegisterLearnerBody()
    result = _run(_engine().register_learner, learner_id, is_premium=body.is_premium)
    return {"created": result.details.get("created", False), "progress": _engine().describe(result.progress)}


@app.get("/learners/{learner_id}")
def get_snapshot(learner_id: str):
    result = _run(_engine().get_snapshot, learner_id)
    return _engine().describe(result.progress)


@app.post("/learners/{learner_id}/credits/spend")
def spend_credit(learner_id: str):
    return _result(_run(_engine().spend_credit, learner_id))


@app.post("/learners/{learner_id}/exercises")
def report_exercise_result(learner_id: str, body: ExerciseResultBody):
    return _result(_run(_engine().report_exercise_result, learner_id, body.correct, body.difficulty))


@app.post("/learners/{learner_id}/daily-bonus")
def claim_daily_bonus(learner_id: str):
    return _result(_run(_engine().claim_daily_bonus, learner_id))


@app.post("/learners/{learner_id}/convert-xp")
def convert_xp_to_credits(learner_id: str):
    return _result(_run(_engine().convert_xp_to_credits, learner_id))


@app.post("/learners/{learner_id}/micro-lessons")
def complete_micro_lesson(learner_id: str):
    return _result(_run(_engine().complete_micro_lesson, learner_id))


@app.post("/learners/{learner_id}/premium")
def set_premium(learner_id: str, body: PremiumBody):
    return _result(_run(_engine().set_premium, learner_id, body.is_premium))


@app.post("/learners/{learner_id}/achievements/check")
def check_achievements(learner_id: str):
    return _result(_run(_engine().check_achievements, learner_id))


# ---------- Rewarded ads ----------
@app.post("/learners/{learner_id}/ads/tickets")
def issue_ad_ticket(learner_id: str, body: Optional[AdCompletionBody] = None):
    body = body or AdCompletionBody()
    try:
        ad_verification.verify(learner_id, body.nonce, body.signature)
    except ad_verification.AdSignatureError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    return _result(_run(_engine().issue_ad_ticket, learner_id, rewarded=body.rewarded, nonce=body.nonce))


@app.post("/learners/{learner_id}/ads/tickets/{ticket_id}/claim")
def claim_ad_ticket(learner_id: str, ticket_id: str, body: AdClaimBody):
    return _result(_run(_engine().claim_ad_ticket, learner_id, ticket_id, body.reward_kind))


# ---------- Daily quiz ----------
@app.get("/learners/{learner_id}/quiz")
def get_quiz(learner_id: str):
    session = _run(_engine().get_quiz_session, learner_id)
    if session is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "detail": "no daily quiz today"})
    return describe_quiz(session)


@app.post("/learners/{learner_id}/quiz")
def start_quiz(learner_id: str, body: StartQuizBody):
    return _result(_run(_engine().start_quiz, learner_id, body.subject, body.difficulty, body.questions))


@app.post("/learners/{learner_id}/quiz/generate")
def generate_quiz(learner_id: str, body: GenerateQuizBody):
    existing = _run(_engine().get_quiz_session, learner_id)
    if existing is not None:
        exc = AlreadyExists(
            "a daily quiz for today already exists",
            details={"session_id": existing.session_id},
        )
        raise HTTPException(status_code=exc.status_code, detail=exc.to_dict())

    questions = _run(_generator().generate, body.subject, body.difficulty, body.count, body.language)
    return _result(_run(_engine().start_quiz, learner_id, body.subject, body.difficulty, questions))


@app.post("/learners/{learner_id}/quiz/answers")
def submit_quiz_answer(learner_id: str, body: QuizAnswerBody):
    return _result(_run(_engine().submit_quiz_answer, learner_id, body.index, body.answer))


@app.post("/learners/{learner_id}/quiz/complete")
def complete_quiz(learner_id: str):
    return _result(_run(_engine().complete_quiz, learner_id))


@app.get("/learners/{learner_id}/wrong-answers")
def list_wrong_answers(learner_id: str, limit: int = 20):
    if limit < 1 or limit > 200:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 200")
    answers = _run(_engine().list_wrong_answers, learner_id, limit)
    return {"learner_id": learner_id, "items": [answer.model_dump(mode="json") for answer in answers]}


# ---------- Levels ----------
@app.get("/levels/{xp}")
def get_level(xp: int):
    if xp < 0:
        exc = OutOfRange("xp must be >= 0", details={"xp": xp})
        raise HTTPException(status_code=exc.status_code, detail=exc.to_dict())
    return level_for(xp).model_dump()
