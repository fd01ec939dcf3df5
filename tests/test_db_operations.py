"""Test cases for the progress store."""

from datetime import date

import pytest

import db
from engines.errors import ConcurrencyConflict
from schemas import DailyQuizSession, LearnerProgress, QuizQuestion, WrongAnswer


def _session(**overrides) -> DailyQuizSession:
    data = dict(
        learner_id="alice",
        quiz_date=date(2024, 3, 11),
        subject="math",
        difficulty="easy",
        questions=[QuizQuestion(question="1 + 1?", options=["1", "2"], correct_answer=1)],
    )
    data.update(overrides)
    return DailyQuizSession(**data)


def test_create_learner_only_once(temp_db):
    assert db.create_learner(LearnerProgress(learner_id="alice", xp=5))
    assert not db.create_learner(LearnerProgress(learner_id="alice", xp=99))

    progress, version = db.load_progress("alice")
    assert progress.xp == 5
    assert version == 1


def test_load_unknown_learner_returns_none(temp_db):
    assert db.load_progress("nobody") is None


def test_save_bumps_version_and_rejects_stale_writes(temp_db):
    db.create_learner(LearnerProgress(learner_id="alice"))
    progress, version = db.load_progress("alice")

    new_version = db.save_learner_state(progress.model_copy(update={"xp": 10}), version)
    assert new_version == version + 1

    with pytest.raises(ConcurrencyConflict):
        db.save_learner_state(progress.model_copy(update={"xp": 999}), version)

    stored, stored_version = db.load_progress("alice")
    assert stored.xp == 10
    assert stored_version == new_version


def test_conflicting_save_writes_no_side_records(temp_db):
    db.create_learner(LearnerProgress(learner_id="alice"))
    progress, version = db.load_progress("alice")
    db.save_learner_state(progress, version)

    with pytest.raises(ConcurrencyConflict):
        db.save_learner_state(
            progress,
            version,
            quiz_session=_session(),
            events=[("start_quiz", {"session_id": "alice:2024-03-11"})],
        )

    assert db.load_quiz_session("alice", date(2024, 3, 11)) is None
    assert db.list_progress_events("alice") == []


def test_quiz_session_is_upserted(temp_db):
    db.create_learner(LearnerProgress(learner_id="alice"))
    progress, version = db.load_progress("alice")
    version = db.save_learner_state(progress, version, quiz_session=_session())
    db.save_learner_state(progress, version, quiz_session=_session(answers={0: 1}, score=1))

    stored = db.load_quiz_session("alice", date(2024, 3, 11))
    assert stored.answers == {0: 1}
    assert stored.score == 1
    assert db.load_quiz_session("alice", date(2024, 3, 12)) is None


def test_wrong_answers_and_events_are_listed_newest_first(temp_db):
    db.create_learner(LearnerProgress(learner_id="alice"))
    progress, version = db.load_progress("alice")
    wrong = WrongAnswer(
        learner_id="alice",
        question="1 + 1?",
        options=["1", "2"],
        correct_answer=1,
        user_answer=0,
        subject="math",
        topic="math",
        difficulty="easy",
    )
    version = db.save_learner_state(progress, version, wrong_answers=[wrong], events=[("first", {"n": 1})])
    db.save_learner_state(progress, version, events=[("second", {"n": 2})])

    answers = db.list_wrong_answers("alice")
    assert len(answers) == 1
    assert answers[0].options == ["1", "2"]
    assert answers[0].user_answer == 0

    events = db.list_progress_events("alice")
    assert [event["command"] for event in events] == ["second", "first"]
    assert events[0]["payload"] == {"n": 2}
    assert events[0]["version"] == 3
