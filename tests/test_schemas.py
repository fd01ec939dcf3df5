import json

import pytest
from pydantic import ValidationError

from schemas import DailyQuizSession, GeneratedQuiz, LearnerProgress, QuizQuestion, parse_json_safe


def _sample_payload() -> dict[str, object]:
    return {
        "questions": [
            {
                "question": "Which number is prime?",
                "options": ["4", "6", "7"],
                "correctAnswer": 2,
                "explanation": "7 has no divisors besides 1 and itself.",
            },
            {"type": "true_false", "question": "0 is even.", "correct_answer": True},
        ]
    }


def test_parse_json_safe_rejects_trailing_payload():
    noisy_text = (
        "The generator responded as follows:\n"
        "```json\n"
        f"{json.dumps(_sample_payload())}\n"
        "```\nThanks."
    )

    with pytest.raises(ValidationError):
        parse_json_safe(noisy_text, GeneratedQuiz)


def test_parse_json_safe_accepts_clean_json():
    result = parse_json_safe(json.dumps(_sample_payload()), GeneratedQuiz)

    assert len(result.questions) == 2
    assert result.questions[0].correct_answer == 2
    assert result.questions[1].type == "true_false"


def test_parse_json_safe_accepts_code_fence():
    fenced = f"```json\n{json.dumps(_sample_payload())}\n```"

    result = parse_json_safe(fenced, GeneratedQuiz)

    assert result.questions[0].options == ["4", "6", "7"]


def test_generated_quiz_needs_questions():
    with pytest.raises(ValidationError):
        GeneratedQuiz.model_validate({"questions": []})


@pytest.mark.parametrize(
    "payload",
    [
        {"question": "q", "options": ["a"], "correct_answer": "a"},
        {"type": "true_false", "question": "q", "correct_answer": 1},
        {"type": "fill_blank", "question": "q", "correct_answer": 3},
    ],
)
def test_question_answer_must_match_type(payload):
    with pytest.raises(ValidationError):
        QuizQuestion.model_validate(payload)


def test_true_false_accepts_string_answers():
    question = QuizQuestion(type="true_false", question="q", correct_answer=False)

    assert question.is_correct("False")
    assert not question.is_correct("maybe")
    assert not question.is_correct(0)


def test_multiple_choice_rejects_boolean_answer():
    question = QuizQuestion(question="q", options=["a", "b"], correct_answer=1)

    assert question.is_correct("1")
    assert not question.is_correct(True)


def test_progress_defaults_and_bounds():
    progress = LearnerProgress(learner_id="alice")

    assert progress.lives == 5
    assert progress.credits == 0
    assert progress.earned_set() == set()
    with pytest.raises(ValidationError):
        LearnerProgress(learner_id="alice", credits=51)
    with pytest.raises(ValidationError):
        LearnerProgress(learner_id="alice", lives=-1)


def test_quiz_session_survives_json_round_trip():
    session = DailyQuizSession(
        learner_id="alice",
        quiz_date="2024-03-11",
        subject="math",
        difficulty="easy",
        questions=[QuizQuestion(question="q", options=["a", "b"], correct_answer=0)],
        answers={0: 1},
    )

    restored = DailyQuizSession.model_validate_json(session.model_dump_json())

    assert restored.answers == {0: 1}
    assert restored.session_id == "alice:2024-03-11"
