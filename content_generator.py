"""HTTP client for the external daily-quiz generator.

The generator is an opaque collaborator: it receives a subject, a difficulty
and a question count and answers with either a ``{"questions": [...]}`` JSON
body or an OpenAI-style chat completion whose message content holds that
object (optionally wrapped in a Markdown code fence).
"""

import json
import logging
import os
import time
from typing import Any, List, Optional

import requests
from pydantic import ValidationError

from engines.errors import ExternalServiceUnavailable
from env_validation import get_env_int
from schemas import GeneratedQuiz, QuizQuestion, parse_json_safe

logger = logging.getLogger(__name__)

DEFAULT_QUESTION_COUNT = 5


def _extract_text(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    try:
        return data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        pass
    try:
        return data["choices"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None


class ContentGenerator:
    """Fetch quiz questions from ``CONTENT_GENERATOR_URL``."""

    def __init__(self, url: Optional[str] = None, timeout: Optional[int] = None):
        self.url = url if url is not None else os.getenv("CONTENT_GENERATOR_URL", "")
        self.timeout = timeout if timeout is not None else get_env_int("CONTENT_GENERATOR_TIMEOUT", 30)

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def generate(
        self,
        subject: str,
        difficulty: str,
        count: int = DEFAULT_QUESTION_COUNT,
        language: Optional[str] = None,
    ) -> List[QuizQuestion]:
        if not self.configured:
            raise ExternalServiceUnavailable("no content generator is configured")

        payload = {"subject": subject, "difficulty": difficulty, "count": int(count)}
        if language:
            payload["language"] = language

        start = time.perf_counter()
        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.HTTPError as exc:
            logger.warning("Content generator returned HTTP %s", exc.response.status_code, exc_info=True)
            raise ExternalServiceUnavailable(
                f"content generator HTTP {exc.response.status_code}",
                details={"status": exc.response.status_code, "body": exc.response.text[:300]},
            ) from exc
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Content generator call failed: %s", exc, exc_info=True)
            raise ExternalServiceUnavailable(f"content generator error: {exc}") from exc

        try:
            quiz = self._parse(data)
        except (ValidationError, ValueError) as exc:
            logger.warning("Content generator returned an unusable payload: %s", exc)
            raise ExternalServiceUnavailable("content generator returned an invalid quiz payload") from exc

        logger.info(
            "Generated %d questions for subject=%s difficulty=%s in %dms",
            len(quiz.questions),
            subject,
            difficulty,
            int((time.perf_counter() - start) * 1000),
        )
        return quiz.questions

    @staticmethod
    def _parse(data: Any) -> GeneratedQuiz:
        if isinstance(data, dict) and "questions" in data:
            return GeneratedQuiz.model_validate(data)
        if isinstance(data, list):
            return GeneratedQuiz.model_validate({"questions": data})
        text = _extract_text(data)
        if text is None:
            raise ValueError(f"Unexpected generator response: {json.dumps(data)[:200]}")
        return parse_json_safe(text, GeneratedQuiz)
