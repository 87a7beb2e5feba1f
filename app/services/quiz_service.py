"""Quiz content fetcher.

Pulls a quiz definition from the public content API and reshapes it into
``QuestionRecord`` objects. No caching and no retries: callers decide what to
do with an ``UpstreamError``.
"""

import logging
from typing import Any, Optional

import httpx

from app.config import Settings, get_settings
from app.core.errors import UpstreamError
from app.models.schemas import Answer, QuestionRecord, QuizResponse

logger = logging.getLogger(__name__)


def choices_to_answers(choices: Any) -> list[Answer]:
    """Map upstream ``choices`` to answers, keeping ``correct`` only where present."""
    if not isinstance(choices, list):
        return []
    answers = []
    for choice in choices:
        if not isinstance(choice, dict):
            continue
        correct = choice.get("correct")
        answers.append(Answer(
            text=str(choice.get("answer") or ""),
            correct=correct if isinstance(correct, bool) else None,
        ))
    return answers


def whole_number(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def normalize_quiz(payload: Any) -> QuizResponse:
    if not isinstance(payload, dict):
        raise UpstreamError("Quiz payload is not an object")

    raw_questions = payload.get("questions")
    if raw_questions is None:
        return QuizResponse(questions=[])
    if not isinstance(raw_questions, list):
        raise UpstreamError("Quiz payload has no question list")

    questions = []
    for index, raw in enumerate(raw_questions):
        raw = raw if isinstance(raw, dict) else {}
        time_limit = raw.get("time")
        questions.append(QuestionRecord(
            question=str(raw.get("question") or ""),
            answers=choices_to_answers(raw.get("choices")),
            questionIndex=index,
            time=whole_number(time_limit),
        ))
    return QuizResponse(questions=questions)


async def fetch_quiz(
    quiz_id: str,
    *,
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> QuizResponse:
    settings = settings or get_settings()
    url = f"{settings.quiz_api_url.rstrip('/')}/{quiz_id}"

    try:
        async with httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            headers=settings.quiz_headers,
            transport=transport,
        ) as http:
            resp = await http.get(url)
    except httpx.HTTPError as e:
        logger.warning("Quiz fetch for %s failed: %s", quiz_id, e)
        raise UpstreamError("Failed to fetch quiz data") from e

    if not resp.is_success:
        logger.warning("Quiz fetch for %s returned HTTP %d", quiz_id, resp.status_code)
        raise UpstreamError(f"Failed to fetch quiz: {resp.status_code}")

    try:
        payload = resp.json()
    except ValueError as e:
        raise UpstreamError("Quiz payload is not valid JSON") from e

    quiz = normalize_quiz(payload)
    logger.info("Fetched quiz %s with %d questions", quiz_id, len(quiz.questions))
    return quiz
