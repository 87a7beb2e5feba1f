"""Turn live protocol question events into ``QuestionRecord`` objects.

The protocol does not document which event carries the answer choices, so
every question event goes through :func:`derive_question`, which picks the
richest source available and always returns a record with at least one
answer.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from app.models.schemas import Answer, QuestionRecord
from app.services.game_client import QUESTION_READY
from app.services.quiz_service import choices_to_answers

PLACEHOLDER_ANSWER = "Answers not available yet"

# Upstream field probes, in priority order
INDEX_FIELDS = ("gameBlockIndex", "questionIndex")
TITLE_FIELDS = ("title", "question")
TIME_LEFT_FIELDS = ("timeRemaining", "timeLeft")


@dataclass
class QuestionState:
    """What a relay knows about the quiz so far."""

    stored: dict[int, QuestionRecord] = field(default_factory=dict)
    last_index: Optional[int] = None

    def store(self, records: list[QuestionRecord]) -> None:
        for record in records:
            self.stored[record.questionIndex] = record


@dataclass
class QuestionEvent:
    name: str
    payload: Any


def _first(payload: dict, fields: tuple[str, ...], kind) -> Any:
    for name in fields:
        value = payload.get(name)
        if isinstance(value, kind) and not isinstance(value, bool):
            return value
    return None


def question_index(state: QuestionState, payload: dict) -> int:
    index = _first(payload, INDEX_FIELDS, int)
    if index is not None:
        return index
    return state.last_index if state.last_index is not None else 0


def derive_question(state: QuestionState, event: QuestionEvent) -> QuestionRecord:
    """Pick the best available record for a question event.

    Order: a record fetched from the content API for this index, then the
    event's own choices, then a title-only placeholder, then a generic one.
    """
    payload = event.payload if isinstance(event.payload, dict) else {}
    index = question_index(state, payload)
    time_left = _first(payload, TIME_LEFT_FIELDS, (int, float))
    early = True if event.name == QUESTION_READY else None

    stored = state.stored.get(index)
    if stored is not None and stored.answers:
        return stored.model_copy(update={"timeLeft": time_left, "early": early})

    title = _first(payload, TITLE_FIELDS, str)
    answers = choices_to_answers(payload.get("choices"))
    if answers:
        return QuestionRecord(
            question=title or "Question",
            answers=answers,
            questionIndex=index,
            timeLeft=time_left,
            early=early,
        )

    placeholder = [Answer(text=PLACEHOLDER_ANSWER)]
    if title:
        return QuestionRecord(
            question=title,
            answers=placeholder,
            questionIndex=index,
            timeLeft=time_left,
            early=early,
        )

    return QuestionRecord(
        question=f"Question {index + 1} - data not available",
        answers=placeholder,
        questionIndex=index,
        timeLeft=time_left,
        early=early,
    )
