from typing import Any, Optional

from pydantic import BaseModel


class JoinRequest(BaseModel):
    # Both optional so missing fields map to our own 400 messages rather than a 422
    pin: Optional[str] = None
    name: Optional[str] = None


class JoinResponse(BaseModel):
    message: str
    pin: str


class Answer(BaseModel):
    text: str
    correct: Optional[bool] = None


class QuestionRecord(BaseModel):
    question: str
    answers: list[Answer]
    questionIndex: int
    timeLeft: Optional[float] = None
    time: Optional[int] = None
    early: Optional[bool] = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class QuizResponse(BaseModel):
    questions: list[QuestionRecord]

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class HealthResponse(BaseModel):
    status: str
    active_sessions: int
