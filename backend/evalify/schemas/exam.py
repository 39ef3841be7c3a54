from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class StartQuizRequest(BaseModel):
    password: str | None = None


class SaveAnswersRequest(BaseModel):
    # {question_id: {"studentAnswer": ...}}
    answers: dict[str, dict[str, Any]] = Field(min_length=1)


class ResponseState(BaseModel):
    quiz_id: str
    start_time: str
    end_time: str
    submission_time: str | None = None
    submission_status: str
    evaluation_status: str
    remaining_seconds: int
    violations: int = 0
    response: dict[str, Any] = Field(default_factory=dict)
