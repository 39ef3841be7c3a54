from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from evalify.models.bank import BankAccessLevel
from evalify.models.question import BloomLevel, CourseOutcome, Difficulty, QuestionType


class BankCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    course_code: str | None = Field(default=None, max_length=50)
    semester: int | None = Field(default=None, ge=1, le=12)


class BankUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    course_code: str | None = Field(default=None, max_length=50)
    semester: int | None = Field(default=None, ge=1, le=12)


class BankPublic(BaseModel):
    id: str
    name: str
    course_code: str | None = None
    semester: int | None = None
    created_by_id: str
    access_level: str
    shared_count: int = 0
    question_count: int = 0
    topic_count: int = 0
    created_at: str | None = None


class BanksListResponse(BaseModel):
    items: list[BankPublic]
    total: int


class ShareRequest(BaseModel):
    user_id: str
    # OWNER cannot be granted; ownership stays with the creator.
    access_level: BankAccessLevel = BankAccessLevel.READ


class AccessLevelUpdateRequest(BaseModel):
    access_level: BankAccessLevel


class TopicRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)


class QuestionCreateRequest(BaseModel):
    type: QuestionType
    question: str = Field(min_length=1, max_length=5000)
    marks: float = 1.0
    negative_marks: float = 0.0
    difficulty: Difficulty | None = None
    course_outcome: CourseOutcome | None = None
    bloom_level: BloomLevel | None = None
    question_data: dict[str, Any] | None = None
    solution: dict[str, Any] | None = None
    explanation: str | None = None
    topic_ids: list[str] = Field(default_factory=list)


class QuestionUpdateRequest(BaseModel):
    question: str | None = Field(default=None, min_length=1, max_length=5000)
    marks: float | None = None
    negative_marks: float | None = None
    difficulty: Difficulty | None = None
    course_outcome: CourseOutcome | None = None
    bloom_level: BloomLevel | None = None
    question_data: dict[str, Any] | None = None
    solution: dict[str, Any] | None = None
    explanation: str | None = None
    topic_ids: list[str] | None = None
