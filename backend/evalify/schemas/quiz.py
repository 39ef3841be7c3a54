from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from evalify.schemas.bank import QuestionCreateRequest


class EvaluationSettingsPayload(BaseModel):
    mcq_global_partial_marking: bool = False
    mcq_global_negative_mark: float | None = Field(default=None, ge=0)
    mcq_global_negative_percent: float | None = Field(default=None, ge=0, le=100)
    coding_global_partial_marking: bool = False
    llm_evaluation_enabled: bool = False
    llm_provider: str | None = None
    llm_model_name: str | None = None
    fitb_llm_system_prompt: str | None = None
    desc_llm_system_prompt: str | None = None


class QuizFlags(BaseModel):
    full_screen: bool = False
    shuffle_questions: bool = False
    shuffle_options: bool = False
    linear_quiz: bool = False
    calculator: bool = False
    auto_submit: bool = False
    publish_result: bool = False
    kiosk_mode: bool = False


class QuizCreateRequest(QuizFlags):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    instructions: str | None = None
    start_time: datetime
    end_time: datetime
    duration_minutes: int = Field(gt=0)
    password: str | None = Field(default=None, max_length=100)

    course_ids: list[str] = Field(min_length=1)
    student_ids: list[str] = Field(default_factory=list)
    lab_ids: list[str] = Field(default_factory=list)
    batch_ids: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    evaluation_settings: EvaluationSettingsPayload | None = None


class QuizUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    instructions: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration_minutes: int | None = Field(default=None, gt=0)
    password: str | None = Field(default=None, max_length=100)

    full_screen: bool | None = None
    shuffle_questions: bool | None = None
    shuffle_options: bool | None = None
    linear_quiz: bool | None = None
    calculator: bool | None = None
    auto_submit: bool | None = None
    publish_result: bool | None = None
    kiosk_mode: bool | None = None

    course_ids: list[str] | None = None
    student_ids: list[str] | None = None
    lab_ids: list[str] | None = None
    batch_ids: list[str] | None = None
    tags: list[str] | None = None


class PublishRequest(BaseModel):
    publish: bool = True


class SectionCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)


class OrderItem(BaseModel):
    id: str
    order_index: int = Field(ge=0)


class ReorderRequest(BaseModel):
    items: list[OrderItem] = Field(min_length=1)


class MoveQuestionRequest(BaseModel):
    section_id: str | None = None
    order_index: int = Field(ge=0)


class AddFromBankRequest(BaseModel):
    bank_question_ids: list[str] = Field(min_length=1)
    section_id: str | None = None


class AddFromBankResponse(BaseModel):
    ok: bool = True
    added: int
    skipped: int


class QuizQuestionCreateRequest(QuestionCreateRequest):
    section_id: str | None = None
