import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from evalify.db.base import Base


JSONDoc = JSON().with_variant(JSONB(), "postgresql")


class QuestionType(str, enum.Enum):
    MCQ = "MCQ"
    MMCQ = "MMCQ"
    TRUE_FALSE = "TRUE_FALSE"
    DESCRIPTIVE = "DESCRIPTIVE"
    FILL_THE_BLANK = "FILL_THE_BLANK"
    MATCHING = "MATCHING"
    FILE_UPLOAD = "FILE_UPLOAD"
    CODING = "CODING"


class Difficulty(str, enum.Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


class CourseOutcome(str, enum.Enum):
    CO1 = "CO1"
    CO2 = "CO2"
    CO3 = "CO3"
    CO4 = "CO4"
    CO5 = "CO5"
    CO6 = "CO6"
    CO7 = "CO7"
    CO8 = "CO8"


class BloomLevel(str, enum.Enum):
    REMEMBER = "REMEMBER"
    UNDERSTAND = "UNDERSTAND"
    APPLY = "APPLY"
    ANALYZE = "ANALYZE"
    EVALUATE = "EVALUATE"
    CREATE = "CREATE"


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    type: Mapped[QuestionType] = mapped_column(Enum(QuestionType), index=True)

    marks: Mapped[float] = mapped_column(Float, default=1.0)
    negative_marks: Mapped[float] = mapped_column(Float, default=0.0)

    difficulty: Mapped[Difficulty | None] = mapped_column(Enum(Difficulty), nullable=True)
    course_outcome: Mapped[CourseOutcome | None] = mapped_column(Enum(CourseOutcome), nullable=True)
    bloom_level: Mapped[BloomLevel | None] = mapped_column(Enum(BloomLevel), nullable=True)

    question: Mapped[str] = mapped_column(String(5000))
    question_data: Mapped[dict | None] = mapped_column(JSONDoc, nullable=True)
    solution: Mapped[dict | None] = mapped_column(JSONDoc, nullable=True)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)


class BankQuestion(Base):
    __tablename__ = "bank_questions"
    __table_args__ = (UniqueConstraint("bank_id", "question_id", name="uq_bank_questions_pair"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bank_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("banks.id", ondelete="CASCADE"), index=True)
    question_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("questions.id", ondelete="CASCADE"), index=True
    )
    order_index: Mapped[int] = mapped_column(Integer, default=0)


class TopicQuestion(Base):
    __tablename__ = "topic_questions"
    __table_args__ = (UniqueConstraint("topic_id", "question_id", name="uq_topic_questions_pair"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    topic_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("topics.id", ondelete="CASCADE"), index=True)
    question_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("questions.id", ondelete="CASCADE"), index=True
    )
