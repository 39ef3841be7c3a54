"""question banks, quizzes, responses and reports

Revision ID: 0002
Revises: 0001
Create Date: 2026-09-21

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def _uuid_pk() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _fk(name: str, target: str, *, ondelete: str | None = "CASCADE", nullable: bool = False) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), sa.ForeignKey(target, ondelete=ondelete), nullable=nullable)


def _ts(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def _link_table(table: str, left: str, left_target: str, right: str, right_target: str) -> None:
    op.create_table(
        table,
        _uuid_pk(),
        _fk(left, left_target),
        _fk(right, right_target),
        sa.UniqueConstraint(left, right, name=f"uq_{table}_pair"),
    )
    op.create_index(f"ix_{table}_{left}", table, [left])
    op.create_index(f"ix_{table}_{right}", table, [right])


def upgrade() -> None:
    op.create_table(
        "banks",
        _uuid_pk(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("course_code", sa.String(length=50), nullable=True),
        sa.Column("semester", sa.Integer(), nullable=True),
        _fk("created_by_id", "users.id", ondelete=None),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_banks_name", "banks", ["name"])
    op.create_index("ix_banks_course_code", "banks", ["course_code"])
    op.create_index("ix_banks_created_by_id", "banks", ["created_by_id"])

    op.create_table(
        "bank_users",
        _uuid_pk(),
        _fk("bank_id", "banks.id"),
        _fk("user_id", "users.id"),
        sa.Column("access_level", sa.Enum("READ", "WRITE", "OWNER", name="bankaccesslevel"), nullable=False),
        _ts("created_at"),
        sa.UniqueConstraint("bank_id", "user_id", name="uq_bank_users_pair"),
    )
    op.create_index("ix_bank_users_bank_id", "bank_users", ["bank_id"])
    op.create_index("ix_bank_users_user_id", "bank_users", ["user_id"])

    op.create_table(
        "topics",
        _uuid_pk(),
        sa.Column("name", sa.String(length=200), nullable=False),
        _fk("bank_id", "banks.id"),
        _ts("created_at"),
    )
    op.create_index("ix_topics_bank_id", "topics", ["bank_id"])

    op.create_table(
        "questions",
        _uuid_pk(),
        sa.Column(
            "type",
            sa.Enum(
                "MCQ",
                "MMCQ",
                "TRUE_FALSE",
                "DESCRIPTIVE",
                "FILL_THE_BLANK",
                "MATCHING",
                "FILE_UPLOAD",
                "CODING",
                name="questiontype",
            ),
            nullable=False,
        ),
        sa.Column("marks", sa.Float(), nullable=False, server_default="1"),
        sa.Column("negative_marks", sa.Float(), nullable=False, server_default="0"),
        sa.Column("difficulty", sa.Enum("EASY", "MEDIUM", "HARD", name="difficulty"), nullable=True),
        sa.Column(
            "course_outcome",
            sa.Enum("CO1", "CO2", "CO3", "CO4", "CO5", "CO6", "CO7", "CO8", name="courseoutcome"),
            nullable=True,
        ),
        sa.Column(
            "bloom_level",
            sa.Enum("REMEMBER", "UNDERSTAND", "APPLY", "ANALYZE", "EVALUATE", "CREATE", name="bloomlevel"),
            nullable=True,
        ),
        sa.Column("question", sa.String(length=5000), nullable=False),
        sa.Column("question_data", postgresql.JSONB(), nullable=True),
        sa.Column("solution", postgresql.JSONB(), nullable=True),
        sa.Column("explanation", sa.Text(), nullable=True),
        _fk("created_by_id", "users.id", ondelete=None),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_questions_type", "questions", ["type"])
    op.create_index("ix_questions_created_by_id", "questions", ["created_by_id"])

    op.create_table(
        "bank_questions",
        _uuid_pk(),
        _fk("bank_id", "banks.id"),
        _fk("question_id", "questions.id"),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("bank_id", "question_id", name="uq_bank_questions_pair"),
    )
    op.create_index("ix_bank_questions_bank_id", "bank_questions", ["bank_id"])
    op.create_index("ix_bank_questions_question_id", "bank_questions", ["question_id"])

    _link_table("topic_questions", "topic_id", "topics.id", "question_id", "questions.id")

    op.create_table(
        "quizzes",
        _uuid_pk(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("instructions", sa.Text(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("password", sa.String(length=100), nullable=True),
        sa.Column("full_screen", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("shuffle_questions", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("shuffle_options", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("linear_quiz", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("calculator", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_submit", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("publish_result", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("publish_quiz", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("kiosk_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
        _fk("created_by_id", "users.id", ondelete=None),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_quizzes_name", "quizzes", ["name"])
    op.create_index("ix_quizzes_start_time", "quizzes", ["start_time"])
    op.create_index("ix_quizzes_end_time", "quizzes", ["end_time"])
    op.create_index("ix_quizzes_publish_quiz", "quizzes", ["publish_quiz"])
    op.create_index("ix_quizzes_created_by_id", "quizzes", ["created_by_id"])

    op.create_table(
        "quiz_sections",
        _uuid_pk(),
        _fk("quiz_id", "quizzes.id"),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_quiz_sections_quiz_id", "quiz_sections", ["quiz_id"])

    op.create_table(
        "quiz_questions",
        _uuid_pk(),
        _fk("quiz_id", "quizzes.id"),
        _fk("question_id", "questions.id"),
        _fk("section_id", "quiz_sections.id", ondelete="SET NULL", nullable=True),
        _fk("bank_question_id", "bank_questions.id", ondelete="SET NULL", nullable=True),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("quiz_id", "bank_question_id", name="uq_quiz_questions_bank_question"),
    )
    op.create_index("ix_quiz_questions_quiz_id", "quiz_questions", ["quiz_id"])
    op.create_index("ix_quiz_questions_question_id", "quiz_questions", ["question_id"])
    op.create_index("ix_quiz_questions_section_id", "quiz_questions", ["section_id"])

    op.create_table(
        "quiz_tags",
        _uuid_pk(),
        sa.Column("name", sa.String(length=100), nullable=False),
    )
    op.create_index("ix_quiz_tags_name", "quiz_tags", ["name"], unique=True)

    _link_table("quiz_quiz_tags", "quiz_id", "quizzes.id", "tag_id", "quiz_tags.id")
    _link_table("course_quizzes", "course_id", "courses.id", "quiz_id", "quizzes.id")
    _link_table("student_quizzes", "student_id", "users.id", "quiz_id", "quizzes.id")
    _link_table("lab_quizzes", "lab_id", "labs.id", "quiz_id", "quizzes.id")
    _link_table("quiz_batches", "batch_id", "batches.id", "quiz_id", "quizzes.id")

    op.create_table(
        "quiz_evaluation_settings",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("quizzes.id", ondelete="CASCADE"),
            primary_key=True,
            nullable=False,
        ),
        sa.Column("mcq_global_partial_marking", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("mcq_global_negative_mark", sa.Float(), nullable=True),
        sa.Column("mcq_global_negative_percent", sa.Float(), nullable=True),
        sa.Column("coding_global_partial_marking", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("llm_evaluation_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("llm_provider", sa.String(length=50), nullable=True),
        sa.Column("llm_model_name", sa.String(length=100), nullable=True),
        sa.Column("fitb_llm_system_prompt", sa.Text(), nullable=True),
        sa.Column("desc_llm_system_prompt", sa.Text(), nullable=True),
    )

    op.create_table(
        "quiz_responses",
        _uuid_pk(),
        _fk("quiz_id", "quizzes.id"),
        _fk("student_id", "users.id"),
        _ts("start_time"),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("submission_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ip", sa.JSON(), nullable=True),
        sa.Column("response", postgresql.JSONB(), nullable=True),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("total_score", sa.Float(), nullable=True),
        sa.Column("evaluation_results", postgresql.JSONB(), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("violations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "submission_status",
            sa.Enum("NOT_SUBMITTED", "SUBMITTED", "AUTO_SUBMITTED", name="submissionstatus"),
            nullable=False,
        ),
        sa.Column(
            "evaluation_status",
            sa.Enum("NOT_EVALUATED", "EVALUATED", "FAILED", name="evaluationstatus"),
            nullable=False,
        ),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("quiz_id", "student_id", name="uq_quiz_responses_quiz_student"),
    )
    op.create_index("ix_quiz_responses_quiz_id", "quiz_responses", ["quiz_id"])
    op.create_index("ix_quiz_responses_student_id", "quiz_responses", ["student_id"])
    op.create_index("ix_quiz_responses_end_time", "quiz_responses", ["end_time"])
    op.create_index("ix_quiz_responses_submission_status", "quiz_responses", ["submission_status"])
    op.create_index("ix_quiz_responses_evaluation_status", "quiz_responses", ["evaluation_status"])

    op.create_table(
        "quiz_reports",
        _uuid_pk(),
        _fk("quiz_id", "quizzes.id"),
        sa.Column("avg_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("max_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("min_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_students", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("question_stats", postgresql.JSONB(), nullable=True),
        sa.Column("mark_distribution", postgresql.JSONB(), nullable=True),
        _ts("evaluated_at"),
    )
    op.create_index("ix_quiz_reports_quiz_id", "quiz_reports", ["quiz_id"], unique=True)


def downgrade() -> None:
    op.drop_table("quiz_reports")
    op.drop_table("quiz_responses")
    op.drop_table("quiz_evaluation_settings")
    op.drop_table("quiz_batches")
    op.drop_table("lab_quizzes")
    op.drop_table("student_quizzes")
    op.drop_table("course_quizzes")
    op.drop_table("quiz_quiz_tags")
    op.drop_table("quiz_tags")
    op.drop_table("quiz_questions")
    op.drop_table("quiz_sections")
    op.drop_table("quizzes")
    op.drop_table("topic_questions")
    op.drop_table("bank_questions")
    op.drop_table("questions")
    op.drop_table("topics")
    op.drop_table("bank_users")
    op.drop_table("banks")
    for enum_name in (
        "evaluationstatus",
        "submissionstatus",
        "bloomlevel",
        "courseoutcome",
        "difficulty",
        "questiontype",
        "bankaccesslevel",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
