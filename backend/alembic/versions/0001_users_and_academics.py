"""users, audit trail and academic structure

Revision ID: 0001
Revises:
Create Date: 2026-09-14

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _uuid_pk() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _fk(name: str, target: str, *, ondelete: str = "CASCADE", nullable: bool = False) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), sa.ForeignKey(target, ondelete=ondelete), nullable=nullable)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def upgrade() -> None:
    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("profile_id", sa.String(length=100), nullable=False),
        sa.Column("profile_image", sa.String(length=500), nullable=True),
        sa.Column("role", sa.Enum("ADMIN", "MANAGER", "FACULTY", "STUDENT", name="userrole"), nullable=False),
        sa.Column("status", sa.Enum("ACTIVE", "INACTIVE", "SUSPENDED", name="userstatus"), nullable=False),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("dob", sa.Date(), nullable=True),
        sa.Column("gender", sa.String(length=20), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("state", sa.String(length=100), nullable=True),
        sa.Column("theme", sa.String(length=10), nullable=False, server_default="light"),
        sa.Column("view", sa.String(length=10), nullable=False, server_default="grid"),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("must_change_password", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("password_changed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_users_name", "users", ["name"], unique=False)
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_profile_id", "users", ["profile_id"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)
    op.create_index("ix_users_status", "users", ["status"], unique=False)

    op.create_table(
        "security_audit_events",
        _uuid_pk(),
        _fk("actor_user_id", "users.id", ondelete="SET NULL", nullable=True),
        _fk("target_user_id", "users.id", ondelete="SET NULL", nullable=True),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("meta", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(length=100), nullable=True),
        sa.Column("ip", sa.String(length=80), nullable=True),
        sa.Column("user_agent", sa.String(length=400), nullable=True),
        _created_at(),
    )
    op.create_index("ix_security_audit_events_actor_user_id", "security_audit_events", ["actor_user_id"])
    op.create_index("ix_security_audit_events_target_user_id", "security_audit_events", ["target_user_id"])
    op.create_index("ix_security_audit_events_event_type", "security_audit_events", ["event_type"])
    op.create_index("ix_security_audit_events_created_at", "security_audit_events", ["created_at"])

    op.create_table(
        "departments",
        _uuid_pk(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_index("ix_departments_name", "departments", ["name"], unique=True)

    op.create_table(
        "semesters",
        _uuid_pk(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        _fk("department_id", "departments.id"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.UniqueConstraint("name", "year", "department_id", name="uq_semesters_name_year_department"),
    )
    op.create_index("ix_semesters_year", "semesters", ["year"])
    op.create_index("ix_semesters_department_id", "semesters", ["department_id"])

    op.create_table(
        "semester_managers",
        _uuid_pk(),
        _fk("semester_id", "semesters.id"),
        _fk("user_id", "users.id"),
        sa.UniqueConstraint("semester_id", "user_id", name="uq_semester_managers_pair"),
    )
    op.create_index("ix_semester_managers_semester_id", "semester_managers", ["semester_id"])
    op.create_index("ix_semester_managers_user_id", "semester_managers", ["user_id"])

    op.create_table(
        "batches",
        _uuid_pk(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("join_year", sa.Integer(), nullable=False),
        sa.Column("graduation_year", sa.Integer(), nullable=False),
        sa.Column("section", sa.String(length=10), nullable=False),
        _fk("department_id", "departments.id"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.UniqueConstraint("name", "section", "join_year", name="uq_batches_name_section_year"),
    )
    op.create_index("ix_batches_join_year", "batches", ["join_year"])
    op.create_index("ix_batches_department_id", "batches", ["department_id"])

    op.create_table(
        "batch_students",
        _uuid_pk(),
        _fk("batch_id", "batches.id"),
        _fk("student_id", "users.id"),
        sa.UniqueConstraint("batch_id", "student_id", name="uq_batch_students_pair"),
    )
    op.create_index("ix_batch_students_batch_id", "batch_students", ["batch_id"])
    op.create_index("ix_batch_students_student_id", "batch_students", ["student_id"])

    op.create_table(
        "batch_managers",
        _uuid_pk(),
        _fk("batch_id", "batches.id"),
        _fk("user_id", "users.id"),
        sa.UniqueConstraint("batch_id", "user_id", name="uq_batch_managers_pair"),
    )
    op.create_index("ix_batch_managers_batch_id", "batch_managers", ["batch_id"])
    op.create_index("ix_batch_managers_user_id", "batch_managers", ["user_id"])

    op.create_table(
        "courses",
        _uuid_pk(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("image", sa.String(length=500), nullable=True),
        sa.Column("type", sa.Enum("CORE", "ELECTIVE", "MICRO_CREDENTIAL", name="coursetype"), nullable=False),
        _fk("semester_id", "semesters.id"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_index("ix_courses_code", "courses", ["code"], unique=True)
    op.create_index("ix_courses_semester_id", "courses", ["semester_id"])

    for table, owner, owner_target, member, member_target in (
        ("course_instructors", "course_id", "courses.id", "instructor_id", "users.id"),
        ("course_students", "course_id", "courses.id", "student_id", "users.id"),
        ("course_batches", "course_id", "courses.id", "batch_id", "batches.id"),
    ):
        op.create_table(
            table,
            _uuid_pk(),
            _fk(owner, owner_target),
            _fk(member, member_target),
            sa.UniqueConstraint(owner, member, name=f"uq_{table}_pair"),
        )
        op.create_index(f"ix_{table}_{owner}", table, [owner])
        op.create_index(f"ix_{table}_{member}", table, [member])

    op.create_table(
        "labs",
        _uuid_pk(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("block", sa.String(length=100), nullable=False),
        sa.Column("ip_subnet", sa.String(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_index("ix_labs_block", "labs", ["block"])


def downgrade() -> None:
    op.drop_table("labs")
    op.drop_table("course_batches")
    op.drop_table("course_students")
    op.drop_table("course_instructors")
    op.drop_table("courses")
    op.drop_table("batch_managers")
    op.drop_table("batch_students")
    op.drop_table("batches")
    op.drop_table("semester_managers")
    op.drop_table("semesters")
    op.drop_table("departments")
    op.drop_table("security_audit_events")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS coursetype")
    op.execute("DROP TYPE IF EXISTS userstatus")
    op.execute("DROP TYPE IF EXISTS userrole")
