"""
Initial registrar schema

Revision ID: 20250101_initial
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20250101_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ROLE = sa.Enum("superadmin", "admin", "professor", "student", name="roleenum")
LANGUAGE = sa.Enum("es", "en", "both", name="languageenum")
PROGRAM_TYPE = sa.Enum("diploma", "bachelor", "master", "doctorate", name="programtypeenum")
CATEGORY = sa.Enum("humanities", "core", "elective", "general", name="coursecategoryenum")
PERIOD_STATUS = sa.Enum("planning", "enrollment", "active", "grading", "closed", name="periodstatusenum")
SECTION_STATUS = sa.Enum("draft", "open", "closed", "active", "grading", "completed", name="sectionstatusenum")
DELIVERY = sa.Enum("online_sync", "online_async", "hybrid", "in_person", name="deliverymethodenum")
ENROLLMENT_STATUS = sa.Enum(
    "enrolled", "in_progress", "completed", "failed", "withdrawn", "dropped", "incomplete",
    name="enrollmentstatusenum",
)
CLASS_ENROLLMENT_STATUS = sa.Enum(
    "enrolled", "dropped", "withdrawn", "completed", "incomplete", "failed",
    name="classenrollmentstatusenum",
)

ACTIVE_ENROLLMENT = "status NOT IN ('withdrawn', 'dropped')"


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _graded_columns():
    return [
        sa.Column("percentage_grade", sa.Float(), nullable=True),
        sa.Column("letter_grade", sa.String(), nullable=True),
        sa.Column("grade_points", sa.Float(), nullable=True),
        sa.Column("quality_points", sa.Float(), nullable=True),
        sa.Column("graded_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("graded_at", sa.DateTime(), nullable=True),
        sa.Column("grade_notes", sa.String(), nullable=True),
        sa.Column("is_retake", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_auditing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("counts_for_gpa", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("counts_for_progress", sa.Boolean(), nullable=False, server_default=sa.true()),
    ]


def _status_change_columns():
    return [
        sa.Column("enrolled_at", sa.DateTime(), nullable=False),
        sa.Column("enrolled_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("status_changed_at", sa.DateTime(), nullable=True),
        sa.Column("status_changed_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("status_change_reason", sa.String(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "program",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code_es", sa.String(), nullable=True),
        sa.Column("code_en", sa.String(), nullable=True),
        sa.Column("name_es", sa.String(), nullable=True),
        sa.Column("name_en", sa.String(), nullable=True),
        sa.Column("description_es", sa.String(), nullable=True),
        sa.Column("description_en", sa.String(), nullable=True),
        sa.Column("type", PROGRAM_TYPE, nullable=False),
        sa.Column("degree", sa.String(), nullable=True),
        sa.Column("language", LANGUAGE, nullable=False),
        sa.Column("total_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duration_bimesters", sa.Integer(), nullable=False),
        sa.Column("tuition_per_credit", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_program_code_es", "program", ["code_es"])
    op.create_index("ix_program_code_en", "program", ["code_en"])
    op.create_index("ix_program_type", "program", ["type"])
    op.create_index("ix_program_is_active", "program", ["is_active"])

    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("role", ROLE, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("country", sa.String(), nullable=True),
        sa.Column("student_code", sa.String(), nullable=True),
        sa.Column("program_id", sa.Integer(), sa.ForeignKey("program.id"), nullable=True),
        sa.Column("employee_code", sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_user_email", "user", ["email"], unique=True)
    op.create_index("ix_user_role", "user", ["role"])
    op.create_index("ix_user_student_code", "user", ["student_code"], unique=True)

    op.create_table(
        "course",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code_es", sa.String(), nullable=True),
        sa.Column("code_en", sa.String(), nullable=True),
        sa.Column("name_es", sa.String(), nullable=True),
        sa.Column("name_en", sa.String(), nullable=True),
        sa.Column("description_es", sa.String(), nullable=True),
        sa.Column("description_en", sa.String(), nullable=True),
        sa.Column("credits", sa.Integer(), nullable=False),
        sa.Column("language", LANGUAGE, nullable=False),
        sa.Column("category", CATEGORY, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_course_code_es", "course", ["code_es"])
    op.create_index("ix_course_code_en", "course", ["code_en"])
    op.create_index("ix_course_is_active", "course", ["is_active"])

    op.create_table(
        "programcourse",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("program_id", sa.Integer(), sa.ForeignKey("program.id"), nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("course.id"), nullable=False),
        sa.Column("category_override", CATEGORY, nullable=True),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("program_id", "course_id", name="uq_program_course"),
    )
    op.create_index("ix_programcourse_program_id", "programcourse", ["program_id"])
    op.create_index("ix_programcourse_course_id", "programcourse", ["course_id"])

    op.create_table(
        "period",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("bimester_number", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("name_en", sa.String(), nullable=True),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=False),
        sa.Column("enrollment_start", sa.DateTime(), nullable=False),
        sa.Column("enrollment_end", sa.DateTime(), nullable=False),
        sa.Column("grading_deadline", sa.DateTime(), nullable=False),
        sa.Column("status", PERIOD_STATUS, nullable=False),
        sa.Column("is_current_period", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_period_code", "period", ["code"], unique=True)
    op.create_index("ix_period_status", "period", ["status"])
    op.create_index("ix_period_is_current_period", "period", ["is_current_period"])

    op.create_table(
        "section",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("course.id"), nullable=False),
        sa.Column("period_id", sa.Integer(), sa.ForeignKey("period.id"), nullable=False),
        sa.Column("group_number", sa.String(), nullable=False),
        sa.Column("crn", sa.String(), nullable=False),
        sa.Column("professor_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("enrolled", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("waitlist_capacity", sa.Integer(), nullable=True),
        sa.Column("waitlisted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("delivery_method", DELIVERY, nullable=False),
        sa.Column("schedule", sa.JSON(), nullable=True),
        sa.Column("status", SECTION_STATUS, nullable=False),
        sa.Column("grades_submitted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("grades_submitted_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_section_crn", "section", ["crn"], unique=True)
    op.create_index("ix_section_course_id", "section", ["course_id"])
    op.create_index("ix_section_period_id", "section", ["period_id"])
    op.create_index("ix_section_professor_id", "section", ["professor_id"])
    op.create_index("ix_section_status", "section", ["status"])

    op.create_table(
        "enrollment",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("section_id", sa.Integer(), sa.ForeignKey("section.id"), nullable=False),
        sa.Column("period_id", sa.Integer(), sa.ForeignKey("period.id"), nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("course.id"), nullable=False),
        sa.Column("professor_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("status", ENROLLMENT_STATUS, nullable=False),
        sa.Column("incomplete_deadline", sa.DateTime(), nullable=True),
        *_status_change_columns(),
        *_graded_columns(),
        *_timestamps(),
    )
    for column in ("student_id", "section_id", "period_id", "course_id", "professor_id", "status"):
        op.create_index(f"ix_enrollment_{column}", "enrollment", [column])
    op.create_index(
        "uq_enrollment_active_student_section",
        "enrollment",
        ["student_id", "section_id"],
        unique=True,
        sqlite_where=sa.text(ACTIVE_ENROLLMENT),
        postgresql_where=sa.text(ACTIVE_ENROLLMENT),
    )

    op.create_table(
        "courseclass",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("program_id", sa.Integer(), sa.ForeignKey("program.id"), nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("course.id"), nullable=False),
        sa.Column("period_id", sa.Integer(), sa.ForeignKey("period.id"), nullable=False),
        sa.Column("group_number", sa.String(), nullable=False),
        sa.Column("professor_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("course_id", "period_id", "group_number", "program_id", name="uq_course_class_key"),
    )
    for column in ("program_id", "course_id", "period_id", "professor_id"):
        op.create_index(f"ix_courseclass_{column}", "courseclass", [column])

    op.create_table(
        "classenrollment",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("class_id", sa.Integer(), sa.ForeignKey("courseclass.id"), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("course.id"), nullable=False),
        sa.Column("period_id", sa.Integer(), sa.ForeignKey("period.id"), nullable=False),
        sa.Column("professor_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("status", CLASS_ENROLLMENT_STATUS, nullable=False),
        *_status_change_columns(),
        *_graded_columns(),
        *_timestamps(),
        sa.UniqueConstraint("class_id", "student_id", name="uq_class_enrollment_student"),
    )
    for column in ("class_id", "student_id", "course_id", "period_id", "status"):
        op.create_index(f"ix_classenrollment_{column}", "classenrollment", [column])

    op.create_table(
        "auditlog",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_auditlog_entity_type", "auditlog", ["entity_type"])
    op.create_index("ix_auditlog_action", "auditlog", ["action"])
    op.create_index("ix_auditlog_user_id", "auditlog", ["user_id"])


def downgrade() -> None:
    for table in (
        "auditlog",
        "classenrollment",
        "courseclass",
        "enrollment",
        "section",
        "period",
        "programcourse",
        "course",
        "user",
        "program",
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for enum in (
        CLASS_ENROLLMENT_STATUS,
        ENROLLMENT_STATUS,
        DELIVERY,
        SECTION_STATUS,
        PERIOD_STATUS,
        CATEGORY,
        PROGRAM_TYPE,
        LANGUAGE,
        ROLE,
    ):
        enum.drop(bind, checkfirst=True)
