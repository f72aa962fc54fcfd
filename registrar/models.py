from datetime import UTC, datetime
from typing import Any, Dict, Optional
from enum import Enum
from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    # Se guardan fechas UTC sin tzinfo (SQLite no conserva la zona horaria)
    return datetime.now(UTC).replace(tzinfo=None)


class Timestamped(SQLModel):
    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False, sa_column_kwargs={"onupdate": utcnow})


class RoleEnum(str, Enum):
    superadmin = "superadmin"
    admin = "admin"
    professor = "professor"
    student = "student"


class LanguageEnum(str, Enum):
    es = "es"
    en = "en"
    both = "both"


class ProgramTypeEnum(str, Enum):
    diploma = "diploma"
    bachelor = "bachelor"
    master = "master"
    doctorate = "doctorate"


class CourseCategoryEnum(str, Enum):
    humanities = "humanities"
    core = "core"
    elective = "elective"
    general = "general"


class PeriodStatusEnum(str, Enum):
    planning = "planning"
    enrollment = "enrollment"
    active = "active"
    grading = "grading"
    closed = "closed"


class SectionStatusEnum(str, Enum):
    draft = "draft"
    open = "open"
    closed = "closed"
    active = "active"
    grading = "grading"
    completed = "completed"


class DeliveryMethodEnum(str, Enum):
    online_sync = "online_sync"
    online_async = "online_async"
    hybrid = "hybrid"
    in_person = "in_person"


class EnrollmentStatusEnum(str, Enum):
    enrolled = "enrolled"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"
    withdrawn = "withdrawn"
    dropped = "dropped"
    incomplete = "incomplete"


class ClassEnrollmentStatusEnum(str, Enum):
    enrolled = "enrolled"
    dropped = "dropped"
    withdrawn = "withdrawn"
    completed = "completed"
    incomplete = "incomplete"
    failed = "failed"


# Estados que liberan el cupo; cualquier otro estado cuenta como inscripción activa
RELEASED_ENROLLMENT_STATUSES = frozenset({EnrollmentStatusEnum.withdrawn, EnrollmentStatusEnum.dropped})


class User(Timestamped, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    first_name: str
    last_name: str
    role: RoleEnum = Field(index=True)
    is_active: bool = Field(default=True)
    phone: Optional[str] = None
    country: Optional[str] = None
    # Perfil de estudiante
    student_code: Optional[str] = Field(default=None, index=True, unique=True, sa_column_kwargs={"nullable": True})
    program_id: Optional[int] = Field(default=None, foreign_key="program.id", sa_column_kwargs={"nullable": True})
    # Perfil docente
    employee_code: Optional[str] = Field(default=None, sa_column_kwargs={"nullable": True})

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Program(Timestamped, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    code_es: Optional[str] = Field(default=None, index=True)
    code_en: Optional[str] = Field(default=None, index=True)
    name_es: Optional[str] = None
    name_en: Optional[str] = None
    description_es: Optional[str] = None
    description_en: Optional[str] = None
    type: ProgramTypeEnum = Field(index=True)
    degree: Optional[str] = None
    language: LanguageEnum = Field(default=LanguageEnum.es)
    total_credits: int = Field(default=0, description="Derivado de los cursos activos asociados")
    duration_bimesters: int
    tuition_per_credit: Optional[float] = None
    is_active: bool = Field(default=True, index=True)


class Course(Timestamped, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    code_es: Optional[str] = Field(default=None, index=True)
    code_en: Optional[str] = Field(default=None, index=True)
    name_es: Optional[str] = None
    name_en: Optional[str] = None
    description_es: Optional[str] = None
    description_en: Optional[str] = None
    credits: int
    language: LanguageEnum = Field(default=LanguageEnum.es)
    category: CourseCategoryEnum = Field(default=CourseCategoryEnum.core)
    is_active: bool = Field(default=True, index=True)

    @property
    def primary_code(self) -> Optional[str]:
        return self.code_es or self.code_en


class ProgramCourse(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("program_id", "course_id", name="uq_program_course"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    program_id: int = Field(foreign_key="program.id", index=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    category_override: Optional[CourseCategoryEnum] = Field(default=None, sa_column_kwargs={"nullable": True})
    is_required: bool = Field(default=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


class Period(Timestamped, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(index=True, unique=True)  # por ejemplo 2025-B1
    year: int
    bimester_number: int = Field(description="Bimestre dentro del año (1-6)")
    name: str
    name_en: Optional[str] = None
    start_date: datetime
    end_date: datetime
    enrollment_start: datetime
    enrollment_end: datetime
    grading_deadline: datetime
    status: PeriodStatusEnum = Field(default=PeriodStatusEnum.planning, index=True)
    is_current_period: bool = Field(default=False, index=True)


class Section(Timestamped, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    period_id: int = Field(foreign_key="period.id", index=True)
    group_number: str
    crn: str = Field(index=True, unique=True, description="Código de referencia del curso")
    professor_id: int = Field(foreign_key="user.id", index=True)
    capacity: int
    enrolled: int = Field(default=0)
    waitlist_capacity: Optional[int] = Field(default=None, sa_column_kwargs={"nullable": True})
    waitlisted: int = Field(default=0)
    delivery_method: DeliveryMethodEnum = Field(default=DeliveryMethodEnum.in_person)
    schedule: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    status: SectionStatusEnum = Field(default=SectionStatusEnum.draft, index=True)
    grades_submitted: bool = Field(default=False)
    grades_submitted_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})
    is_active: bool = Field(default=True)


class GradedRecord(SQLModel):
    percentage_grade: Optional[float] = Field(default=None, sa_column_kwargs={"nullable": True})
    letter_grade: Optional[str] = Field(default=None, sa_column_kwargs={"nullable": True})
    grade_points: Optional[float] = Field(default=None, sa_column_kwargs={"nullable": True})
    quality_points: Optional[float] = Field(default=None, sa_column_kwargs={"nullable": True})
    graded_by: Optional[int] = Field(default=None, foreign_key="user.id", sa_column_kwargs={"nullable": True})
    graded_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})
    grade_notes: Optional[str] = Field(default=None, sa_column_kwargs={"nullable": True})
    is_retake: bool = Field(default=False)
    is_auditing: bool = Field(default=False)
    counts_for_gpa: bool = Field(default=True)
    counts_for_progress: bool = Field(default=True)


class Enrollment(GradedRecord, Timestamped, table=True):
    __table_args__ = (
        Index(
            "uq_enrollment_active_student_section",
            "student_id",
            "section_id",
            unique=True,
            sqlite_where=text("status NOT IN ('withdrawn', 'dropped')"),
            postgresql_where=text("status NOT IN ('withdrawn', 'dropped')"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="user.id", index=True)
    section_id: int = Field(foreign_key="section.id", index=True)
    # Referencias desnormalizadas para consultas por periodo/curso/docente
    period_id: int = Field(foreign_key="period.id", index=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    professor_id: int = Field(foreign_key="user.id", index=True)
    enrolled_at: datetime = Field(default_factory=utcnow, nullable=False)
    enrolled_by: Optional[int] = Field(default=None, foreign_key="user.id", sa_column_kwargs={"nullable": True})
    status: EnrollmentStatusEnum = Field(default=EnrollmentStatusEnum.enrolled, index=True)
    status_changed_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})
    status_changed_by: Optional[int] = Field(default=None, foreign_key="user.id", sa_column_kwargs={"nullable": True})
    status_change_reason: Optional[str] = Field(default=None, sa_column_kwargs={"nullable": True})
    incomplete_deadline: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})


class CourseClass(SQLModel, table=True):
    """Agrupación administrativa usada por la importación masiva (distinta de Section)."""

    __table_args__ = (
        UniqueConstraint("course_id", "period_id", "group_number", "program_id", name="uq_course_class_key"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    program_id: int = Field(foreign_key="program.id", index=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    period_id: int = Field(foreign_key="period.id", index=True)
    group_number: str
    professor_id: int = Field(foreign_key="user.id", index=True)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


class ClassEnrollment(GradedRecord, Timestamped, table=True):
    __table_args__ = (
        UniqueConstraint("class_id", "student_id", name="uq_class_enrollment_student"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    class_id: int = Field(foreign_key="courseclass.id", index=True)
    student_id: int = Field(foreign_key="user.id", index=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    period_id: int = Field(foreign_key="period.id", index=True)
    professor_id: int = Field(foreign_key="user.id")
    enrolled_at: datetime = Field(default_factory=utcnow, nullable=False)
    enrolled_by: Optional[int] = Field(default=None, foreign_key="user.id", sa_column_kwargs={"nullable": True})
    status: ClassEnrollmentStatusEnum = Field(default=ClassEnrollmentStatusEnum.enrolled, index=True)
    status_changed_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})
    status_changed_by: Optional[int] = Field(default=None, foreign_key="user.id", sa_column_kwargs={"nullable": True})
    status_change_reason: Optional[str] = Field(default=None, sa_column_kwargs={"nullable": True})


class AuditLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    entity_type: str = Field(index=True)  # enrollment, section, import, ...
    entity_id: Optional[str] = Field(default=None, sa_column_kwargs={"nullable": True})
    action: str = Field(index=True)
    description: str
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True, sa_column_kwargs={"nullable": True})
    details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=utcnow, nullable=False)
