"""Bulk reconciliation of class enrollments and grades.

Each input record names a class through natural keys (program code, course
code, bimester, group, professor email) and lists ``(student code, grade)``
pairs. The run:

1. loads programs, courses, periods and users once into ``LookupMaps``;
2. resolves every record independently; a miss is written to the report and
   only that record (or student) is skipped;
3. reuses the class matching (course, period, group, program) or creates it;
4. creates or updates the class enrollment of each student, applies the grade
   and marks it completed, committing each student on its own.

Running the same batch twice produces no new rows: the second pass only
reports reused classes and updated enrollments.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..errors import ValidationFailed
from ..models import ClassEnrollmentStatusEnum, Course, CourseClass, Period, Program, RoleEnum, User
from .audit import record_audit
from .classes import find_class, find_class_enrollment, new_class_enrollment, set_status
from .grading import apply_grade, validate_percentage


logger = logging.getLogger(__name__)


class ImportErrorType(str, Enum):
    program_not_found = "program_not_found"
    course_not_found = "course_not_found"
    bimester_not_found = "bimester_not_found"
    professor_not_found = "professor_not_found"
    student_not_found = "student_not_found"
    invalid_grade = "invalid_grade"
    class_creation_failed = "class_creation_failed"
    enrollment_failed = "enrollment_failed"
    unknown = "unknown"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StudentGrade(_CamelModel):
    student_code: str
    percentage_grade: float


class ClassEnrollmentRecord(_CamelModel):
    program_code: str
    course_code: str
    bimester_name: str
    group_number: str
    professor_email: str
    students: List[StudentGrade] = Field(default_factory=list)

    @property
    def class_key(self) -> str:
        return f"{self.program_code}-{self.course_code}-{self.bimester_name}-{self.group_number}"


class ImportRecordError(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    line: Optional[int] = None
    class_key: Optional[str] = None
    student_code: Optional[str] = None
    type: ImportErrorType
    message: str
    data: Optional[Dict[str, Any]] = None


class ImportReport(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    classes_processed: int = 0
    classes_created: int = 0
    classes_already_existed: int = 0
    enrollments_created: int = 0
    enrollments_updated: int = 0
    errors: Tuple[ImportRecordError, ...] = ()
    warnings: Tuple[str, ...] = ()

    def errors_of(self, error_type: ImportErrorType) -> List[ImportRecordError]:
        return [error for error in self.errors if error.type == error_type]


class ImportReportBuilder:
    """Mutable accumulator threaded through the run; ``build`` freezes it."""

    def __init__(self):
        self.classes_processed = 0
        self.classes_created = 0
        self.classes_already_existed = 0
        self.enrollments_created = 0
        self.enrollments_updated = 0
        self._errors: List[ImportRecordError] = []
        self._warnings: List[str] = []

    def error(
        self,
        error_type: ImportErrorType,
        message: str,
        line: Optional[int] = None,
        class_key: Optional[str] = None,
        student_code: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._errors.append(
            ImportRecordError(
                line=line,
                class_key=class_key,
                student_code=student_code,
                type=error_type,
                message=message,
                data=data,
            )
        )

    def warn(self, message: str) -> None:
        self._warnings.append(message)

    def build(self) -> ImportReport:
        return ImportReport(
            classes_processed=self.classes_processed,
            classes_created=self.classes_created,
            classes_already_existed=self.classes_already_existed,
            enrollments_created=self.enrollments_created,
            enrollments_updated=self.enrollments_updated,
            errors=tuple(self._errors),
            warnings=tuple(self._warnings),
        )


def _upper(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip().upper()
    return cleaned or None


@dataclass
class LookupMaps:
    programs: Dict[str, int] = field(default_factory=dict)
    courses: Dict[str, int] = field(default_factory=dict)
    bimesters: Dict[str, int] = field(default_factory=dict)
    professors: Dict[str, int] = field(default_factory=dict)
    students: Dict[str, int] = field(default_factory=dict)
    course_credits: Dict[int, int] = field(default_factory=dict)
    ambiguous_bimesters: Dict[str, List[int]] = field(default_factory=dict)

    @classmethod
    def load(cls, session: Session) -> "LookupMaps":
        maps = cls()
        for program in session.exec(select(Program)).all():
            for code in (_upper(program.code_es), _upper(program.code_en)):
                if code:
                    maps.programs[code] = program.id
        for course in session.exec(select(Course)).all():
            maps.course_credits[course.id] = course.credits
            for code in (_upper(course.code_es), _upper(course.code_en)):
                if code:
                    maps.courses[code] = course.id
        for period in session.exec(select(Period).order_by(Period.id)).all():
            # Se acepta el nombre o el código del bimestre; gana el periodo más antiguo
            for key in (_upper(period.name), _upper(period.code)):
                if not key:
                    continue
                first = maps.bimesters.setdefault(key, period.id)
                if first != period.id:
                    maps.ambiguous_bimesters.setdefault(key, [first]).append(period.id)
        for key, period_ids in maps.ambiguous_bimesters.items():
            logger.warning("Bimester key %s matches periods %s; using %s", key, period_ids, period_ids[0])
        for user in session.exec(select(User)).all():
            if user.role == RoleEnum.professor:
                maps.professors[user.email.strip().lower()] = user.id
            elif user.role == RoleEnum.student and user.student_code:
                maps.students[user.student_code.strip().upper()] = user.id
        return maps

    def sizes(self) -> Dict[str, int]:
        return {
            "programs": len(self.programs),
            "courses": len(self.courses),
            "bimesters": len(self.bimesters),
            "professors": len(self.professors),
            "students": len(self.students),
        }


def _json_safe(value: float) -> Any:
    return value if math.isfinite(value) else str(value)


def _describe(exc: Exception) -> str:
    return str(exc) or exc.__class__.__name__


class ClassEnrollmentImporter:
    def __init__(self, session: Session, actor_id: Optional[int] = None, source: Optional[str] = None):
        self.session = session
        self.actor_id = actor_id
        self.source = source
        self.maps: Optional[LookupMaps] = None

    def run(self, records: Iterable[ClassEnrollmentRecord]) -> ImportReport:
        records = list(records)
        report = ImportReportBuilder()
        logger.info("Class enrollment import started: %s record(s)", len(records))
        self.maps = LookupMaps.load(self.session)
        logger.info("Lookup maps created: %s", self.maps.sizes())

        for index, record in enumerate(records):
            line = index + 1
            report.classes_processed += 1
            try:
                self._process_record(line, record, report)
            except Exception as exc:
                self.session.rollback()
                logger.exception("Unexpected error importing %s (line %s)", record.class_key, line)
                report.error(
                    ImportErrorType.unknown,
                    f"Unexpected error processing class: {_describe(exc)}",
                    line=line,
                    class_key=record.class_key,
                    data={"classData": record.model_dump(by_alias=True)},
                )

        result = report.build()
        logger.info(
            "Class enrollment import finished: processed=%s created=%s existed=%s "
            "enrollments_created=%s enrollments_updated=%s errors=%s warnings=%s",
            result.classes_processed,
            result.classes_created,
            result.classes_already_existed,
            result.enrollments_created,
            result.enrollments_updated,
            len(result.errors),
            len(result.warnings),
        )
        self._audit(result)
        return result

    def _audit(self, result: ImportReport) -> None:
        record_audit(
            self.session,
            entity_type="import",
            action="class_enrollment_import",
            description=f"Imported {result.classes_processed} class record(s)",
            user_id=self.actor_id,
            details={
                "source": self.source,
                "classesProcessed": result.classes_processed,
                "classesCreated": result.classes_created,
                "classesAlreadyExisted": result.classes_already_existed,
                "enrollmentsCreated": result.enrollments_created,
                "enrollmentsUpdated": result.enrollments_updated,
                "errors": len(result.errors),
            },
        )
        self.session.commit()

    def _process_record(self, line: int, record: ClassEnrollmentRecord, report: ImportReportBuilder) -> None:
        maps = self.maps
        class_key = record.class_key
        program_code = record.program_code.strip().upper()
        course_code = record.course_code.strip().upper()
        bimester_name = record.bimester_name.strip()
        professor_email = record.professor_email.strip().lower()
        group_number = record.group_number.strip()

        program_id = maps.programs.get(program_code)
        if program_id is None:
            report.error(
                ImportErrorType.program_not_found,
                f"Program not found: {program_code}",
                line=line,
                class_key=class_key,
                data={"programCode": program_code},
            )
            return
        course_id = maps.courses.get(course_code)
        if course_id is None:
            report.error(
                ImportErrorType.course_not_found,
                f"Course not found: {course_code}",
                line=line,
                class_key=class_key,
                data={"courseCode": course_code},
            )
            return
        period_id = maps.bimesters.get(bimester_name.upper())
        if period_id is None:
            report.error(
                ImportErrorType.bimester_not_found,
                f"Bimester not found: {bimester_name}",
                line=line,
                class_key=class_key,
                data={"bimesterName": bimester_name},
            )
            return
        if bimester_name.upper() in maps.ambiguous_bimesters:
            report.warn(f"Bimester is ambiguous: {bimester_name} (using period {period_id})")
        professor_id = maps.professors.get(professor_email)
        if professor_id is None:
            report.error(
                ImportErrorType.professor_not_found,
                f"Professor not found: {professor_email}",
                line=line,
                class_key=class_key,
                data={"professorEmail": professor_email},
            )
            return

        course_class = self._resolve_class(
            line, record, report, program_id, course_id, period_id, group_number, professor_id
        )
        if course_class is None:
            return

        credits = maps.course_credits[course_id]
        for student in record.students:
            self._import_student(line, class_key, course_class, student, credits, report)

    def _resolve_class(
        self,
        line: int,
        record: ClassEnrollmentRecord,
        report: ImportReportBuilder,
        program_id: int,
        course_id: int,
        period_id: int,
        group_number: str,
        professor_id: int,
    ) -> Optional[CourseClass]:
        existing = find_class(self.session, course_id, period_id, group_number, program_id)
        if existing:
            report.classes_already_existed += 1
            report.warn(f"Class already exists: {record.class_key} (using existing)")
            return existing

        course_class = CourseClass(
            program_id=program_id,
            course_id=course_id,
            period_id=period_id,
            group_number=group_number,
            professor_id=professor_id,
        )
        self.session.add(course_class)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            # Otro proceso creó la misma clase entre la búsqueda y el insert
            existing = find_class(self.session, course_id, period_id, group_number, program_id)
            if existing:
                report.classes_already_existed += 1
                report.warn(f"Class already exists: {record.class_key} (using existing)")
                return existing
            return self._class_failed(line, record, report, exc)
        except Exception as exc:
            self.session.rollback()
            return self._class_failed(line, record, report, exc)
        self.session.refresh(course_class)
        report.classes_created += 1
        return course_class

    def _class_failed(self, line: int, record: ClassEnrollmentRecord, report: ImportReportBuilder, exc: Exception) -> None:
        logger.error("Class creation failed for %s (line %s): %s", record.class_key, line, exc)
        report.error(
            ImportErrorType.class_creation_failed,
            f"Failed to create class: {_describe(exc)}",
            line=line,
            class_key=record.class_key,
            data={"classData": record.model_dump(by_alias=True)},
        )
        return None

    def _import_student(
        self,
        line: int,
        class_key: str,
        course_class: CourseClass,
        student: StudentGrade,
        credits: int,
        report: ImportReportBuilder,
    ) -> None:
        student_code = student.student_code.strip().upper()
        student_id = self.maps.students.get(student_code)
        if student_id is None:
            report.error(
                ImportErrorType.student_not_found,
                f"Student not found: {student_code}",
                line=line,
                class_key=class_key,
                student_code=student_code,
                data={"studentCode": student_code},
            )
            return
        try:
            validate_percentage(student.percentage_grade)
        except ValidationFailed:
            report.error(
                ImportErrorType.invalid_grade,
                f"Invalid grade for student {student_code}: {student.percentage_grade}",
                line=line,
                class_key=class_key,
                student_code=student_code,
                data={"studentCode": student_code, "grade": _json_safe(student.percentage_grade)},
            )
            return

        try:
            enrollment = find_class_enrollment(self.session, course_class.id, student_id)
            created = enrollment is None
            if created:
                enrollment = new_class_enrollment(course_class, student_id, self.actor_id)
            apply_grade(enrollment, student.percentage_grade, credits, self.actor_id)
            set_status(enrollment, ClassEnrollmentStatusEnum.completed, self.actor_id)
            self.session.add(enrollment)
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            logger.error("Enrollment failed for %s in %s (line %s): %s", student_code, class_key, line, exc)
            report.error(
                ImportErrorType.enrollment_failed,
                f"Failed to enroll student {student_code}: {_describe(exc)}",
                line=line,
                class_key=class_key,
                student_code=student_code,
                data={"studentCode": student_code},
            )
            return
        if created:
            report.enrollments_created += 1
        else:
            report.enrollments_updated += 1
