"""Seat accounting for section enrollments.

``Section.enrolled`` only ever moves through the two UPDATE statements below,
issued in the same transaction as the enrollment row they account for:

* taking a seat is ``enrolled = enrolled + 1`` guarded by
  ``enrolled < capacity`` when capacity is enforced, so two racing requests
  for the last seat cannot both succeed;
* releasing a seat is ``enrolled = enrolled - 1`` guarded by ``enrolled > 0``.

An enrollment holds a seat while it is not auditing and its status is not
withdrawn/dropped. Nothing is committed when an operation raises.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..errors import CapacityExceeded, DuplicateEnrollment, Forbidden, NotFound, SectionNotOpen, ValidationFailed
from ..models import (
    Course,
    Enrollment,
    EnrollmentStatusEnum,
    RELEASED_ENROLLMENT_STATUSES,
    RoleEnum,
    Section,
    SectionStatusEnum,
    User,
    utcnow,
)
from ..utils.sqlmodel_helpers import normalize_payload_for_model
from .audit import record_audit
from .grading import apply_grade, clear_grade, validate_percentage
from .periods import get_current_period


logger = logging.getLogger(__name__)

CAPACITY_BYPASSED = "Capacity limit bypassed"
STATUS_BYPASSED = "Section status check bypassed"
PREREQUISITES_BYPASSED = "Prerequisites bypassed"

GRADE_FIELDS = frozenset({"percentage_grade", "grade_notes"})
NON_NULLABLE_FIELDS = frozenset({"status", "is_retake", "is_auditing", "counts_for_gpa", "counts_for_progress"})


def holds_seat(status: EnrollmentStatusEnum, is_auditing: bool) -> bool:
    return not is_auditing and EnrollmentStatusEnum(status) not in RELEASED_ENROLLMENT_STATUSES


def take_seat(session: Session, section_id: int, enforce_capacity: bool = True) -> bool:
    """Atomically add one seat; False when the capacity guard rejected it."""
    stmt = update(Section).where(Section.id == section_id)
    if enforce_capacity:
        stmt = stmt.where(Section.enrolled < Section.capacity)
    result = session.execute(
        stmt.values(enrolled=Section.enrolled + 1).execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def release_seat(session: Session, section_id: int) -> None:
    session.execute(
        update(Section)
        .where(Section.id == section_id, Section.enrolled > 0)
        .values(enrolled=Section.enrolled - 1)
        .execution_options(synchronize_session=False)
    )


def _get_section(session: Session, section_id: int) -> Section:
    section = session.get(Section, section_id)
    if not section:
        raise NotFound("Section not found", details={"section_id": section_id})
    return section


def _get_student(session: Session, student_id: int) -> User:
    student = session.get(User, student_id)
    if not student or student.role != RoleEnum.student:
        raise NotFound("Student not found", details={"student_id": student_id})
    return student


def get_enrollment(session: Session, enrollment_id: int) -> Enrollment:
    enrollment = session.get(Enrollment, enrollment_id)
    if not enrollment:
        raise NotFound("Enrollment not found", details={"enrollment_id": enrollment_id})
    return enrollment


def _ensure_not_enrolled(session: Session, student_id: int, section_id: int, exclude_id: Optional[int] = None) -> None:
    stmt = select(Enrollment).where(
        Enrollment.student_id == student_id,
        Enrollment.section_id == section_id,
        Enrollment.status.not_in(list(RELEASED_ENROLLMENT_STATUSES)),
    )
    if exclude_id is not None:
        stmt = stmt.where(Enrollment.id != exclude_id)
    if session.exec(stmt).first():
        raise DuplicateEnrollment(
            "Student is already enrolled in this section",
            details={"student_id": student_id, "section_id": section_id},
        )


def _claim_seat(session: Session, section: Section, enforce_capacity: bool) -> None:
    if not take_seat(session, section.id, enforce_capacity=enforce_capacity):
        session.refresh(section)
        raise CapacityExceeded(
            "Section is at full capacity",
            details={"section_id": section.id, "capacity": section.capacity, "enrolled": section.enrolled},
        )


def _is_active_duplicate(exc: IntegrityError) -> bool:
    # SQLite nombra las columnas, PostgreSQL el índice
    message = str(exc.orig)
    if "uq_enrollment_active_student_section" in message:
        return True
    return "UNIQUE" in message.upper() and "enrollment.student_id" in message and "enrollment.section_id" in message


def _flush_enrollment(session: Session, enrollment: Enrollment) -> None:
    session.add(enrollment)
    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        if not _is_active_duplicate(exc):
            raise
        # El índice único parcial detectó una inscripción activa concurrente
        raise DuplicateEnrollment(
            "Student is already enrolled in this section",
            details={"student_id": enrollment.student_id, "section_id": enrollment.section_id},
        ) from exc


def _insert(session: Session, enrollment: Enrollment) -> Enrollment:
    _flush_enrollment(session, enrollment)
    return enrollment


def _new_enrollment(section: Section, student_id: int, enrolled_by: Optional[int], **fields: Any) -> Enrollment:
    return Enrollment(
        student_id=student_id,
        section_id=section.id,
        period_id=section.period_id,
        course_id=section.course_id,
        professor_id=section.professor_id,
        enrolled_by=enrolled_by,
        enrolled_at=utcnow(),
        **fields,
    )


def _finish(session: Session, enrollment: Enrollment, section: Optional[Section] = None) -> Enrollment:
    session.commit()
    session.refresh(enrollment)
    if section is not None:
        session.refresh(section)
    return enrollment


def enroll_self(session: Session, student: User, section_id: int) -> Enrollment:
    if student.role != RoleEnum.student:
        raise Forbidden("Only students can enroll themselves")
    section = _get_section(session, section_id)
    if not section.is_active or section.status != SectionStatusEnum.open:
        raise SectionNotOpen(
            "Section is not open for enrollment",
            details={"section_id": section.id, "status": section.status.value, "is_active": section.is_active},
        )
    _ensure_not_enrolled(session, student.id, section.id)
    _claim_seat(session, section, enforce_capacity=True)
    enrollment = _insert(session, _new_enrollment(section, student.id, student.id))
    logger.info("Student %s enrolled in section %s", student.id, section.id)
    return _finish(session, enrollment, section)


def create_enrollment(
    session: Session,
    actor: User,
    student_id: int,
    section_id: int,
    status: EnrollmentStatusEnum = EnrollmentStatusEnum.enrolled,
    is_retake: bool = False,
    is_auditing: bool = False,
) -> Enrollment:
    section = _get_section(session, section_id)
    _get_student(session, student_id)
    if not section.is_active:
        raise SectionNotOpen("Section is not active", details={"section_id": section.id})
    status = EnrollmentStatusEnum(status)
    counted = holds_seat(status, is_auditing)
    if status not in RELEASED_ENROLLMENT_STATUSES:
        _ensure_not_enrolled(session, student_id, section.id)
    if counted:
        _claim_seat(session, section, enforce_capacity=True)
    enrollment = _insert(
        session,
        _new_enrollment(section, student_id, actor.id, status=status, is_retake=is_retake, is_auditing=is_auditing),
    )
    return _finish(session, enrollment, section)


def force_enroll(
    session: Session,
    actor: User,
    student_id: int,
    section_id: int,
    bypass_capacity: bool = False,
    bypass_prerequisites: bool = False,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Administrative enrollment that skips the status check and, on request, capacity.

    The seat is always counted, so ``enrolled`` may end up above ``capacity``.
    """
    section = _get_section(session, section_id)
    _get_student(session, student_id)
    _ensure_not_enrolled(session, student_id, section.id)

    warnings: List[str] = []
    if bypass_prerequisites:
        warnings.append(PREREQUISITES_BYPASSED)
    if bypass_capacity:
        warnings.append(CAPACITY_BYPASSED)
    if not section.is_active or section.status != SectionStatusEnum.open:
        warnings.append(STATUS_BYPASSED)

    _claim_seat(session, section, enforce_capacity=not bypass_capacity)
    enrollment = _insert(
        session,
        _new_enrollment(
            section,
            student_id,
            actor.id,
            status_change_reason=reason,
        ),
    )
    session.refresh(section)
    if warnings:
        logger.warning(
            "Force enrollment of student %s in section %s by user %s: %s (enrolled %s/%s)",
            student_id,
            section.id,
            actor.id,
            ", ".join(warnings),
            section.enrolled,
            section.capacity,
        )
    record_audit(
        session,
        entity_type="enrollment",
        entity_id=enrollment.id,
        action="force_enroll",
        description=f"Student {student_id} force enrolled in section {section.crn}",
        user_id=actor.id,
        details={
            "section_id": section.id,
            "student_id": student_id,
            "warnings": warnings,
            "reason": reason,
            "enrolled": section.enrolled,
            "capacity": section.capacity,
        },
    )
    _finish(session, enrollment, section)
    return {
        "enrollment": enrollment,
        "message": "Student force enrolled successfully",
        "warnings": warnings,
    }


def _course_credits(session: Session, course_id: int) -> int:
    course = session.get(Course, course_id)
    if not course:
        raise NotFound("Course not found", details={"course_id": course_id})
    return course.credits


def update_enrollment(session: Session, actor: User, enrollment_id: int, data: Dict[str, Any]) -> Enrollment:
    enrollment = get_enrollment(session, enrollment_id)
    if actor.role == RoleEnum.professor:
        if enrollment.professor_id != actor.id:
            raise Forbidden("Professors can only grade their own sections")
        extra = set(data) - GRADE_FIELDS
        if extra:
            raise Forbidden("Professors can only change grades", details={"fields": sorted(extra)})

    values = normalize_payload_for_model(
        Enrollment,
        data,
        protected={"student_id", "section_id", "period_id", "course_id", "professor_id", "enrolled_at", "enrolled_by"},
    )
    nulls = sorted(key for key in NON_NULLABLE_FIELDS if key in values and values[key] is None)
    if nulls:
        raise ValidationFailed("Fields cannot be null", details={"fields": nulls})
    grade_requested = "percentage_grade" in values
    if grade_requested and values["percentage_grade"] is not None:
        validate_percentage(data["percentage_grade"])

    was_counted = holds_seat(enrollment.status, enrollment.is_auditing)
    new_status = EnrollmentStatusEnum(values.get("status", enrollment.status))
    new_auditing = values.get("is_auditing", enrollment.is_auditing)
    will_count = holds_seat(new_status, new_auditing)

    if new_status not in RELEASED_ENROLLMENT_STATUSES and enrollment.status in RELEASED_ENROLLMENT_STATUSES:
        _ensure_not_enrolled(session, enrollment.student_id, enrollment.section_id, exclude_id=enrollment.id)
    if will_count and not was_counted:
        _claim_seat(session, _get_section(session, enrollment.section_id), enforce_capacity=True)
    elif was_counted and not will_count:
        release_seat(session, enrollment.section_id)

    if new_status != enrollment.status:
        enrollment.status_changed_at = utcnow()
        enrollment.status_changed_by = actor.id
        enrollment.status_change_reason = values.pop("status_change_reason", None)

    if grade_requested:
        percentage = values.pop("percentage_grade")
        if percentage is None:
            clear_grade(enrollment)
        else:
            apply_grade(enrollment, percentage, _course_credits(session, enrollment.course_id), actor.id)

    for key, value in values.items():
        setattr(enrollment, key, value)
    _flush_enrollment(session, enrollment)
    return _finish(session, enrollment)


def delete_enrollment(session: Session, enrollment_id: int) -> None:
    enrollment = get_enrollment(session, enrollment_id)
    section_id = enrollment.section_id
    if holds_seat(enrollment.status, enrollment.is_auditing):
        release_seat(session, section_id)
    session.delete(enrollment)
    session.commit()
    logger.info("Enrollment %s deleted from section %s", enrollment_id, section_id)


def list_enrollments(
    session: Session,
    student_id: Optional[int] = None,
    section_id: Optional[int] = None,
    course_id: Optional[int] = None,
    period_id: Optional[int] = None,
    professor_id: Optional[int] = None,
    status: Optional[EnrollmentStatusEnum] = None,
) -> Sequence[Enrollment]:
    stmt = select(Enrollment)
    if student_id is not None:
        stmt = stmt.where(Enrollment.student_id == student_id)
    if section_id is not None:
        stmt = stmt.where(Enrollment.section_id == section_id)
    if course_id is not None:
        stmt = stmt.where(Enrollment.course_id == course_id)
    if period_id is not None:
        stmt = stmt.where(Enrollment.period_id == period_id)
    if professor_id is not None:
        stmt = stmt.where(Enrollment.professor_id == professor_id)
    if status is not None:
        stmt = stmt.where(Enrollment.status == status)
    return session.exec(stmt.order_by(Enrollment.enrolled_at, Enrollment.id)).all()


def enrollment_statistics(session: Session, period_id: Optional[int] = None) -> Dict[str, Any]:
    if period_id is None:
        current = get_current_period(session)
        if current is None:
            raise ValidationFailed("No current period configured; pass period_id explicitly")
        period_id = current.id
    rows = session.exec(
        select(Enrollment.status, func.count())
        .where(Enrollment.period_id == period_id)
        .group_by(Enrollment.status)
    ).all()
    by_status = {status.value: 0 for status in EnrollmentStatusEnum}
    for status, count in rows:
        by_status[EnrollmentStatusEnum(status).value] = count
    average = session.exec(
        select(func.avg(Enrollment.percentage_grade)).where(
            Enrollment.period_id == period_id, Enrollment.percentage_grade.is_not(None)
        )
    ).one()
    return {
        "period_id": period_id,
        "total": sum(by_status.values()),
        "by_status": by_status,
        "average_grade": round(float(average), 2) if average is not None else None,
    }
