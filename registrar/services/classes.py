"""Classes: the administrative grouping fed by the bulk importer.

A class is identified by (course, period, group, program); the table carries a
unique constraint on that tuple so two writers can never create the same one.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..errors import Conflict, DuplicateEnrollment, Forbidden, InUse, NotFound
from ..models import (
    ClassEnrollment,
    ClassEnrollmentStatusEnum,
    Course,
    CourseClass,
    Period,
    Program,
    RoleEnum,
    User,
    utcnow,
)
from ..security import is_admin
from ..utils.sqlmodel_helpers import apply_partial_update
from .grading import apply_grade, clear_grade, compute_gpa


def find_class(session: Session, course_id: int, period_id: int, group_number: str, program_id: int) -> Optional[CourseClass]:
    return session.exec(
        select(CourseClass).where(
            CourseClass.course_id == course_id,
            CourseClass.period_id == period_id,
            CourseClass.group_number == group_number,
            CourseClass.program_id == program_id,
        )
    ).first()


def get_class(session: Session, class_id: int) -> CourseClass:
    course_class = session.get(CourseClass, class_id)
    if not course_class:
        raise NotFound("Class not found", details={"class_id": class_id})
    return course_class


def list_classes(
    session: Session,
    course_id: Optional[int] = None,
    period_id: Optional[int] = None,
    program_id: Optional[int] = None,
    professor_id: Optional[int] = None,
) -> Sequence[CourseClass]:
    stmt = select(CourseClass)
    if course_id is not None:
        stmt = stmt.where(CourseClass.course_id == course_id)
    if period_id is not None:
        stmt = stmt.where(CourseClass.period_id == period_id)
    if program_id is not None:
        stmt = stmt.where(CourseClass.program_id == program_id)
    if professor_id is not None:
        stmt = stmt.where(CourseClass.professor_id == professor_id)
    return session.exec(stmt.order_by(CourseClass.id)).all()


def _check_references(session: Session, values: Dict[str, Any]) -> None:
    for model, key, label in (
        (Program, "program_id", "Program"),
        (Course, "course_id", "Course"),
        (Period, "period_id", "Period"),
    ):
        if key in values and not session.get(model, values[key]):
            raise NotFound(f"{label} not found", details={key: values[key]})
    if "professor_id" in values:
        professor = session.get(User, values["professor_id"])
        if not professor or professor.role != RoleEnum.professor:
            raise NotFound("Professor not found", details={"professor_id": values["professor_id"]})


def create_class(session: Session, data: Dict[str, Any]) -> CourseClass:
    values = dict(data)
    values["group_number"] = str(values["group_number"]).strip()
    _check_references(session, values)
    if find_class(session, values["course_id"], values["period_id"], values["group_number"], values["program_id"]):
        raise Conflict("Class already exists for this course, period, group and program", details=values)
    course_class = CourseClass(**values)
    session.add(course_class)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise Conflict("Class already exists for this course, period, group and program", details=values) from exc
    session.refresh(course_class)
    return course_class


def update_class(session: Session, class_id: int, data: Dict[str, Any]) -> CourseClass:
    course_class = get_class(session, class_id)
    values = dict(data)
    if "group_number" in values:
        values["group_number"] = str(values["group_number"]).strip()
    _check_references(session, values)
    merged = {**course_class.model_dump(), **values}
    clash = find_class(session, merged["course_id"], merged["period_id"], merged["group_number"], merged["program_id"])
    if clash and clash.id != course_class.id:
        raise Conflict("Class already exists for this course, period, group and program", details={"class_id": clash.id})
    apply_partial_update(course_class, values)
    session.add(course_class)
    session.commit()
    session.refresh(course_class)
    return course_class


def delete_class(session: Session, class_id: int) -> None:
    course_class = get_class(session, class_id)
    enrolled = session.exec(select(ClassEnrollment.id).where(ClassEnrollment.class_id == class_id)).first()
    if enrolled is not None:
        raise InUse("Cannot delete class with enrolled students")
    session.delete(course_class)
    session.commit()


def _check_class_owner(actor: User, course_class: CourseClass) -> None:
    if is_admin(actor):
        return
    if actor.role != RoleEnum.professor or course_class.professor_id != actor.id:
        raise Forbidden("Professors can only manage their own classes", details={"class_id": course_class.id})


def list_class_enrollments(session: Session, class_id: int) -> List[Tuple[ClassEnrollment, User]]:
    get_class(session, class_id)
    rows = session.exec(
        select(ClassEnrollment, User)
        .join(User, User.id == ClassEnrollment.student_id)
        .where(ClassEnrollment.class_id == class_id)
        .order_by(User.last_name, User.first_name)
    ).all()
    return list(rows)


def find_class_enrollment(session: Session, class_id: int, student_id: int) -> Optional[ClassEnrollment]:
    return session.exec(
        select(ClassEnrollment).where(ClassEnrollment.class_id == class_id, ClassEnrollment.student_id == student_id)
    ).first()


def new_class_enrollment(course_class: CourseClass, student_id: int, enrolled_by: Optional[int]) -> ClassEnrollment:
    return ClassEnrollment(
        class_id=course_class.id,
        student_id=student_id,
        course_id=course_class.course_id,
        period_id=course_class.period_id,
        professor_id=course_class.professor_id,
        enrolled_by=enrolled_by,
        enrolled_at=utcnow(),
        status=ClassEnrollmentStatusEnum.enrolled,
    )


def set_status(enrollment: ClassEnrollment, status: ClassEnrollmentStatusEnum, changed_by: Optional[int], reason: Optional[str] = None) -> None:
    status = ClassEnrollmentStatusEnum(status)
    if enrollment.status != status:
        enrollment.status_changed_at = utcnow()
        enrollment.status_changed_by = changed_by
        enrollment.status_change_reason = reason
    enrollment.status = status


def add_student_to_class(session: Session, actor: User, class_id: int, student_id: int) -> ClassEnrollment:
    course_class = get_class(session, class_id)
    _check_class_owner(actor, course_class)
    student = session.get(User, student_id)
    if not student or student.role != RoleEnum.student:
        raise NotFound("Student not found", details={"student_id": student_id})
    if find_class_enrollment(session, class_id, student_id):
        raise DuplicateEnrollment("Student is already enrolled in this class", details={"student_id": student_id})
    enrollment = new_class_enrollment(course_class, student_id, actor.id)
    session.add(enrollment)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise DuplicateEnrollment("Student is already enrolled in this class", details={"student_id": student_id}) from exc
    session.refresh(enrollment)
    return enrollment


def remove_student_from_class(session: Session, actor: User, class_id: int, student_id: int) -> None:
    course_class = get_class(session, class_id)
    _check_class_owner(actor, course_class)
    enrollment = find_class_enrollment(session, class_id, student_id)
    if not enrollment:
        raise NotFound("Student is not enrolled in this class", details={"student_id": student_id})
    session.delete(enrollment)
    session.commit()


def _get_class_enrollment(session: Session, enrollment_id: int) -> ClassEnrollment:
    enrollment = session.get(ClassEnrollment, enrollment_id)
    if not enrollment:
        raise NotFound("Class enrollment not found", details={"enrollment_id": enrollment_id})
    return enrollment


def course_credits(session: Session, course_id: int) -> int:
    course = session.get(Course, course_id)
    if not course:
        raise NotFound("Course not found", details={"course_id": course_id})
    return course.credits


def grade_class_enrollment(session: Session, actor: User, enrollment_id: int, percentage: Optional[float], notes: Optional[str] = None) -> ClassEnrollment:
    enrollment = _get_class_enrollment(session, enrollment_id)
    _check_class_owner(actor, get_class(session, enrollment.class_id))
    if percentage is None:
        clear_grade(enrollment)
    else:
        apply_grade(enrollment, percentage, course_credits(session, enrollment.course_id), actor.id)
    if notes is not None:
        enrollment.grade_notes = notes
    session.add(enrollment)
    session.commit()
    session.refresh(enrollment)
    return enrollment


def change_class_enrollment_status(
    session: Session, actor: User, enrollment_id: int, status: ClassEnrollmentStatusEnum, reason: Optional[str] = None
) -> ClassEnrollment:
    enrollment = _get_class_enrollment(session, enrollment_id)
    _check_class_owner(actor, get_class(session, enrollment.class_id))
    set_status(enrollment, status, actor.id, reason)
    session.add(enrollment)
    session.commit()
    session.refresh(enrollment)
    return enrollment


def student_transcript(session: Session, student_id: int) -> Dict[str, Any]:
    """Graded class enrollments of a student plus the resulting GPA."""
    student = session.get(User, student_id)
    if not student or student.role != RoleEnum.student:
        raise NotFound("Student not found", details={"student_id": student_id})
    rows = session.exec(
        select(ClassEnrollment, Course, Period)
        .join(Course, Course.id == ClassEnrollment.course_id)
        .join(Period, Period.id == ClassEnrollment.period_id)
        .where(ClassEnrollment.student_id == student_id)
        .order_by(Period.start_date, Course.code_es)
    ).all()
    return {
        "student": student,
        "rows": list(rows),
        "gpa": compute_gpa((enrollment, course.credits) for enrollment, course, _ in rows),
    }
