"""Programs, courses and the associations between them.

Every mutation that can move a program's credit total defers a recompute
instead of touching ``Program.total_credits`` inline.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type, Union

from sqlalchemy import func, or_
from sqlmodel import Session, select

from ..errors import Conflict, DuplicateCode, InUse, NotFound, ValidationFailed
from ..models import (
    ClassEnrollment,
    Course,
    CourseClass,
    Enrollment,
    LanguageEnum,
    Program,
    ProgramCourse,
    Section,
    User,
)
from ..utils.sqlmodel_helpers import apply_partial_update, normalize_payload_for_model
from .credits import defer_credit_recompute, defer_credit_recompute_many, programs_linked_to_course


logger = logging.getLogger(__name__)

_LANGUAGE_LABELS = {"es": "Spanish", "en": "English"}
_BILINGUAL_FIELDS = ("code", "name", "description")


def normalize_code(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    cleaned = code.strip().upper()
    return cleaned or None


def _required_languages(language: Union[LanguageEnum, str]) -> Tuple[str, ...]:
    value = LanguageEnum(language)
    if value == LanguageEnum.both:
        return ("es", "en")
    return (value.value,)


def validate_language_fields(values: Dict[str, Any]) -> None:
    """The language mode decides which code/name/description trios are mandatory."""
    language = values.get("language") or LanguageEnum.es
    missing: List[str] = []
    for lang in _required_languages(language):
        for field in _BILINGUAL_FIELDS:
            raw = values.get(f"{field}_{lang}")
            if raw is None or not str(raw).strip():
                missing.append(f"{field}_{lang}")
    if missing:
        languages = " and ".join(_LANGUAGE_LABELS[lang] for lang in _required_languages(language))
        raise ValidationFailed(
            f"{languages} code, name and description are required",
            details={"missing": missing},
        )


def _ensure_unique_codes(
    session: Session,
    model: Union[Type[Program], Type[Course]],
    codes: Iterable[Optional[str]],
    exclude_id: Optional[int] = None,
) -> None:
    wanted = sorted({code for code in (normalize_code(c) for c in codes) if code})
    if not wanted:
        return
    stmt = select(model).where(
        or_(func.upper(model.code_es).in_(wanted), func.upper(model.code_en).in_(wanted))
    )
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    clash = session.exec(stmt).first()
    if clash:
        label = "Program" if model is Program else "Course"
        taken = [c for c in wanted if c in {normalize_code(clash.code_es), normalize_code(clash.code_en)}]
        raise DuplicateCode(
            f"{label} code already exists: {', '.join(taken)}",
            details={"codes": taken, "existing_id": clash.id},
        )


def _clean_codes(values: Dict[str, Any]) -> None:
    for key in ("code_es", "code_en"):
        if key in values and values[key] is not None:
            values[key] = values[key].strip() or None


# ---------------------------------------------------------------- programs


def list_programs(
    session: Session,
    is_active: Optional[bool] = None,
    program_type: Optional[str] = None,
    language: Optional[str] = None,
) -> Sequence[Program]:
    stmt = select(Program)
    if is_active is not None:
        stmt = stmt.where(Program.is_active == is_active)
    if program_type:
        stmt = stmt.where(Program.type == program_type)
    if language:
        stmt = stmt.where(Program.language == language)
    return session.exec(stmt.order_by(Program.id)).all()


def get_program(session: Session, program_id: int) -> Program:
    program = session.get(Program, program_id)
    if not program:
        raise NotFound("Program not found", details={"program_id": program_id})
    return program


def create_program(session: Session, data: Dict[str, Any]) -> Program:
    values = normalize_payload_for_model(Program, data, protected={"total_credits"})
    _clean_codes(values)
    validate_language_fields(values)
    if (values.get("duration_bimesters") or 0) <= 0:
        raise ValidationFailed("Duration must be a positive number of bimesters")
    _ensure_unique_codes(session, Program, (values.get("code_es"), values.get("code_en")))
    program = Program(**values, total_credits=0)
    session.add(program)
    session.commit()
    session.refresh(program)
    logger.info("Program %s created", program.id)
    return program


def update_program(session: Session, program_id: int, data: Dict[str, Any]) -> Program:
    program = get_program(session, program_id)
    values = normalize_payload_for_model(Program, data, protected={"total_credits"})
    _clean_codes(values)
    merged = {**program.model_dump(), **values}
    validate_language_fields(merged)
    if "duration_bimesters" in values and (values["duration_bimesters"] or 0) <= 0:
        raise ValidationFailed("Duration must be a positive number of bimesters")
    if "code_es" in values or "code_en" in values:
        _ensure_unique_codes(session, Program, (merged.get("code_es"), merged.get("code_en")), exclude_id=program.id)
    apply_partial_update(program, values)
    session.add(program)
    session.commit()
    session.refresh(program)
    return program


def delete_program(session: Session, program_id: int) -> None:
    program = get_program(session, program_id)
    students = session.exec(select(func.count()).select_from(User).where(User.program_id == program_id)).one()
    if students:
        raise InUse("Cannot delete program with enrolled students", details={"students": students})
    classes = session.exec(select(func.count()).select_from(CourseClass).where(CourseClass.program_id == program_id)).one()
    if classes:
        raise InUse("Cannot delete program with classes", details={"classes": classes})
    for link in session.exec(select(ProgramCourse).where(ProgramCourse.program_id == program_id)).all():
        session.delete(link)
    session.flush()
    session.delete(program)
    session.commit()
    logger.info("Program %s deleted", program_id)


def list_program_courses(session: Session, program_id: int, only_active: bool = False) -> List[Dict[str, Any]]:
    get_program(session, program_id)
    stmt = (
        select(ProgramCourse, Course)
        .join(Course, Course.id == ProgramCourse.course_id)
        .where(ProgramCourse.program_id == program_id)
    )
    if only_active:
        stmt = stmt.where(ProgramCourse.is_active == True)  # noqa: E712
    rows = session.exec(stmt.order_by(Course.code_es, Course.code_en)).all()
    return [
        {
            "association_id": link.id,
            "program_id": link.program_id,
            "course_id": course.id,
            "code_es": course.code_es,
            "code_en": course.code_en,
            "name_es": course.name_es,
            "name_en": course.name_en,
            "credits": course.credits,
            "category": link.category_override or course.category,
            "is_required": link.is_required,
            "is_active": link.is_active,
            "course_is_active": course.is_active,
        }
        for link, course in rows
    ]


# ----------------------------------------------------------------- courses


def _validate_credits(credits: Any) -> None:
    if isinstance(credits, bool) or not isinstance(credits, int) or credits <= 0:
        raise ValidationFailed("Credits must be a positive integer", details={"credits": credits})


def list_courses(
    session: Session,
    is_active: Optional[bool] = None,
    category: Optional[str] = None,
    program_id: Optional[int] = None,
) -> Sequence[Course]:
    stmt = select(Course)
    if program_id is not None:
        stmt = stmt.join(ProgramCourse, ProgramCourse.course_id == Course.id).where(ProgramCourse.program_id == program_id)
    if is_active is not None:
        stmt = stmt.where(Course.is_active == is_active)
    if category:
        stmt = stmt.where(Course.category == category)
    return session.exec(stmt.order_by(Course.id)).all()


def get_course(session: Session, course_id: int) -> Course:
    course = session.get(Course, course_id)
    if not course:
        raise NotFound("Course not found", details={"course_id": course_id})
    return course


def create_course(session: Session, data: Dict[str, Any], program_ids: Iterable[int] = ()) -> Course:
    _validate_credits(data.get("credits"))
    values = normalize_payload_for_model(Course, data)
    _clean_codes(values)
    validate_language_fields(values)
    _ensure_unique_codes(session, Course, (values.get("code_es"), values.get("code_en")))
    course = Course(**values)
    session.add(course)
    session.flush()
    for program_id in dict.fromkeys(program_ids):
        get_program(session, program_id)
        session.add(ProgramCourse(program_id=program_id, course_id=course.id))
        defer_credit_recompute(session, program_id)
    session.commit()
    session.refresh(course)
    logger.info("Course %s created", course.id)
    return course


def update_course(session: Session, course_id: int, data: Dict[str, Any]) -> Course:
    course = get_course(session, course_id)
    if "credits" in data:
        _validate_credits(data["credits"])
    values = normalize_payload_for_model(Course, data)
    _clean_codes(values)
    merged = {**course.model_dump(), **values}
    validate_language_fields(merged)
    if "code_es" in values or "code_en" in values:
        _ensure_unique_codes(session, Course, (merged.get("code_es"), merged.get("code_en")), exclude_id=course.id)
    changed = apply_partial_update(course, values)
    session.add(course)
    if "credits" in changed or "is_active" in changed:
        defer_credit_recompute_many(session, programs_linked_to_course(session, course.id))
    session.commit()
    session.refresh(course)
    return course


def delete_course(session: Session, course_id: int) -> None:
    course = get_course(session, course_id)
    enrollments = session.exec(select(func.count()).select_from(Enrollment).where(Enrollment.course_id == course_id)).one()
    if enrollments:
        raise InUse("Cannot delete course with existing enrollments", details={"enrollments": enrollments})
    sections = session.exec(select(func.count()).select_from(Section).where(Section.course_id == course_id)).one()
    if sections:
        raise InUse("Cannot delete course with existing sections", details={"sections": sections})

    affected_programs = programs_linked_to_course(session, course_id)
    for row in session.exec(select(ClassEnrollment).where(ClassEnrollment.course_id == course_id)).all():
        session.delete(row)
    session.flush()
    for row in session.exec(select(CourseClass).where(CourseClass.course_id == course_id)).all():
        session.delete(row)
    for row in session.exec(select(ProgramCourse).where(ProgramCourse.course_id == course_id)).all():
        session.delete(row)
    session.flush()
    session.delete(course)
    defer_credit_recompute_many(session, affected_programs)
    session.commit()
    logger.info("Course %s deleted (programs affected: %s)", course_id, affected_programs)


# ------------------------------------------------------------ associations


def _get_association(session: Session, course_id: int, program_id: int) -> ProgramCourse:
    link = session.exec(
        select(ProgramCourse).where(ProgramCourse.course_id == course_id, ProgramCourse.program_id == program_id)
    ).first()
    if not link:
        raise NotFound(
            "Course is not linked to this program",
            details={"course_id": course_id, "program_id": program_id},
        )
    return link


def add_course_to_program(
    session: Session,
    course_id: int,
    program_id: int,
    is_required: bool = True,
    category_override: Optional[str] = None,
) -> ProgramCourse:
    get_course(session, course_id)
    get_program(session, program_id)
    existing = session.exec(
        select(ProgramCourse).where(ProgramCourse.course_id == course_id, ProgramCourse.program_id == program_id)
    ).first()
    if existing:
        raise Conflict(
            "Course is already linked to this program",
            details={"course_id": course_id, "program_id": program_id},
        )
    values = normalize_payload_for_model(
        ProgramCourse, {"is_required": is_required, "category_override": category_override}
    )
    link = ProgramCourse(program_id=program_id, course_id=course_id, **values)
    session.add(link)
    defer_credit_recompute(session, program_id)
    session.commit()
    session.refresh(link)
    return link


def update_program_course(session: Session, course_id: int, program_id: int, data: Dict[str, Any]) -> ProgramCourse:
    link = _get_association(session, course_id, program_id)
    apply_partial_update(link, data, protected={"program_id", "course_id"})
    session.add(link)
    defer_credit_recompute(session, program_id)
    session.commit()
    session.refresh(link)
    return link


def remove_course_from_program(session: Session, course_id: int, program_id: int) -> None:
    link = _get_association(session, course_id, program_id)
    session.delete(link)
    defer_credit_recompute(session, program_id)
    session.commit()
