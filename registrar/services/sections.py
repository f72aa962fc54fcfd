import logging
from typing import Any, Dict, Optional, Sequence

from sqlalchemy import update
from sqlmodel import Session, select

from ..errors import DuplicateCode, Forbidden, InUse, NotFound, ValidationFailed
from ..models import Course, Enrollment, Period, RoleEnum, Section, SectionStatusEnum, User, utcnow
from ..security import is_admin
from ..utils.sqlmodel_helpers import apply_partial_update, normalize_payload_for_model
from .audit import record_audit
from .seats import holds_seat, release_seat


logger = logging.getLogger(__name__)

# Campos que un docente puede cambiar en sus propias secciones
PROFESSOR_EDITABLE = frozenset({"capacity", "status", "delivery_method", "schedule", "waitlist_capacity"})


def build_crn(course: Course, group_number: str, period: Period) -> str:
    code = course.primary_code
    if not code:
        raise ValidationFailed("Course has no code to build the section reference from", details={"course_id": course.id})
    return f"{code}-{group_number}-{period.code}"


def get_section(session: Session, section_id: int) -> Section:
    section = session.get(Section, section_id)
    if not section:
        raise NotFound("Section not found", details={"section_id": section_id})
    return section


def list_sections(
    session: Session,
    course_id: Optional[int] = None,
    period_id: Optional[int] = None,
    professor_id: Optional[int] = None,
    status: Optional[SectionStatusEnum] = None,
    is_active: Optional[bool] = None,
) -> Sequence[Section]:
    stmt = select(Section)
    if course_id is not None:
        stmt = stmt.where(Section.course_id == course_id)
    if period_id is not None:
        stmt = stmt.where(Section.period_id == period_id)
    if professor_id is not None:
        stmt = stmt.where(Section.professor_id == professor_id)
    if status is not None:
        stmt = stmt.where(Section.status == status)
    if is_active is not None:
        stmt = stmt.where(Section.is_active == is_active)
    return session.exec(stmt.order_by(Section.crn)).all()


def _check_professor(session: Session, professor_id: int) -> User:
    professor = session.get(User, professor_id)
    if not professor or professor.role != RoleEnum.professor:
        raise NotFound("Professor not found", details={"professor_id": professor_id})
    if not professor.is_active:
        raise ValidationFailed("Professor is not active", details={"professor_id": professor_id})
    return professor


def _check_owner(actor: User, section: Section) -> None:
    if is_admin(actor):
        return
    if actor.role != RoleEnum.professor or section.professor_id != actor.id:
        raise Forbidden("Professors can only manage their own sections", details={"section_id": section.id})


def _validate_waitlist(waitlist_capacity: Optional[int], waitlisted: int) -> None:
    if waitlist_capacity is None:
        return
    if waitlist_capacity < 0:
        raise ValidationFailed("Waitlist capacity cannot be negative")
    if waitlisted > waitlist_capacity:
        raise ValidationFailed(
            "Waitlist capacity cannot be lower than the current waitlist",
            details={"waitlisted": waitlisted, "waitlist_capacity": waitlist_capacity},
        )


def create_section(session: Session, actor: User, data: Dict[str, Any]) -> Section:
    values = normalize_payload_for_model(
        Section, data, protected={"crn", "enrolled", "waitlisted", "status", "grades_submitted", "grades_submitted_at", "is_active"}
    )
    if actor.role == RoleEnum.professor and values.get("professor_id") != actor.id:
        raise Forbidden("Professors can only create sections assigned to themselves")
    if values.get("capacity") is None or values["capacity"] < 0:
        raise ValidationFailed("Capacity must be zero or greater", details={"capacity": values.get("capacity")})
    _validate_waitlist(values.get("waitlist_capacity"), 0)

    course = session.get(Course, values["course_id"])
    if not course:
        raise NotFound("Course not found", details={"course_id": values["course_id"]})
    period = session.get(Period, values["period_id"])
    if not period:
        raise NotFound("Period not found", details={"period_id": values["period_id"]})
    _check_professor(session, values["professor_id"])

    values["group_number"] = values["group_number"].strip()
    crn = build_crn(course, values["group_number"], period)
    if session.exec(select(Section).where(Section.crn == crn)).first():
        raise DuplicateCode(f"Section already exists: {crn}", details={"crn": crn})

    section = Section(
        **values,
        crn=crn,
        enrolled=0,
        waitlisted=0,
        status=SectionStatusEnum.draft,
        is_active=True,
    )
    session.add(section)
    session.commit()
    session.refresh(section)
    logger.info("Section %s created (%s)", section.id, crn)
    return section


def _set_capacity(session: Session, section: Section, capacity: int) -> None:
    if capacity < 0:
        raise ValidationFailed("Capacity must be zero or greater", details={"capacity": capacity})
    result = session.execute(
        update(Section)
        .where(Section.id == section.id, Section.enrolled <= capacity)
        .values(capacity=capacity)
        .execution_options(synchronize_session=False)
    )
    session.refresh(section)
    if result.rowcount != 1:
        raise ValidationFailed(
            "Capacity cannot be lower than the number of enrolled students",
            details={"capacity": capacity, "enrolled": section.enrolled},
        )


def update_section(session: Session, actor: User, section_id: int, data: Dict[str, Any]) -> Section:
    section = get_section(session, section_id)
    _check_owner(actor, section)
    if not is_admin(actor):
        extra = set(data) - PROFESSOR_EDITABLE
        if extra:
            raise Forbidden("Professors cannot change these fields", details={"fields": sorted(extra)})
    values = normalize_payload_for_model(
        Section,
        data,
        protected={"crn", "course_id", "period_id", "group_number", "enrolled", "waitlisted", "grades_submitted", "grades_submitted_at"},
    )
    if "professor_id" in values:
        _check_professor(session, values["professor_id"])
    if "waitlist_capacity" in values:
        _validate_waitlist(values["waitlist_capacity"], section.waitlisted)
    if "capacity" in values:
        _set_capacity(session, section, values.pop("capacity"))
    apply_partial_update(section, values)
    session.add(section)
    session.commit()
    session.refresh(section)
    return section


def submit_grades(session: Session, actor: User, section_id: int) -> Section:
    section = get_section(session, section_id)
    _check_owner(actor, section)
    if section.grades_submitted:
        return section
    section.grades_submitted = True
    section.grades_submitted_at = utcnow()
    session.add(section)
    session.commit()
    session.refresh(section)
    return section


def delete_section(session: Session, actor: User, section_id: int, force: bool = False) -> int:
    """Delete a section; with ``force`` its enrollments go first. Returns how many were removed."""
    section = get_section(session, section_id)
    enrollments = session.exec(select(Enrollment).where(Enrollment.section_id == section_id)).all()
    if enrollments and not force:
        raise InUse(
            "Cannot delete section with enrollments; use force to remove them",
            details={"enrollments": len(enrollments)},
        )
    for enrollment in enrollments:
        if holds_seat(enrollment.status, enrollment.is_auditing):
            release_seat(session, section_id)
        session.delete(enrollment)
    session.flush()
    if enrollments:
        remaining = session.exec(select(Section.enrolled).where(Section.id == section_id)).one()
        logger.warning(
            "Force deleting section %s with %s enrollment(s); counter after rollback: %s",
            section.crn,
            len(enrollments),
            remaining,
        )
        record_audit(
            session,
            entity_type="section",
            entity_id=section_id,
            action="force_delete",
            description=f"Section {section.crn} deleted with {len(enrollments)} enrollment(s)",
            user_id=actor.id,
            details={"enrollment_ids": [e.id for e in enrollments], "crn": section.crn},
        )
    session.delete(section)
    session.commit()
    return len(enrollments)

