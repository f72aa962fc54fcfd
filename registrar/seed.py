from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from sqlmodel import Session, select

from .db import engine
from .models import (
    Course,
    CourseCategoryEnum,
    DeliveryMethodEnum,
    LanguageEnum,
    Period,
    PeriodStatusEnum,
    Program,
    ProgramCourse,
    ProgramTypeEnum,
    RoleEnum,
    Section,
    SectionStatusEnum,
    User,
)
from .services.credits import recompute_program_credits


DEFAULT_ADMIN_EMAIL = "admin@registrar.dev"
DEFAULT_ADMIN_FIRST_NAME = "Admin"
DEFAULT_ADMIN_LAST_NAME = "Registrar"

DEMO_PROFESSOR_EMAIL = "prof.garcia@registrar.dev"


def ensure_default_admin(session: Optional[Session] = None) -> User:
    """Create the superadmin account used to bootstrap a fresh database."""
    owns_session = session is None
    session = session or Session(engine)
    try:
        existing = session.exec(select(User).where(User.email == DEFAULT_ADMIN_EMAIL)).first()
        if existing:
            updated = False
            if existing.role != RoleEnum.superadmin:
                existing.role = RoleEnum.superadmin
                updated = True
            if not existing.is_active:
                existing.is_active = True
                updated = True
            if updated:
                session.add(existing)
                session.commit()
                session.refresh(existing)
            return existing
        user = User(
            email=DEFAULT_ADMIN_EMAIL,
            first_name=DEFAULT_ADMIN_FIRST_NAME,
            last_name=DEFAULT_ADMIN_LAST_NAME,
            role=RoleEnum.superadmin,
            is_active=True,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user
    finally:
        if owns_session:
            session.close()


def ensure_demo_data() -> None:
    """Populate the catalog with a small deterministic data set for local use."""
    with Session(engine) as session:
        ensure_default_admin(session)
        program = _ensure_program(session)
        course_map = _ensure_courses(session, program)
        period = _ensure_current_period(session)
        professor = _get_or_create_user(
            session,
            email=DEMO_PROFESSOR_EMAIL,
            first_name="Lucía",
            last_name="García",
            role=RoleEnum.professor,
            employee_code="EMP-001",
        )
        for index, (first, last) in enumerate([("Ana", "Torres"), ("Bruno", "Díaz"), ("Carla", "Méndez")], start=1):
            _get_or_create_user(
                session,
                email=f"student{index}@registrar.dev",
                first_name=first,
                last_name=last,
                role=RoleEnum.student,
                student_code=f"S{index:04d}",
                program_id=program.id,
            )
        _ensure_section(session, course_map["MBA-101"], period, professor)
        recompute_program_credits(session, program.id)
        session.commit()


def _get_or_create_user(session: Session, *, email: str, first_name: str, last_name: str, role: RoleEnum, **extra) -> User:
    user = session.exec(select(User).where(User.email == email)).first()
    if user:
        return user
    user = User(email=email, first_name=first_name, last_name=last_name, role=role, is_active=True, **extra)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def _ensure_program(session: Session) -> Program:
    program = session.exec(select(Program).where(Program.code_es == "MBA")).first()
    if program:
        return program
    program = Program(
        code_es="MBA",
        code_en="MBA-EN",
        name_es="Maestría en Administración de Empresas",
        name_en="Master of Business Administration",
        description_es="Gestión, finanzas y estrategia.",
        description_en="Management, finance and strategy.",
        type=ProgramTypeEnum.master,
        degree="Master",
        language=LanguageEnum.both,
        duration_bimesters=12,
    )
    session.add(program)
    session.commit()
    session.refresh(program)
    return program


def _ensure_courses(session: Session, program: Program) -> Dict[str, Course]:
    data = [
        {"code_es": "MBA-101", "name_es": "Contabilidad gerencial", "credits": 3, "category": CourseCategoryEnum.core},
        {"code_es": "MBA-102", "name_es": "Finanzas corporativas", "credits": 3, "category": CourseCategoryEnum.core},
        {"code_es": "MBA-201", "name_es": "Ética empresarial", "credits": 2, "category": CourseCategoryEnum.humanities},
    ]
    mapping: Dict[str, Course] = {}
    for item in data:
        course = session.exec(select(Course).where(Course.code_es == item["code_es"])).first()
        if not course:
            course = Course(**item, description_es=item["name_es"], language=LanguageEnum.es)
            session.add(course)
            session.commit()
            session.refresh(course)
        link = session.exec(
            select(ProgramCourse).where(ProgramCourse.program_id == program.id, ProgramCourse.course_id == course.id)
        ).first()
        if not link:
            session.add(ProgramCourse(program_id=program.id, course_id=course.id, is_required=True))
            session.commit()
        mapping[item["code_es"]] = course
    return mapping


def _ensure_current_period(session: Session) -> Period:
    period = session.exec(select(Period).where(Period.code == "2025-B1")).first()
    if period:
        return period
    for other in session.exec(select(Period).where(Period.is_current_period == True)).all():  # noqa: E712
        other.is_current_period = False
        session.add(other)
    period = Period(
        code="2025-B1",
        year=2025,
        bimester_number=1,
        name="Bimestre 1 2025",
        name_en="Bimester 1 2025",
        start_date=datetime(2025, 1, 13),
        end_date=datetime(2025, 3, 9),
        enrollment_start=datetime(2024, 12, 1),
        enrollment_end=datetime(2025, 1, 12),
        grading_deadline=datetime(2025, 3, 16),
        status=PeriodStatusEnum.enrollment,
        is_current_period=True,
    )
    session.add(period)
    session.commit()
    session.refresh(period)
    return period


def _ensure_section(session: Session, course: Course, period: Period, professor: User) -> Section:
    crn = f"{course.code_es}-01-{period.code}"
    section = session.exec(select(Section).where(Section.crn == crn)).first()
    if section:
        return section
    section = Section(
        course_id=course.id,
        period_id=period.id,
        group_number="01",
        crn=crn,
        professor_id=professor.id,
        capacity=25,
        delivery_method=DeliveryMethodEnum.online_sync,
        schedule={"sessions": [{"day": "monday", "start_time": "18:00", "end_time": "20:00"}], "timezone": "UTC"},
        status=SectionStatusEnum.open,
    )
    session.add(section)
    session.commit()
    session.refresh(section)
    return section
