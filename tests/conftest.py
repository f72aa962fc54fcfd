import os
import tempfile
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

# Configurar SQLite de pruebas antes de importar la app
_TEST_DIR = tempfile.mkdtemp(prefix="registrar-tests-")
TEST_DB_PATH = os.path.join(_TEST_DIR, "test.db")
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["APP_ENV"] = "dev"
os.environ["CREDIT_QUEUE_ENABLED"] = "1"
os.environ["CREDIT_QUEUE_WORKERS"] = "1"
os.environ["IMPORT_MAX_CLASSES"] = "50"

from sqlmodel import SQLModel, Session  # noqa: E402

from registrar import db, main  # noqa: E402
from registrar.models import (  # noqa: E402
    Course,
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
from registrar.security import create_access_token  # noqa: E402
from registrar.services.credits import credit_queue  # noqa: E402


@pytest.fixture(scope="session")
def client():
    db.init_db()
    assert TEST_DB_PATH in str(db.engine.url), f"Engine apunta a {db.engine.url}"
    # Sin context manager: el lifespan (seed) no corre en tests
    client = TestClient(main.app)
    yield client
    client.close()
    credit_queue.drain(timeout=5.0)
    credit_queue.stop()


@pytest.fixture()
def session(client):
    with Session(db.engine) as session:
        yield session


@pytest.fixture(autouse=True)
def _clean_tables(client):
    yield
    credit_queue.drain(timeout=5.0)
    # Cada prueba arranca con tablas vacías
    with Session(db.engine) as session:
        for table in reversed(SQLModel.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()


def make_user(session: Session, email: str, role: RoleEnum, **extra) -> User:
    user = User(
        email=email,
        first_name=extra.pop("first_name", email.split("@")[0].title()),
        last_name=extra.pop("last_name", "Test"),
        role=role,
        **extra,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def auth(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.email)}"}


@pytest.fixture()
def admin(session):
    return make_user(session, "admin@test.edu", RoleEnum.admin)


@pytest.fixture()
def admin_headers(admin):
    return auth(admin)


@pytest.fixture()
def professor(session):
    return make_user(session, "prof@x.edu", RoleEnum.professor, first_name="Pat", last_name="Rivera")


@pytest.fixture()
def professor_headers(professor):
    return auth(professor)


@pytest.fixture()
def program(session):
    program = Program(
        code_es="MBA",
        name_es="Maestría en Administración",
        description_es="Programa de prueba",
        type=ProgramTypeEnum.master,
        duration_bimesters=12,
    )
    session.add(program)
    session.commit()
    session.refresh(program)
    return program


@pytest.fixture()
def course(session, program):
    course = Course(code_es="MTH101", name_es="Matemáticas", description_es="Cálculo básico", credits=3)
    session.add(course)
    session.commit()
    session.refresh(course)
    session.add(ProgramCourse(program_id=program.id, course_id=course.id))
    session.commit()
    return course


@pytest.fixture()
def period(session):
    period = Period(
        code="2025-B1",
        year=2025,
        bimester_number=1,
        name="2025-B1",
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


@pytest.fixture()
def make_student(session, program):
    counter = {"n": 0}

    def _make(code: str = None) -> User:
        counter["n"] += 1
        code = code or f"S{counter['n']}"
        return make_user(
            session,
            f"{code.lower()}@students.test.edu",
            RoleEnum.student,
            student_code=code,
            program_id=program.id,
        )

    return _make


@pytest.fixture()
def make_section(session, course, period, professor):
    counter = {"n": 0}

    def _make(capacity: int = 30, status: SectionStatusEnum = SectionStatusEnum.open, enrolled: int = 0) -> Section:
        counter["n"] += 1
        group = f"{counter['n']:02d}"
        section = Section(
            course_id=course.id,
            period_id=period.id,
            group_number=group,
            crn=f"{course.code_es}-{group}-{period.code}",
            professor_id=professor.id,
            capacity=capacity,
            enrolled=enrolled,
            status=status,
        )
        session.add(section)
        session.commit()
        session.refresh(section)
        return section

    return _make


@pytest.fixture()
def headers_for():
    return auth
