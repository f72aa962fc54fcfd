from fastapi import APIRouter, Depends, Response
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from ..db import get_session
from ..errors import Forbidden, NotFound
from ..exporters import export_student_grades_pdf
from ..models import RoleEnum, User
from ..security import get_current_user, require_roles
from ..services import users
from ..services.classes import student_transcript


router = APIRouter(prefix="/users", tags=["users"])


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    first_name: str
    last_name: str
    full_name: str
    role: RoleEnum
    is_active: bool
    student_code: Optional[str] = None
    program_id: Optional[int] = None
    employee_code: Optional[str] = None


class StudentCreate(BaseModel):
    email: str = Field(min_length=3)
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    student_code: str = Field(min_length=1)
    program_id: Optional[int] = None
    phone: Optional[str] = None
    country: Optional[str] = None


class ProfessorCreate(BaseModel):
    email: str = Field(min_length=3)
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    employee_code: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None


class UserUpdate(BaseModel):
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: Optional[bool] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    student_code: Optional[str] = None
    program_id: Optional[int] = None
    employee_code: Optional[str] = None


@router.get("/me", response_model=UserOut)
def get_profile(user: User = Depends(get_current_user)):
    return user


@router.get("/", response_model=List[UserOut])
def list_users(
    role: Optional[RoleEnum] = None,
    program_id: Optional[int] = None,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
):
    return users.list_users(session, role=role, program_id=program_id)


@router.get("/by-email", response_model=UserOut)
def get_user_by_email(email: str, session=Depends(get_session), user=Depends(require_roles("admin"))):
    obj = users.find_by_email(session, email)
    if not obj:
        raise NotFound("User not found", details={"email": email})
    return obj


@router.get("/by-student-code", response_model=UserOut)
def get_user_by_student_code(code: str, session=Depends(get_session), user=Depends(require_roles("admin", "professor"))):
    obj = users.find_by_student_code(session, code)
    if not obj:
        raise NotFound("Student not found", details={"student_code": code})
    return obj


@router.post("/students", response_model=UserOut, status_code=201)
def create_student(payload: StudentCreate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return users.create_user(session, {**payload.model_dump(), "role": RoleEnum.student})


@router.post("/professors", response_model=UserOut, status_code=201)
def create_professor(payload: ProfessorCreate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return users.create_user(session, {**payload.model_dump(), "role": RoleEnum.professor})


@router.get("/{user_id}", response_model=UserOut)
def get_user(user_id: int, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return users.get_user(session, user_id)


@router.patch("/{user_id}", response_model=UserOut)
def update_user(user_id: int, payload: UserUpdate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return users.update_user(session, user_id, payload.model_dump(exclude_unset=True))


@router.get("/students/{student_id}/grades.pdf")
def download_grade_report(student_id: int, session=Depends(get_session), user: User = Depends(require_roles("admin", "student"))):
    if user.role == RoleEnum.student and user.id != student_id:
        raise Forbidden("Students can only download their own grade report")
    transcript = student_transcript(session, student_id)
    content = export_student_grades_pdf(transcript)
    filename = f"grades-{transcript['student'].student_code}.pdf"
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
