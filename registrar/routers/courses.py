from fastapi import APIRouter, Depends
from typing import List, Optional
from pydantic import BaseModel, Field

from ..db import get_session
from ..models import Course, CourseCategoryEnum, LanguageEnum, ProgramCourse
from ..security import require_roles
from ..services import catalog


router = APIRouter(prefix="/courses", tags=["courses"])


class CourseCreate(BaseModel):
    code_es: Optional[str] = None
    code_en: Optional[str] = None
    name_es: Optional[str] = None
    name_en: Optional[str] = None
    description_es: Optional[str] = None
    description_en: Optional[str] = None
    credits: int
    language: LanguageEnum = LanguageEnum.es
    category: CourseCategoryEnum = CourseCategoryEnum.core
    is_active: bool = True
    program_ids: List[int] = Field(default_factory=list)


class CourseUpdate(BaseModel):
    code_es: Optional[str] = None
    code_en: Optional[str] = None
    name_es: Optional[str] = None
    name_en: Optional[str] = None
    description_es: Optional[str] = None
    description_en: Optional[str] = None
    credits: Optional[int] = None
    language: Optional[LanguageEnum] = None
    category: Optional[CourseCategoryEnum] = None
    is_active: Optional[bool] = None


class ProgramLinkCreate(BaseModel):
    program_id: int
    is_required: bool = True
    category_override: Optional[CourseCategoryEnum] = None


class ProgramLinkUpdate(BaseModel):
    is_required: Optional[bool] = None
    category_override: Optional[CourseCategoryEnum] = None
    is_active: Optional[bool] = None


@router.get("/", response_model=List[Course])
def list_courses(
    is_active: Optional[bool] = None,
    category: Optional[CourseCategoryEnum] = None,
    program_id: Optional[int] = None,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "professor", "student")),
):
    return catalog.list_courses(session, is_active=is_active, category=category, program_id=program_id)


@router.post("/", response_model=Course, status_code=201)
def create_course(payload: CourseCreate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    data = payload.model_dump(exclude={"program_ids"})
    return catalog.create_course(session, data, program_ids=payload.program_ids)


@router.get("/{course_id}", response_model=Course)
def get_course(course_id: int, session=Depends(get_session), user=Depends(require_roles("admin", "professor", "student"))):
    return catalog.get_course(session, course_id)


@router.put("/{course_id}", response_model=Course)
def update_course(course_id: int, payload: CourseUpdate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return catalog.update_course(session, course_id, payload.model_dump(exclude_unset=True))


@router.patch("/{course_id}", response_model=Course)
def patch_course(course_id: int, payload: CourseUpdate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return update_course(course_id, payload, session=session, user=user)


@router.delete("/{course_id}")
def delete_course(course_id: int, session=Depends(get_session), user=Depends(require_roles("admin"))):
    catalog.delete_course(session, course_id)
    return {"ok": True}


@router.post("/{course_id}/programs", response_model=ProgramCourse, status_code=201)
def add_course_to_program(course_id: int, payload: ProgramLinkCreate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return catalog.add_course_to_program(
        session,
        course_id,
        payload.program_id,
        is_required=payload.is_required,
        category_override=payload.category_override,
    )


@router.patch("/{course_id}/programs/{program_id}", response_model=ProgramCourse)
def update_program_link(
    course_id: int,
    program_id: int,
    payload: ProgramLinkUpdate,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
):
    return catalog.update_program_course(session, course_id, program_id, payload.model_dump(exclude_unset=True))


@router.delete("/{course_id}/programs/{program_id}")
def remove_course_from_program(course_id: int, program_id: int, session=Depends(get_session), user=Depends(require_roles("admin"))):
    catalog.remove_course_from_program(session, course_id, program_id)
    return {"ok": True}
