from fastapi import APIRouter, Depends
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

from ..db import get_session
from ..models import DeliveryMethodEnum, Section, SectionStatusEnum, User
from ..security import require_roles
from ..services import sections


router = APIRouter(prefix="/sections", tags=["sections"])


class ScheduleSession(BaseModel):
    day: Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
    start_time: str = Field(pattern=r"^\d{2}:\d{2}$")
    end_time: str = Field(pattern=r"^\d{2}:\d{2}$")
    room_url: Optional[str] = None


class SectionSchedule(BaseModel):
    sessions: List[ScheduleSession] = Field(default_factory=list)
    timezone: str = "UTC"
    notes: Optional[str] = None


class SectionCreate(BaseModel):
    course_id: int
    period_id: int
    professor_id: int
    group_number: str = Field(min_length=1)
    capacity: int = Field(ge=0)
    waitlist_capacity: Optional[int] = Field(default=None, ge=0)
    delivery_method: DeliveryMethodEnum = DeliveryMethodEnum.in_person
    schedule: Optional[SectionSchedule] = None


class SectionUpdate(BaseModel):
    professor_id: Optional[int] = None
    capacity: Optional[int] = None
    waitlist_capacity: Optional[int] = None
    delivery_method: Optional[DeliveryMethodEnum] = None
    schedule: Optional[SectionSchedule] = None
    status: Optional[SectionStatusEnum] = None
    is_active: Optional[bool] = None


@router.get("/", response_model=List[Section])
def list_sections(
    course_id: Optional[int] = None,
    period_id: Optional[int] = None,
    professor_id: Optional[int] = None,
    status: Optional[SectionStatusEnum] = None,
    is_active: Optional[bool] = None,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "professor", "student")),
):
    return sections.list_sections(
        session,
        course_id=course_id,
        period_id=period_id,
        professor_id=professor_id,
        status=status,
        is_active=is_active,
    )


@router.post("/", response_model=Section, status_code=201)
def create_section(payload: SectionCreate, session=Depends(get_session), user: User = Depends(require_roles("admin", "professor"))):
    return sections.create_section(session, user, payload.model_dump())


@router.get("/{section_id}", response_model=Section)
def get_section(section_id: int, session=Depends(get_session), user=Depends(require_roles("admin", "professor", "student"))):
    return sections.get_section(session, section_id)


@router.put("/{section_id}", response_model=Section)
def update_section(section_id: int, payload: SectionUpdate, session=Depends(get_session), user: User = Depends(require_roles("admin", "professor"))):
    return sections.update_section(session, user, section_id, payload.model_dump(exclude_unset=True))


@router.patch("/{section_id}", response_model=Section)
def patch_section(section_id: int, payload: SectionUpdate, session=Depends(get_session), user: User = Depends(require_roles("admin", "professor"))):
    return update_section(section_id, payload, session=session, user=user)


@router.post("/{section_id}/submit-grades", response_model=Section)
def submit_grades(section_id: int, session=Depends(get_session), user: User = Depends(require_roles("admin", "professor"))):
    return sections.submit_grades(session, user, section_id)


@router.delete("/{section_id}")
def delete_section(section_id: int, force: bool = False, session=Depends(get_session), user: User = Depends(require_roles("admin"))):
    removed = sections.delete_section(session, user, section_id, force=force)
    return {"ok": True, "enrollments_removed": removed}
