from datetime import datetime
from fastapi import APIRouter, Depends
from typing import List, Optional
from pydantic import BaseModel

from ..db import get_session
from ..errors import NotFound
from ..models import Period, PeriodStatusEnum
from ..security import require_roles
from ..services import periods


router = APIRouter(prefix="/periods", tags=["periods"])


class PeriodCreate(BaseModel):
    code: str
    year: int
    bimester_number: int
    name: str
    name_en: Optional[str] = None
    start_date: datetime
    end_date: datetime
    enrollment_start: datetime
    enrollment_end: datetime
    grading_deadline: datetime


class PeriodUpdate(BaseModel):
    code: Optional[str] = None
    year: Optional[int] = None
    bimester_number: Optional[int] = None
    name: Optional[str] = None
    name_en: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    enrollment_start: Optional[datetime] = None
    enrollment_end: Optional[datetime] = None
    grading_deadline: Optional[datetime] = None
    status: Optional[PeriodStatusEnum] = None
    is_current_period: Optional[bool] = None


class PeriodStatusUpdate(BaseModel):
    status: PeriodStatusEnum


@router.get("/", response_model=List[Period])
def list_periods(
    year: Optional[int] = None,
    status: Optional[PeriodStatusEnum] = None,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "professor", "student")),
):
    return periods.list_periods(session, year=year, status=status)


@router.get("/current", response_model=Period)
def get_current_period(session=Depends(get_session), user=Depends(require_roles("admin", "professor", "student"))):
    current = periods.get_current_period(session)
    if not current:
        raise NotFound("No current period configured")
    return current


@router.post("/", response_model=Period, status_code=201)
def create_period(payload: PeriodCreate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return periods.create_period(session, payload.model_dump())


@router.get("/{period_id}", response_model=Period)
def get_period(period_id: int, session=Depends(get_session), user=Depends(require_roles("admin", "professor", "student"))):
    return periods.get_period(session, period_id)


@router.put("/{period_id}", response_model=Period)
def update_period(period_id: int, payload: PeriodUpdate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return periods.update_period(session, period_id, payload.model_dump(exclude_unset=True))


@router.patch("/{period_id}", response_model=Period)
def patch_period(period_id: int, payload: PeriodUpdate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return update_period(period_id, payload, session=session, user=user)


@router.post("/{period_id}/set-current", response_model=Period)
def set_current_period(period_id: int, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return periods.set_current_period(session, period_id)


@router.post("/{period_id}/status", response_model=Period)
def change_period_status(period_id: int, payload: PeriodStatusUpdate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return periods.change_period_status(session, period_id, payload.status)


@router.delete("/{period_id}")
def delete_period(period_id: int, session=Depends(get_session), user=Depends(require_roles("admin"))):
    periods.delete_period(session, period_id)
    return {"ok": True}
