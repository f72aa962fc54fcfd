from datetime import datetime
from fastapi import APIRouter, Depends
from typing import Any, Dict, List, Optional
from pydantic import BaseModel

from ..db import get_session
from ..errors import Forbidden
from ..models import Enrollment, EnrollmentStatusEnum, RoleEnum, User
from ..security import require_roles
from ..services import seats


router = APIRouter(prefix="/enrollments", tags=["enrollments"])


class SelfEnrollRequest(BaseModel):
    section_id: int


class EnrollmentCreate(BaseModel):
    student_id: int
    section_id: int
    status: EnrollmentStatusEnum = EnrollmentStatusEnum.enrolled
    is_retake: bool = False
    is_auditing: bool = False


class ForceEnrollRequest(BaseModel):
    student_id: int
    section_id: int
    bypass_capacity: bool = False
    bypass_prerequisites: bool = False
    reason: Optional[str] = None


class ForceEnrollResult(BaseModel):
    enrollment: Enrollment
    message: str
    warnings: List[str]


class EnrollmentUpdate(BaseModel):
    status: Optional[EnrollmentStatusEnum] = None
    status_change_reason: Optional[str] = None
    percentage_grade: Optional[float] = None
    grade_notes: Optional[str] = None
    is_retake: Optional[bool] = None
    is_auditing: Optional[bool] = None
    counts_for_gpa: Optional[bool] = None
    counts_for_progress: Optional[bool] = None
    incomplete_deadline: Optional[datetime] = None


@router.get("/", response_model=List[Enrollment])
def list_enrollments(
    student_id: Optional[int] = None,
    section_id: Optional[int] = None,
    course_id: Optional[int] = None,
    period_id: Optional[int] = None,
    status: Optional[EnrollmentStatusEnum] = None,
    session=Depends(get_session),
    user: User = Depends(require_roles("admin", "professor", "student")),
):
    professor_id = None
    if user.role == RoleEnum.student:
        # Un estudiante solo ve sus propias inscripciones
        if student_id is not None and student_id != user.id:
            raise Forbidden("Students can only list their own enrollments")
        student_id = user.id
    elif user.role == RoleEnum.professor:
        professor_id = user.id
    return seats.list_enrollments(
        session,
        student_id=student_id,
        section_id=section_id,
        course_id=course_id,
        period_id=period_id,
        professor_id=professor_id,
        status=status,
    )


@router.get("/statistics")
def enrollment_statistics(period_id: Optional[int] = None, session=Depends(get_session), user=Depends(require_roles("admin"))) -> Dict[str, Any]:
    return seats.enrollment_statistics(session, period_id=period_id)


@router.post("/me", response_model=Enrollment, status_code=201)
def enroll_self(payload: SelfEnrollRequest, session=Depends(get_session), user: User = Depends(require_roles("student"))):
    return seats.enroll_self(session, user, payload.section_id)


@router.post("/", response_model=Enrollment, status_code=201)
def create_enrollment(payload: EnrollmentCreate, session=Depends(get_session), user: User = Depends(require_roles("admin"))):
    return seats.create_enrollment(
        session,
        user,
        payload.student_id,
        payload.section_id,
        status=payload.status,
        is_retake=payload.is_retake,
        is_auditing=payload.is_auditing,
    )


@router.post("/force", response_model=ForceEnrollResult, status_code=201)
def force_enroll(payload: ForceEnrollRequest, session=Depends(get_session), user: User = Depends(require_roles("admin"))):
    return seats.force_enroll(
        session,
        user,
        payload.student_id,
        payload.section_id,
        bypass_capacity=payload.bypass_capacity,
        bypass_prerequisites=payload.bypass_prerequisites,
        reason=payload.reason,
    )


@router.get("/{enrollment_id}", response_model=Enrollment)
def get_enrollment(enrollment_id: int, session=Depends(get_session), user: User = Depends(require_roles("admin", "professor", "student"))):
    enrollment = seats.get_enrollment(session, enrollment_id)
    if user.role == RoleEnum.student and enrollment.student_id != user.id:
        raise Forbidden("Students can only view their own enrollments")
    if user.role == RoleEnum.professor and enrollment.professor_id != user.id:
        raise Forbidden("Professors can only view enrollments of their sections")
    return enrollment


@router.patch("/{enrollment_id}", response_model=Enrollment)
def update_enrollment(enrollment_id: int, payload: EnrollmentUpdate, session=Depends(get_session), user: User = Depends(require_roles("admin", "professor"))):
    return seats.update_enrollment(session, user, enrollment_id, payload.model_dump(exclude_unset=True))


@router.delete("/{enrollment_id}")
def delete_enrollment(enrollment_id: int, session=Depends(get_session), user=Depends(require_roles("admin"))):
    seats.delete_enrollment(session, enrollment_id)
    return {"ok": True}
