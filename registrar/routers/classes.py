from fastapi import APIRouter, Depends, Response
from typing import List, Optional
from pydantic import BaseModel, Field

from ..config import settings
from ..db import get_session
from ..errors import ValidationFailed
from ..exporters import export_class_roster_excel
from ..models import ClassEnrollment, ClassEnrollmentStatusEnum, Course, CourseClass, Period, User
from ..security import require_roles
from ..services import classes
from ..services.importer import ClassEnrollmentImporter, ClassEnrollmentRecord, ImportReport


router = APIRouter(prefix="/classes", tags=["classes"])


class ClassCreate(BaseModel):
    program_id: int
    course_id: int
    period_id: int
    group_number: str = Field(min_length=1)
    professor_id: int


class ClassUpdate(BaseModel):
    program_id: Optional[int] = None
    course_id: Optional[int] = None
    period_id: Optional[int] = None
    group_number: Optional[str] = None
    professor_id: Optional[int] = None


class ClassStudentAdd(BaseModel):
    student_id: int


class ClassGradeUpdate(BaseModel):
    percentage_grade: Optional[float] = None
    grade_notes: Optional[str] = None


class ClassStatusUpdate(BaseModel):
    status: ClassEnrollmentStatusEnum
    reason: Optional[str] = None


class ClassEnrollmentOut(BaseModel):
    enrollment: ClassEnrollment
    student_code: Optional[str] = None
    student_name: str
    student_email: str


@router.get("/", response_model=List[CourseClass])
def list_classes(
    course_id: Optional[int] = None,
    period_id: Optional[int] = None,
    program_id: Optional[int] = None,
    professor_id: Optional[int] = None,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "professor")),
):
    return classes.list_classes(
        session, course_id=course_id, period_id=period_id, program_id=program_id, professor_id=professor_id
    )


@router.post("/import", response_model=ImportReport)
def import_classes(records: List[ClassEnrollmentRecord], session=Depends(get_session), user: User = Depends(require_roles("admin"))):
    if len(records) > settings.import_max_classes:
        raise ValidationFailed(
            f"Too many class records: {len(records)} (maximum {settings.import_max_classes})",
            details={"records": len(records), "maximum": settings.import_max_classes},
        )
    importer = ClassEnrollmentImporter(session, actor_id=user.id, source="api")
    return importer.run(records)


@router.post("/", response_model=CourseClass, status_code=201)
def create_class(payload: ClassCreate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return classes.create_class(session, payload.model_dump())


@router.get("/{class_id}", response_model=CourseClass)
def get_class(class_id: int, session=Depends(get_session), user=Depends(require_roles("admin", "professor"))):
    return classes.get_class(session, class_id)


@router.put("/{class_id}", response_model=CourseClass)
def update_class(class_id: int, payload: ClassUpdate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return classes.update_class(session, class_id, payload.model_dump(exclude_unset=True))


@router.delete("/{class_id}")
def delete_class(class_id: int, session=Depends(get_session), user=Depends(require_roles("admin"))):
    classes.delete_class(session, class_id)
    return {"ok": True}


@router.get("/{class_id}/enrollments", response_model=List[ClassEnrollmentOut])
def list_class_enrollments(class_id: int, session=Depends(get_session), user=Depends(require_roles("admin", "professor"))):
    return [
        ClassEnrollmentOut(
            enrollment=enrollment,
            student_code=student.student_code,
            student_name=student.full_name,
            student_email=student.email,
        )
        for enrollment, student in classes.list_class_enrollments(session, class_id)
    ]


@router.post("/{class_id}/students", response_model=ClassEnrollment, status_code=201)
def add_student(class_id: int, payload: ClassStudentAdd, session=Depends(get_session), user: User = Depends(require_roles("admin", "professor"))):
    return classes.add_student_to_class(session, user, class_id, payload.student_id)


@router.delete("/{class_id}/students/{student_id}")
def remove_student(class_id: int, student_id: int, session=Depends(get_session), user: User = Depends(require_roles("admin", "professor"))):
    classes.remove_student_from_class(session, user, class_id, student_id)
    return {"ok": True}


@router.put("/enrollments/{enrollment_id}/grade", response_model=ClassEnrollment)
def grade_enrollment(enrollment_id: int, payload: ClassGradeUpdate, session=Depends(get_session), user: User = Depends(require_roles("admin", "professor"))):
    return classes.grade_class_enrollment(session, user, enrollment_id, payload.percentage_grade, payload.grade_notes)


@router.put("/enrollments/{enrollment_id}/status", response_model=ClassEnrollment)
def change_enrollment_status(enrollment_id: int, payload: ClassStatusUpdate, session=Depends(get_session), user: User = Depends(require_roles("admin", "professor"))):
    return classes.change_class_enrollment_status(session, user, enrollment_id, payload.status, payload.reason)


@router.get("/{class_id}/roster.xlsx")
def download_roster(class_id: int, session=Depends(get_session), user=Depends(require_roles("admin", "professor"))):
    course_class = classes.get_class(session, class_id)
    course = session.get(Course, course_class.course_id)
    period = session.get(Period, course_class.period_id)
    content = export_class_roster_excel(course_class, course, period, classes.list_class_enrollments(session, class_id))
    filename = f"roster-{course.primary_code}-{period.code}-{course_class.group_number}.xlsx"
    return Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
