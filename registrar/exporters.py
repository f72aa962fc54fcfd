from io import BytesIO
from typing import Any, Dict, List, Tuple
from openpyxl import Workbook
from openpyxl.styles import Font
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from .models import ClassEnrollment, Course, CourseClass, Period, User


ROSTER_HEADERS = [
    "student_code",
    "last_name",
    "first_name",
    "email",
    "status",
    "percentage_grade",
    "letter_grade",
    "grade_points",
    "quality_points",
]


def export_class_roster_excel(
    course_class: CourseClass,
    course: Course,
    period: Period,
    rows: List[Tuple[ClassEnrollment, User]],
) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Roster"
    ws.append([f"{course.primary_code} - {course.name_es or course.name_en}"])
    ws.append([f"Period {period.code}", f"Group {course_class.group_number}"])
    ws.append([])
    ws.append(ROSTER_HEADERS)
    for cell in ws[4]:
        cell.font = Font(bold=True)
    for enrollment, student in rows:
        ws.append(
            [
                student.student_code,
                student.last_name,
                student.first_name,
                student.email,
                enrollment.status.value,
                enrollment.percentage_grade,
                enrollment.letter_grade,
                enrollment.grade_points,
                enrollment.quality_points,
            ]
        )
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def export_student_grades_pdf(transcript: Dict[str, Any]) -> bytes:
    student: User = transcript["student"]
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4
    y = height - 50
    c.setFont("Helvetica-Bold", 14)
    c.drawString(50, y, f"Grade report: {student.full_name} ({student.student_code})")
    y -= 24
    c.setFont("Helvetica", 10)
    c.drawString(50, y, "Period | Course | Credits | % | Letter | Points | Quality")
    y -= 18
    for enrollment, course, period in transcript["rows"]:
        grade = "-" if enrollment.percentage_grade is None else f"{enrollment.percentage_grade:g}"
        c.drawString(
            50,
            y,
            f"{period.code} | {course.primary_code} | {course.credits} | {grade} | "
            f"{enrollment.letter_grade or '-'} | {enrollment.grade_points if enrollment.grade_points is not None else '-'} | "
            f"{enrollment.quality_points if enrollment.quality_points is not None else '-'}",
        )
        y -= 16
        if y < 70:
            c.showPage()
            y = height - 50
            c.setFont("Helvetica", 10)
    y -= 10
    gpa = transcript["gpa"]
    c.setFont("Helvetica-Bold", 12)
    c.drawString(50, y, f"GPA: {gpa:.2f}" if gpa is not None else "GPA: n/a")
    c.save()
    return buffer.getvalue()
