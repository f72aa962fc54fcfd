import math

from fastapi.testclient import TestClient
from sqlmodel import select

from registrar.models import AuditLog, ClassEnrollment, ClassEnrollmentStatusEnum, CourseClass, Period
from registrar.services import importer as importer_module
from registrar.services.importer import (
    ClassEnrollmentImporter,
    ClassEnrollmentRecord,
    ImportErrorType,
    StudentGrade,
)


def _record(**overrides) -> ClassEnrollmentRecord:
    data = {
        "program_code": "MBA",
        "course_code": "MTH101",
        "bimester_name": "2025-B1",
        "group_number": "01",
        "professor_email": "prof@x.edu",
        "students": [StudentGrade(student_code="S1", percentage_grade=95)],
    }
    data.update(overrides)
    return ClassEnrollmentRecord(**data)


def test_import_creates_class_and_reports_missing_student(session, program, course, period, professor, make_student):
    student = make_student("S1")
    record = _record(
        students=[
            StudentGrade(student_code="S1", percentage_grade=95),
            StudentGrade(student_code="S2", percentage_grade=80),
        ]
    )

    report = ClassEnrollmentImporter(session).run([record])

    assert report.classes_processed == 1
    assert report.classes_created == 1
    assert report.enrollments_created == 1
    assert report.enrollments_updated == 0
    assert len(report.errors) == 1
    error = report.errors[0]
    assert error.type == ImportErrorType.student_not_found
    assert error.student_code == "S2"
    assert error.class_key == "MBA-MTH101-2025-B1-01"
    assert error.line == 1

    enrollment = session.exec(select(ClassEnrollment).where(ClassEnrollment.student_id == student.id)).one()
    assert enrollment.letter_grade == "A"
    assert enrollment.grade_points == 4.0
    assert enrollment.quality_points == 12.0
    assert enrollment.status == ClassEnrollmentStatusEnum.completed
    assert enrollment.professor_id == professor.id


def test_rerun_reuses_class_and_updates_grades(session, program, course, period, professor, make_student):
    make_student("S1")
    ClassEnrollmentImporter(session).run([_record()])

    report = ClassEnrollmentImporter(session).run([_record(students=[StudentGrade(student_code="s1", percentage_grade=72)])])

    assert report.classes_created == 0
    assert report.classes_already_existed == 1
    assert report.enrollments_created == 0
    assert report.enrollments_updated == 1
    assert report.warnings == ("Class already exists: MBA-MTH101-2025-B1-01 (using existing)",)
    assert len(session.exec(select(CourseClass)).all()) == 1
    enrollment = session.exec(select(ClassEnrollment)).one()
    session.refresh(enrollment)
    assert enrollment.letter_grade == "C-"
    assert enrollment.quality_points == 5.1


def test_lookup_failures_are_typed_and_do_not_stop_the_batch(session, program, course, period, professor, make_student):
    make_student("S1")
    records = [
        _record(program_code="NOPE"),
        _record(course_code="XX999"),
        _record(bimester_name="2030-B6"),
        _record(professor_email="ghost@x.edu"),
        _record(group_number="02"),
    ]

    report = ClassEnrollmentImporter(session).run(records)

    assert [e.type for e in report.errors] == [
        ImportErrorType.program_not_found,
        ImportErrorType.course_not_found,
        ImportErrorType.bimester_not_found,
        ImportErrorType.professor_not_found,
    ]
    assert [e.line for e in report.errors] == [1, 2, 3, 4]
    assert report.errors[0].message == "Program not found: NOPE"
    assert report.classes_processed == 5
    assert report.classes_created == 1
    assert report.enrollments_created == 1


def test_invalid_grades_are_reported_per_student(session, program, course, period, professor, make_student):
    make_student("S1")
    make_student("S2")
    record = _record(
        students=[
            StudentGrade(student_code="S1", percentage_grade=150),
            StudentGrade(student_code="S2", percentage_grade=math.nan),
        ]
    )

    report = ClassEnrollmentImporter(session).run([record])

    assert [e.type for e in report.errors_of(ImportErrorType.invalid_grade)] == [ImportErrorType.invalid_grade] * 2
    assert report.errors[0].message == "Invalid grade for student S1: 150.0"
    assert report.enrollments_created == 0
    # La clase se crea aunque ninguna nota sea válida
    assert report.classes_created == 1


def test_bimester_matches_period_code_case_insensitive(session, program, course, period, professor, make_student):
    period.name = "Bimestre 1 2025"
    session.add(period)
    session.commit()
    make_student("S1")

    report = ClassEnrollmentImporter(session).run(
        [_record(bimester_name=" bimestre 1 2025 "), _record(bimester_name="2025-b1", group_number="02")]
    )

    assert report.errors == ()
    assert report.classes_created == 2


def test_import_writes_audit_entry(session, admin, program, course, period, professor, make_student):
    make_student("S1")
    ClassEnrollmentImporter(session, actor_id=admin.id, source="unit").run([_record()])

    audit = session.exec(select(AuditLog).where(AuditLog.action == "class_enrollment_import")).one()
    assert audit.user_id == admin.id
    assert audit.details["source"] == "unit"
    assert audit.details["enrollmentsCreated"] == 1


def test_import_endpoint_uses_camel_case(client: TestClient, admin_headers, program, course, period, professor, make_student):
    make_student("S1")
    payload = [
        {
            "programCode": "MBA",
            "courseCode": "MTH101",
            "bimesterName": "2025-B1",
            "groupNumber": "01",
            "professorEmail": "PROF@x.edu",
            "students": [{"studentCode": "S1", "percentageGrade": 95}, {"studentCode": "S2", "percentageGrade": 60}],
        }
    ]

    r = client.post("/classes/import", json=payload, headers=admin_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["classesCreated"] == 1
    assert body["enrollmentsCreated"] == 1
    assert body["errors"][0]["type"] == "student_not_found"
    assert body["errors"][0]["classKey"] == "MBA-MTH101-2025-B1-01"
    assert body["errors"][0]["studentCode"] == "S2"


def test_import_endpoint_limits_batch_size(client: TestClient, admin_headers):
    record = {
        "programCode": "MBA",
        "courseCode": "MTH101",
        "bimesterName": "2025-B1",
        "groupNumber": "01",
        "professorEmail": "prof@x.edu",
        "students": [],
    }
    r = client.post("/classes/import", json=[record] * 51, headers=admin_headers)
    assert r.status_code == 422
    assert r.json()["code"] == "validation_failed"


def test_import_requires_admin(client: TestClient, professor_headers):
    r = client.post("/classes/import", json=[], headers=professor_headers)
    assert r.status_code == 403


def test_enrollment_write_failure_skips_only_that_student(monkeypatch, session, program, course, period, professor, make_student):
    ids = {code: make_student(code).id for code in ("S1", "S2", "S3")}
    real_new_enrollment = importer_module.new_class_enrollment

    def new_enrollment(course_class, student_id, enrolled_by):
        if student_id == ids["S2"]:
            raise RuntimeError("disk full")
        return real_new_enrollment(course_class, student_id, enrolled_by)

    monkeypatch.setattr(importer_module, "new_class_enrollment", new_enrollment)
    records = [
        _record(
            students=[
                StudentGrade(student_code="S1", percentage_grade=90),
                StudentGrade(student_code="S2", percentage_grade=85),
                StudentGrade(student_code="S3", percentage_grade=70),
            ]
        ),
        _record(group_number="02", students=[StudentGrade(student_code="S1", percentage_grade=60)]),
    ]

    report = ClassEnrollmentImporter(session).run(records)

    assert report.classes_created == 2
    assert report.enrollments_created == 3
    assert len(report.errors) == 1
    error = report.errors[0]
    assert error.type == ImportErrorType.enrollment_failed
    assert error.student_code == "S2"
    assert error.line == 1
    assert "disk full" in error.message
    stored = session.exec(select(ClassEnrollment)).all()
    assert sorted(e.student_id for e in stored) == sorted([ids["S1"], ids["S3"], ids["S1"]])


def test_class_insert_failure_is_reported_and_batch_continues(monkeypatch, session, program, course, period, professor, make_student):
    make_student("S1")
    ClassEnrollmentImporter(session).run([_record(students=[])])
    # Sin búsqueda previa el insert choca con la restricción única de la clase
    monkeypatch.setattr(importer_module, "find_class", lambda *args: None)

    report = ClassEnrollmentImporter(session).run([_record(), _record(group_number="02")])

    assert report.classes_processed == 2
    assert report.classes_created == 1
    assert report.classes_already_existed == 0
    assert report.enrollments_created == 1
    assert [e.type for e in report.errors] == [ImportErrorType.class_creation_failed]
    assert report.errors[0].class_key == "MBA-MTH101-2025-B1-01"
    assert report.errors[0].data["classData"]["groupNumber"] == "01"
    assert len(session.exec(select(CourseClass)).all()) == 2


def test_unexpected_record_error_is_typed_unknown(monkeypatch, session, program, course, period, professor, make_student):
    make_student("S1")
    real_find_class = importer_module.find_class

    def find_class(session, course_id, period_id, group_number, program_id):
        if group_number == "01":
            raise RuntimeError("lookup exploded")
        return real_find_class(session, course_id, period_id, group_number, program_id)

    monkeypatch.setattr(importer_module, "find_class", find_class)

    report = ClassEnrollmentImporter(session).run([_record(), _record(group_number="02")])

    assert report.classes_processed == 2
    assert report.classes_created == 1
    assert report.enrollments_created == 1
    assert len(report.errors) == 1
    assert report.errors[0].type == ImportErrorType.unknown
    assert report.errors[0].line == 1
    assert "lookup exploded" in report.errors[0].message


def test_ambiguous_bimester_uses_oldest_period_and_warns(session, program, course, period, professor, make_student):
    make_student("S1")
    period_id = period.id
    session.add(
        Period(
            code="2025-B1-EXT",
            year=2025,
            bimester_number=1,
            name="2025-B1",
            start_date=period.start_date,
            end_date=period.end_date,
            enrollment_start=period.enrollment_start,
            enrollment_end=period.enrollment_end,
            grading_deadline=period.grading_deadline,
        )
    )
    session.commit()

    report = ClassEnrollmentImporter(session).run([_record()])

    assert report.errors == ()
    assert report.warnings == (f"Bimester is ambiguous: 2025-B1 (using period {period_id})",)
    assert session.exec(select(CourseClass)).one().period_id == period_id
