from io import BytesIO

from fastapi.testclient import TestClient
from openpyxl import load_workbook


def _create_class(client, headers, program, course, period, professor, group="01"):
    r = client.post(
        "/classes/",
        json={
            "program_id": program.id,
            "course_id": course.id,
            "period_id": period.id,
            "group_number": group,
            "professor_id": professor.id,
        },
        headers=headers,
    )
    assert r.status_code == 201, r.text
    return r.json()


def test_class_lifecycle_and_grading(client: TestClient, admin_headers, professor_headers, program, course, period, professor, make_student):
    course_class = _create_class(client, admin_headers, program, course, period, professor)
    student = make_student("S1")

    r = client.post(
        "/classes/",
        json={
            "program_id": program.id,
            "course_id": course.id,
            "period_id": period.id,
            "group_number": "01",
            "professor_id": professor.id,
        },
        headers=admin_headers,
    )
    assert r.status_code == 409

    r = client.post(f"/classes/{course_class['id']}/students", json={"student_id": student.id}, headers=professor_headers)
    assert r.status_code == 201, r.text
    enrollment_id = r.json()["id"]
    r = client.post(f"/classes/{course_class['id']}/students", json={"student_id": student.id}, headers=admin_headers)
    assert r.status_code == 409

    r = client.put(f"/classes/enrollments/{enrollment_id}/grade", json={"percentage_grade": 84}, headers=professor_headers)
    assert r.status_code == 200, r.text
    assert r.json()["letter_grade"] == "B"
    assert r.json()["quality_points"] == 9.0

    r = client.put(
        f"/classes/enrollments/{enrollment_id}/status",
        json={"status": "completed", "reason": "Fin de bimestre"},
        headers=professor_headers,
    )
    assert r.status_code == 200
    assert r.json()["status_change_reason"] == "Fin de bimestre"

    r = client.get(f"/classes/{course_class['id']}/enrollments", headers=admin_headers)
    assert r.status_code == 200
    rows = r.json()
    assert rows[0]["student_code"] == "S1"
    assert rows[0]["enrollment"]["letter_grade"] == "B"

    r = client.delete(f"/classes/{course_class['id']}", headers=admin_headers)
    assert r.status_code == 409

    r = client.delete(f"/classes/{course_class['id']}/students/{student.id}", headers=admin_headers)
    assert r.status_code == 200
    r = client.delete(f"/classes/{course_class['id']}", headers=admin_headers)
    assert r.status_code == 200


def test_roster_and_grade_report_exports(client: TestClient, headers_for, admin_headers, program, course, period, professor, make_student):
    course_class = _create_class(client, admin_headers, program, course, period, professor)
    student = make_student("S1")
    enrollment_id = client.post(
        f"/classes/{course_class['id']}/students", json={"student_id": student.id}, headers=admin_headers
    ).json()["id"]
    client.put(f"/classes/enrollments/{enrollment_id}/grade", json={"percentage_grade": 95}, headers=admin_headers)

    r = client.get(f"/classes/{course_class['id']}/roster.xlsx", headers=admin_headers)
    assert r.status_code == 200
    sheet = load_workbook(BytesIO(r.content)).active
    assert sheet.cell(row=4, column=1).value == "student_code"
    assert sheet.cell(row=5, column=1).value == "S1"
    assert sheet.cell(row=5, column=7).value == "A"

    r = client.get(f"/users/students/{student.id}/grades.pdf", headers=headers_for(student))
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.content.startswith(b"%PDF")

    other = make_student("S2")
    r = client.get(f"/users/students/{student.id}/grades.pdf", headers=headers_for(other))
    assert r.status_code == 403


def test_user_directory(client: TestClient, admin_headers, program):
    r = client.post(
        "/users/students",
        json={"email": "Ana@Example.com", "first_name": "Ana", "last_name": "Torres", "student_code": "s-100", "program_id": program.id},
        headers=admin_headers,
    )
    assert r.status_code == 201, r.text
    assert r.json()["email"] == "ana@example.com"
    assert r.json()["student_code"] == "S-100"

    r = client.post(
        "/users/students",
        json={"email": "other@example.com", "first_name": "Otro", "last_name": "Alumno", "student_code": "S-100"},
        headers=admin_headers,
    )
    assert r.status_code == 409

    r = client.post(
        "/users/professors",
        json={"email": "ana@example.com", "first_name": "Ana", "last_name": "Docente"},
        headers=admin_headers,
    )
    assert r.status_code == 409

    r = client.get("/users/by-student-code", params={"code": "s-100"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["full_name"] == "Ana Torres"

    r = client.get("/users/by-email", params={"email": "missing@example.com"}, headers=admin_headers)
    assert r.status_code == 404
