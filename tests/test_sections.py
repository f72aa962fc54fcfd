from fastapi.testclient import TestClient
from sqlmodel import select

from registrar.models import AuditLog, Enrollment, RoleEnum, User


def _section_payload(course, period, professor, **overrides):
    payload = {
        "course_id": course.id,
        "period_id": period.id,
        "professor_id": professor.id,
        "group_number": "01",
        "capacity": 25,
        "delivery_method": "online_sync",
        "schedule": {"sessions": [{"day": "monday", "start_time": "18:00", "end_time": "20:00"}]},
    }
    payload.update(overrides)
    return payload


def test_create_section_builds_reference_code(client: TestClient, admin_headers, course, period, professor):
    r = client.post("/sections/", json=_section_payload(course, period, professor), headers=admin_headers)
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["crn"] == "MTH101-01-2025-B1"
    assert body["status"] == "draft"
    assert body["enrolled"] == 0
    assert body["schedule"]["sessions"][0]["day"] == "monday"

    r = client.post("/sections/", json=_section_payload(course, period, professor), headers=admin_headers)
    assert r.status_code == 409
    assert r.json()["code"] == "duplicate_code"


def test_professor_creates_only_own_sections(client: TestClient, session, professor_headers, course, period, professor):
    other = User(email="other@x.edu", first_name="Otra", last_name="Docente", role=RoleEnum.professor)
    session.add(other)
    session.commit()
    session.refresh(other)

    r = client.post("/sections/", json=_section_payload(course, period, other), headers=professor_headers)
    assert r.status_code == 403

    r = client.post("/sections/", json=_section_payload(course, period, professor), headers=professor_headers)
    assert r.status_code == 201, r.text


def test_capacity_cannot_drop_below_enrolled(client: TestClient, admin_headers, professor_headers, make_section):
    section = make_section(capacity=10, enrolled=4)

    r = client.patch(f"/sections/{section.id}", json={"capacity": 3}, headers=admin_headers)
    assert r.status_code == 422
    r = client.patch(f"/sections/{section.id}", json={"capacity": 4, "status": "open"}, headers=professor_headers)
    assert r.status_code == 200, r.text
    assert r.json()["capacity"] == 4

    r = client.patch(f"/sections/{section.id}", json={"is_active": False}, headers=professor_headers)
    assert r.status_code == 403


def test_submit_grades_marks_section(client: TestClient, professor_headers, make_section):
    section = make_section()
    r = client.post(f"/sections/{section.id}/submit-grades", headers=professor_headers)
    assert r.status_code == 200
    assert r.json()["grades_submitted"] is True
    assert r.json()["grades_submitted_at"] is not None


def test_delete_with_enrollments_needs_force(client: TestClient, session, admin, admin_headers, headers_for, make_student, make_section):
    section = make_section()
    section_id = section.id
    for _ in range(2):
        client.post("/enrollments/me", json={"section_id": section_id}, headers=headers_for(make_student()))

    r = client.delete(f"/sections/{section_id}", headers=admin_headers)
    assert r.status_code == 409
    assert r.json()["details"] == {"enrollments": 2}

    r = client.delete(f"/sections/{section_id}", params={"force": "true"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json() == {"ok": True, "enrollments_removed": 2}
    session.expire_all()
    assert session.exec(select(Enrollment).where(Enrollment.section_id == section_id)).all() == []
    audit = session.exec(select(AuditLog).where(AuditLog.action == "force_delete")).one()
    assert audit.user_id == admin.id
    assert audit.entity_id == str(section_id)
