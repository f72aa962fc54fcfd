from fastapi.testclient import TestClient

from registrar.models import CourseClass, RoleEnum, User


def _program_payload(**overrides):
    payload = {
        "code_es": "DER",
        "name_es": "Derecho",
        "description_es": "Licenciatura en derecho",
        "type": "bachelor",
        "language": "es",
        "duration_bimesters": 24,
    }
    payload.update(overrides)
    return payload


def test_program_crud(client: TestClient, admin_headers):
    r = client.post("/programs/", json=_program_payload(total_credits=999), headers=admin_headers)
    assert r.status_code == 201, r.text
    program = r.json()
    # El total de créditos es derivado, nunca viene del cliente
    assert program["total_credits"] == 0

    r = client.get(f"/programs/{program['id']}", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["code_es"] == "DER"

    r = client.patch(f"/programs/{program['id']}", json={"degree": "Abogado"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["degree"] == "Abogado"

    r = client.get("/programs/", params={"type": "bachelor"}, headers=admin_headers)
    assert [p["id"] for p in r.json()] == [program["id"]]

    r = client.delete(f"/programs/{program['id']}", headers=admin_headers)
    assert r.status_code == 200
    assert client.get(f"/programs/{program['id']}", headers=admin_headers).status_code == 404


def test_language_mode_decides_required_fields(client: TestClient, admin_headers):
    r = client.post("/programs/", json=_program_payload(language="both"), headers=admin_headers)
    assert r.status_code == 422
    body = r.json()
    assert body["detail"] == "Spanish and English code, name and description are required"
    assert set(body["details"]["missing"]) == {"code_en", "name_en", "description_en"}

    r = client.post(
        "/programs/",
        json=_program_payload(
            language="en", code_es=None, name_es=None, description_es=None,
            code_en="LAW", name_en="Law", description_en="Law degree",
        ),
        headers=admin_headers,
    )
    assert r.status_code == 201, r.text


def test_codes_are_unique_across_languages(client: TestClient, admin_headers):
    assert client.post("/programs/", json=_program_payload(), headers=admin_headers).status_code == 201
    r = client.post(
        "/programs/",
        json=_program_payload(
            language="en", code_es=None, name_es=None, description_es=None,
            code_en="der", name_en="Law", description_en="Law degree",
        ),
        headers=admin_headers,
    )
    assert r.status_code == 409
    assert r.json()["code"] == "duplicate_code"


def test_program_duration_must_be_positive(client: TestClient, admin_headers):
    r = client.post("/programs/", json=_program_payload(duration_bimesters=0), headers=admin_headers)
    assert r.status_code == 422


def test_program_with_students_cannot_be_deleted(client: TestClient, admin_headers, program, make_student):
    make_student()
    r = client.delete(f"/programs/{program.id}", headers=admin_headers)
    assert r.status_code == 409
    assert r.json()["code"] == "in_use"


def test_course_validation_and_listing(client: TestClient, admin_headers, program):
    base = {"code_es": "HIS1", "name_es": "Historia", "description_es": "Historia general"}
    r = client.post("/courses/", json={**base, "credits": 0}, headers=admin_headers)
    assert r.status_code == 422

    r = client.post("/courses/", json={**base, "credits": 2, "program_ids": [program.id]}, headers=admin_headers)
    assert r.status_code == 201, r.text
    course_id = r.json()["id"]

    r = client.post("/courses/", json={**base, "code_es": " his1 ", "credits": 2}, headers=admin_headers)
    assert r.status_code == 409

    r = client.get(f"/programs/{program.id}/courses", headers=admin_headers)
    assert r.status_code == 200
    rows = r.json()
    assert [row["course_id"] for row in rows] == [course_id]
    assert rows[0]["credits"] == 2

    r = client.get("/courses/", params={"program_id": program.id}, headers=admin_headers)
    assert [c["id"] for c in r.json()] == [course_id]


def test_course_delete_rules(client: TestClient, session, admin_headers, course, period, professor, program, make_section):
    course_class = CourseClass(
        program_id=program.id, course_id=course.id, period_id=period.id, group_number="01", professor_id=professor.id
    )
    session.add(course_class)
    session.commit()
    class_id = course_class.id
    section = make_section()

    r = client.delete(f"/courses/{course.id}", headers=admin_headers)
    assert r.status_code == 409
    assert r.json()["details"] == {"sections": 1}

    assert client.delete(f"/sections/{section.id}", headers=admin_headers).status_code == 200
    r = client.delete(f"/courses/{course.id}", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert client.get(f"/classes/{class_id}", headers=admin_headers).status_code == 404


def test_students_can_read_but_not_write_catalog(client: TestClient, headers_for, make_student, program):
    headers = headers_for(make_student())
    assert client.get("/programs/", headers=headers).status_code == 200
    assert client.post("/programs/", json=_program_payload(), headers=headers).status_code == 403


def test_requests_without_token_are_rejected(client: TestClient):
    r = client.get("/programs/")
    assert r.status_code == 401


def test_superadmin_passes_admin_checks(client: TestClient, session, headers_for):
    root = User(email="root@test.edu", first_name="Root", last_name="Test", role=RoleEnum.superadmin)
    session.add(root)
    session.commit()
    session.refresh(root)
    r = client.post("/programs/", json=_program_payload(), headers=headers_for(root))
    assert r.status_code == 201, r.text


def test_inactive_users_are_rejected(client: TestClient, session, admin, admin_headers):
    admin.is_active = False
    session.add(admin)
    session.commit()
    assert client.get("/programs/", headers=admin_headers).status_code == 401
