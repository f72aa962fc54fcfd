import json

import pytest
from openpyxl import Workbook

from registrar.services.spreadsheets import (
    SpreadsheetError,
    dump_jsonl,
    load_records,
    parse_jsonl,
    read_excel_records,
)


HEADER = ["programId", "courseId", "professorName", "professorEmail", "studentId", "percentageGrade", "bimesterName", "groupNumber"]


def write_grades_xlsx(path, rows):
    wb = Workbook()
    ws = wb.active
    ws.append(HEADER)
    for row in rows:
        ws.append(row)
    wb.save(path)
    return path


def test_excel_rows_are_grouped_by_class(tmp_path):
    path = write_grades_xlsx(
        tmp_path / "grades.xlsx",
        [
            ["mba", "mth101", "Pat Rivera", "Prof@X.edu", "s1", 95, "2025-B1", 1],
            ["MBA", "MTH101", "Pat Rivera", "prof@x.edu", "S2", 81.5, "2025-B1", 1],
            ["MBA", "MTH101", "Pat Rivera", "prof@x.edu", "S3", 70, "2025-B1", 2],
            # Fila incompleta: se omite
            ["MBA", None, "Pat Rivera", "prof@x.edu", "S4", 88, "2025-B1", 1],
        ],
    )

    records = read_excel_records(path)

    assert [r.class_key for r in records] == ["MBA-MTH101-2025-B1-1", "MBA-MTH101-2025-B1-2"]
    first = records[0]
    assert first.professor_email == "prof@x.edu"
    assert [(s.student_code, s.percentage_grade) for s in first.students] == [("S1", 95.0), ("S2", 81.5)]


def test_jsonl_dump_uses_camel_case_and_parses_back(tmp_path):
    path = write_grades_xlsx(tmp_path / "grades.xlsx", [["MBA", "MTH101", "Pat", "prof@x.edu", "S1", 90, "2025-B1", "01"]])
    text = dump_jsonl(read_excel_records(path))

    payload = json.loads(text.splitlines()[0])
    assert payload["programCode"] == "MBA"
    assert payload["students"] == [{"studentCode": "S1", "percentageGrade": 90.0}]
    assert parse_jsonl(text.splitlines())[0].group_number == "01"


def test_parse_jsonl_reports_line_numbers():
    good = json.dumps(
        {
            "programCode": "MBA",
            "courseCode": "MTH101",
            "bimesterName": "2025-B1",
            "groupNumber": "01",
            "professorEmail": "prof@x.edu",
            "students": [],
        }
    )
    with pytest.raises(SpreadsheetError) as excinfo:
        parse_jsonl([good, "", "{not json"])
    assert excinfo.value.line == 3
    assert str(excinfo.value).startswith("Line 3: Invalid JSON")


def test_load_records_rejects_unknown_extensions(tmp_path):
    path = tmp_path / "grades.csv"
    path.write_text("programId\n", encoding="utf-8")
    with pytest.raises(SpreadsheetError):
        load_records(path)
