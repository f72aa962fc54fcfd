import json

from openpyxl import Workbook
from sqlmodel import select
from typer.testing import CliRunner

from registrar.cli import APP
from registrar.models import ClassEnrollment

runner = CliRunner()


def _write_jsonl(path, students):
    record = {
        "programCode": "MBA",
        "courseCode": "MTH101",
        "bimesterName": "2025-B1",
        "groupNumber": "01",
        "professorEmail": "prof@x.edu",
        "students": students,
    }
    path.write_text(json.dumps(record) + "\n", encoding="utf-8")
    return path


def test_import_classes_command(tmp_path, session, admin, program, course, period, professor, make_student):
    make_student("S1")
    source = _write_jsonl(tmp_path / "batch.jsonl", [{"studentCode": "S1", "percentageGrade": 95}])
    report_path = tmp_path / "report.json"

    result = runner.invoke(
        APP, ["import-classes", str(source), "--actor", admin.email, "--report-out", str(report_path)]
    )

    assert result.exit_code == 0, result.output
    assert "Clases procesadas: 1" in result.output
    report = json.loads(report_path.read_text(encoding="utf-8"))
    assert report["classesCreated"] == 1
    assert report["enrollmentsCreated"] == 1
    assert session.exec(select(ClassEnrollment)).one().letter_grade == "A"


def test_import_classes_exits_nonzero_on_record_errors(tmp_path, program, course, period, professor):
    source = _write_jsonl(tmp_path / "batch.jsonl", [{"studentCode": "S9", "percentageGrade": 80}])
    result = runner.invoke(APP, ["import-classes", str(source)])
    assert result.exit_code == 2
    assert "student_not_found" in result.output


def test_import_classes_rejects_bad_file(tmp_path):
    source = tmp_path / "broken.jsonl"
    source.write_text("{oops\n", encoding="utf-8")
    result = runner.invoke(APP, ["import-classes", str(source)])
    assert result.exit_code == 1
    assert "Line 1" in result.output


def test_excel_to_jsonl_command(tmp_path):
    wb = Workbook()
    ws = wb.active
    ws.append(["programId", "courseId", "professorName", "professorEmail", "studentId", "percentageGrade", "bimesterName", "groupNumber"])
    ws.append(["MBA", "MTH101", "Pat", "prof@x.edu", "S1", 77, "2025-B1", "01"])
    xlsx = tmp_path / "grades.xlsx"
    wb.save(xlsx)
    out = tmp_path / "grades.jsonl"

    result = runner.invoke(APP, ["excel-to-jsonl", str(xlsx), str(out)])

    assert result.exit_code == 0, result.output
    lines = out.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])["courseCode"] == "MTH101"


def test_recompute_credits_command(session, program, course):
    result = runner.invoke(APP, ["recompute-credits", "--program-id", str(program.id)])
    assert result.exit_code == 0, result.output
    session.refresh(program)
    assert program.total_credits == 3

    result = runner.invoke(APP, ["recompute-credits"])
    assert result.exit_code == 0
    assert "1 programa(s)" in result.output

    result = runner.invoke(APP, ["recompute-credits", "--program-id", "999999"])
    assert result.exit_code == 1
