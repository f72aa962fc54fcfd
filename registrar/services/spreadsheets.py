"""Read import batches from Excel and JSON Lines files.

Excel sheets carry one row per (class, student) with the columns
programId, courseId, professorName/professorEmail, studentId,
percentageGrade, bimesterName and groupNumber; rows are grouped into one
``ClassEnrollmentRecord`` per class key.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from openpyxl import load_workbook
from pydantic import ValidationError

from .importer import ClassEnrollmentRecord, StudentGrade


logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("programId", "courseId", "studentId", "bimesterName", "groupNumber")
PROFESSOR_COLUMNS = ("professorEmail", "professorName", "email")


class SpreadsheetError(ValueError):
    """The file cannot be turned into import records."""

    def __init__(self, message: str, line: Optional[int] = None):
        super().__init__(message if line is None else f"Line {line}: {message}")
        self.line = line


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # Excel guarda "1" como 1.0
        return str(int(value))
    return str(value).strip()


def _cell_number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def class_key(program_code: str, course_code: str, bimester_name: str, group_number: str) -> str:
    return f"{program_code.strip().upper()}-{course_code.strip().upper()}-{bimester_name.strip()}-{group_number}"


def read_excel_rows(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Rows of the first sheet as dicts keyed by the header row."""
    workbook = load_workbook(filename=str(path), read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if not header:
            raise SpreadsheetError("Excel file is empty")
        names = [_cell_text(cell) for cell in header]
        result = []
        for values in rows:
            if values is None or all(cell is None or cell == "" for cell in values):
                continue
            result.append(dict(zip(names, values)))
        return result
    finally:
        workbook.close()


def group_rows_by_class(rows: Iterable[Dict[str, Any]]) -> List[ClassEnrollmentRecord]:
    grouped: Dict[str, Dict[str, Any]] = {}
    skipped = 0
    for index, row in enumerate(rows, start=2):
        values = {column: _cell_text(row.get(column)) for column in REQUIRED_COLUMNS}
        professor = next((_cell_text(row.get(c)) for c in PROFESSOR_COLUMNS if _cell_text(row.get(c))), "")
        grade = _cell_number(row.get("percentageGrade"))
        missing = [column for column, value in values.items() if not value]
        if not professor:
            missing.append("professorEmail")
        if grade is None:
            missing.append("percentageGrade")
        if missing:
            skipped += 1
            logger.warning("Skipping spreadsheet row %s: missing %s", index, ", ".join(missing))
            continue

        key = class_key(values["programId"], values["courseId"], values["bimesterName"], values["groupNumber"])
        entry = grouped.get(key)
        if entry is None:
            entry = {
                "program_code": values["programId"].upper(),
                "course_code": values["courseId"].upper(),
                "bimester_name": values["bimesterName"],
                "group_number": values["groupNumber"],
                "professor_email": professor.lower(),
                "students": [],
            }
            grouped[key] = entry
        entry["students"].append(StudentGrade(student_code=values["studentId"].upper(), percentage_grade=grade))

    if skipped:
        logger.info("Spreadsheet rows skipped: %s", skipped)
    return [ClassEnrollmentRecord(**entry) for entry in grouped.values()]


def read_excel_records(path: Union[str, Path]) -> List[ClassEnrollmentRecord]:
    records = group_rows_by_class(read_excel_rows(path))
    logger.info("Read %s class record(s) from %s", len(records), path)
    return records


def parse_jsonl(lines: Iterable[str]) -> List[ClassEnrollmentRecord]:
    records: List[ClassEnrollmentRecord] = []
    for number, raw in enumerate(lines, start=1):
        text = raw.strip()
        if not text:
            continue
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SpreadsheetError(f"Invalid JSON: {exc.msg}", line=number) from exc
        try:
            records.append(ClassEnrollmentRecord.model_validate(payload))
        except ValidationError as exc:
            raise SpreadsheetError(f"Invalid class record: {exc.error_count()} error(s)", line=number) from exc
    return records


def parse_json_array(text: str) -> List[ClassEnrollmentRecord]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SpreadsheetError(f"Invalid JSON: {exc.msg}", line=exc.lineno) from exc
    if not isinstance(payload, list):
        raise SpreadsheetError("Expected a JSON array of class records")
    try:
        return [ClassEnrollmentRecord.model_validate(item) for item in payload]
    except ValidationError as exc:
        raise SpreadsheetError(f"Invalid class record: {exc.error_count()} error(s)") from exc


def dump_jsonl(records: Iterable[ClassEnrollmentRecord]) -> str:
    return "".join(json.dumps(record.model_dump(by_alias=True), ensure_ascii=False) + "\n" for record in records)


def load_records(path: Union[str, Path]) -> List[ClassEnrollmentRecord]:
    """Load a batch from ``.jsonl``, ``.json`` or ``.xlsx`` by extension."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".xlsx":
        return read_excel_records(path)
    if suffix == ".jsonl":
        with path.open(encoding="utf-8") as handle:
            return parse_jsonl(handle)
    if suffix == ".json":
        return parse_json_array(path.read_text(encoding="utf-8"))
    raise SpreadsheetError(f"Unsupported file type: {path.suffix or path.name}")
