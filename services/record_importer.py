"""Bulk import of subjects and students from CSV or spreadsheet uploads."""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import PurePath
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence

import pandas as pd

from models import Student, Subject, merge_subjects
from utils.field_mapper import FIELD_ALIASES, map_row


logger = logging.getLogger(__name__)

FileType = Literal["csv", "spreadsheet"]

CSV_EXTENSIONS = {".csv", ".tsv", ".txt"}
SPREADSHEET_EXTENSIONS = {".xlsx", ".xlsm", ".xls"}
_SNIFF_DELIMITERS = ",;\t|"

SUBJECT_COLUMNS = ("subject_code", "subject_name", "faculty_name")
STUDENT_COLUMNS = ("enrollment_no",)


class RecordImportError(ValueError):
    """Raised when an upload yields nothing usable."""

    def __init__(self, message: str, *, reason: str, missing: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.reason = reason
        self.missing = list(missing)


@dataclass(slots=True)
class ImportResult:
    """Subjects (deduplicated by code) and students recovered from an upload."""

    subjects: List[Subject] = field(default_factory=list)
    students: List[Student] = field(default_factory=list)
    rows_total: int = 0
    rows_skipped: int = 0


def _alias_hint(columns: Iterable[str]) -> str:
    parts = []
    for column in columns:
        parts.append("/".join(FIELD_ALIASES[column][:3]))
    return ", ".join(parts)


def detect_format(filename: Optional[str], declared: Optional[str] = None) -> FileType:
    """Return the declared format, else infer it from the file extension."""

    if declared:
        normalized = declared.strip().lower()
        if normalized in {"csv", "spreadsheet"}:
            return normalized  # type: ignore[return-value]
        if normalized in {"xlsx", "xls", "excel"}:
            return "spreadsheet"
        raise RecordImportError(
            f"Unsupported file type '{declared}'. Use 'csv' or 'spreadsheet'.",
            reason="unsupported_format",
        )

    suffix = PurePath(filename or "").suffix.lower()
    if suffix in CSV_EXTENSIONS:
        return "csv"
    if suffix in SPREADSHEET_EXTENSIONS:
        return "spreadsheet"
    raise RecordImportError(
        f"Cannot tell the format of '{filename or ''}'. Upload a .csv or .xlsx file.",
        reason="unsupported_format",
    )


class RecordImporter:
    """Turn uploaded tabular data into subjects and students."""

    def import_file(
        self,
        content: bytes,
        filename: Optional[str],
        file_type: Optional[str] = None,
    ) -> ImportResult:
        rows = self.read_rows(content, filename, file_type)
        return self.import_rows(rows)

    def read_rows(
        self,
        content: bytes,
        filename: Optional[str],
        file_type: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        if not content:
            raise RecordImportError("Uploaded file is empty.", reason="unreadable")
        detected = detect_format(filename, file_type)
        if detected == "csv":
            return _read_delimited(content)
        return _read_spreadsheet(content)

    def import_rows(self, rows: Iterable[Mapping[Any, Any]]) -> ImportResult:
        subjects: List[Subject] = []
        students: List[Student] = []
        total = 0
        skipped = 0
        for raw in rows:
            total += 1
            mapped = map_row(raw)
            if mapped.skipped:
                skipped += 1
                continue
            if mapped.student is not None:
                students.append(mapped.student)
            if mapped.subject is not None:
                subjects.append(mapped.subject)

        deduped = merge_subjects(subjects)
        if len(deduped) != len(subjects):
            logger.info("Merged %d duplicate subject rows", len(subjects) - len(deduped))

        _check_result(deduped, students)
        return ImportResult(
            subjects=deduped,
            students=students,
            rows_total=total,
            rows_skipped=skipped,
        )


def _check_result(subjects: List[Subject], students: List[Student]) -> None:
    if not subjects and not students:
        raise RecordImportError(
            "No rows recognized. Include subject columns "
            f"({_alias_hint(SUBJECT_COLUMNS)}) and student columns "
            f"({_alias_hint(STUDENT_COLUMNS)}).",
            reason="no_rows",
            missing=["subject", "student"],
        )
    if not subjects:
        raise RecordImportError(
            "No subjects found. Add a subject code column "
            f"({_alias_hint(('subject_code',))}) or both subject and faculty name columns "
            f"({_alias_hint(('subject_name', 'faculty_name'))}).",
            reason="no_subjects",
            missing=["subject"],
        )
    if not students:
        raise RecordImportError(
            "No students found. Add an enrollment number column "
            f"({'/'.join(FIELD_ALIASES['enrollment_no'])}).",
            reason="no_students",
            missing=["student"],
        )


def _read_delimited(content: bytes) -> List[Dict[str, Any]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise RecordImportError("CSV must be UTF-8 encoded.", reason="unreadable") from exc

    sample = text[:4096]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=_SNIFF_DELIMITERS)
        delimiter = dialect.delimiter
    except csv.Error:
        delimiter = ","

    reader = csv.DictReader(io.StringIO(text, newline=""), delimiter=delimiter)
    if reader.fieldnames is None:
        raise RecordImportError("CSV has no header row.", reason="unreadable")
    try:
        return [dict(row) for row in reader]
    except csv.Error as exc:
        raise RecordImportError(f"Unable to parse CSV: {exc}", reason="unreadable") from exc


def _read_spreadsheet(content: bytes) -> List[Dict[str, Any]]:
    try:
        frame = pd.read_excel(
            io.BytesIO(content),
            sheet_name=0,
            dtype=object,
            keep_default_na=False,
        )
    except Exception as exc:
        raise RecordImportError(
            f"Unable to read spreadsheet: {exc}", reason="unreadable"
        ) from exc

    frame.columns = [str(column) for column in frame.columns]
    return [
        {key: _cell_text(value) for key, value in record.items()}
        for record in frame.to_dict(orient="records")
    ]


def _cell_text(value: Any) -> str:
    """Render a typed spreadsheet cell the way it reads in the sheet."""

    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ", timespec="minutes")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return value.strftime("%H:%M")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()
