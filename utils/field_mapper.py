"""Map spreadsheet rows with arbitrary headers onto subject/student records."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from models import Student, Subject


UNKNOWN_SUBJECT = "UNKNOWN SUBJECT"
UNKNOWN_FACULTY = "UNKNOWN FACULTY"
AUTO_GENERATED_CODE = "AUTO_GEN"

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_CODE_RE = re.compile(r"[A-Za-z]{2,}\d{2,}")

# Ordered: earlier aliases win when a row carries several of them.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "enrollment_no": (
        "enrollmentno",
        "enrollment",
        "rollno",
        "rollnumber",
        "enrollno",
        "admno",
        "enrollmentnumber",
    ),
    "name": ("name", "studentname", "fullname", "student"),
    "semester": ("semester", "sem"),
    "course": ("course", "program", "programme", "branch"),
    "section": ("section", "sec", "division"),
    "subject_code": ("subjectcode", "code", "subcode", "coursecode", "papercode"),
    "subject_name": ("subjectname", "subject", "subname", "coursename", "papername"),
    "faculty_name": ("facultyname", "faculty", "teacher", "teachername", "professor", "instructor"),
    "faculty_code": ("facultycode", "teachercode", "facultyid", "empcode"),
    "time_slot": ("timeslot", "slot", "time", "period"),
    "date": ("date", "oddate", "day"),
}


def normalize_key(header: Any) -> str:
    """Lower-case a header and strip every non-alphanumeric character."""

    return _NON_ALNUM_RE.sub("", str(header or "").lower())


def _clean_value(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class NormalizedRow:
    """A row keyed by normalized headers."""

    def __init__(self, raw: Mapping[Any, Any]) -> None:
        values: Dict[str, str] = {}
        for header, value in raw.items():
            if header is None:
                continue
            key = normalize_key(header)
            if not key:
                continue
            cleaned = _clean_value(value)
            # Two headers can collapse onto one key; keep the first non-empty value.
            if values.get(key):
                continue
            values[key] = cleaned
        self.values = values

    def get(self, *candidates: str) -> str:
        for candidate in candidates:
            value = self.values.get(candidate)
            if value:
                return value
        return ""

    def field(self, name: str) -> str:
        return self.get(*FIELD_ALIASES[name])

    def is_blank(self) -> bool:
        return not any(self.values.values())

    def find_code(self) -> Optional[str]:
        for value in self.values.values():
            match = _CODE_RE.search(value)
            if match:
                return match.group(0)
        return None


@dataclass(frozen=True)
class MappedRow:
    """Candidates extracted from one input row."""

    student: Optional[Student] = None
    subject: Optional[Subject] = None
    skipped: bool = False


def synthesize_code(row: NormalizedRow, subject_name: str) -> str:
    found = row.find_code()
    if found:
        return found
    compact = "".join(subject_name.split())[:6].upper()
    return compact or AUTO_GENERATED_CODE


def map_row(raw: Mapping[Any, Any]) -> MappedRow:
    """Extract a student and/or subject from one row.

    A row is a student iff an enrollment number resolves. It is a subject iff a
    subject code resolves, or both a subject name and a faculty name do. Wide
    sheets routinely produce both from the same row.
    """

    row = NormalizedRow(raw)
    if row.is_blank():
        return MappedRow(skipped=True)

    student: Optional[Student] = None
    enrollment_no = row.field("enrollment_no")
    if enrollment_no:
        student = Student(
            name=row.field("name"),
            semester=row.field("semester"),
            course=row.field("course"),
            section=row.field("section"),
            enrollment_no=enrollment_no,
        )

    subject: Optional[Subject] = None
    subject_code = row.field("subject_code")
    subject_name = row.field("subject_name")
    faculty_name = row.field("faculty_name")
    if subject_code or (subject_name and faculty_name):
        subject = Subject(
            subject_name=subject_name or UNKNOWN_SUBJECT,
            subject_code=subject_code or synthesize_code(row, subject_name),
            time_slot=row.field("time_slot"),
            faculty_name=faculty_name or UNKNOWN_FACULTY,
            faculty_code=row.field("faculty_code"),
            date=row.field("date"),
        )

    return MappedRow(student=student, subject=subject)
