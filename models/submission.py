"""Submission models persisted to the document store."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


Mode = Literal["single", "multiple"]


class _Record(BaseModel):
    """Base model: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Subject(_Record):
    """One subject/session the OD request covers."""

    subject_name: str = ""
    subject_code: str = ""
    time_slot: str = ""
    faculty_name: str = ""
    faculty_code: str = ""
    date: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()


class Student(_Record):
    """A student the OD request is filed for."""

    name: str = ""
    semester: str = ""
    course: str = ""
    section: str = ""
    enrollment_no: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()


class SubmissionCounts(_Record):
    subjects: int = Field(default=0, ge=0)
    students: int = Field(default=0, ge=0)


def merge_subjects(subjects: List[Subject]) -> List[Subject]:
    """Drop subjects whose code was already seen; the first occurrence wins."""

    seen: set[str] = set()
    merged: List[Subject] = []
    for subject in subjects:
        if subject.subject_code in seen:
            continue
        seen.add(subject.subject_code)
        merged.append(subject)
    return merged


class Submission(_Record):
    """One submit action's worth of subjects, students and metadata."""

    model_config = ConfigDict(frozen=True)

    mode: Mode
    subjects: List[Subject] = Field(default_factory=list)
    students: List[Student] = Field(default_factory=list)
    timetable_file_url: Optional[str] = None
    file_name: Optional[str] = None
    counts: Optional[SubmissionCounts] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None

    @model_validator(mode="after")
    def _unique_subject_codes(self) -> "Submission":
        merged = merge_subjects(self.subjects)
        if len(merged) != len(self.subjects):
            object.__setattr__(self, "subjects", merged)
        return self


class StudentRecord(_Record):
    """Per-student fan-out of a bulk submission."""

    model_config = ConfigDict(frozen=True)

    student: Student
    subjects: List[Subject] = Field(default_factory=list)
    email_body: str
    parent_form_id: str = Field(min_length=1)
    file_name: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
