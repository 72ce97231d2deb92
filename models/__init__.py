"""Pydantic models for OD submissions and their per-student records."""

from .submission import (
    Mode,
    Student,
    StudentRecord,
    Subject,
    Submission,
    SubmissionCounts,
    merge_subjects,
)

__all__ = [
    "Mode",
    "Student",
    "StudentRecord",
    "Subject",
    "Submission",
    "SubmissionCounts",
    "merge_subjects",
]
