"""Single-entry and bulk-upload OD submission flows."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from models import Student, StudentRecord, Subject, Submission, SubmissionCounts

from .email_composer import EmailComposer
from .record_importer import RecordImporter
from .submission_store import SubmissionStore


BULK_EMAIL_SEPARATOR = "\n\n---\n\n"


@dataclass(slots=True)
class SingleReceipt:
    id: str
    email: str
    submission: Submission


@dataclass(slots=True)
class BulkReceipt:
    id: str
    submission: Submission
    record_ids: List[str] = field(default_factory=list)
    emails: List[str] = field(default_factory=list)
    rows_skipped: int = 0

    @property
    def combined_email(self) -> str:
        return BULK_EMAIL_SEPARATOR.join(self.emails)


class ODWorkflow:
    """Save submissions and produce their email text."""

    def __init__(
        self,
        store: SubmissionStore,
        composer: EmailComposer,
        importer: Optional[RecordImporter] = None,
    ) -> None:
        self.store = store
        self.composer = composer
        self.importer = importer or RecordImporter()

    def submit_single(
        self,
        subjects: Sequence[Subject],
        students: Sequence[Student],
        *,
        timetable_url: Optional[str] = None,
    ) -> SingleReceipt:
        submission = Submission(
            mode="single",
            subjects=list(subjects),
            students=list(students),
            timetable_file_url=timetable_url,
        )
        submission_id = self.store.save(submission)
        email = self.composer.compose_text(
            submission.subjects,
            submission.students,
            mode="single",
            timetable_url=timetable_url,
        )
        return SingleReceipt(id=submission_id, email=email, submission=submission)

    def submit_bulk(
        self,
        content: bytes,
        filename: Optional[str],
        *,
        file_type: Optional[str] = None,
    ) -> BulkReceipt:
        imported = self.importer.import_file(content, filename, file_type)
        submission = Submission(
            mode="multiple",
            subjects=imported.subjects,
            students=imported.students,
            file_name=filename,
            counts=SubmissionCounts(
                subjects=len(imported.subjects), students=len(imported.students)
            ),
        )
        submission_id = self.store.save(submission)

        receipt = BulkReceipt(
            id=submission_id, submission=submission, rows_skipped=imported.rows_skipped
        )
        for student in submission.students:
            body = self.composer.compose_text(
                submission.subjects, [student], mode="multiple"
            )
            record = StudentRecord(
                student=student,
                subjects=submission.subjects,
                email_body=body,
                parent_form_id=submission_id,
                file_name=filename,
            )
            receipt.record_ids.append(self.store.save_derived(record))
            receipt.emails.append(body)
        return receipt
