from __future__ import annotations

from typing import List

import pytest

from models import Student, Subject
from services.email_composer import EmailComposer
from services.submission_store import InMemoryDocumentStore, SubmissionStore


@pytest.fixture
def composer() -> EmailComposer:
    return EmailComposer()


@pytest.fixture
def documents() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def store(documents: InMemoryDocumentStore) -> SubmissionStore:
    return SubmissionStore(documents)


@pytest.fixture
def subjects() -> List[Subject]:
    return [
        Subject(
            subject_name="Algo",
            subject_code="CS101",
            time_slot="09:00-10:00",
            faculty_name="Dr. Rao",
            faculty_code="F01",
            date="2024-03-01",
        )
    ]


@pytest.fixture
def students() -> List[Student]:
    return [
        Student(name="Asha", semester="5", course="BTech", section="A", enrollment_no="E1")
    ]
