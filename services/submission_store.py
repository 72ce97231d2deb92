"""Append-only persistence for OD submissions and per-student records."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol
from uuid import uuid4

from pydantic import ValidationError

from models import StudentRecord, Submission
from utils import io_utils
from utils.event_log import EventLog


logger = logging.getLogger(__name__)

SUBMISSIONS_COLLECTION = "odForms"
STUDENT_RECORDS_COLLECTION = "studentODData"

PERMISSION_DENIED_MESSAGE = "Permission denied: check store access rules."

_DOCUMENT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class StoreError(RuntimeError):
    """Generic persistence failure."""


class StorePermissionError(StoreError):
    """The backing store rejected the write or read on access-control grounds."""


class DocumentStore(Protocol):
    def add(self, collection: str, data: Dict[str, Any]) -> str: ...

    def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]: ...


def _new_document_id() -> str:
    return uuid4().hex


class InMemoryDocumentStore:
    """Dictionary-backed document store."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        document_id = _new_document_id()
        with self._lock:
            self._collections.setdefault(collection, {})[document_id] = dict(data)
        return document_id

    def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            document = self._collections.get(collection, {}).get(document_id)
        return dict(document) if document is not None else None


class JsonFileDocumentStore:
    """One JSON file per document under ``<base>/<collection>/<id>.json``."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        document_id = _new_document_id()
        path = self._document_path(collection, document_id)
        try:
            io_utils.write_json(path, data)
        except PermissionError as exc:
            raise StorePermissionError(PERMISSION_DENIED_MESSAGE) from exc
        except OSError as exc:
            raise StoreError(f"Failed to write document: {exc}") from exc
        return document_id

    def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        if not _DOCUMENT_ID_RE.match(document_id or ""):
            return None
        path = self._document_path(collection, document_id)
        if not path.exists():
            return None
        try:
            payload = io_utils.read_json_file(path)
        except PermissionError as exc:
            raise StorePermissionError(PERMISSION_DENIED_MESSAGE) from exc
        except (OSError, ValueError) as exc:
            raise StoreError(f"Failed to read document '{document_id}': {exc}") from exc
        return payload if isinstance(payload, dict) else None

    def _document_path(self, collection: str, document_id: str) -> Path:
        return self.base_dir / collection / f"{document_id}.json"


@dataclass(frozen=True)
class SessionResult:
    """Outcome of an ensure-session call."""

    ok: bool
    principal: Optional[str] = None
    error: Optional[str] = None


class SessionProvider(Protocol):
    def ensure_session(self) -> SessionResult: ...


class AnonymousSessionProvider:
    """Hands out one anonymous principal per provider, created on first use."""

    def __init__(self) -> None:
        self._principal: Optional[str] = None
        self._lock = threading.Lock()

    def ensure_session(self) -> SessionResult:
        with self._lock:
            if self._principal is None:
                self._principal = f"anon-{uuid4().hex[:12]}"
            return SessionResult(ok=True, principal=self._principal)


class SubmissionStore:
    """Saves submissions and their derived per-student records."""

    def __init__(
        self,
        documents: DocumentStore,
        sessions: Optional[SessionProvider] = None,
        *,
        event_log: Optional[EventLog] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.documents = documents
        self.sessions = sessions or AnonymousSessionProvider()
        self.event_log = event_log or EventLog(None)
        self._clock = clock

    def save(self, submission: Submission) -> str:
        stamped = submission.model_copy(update=self._stamp())
        document_id = self._add(SUBMISSIONS_COLLECTION, stamped.to_document())
        self.event_log.log(
            "submission_saved",
            extra={
                "id": document_id,
                "mode": submission.mode,
                "subjects": len(submission.subjects),
                "students": len(submission.students),
            },
        )
        return document_id

    def save_derived(self, record: StudentRecord) -> str:
        stamped = record.model_copy(update=self._stamp())
        document_id = self._add(STUDENT_RECORDS_COLLECTION, stamped.to_document())
        self.event_log.log(
            "student_record_saved",
            extra={"id": document_id, "parent_form_id": record.parent_form_id},
        )
        return document_id

    def get(self, submission_id: str) -> Optional[Submission]:
        document = self.documents.get(SUBMISSIONS_COLLECTION, submission_id)
        if document is None:
            return None
        try:
            return Submission.model_validate(document)
        except ValidationError as exc:
            raise StoreError(f"Stored submission '{submission_id}' is malformed: {exc}") from exc

    def _stamp(self) -> Dict[str, Any]:
        session = self.sessions.ensure_session()
        if not session.ok:
            # The write below fails on its own if the store required a session.
            logger.warning("Ambient session unavailable: %s", session.error or "unknown error")
        return {"created_at": self._clock(), "created_by": session.principal}

    def _add(self, collection: str, document: Dict[str, Any]) -> str:
        try:
            document_id = self.documents.add(collection, document)
        except StoreError:
            raise
        except PermissionError as exc:
            raise StorePermissionError(PERMISSION_DENIED_MESSAGE) from exc
        except Exception as exc:
            raise StoreError(str(exc) or "Failed to save document") from exc
        if not document_id:
            raise StoreError("Store did not return a document id")
        return document_id
