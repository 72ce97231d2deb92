"""FastAPI entrypoint for OD request submission and mail dispatch."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from models import Student, Subject
from services import (
    EmailComposer,
    FileStorageError,
    InMemoryDocumentStore,
    InvalidRecipientError,
    JsonFileDocumentStore,
    MailConfigError,
    MailDispatcher,
    MailServiceError,
    ODWorkflow,
    RecordImportError,
    StoreError,
    StorePermissionError,
    SubmissionNotFoundError,
    SubmissionStore,
    TimetableStorage,
)
from services.email_composer import DEFAULT_SIGNATURE
from services.submission_store import PERMISSION_DENIED_MESSAGE, AnonymousSessionProvider
from utils.event_log import EventLog
from utils.validation import format_validation_errors

load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)


def _resolve_data_dir() -> Path:
    candidate = os.getenv("OD_DATA_DIR")
    if candidate:
        return Path(candidate).expanduser()
    return Path("data")


def _resolve_event_log(data_dir: Path) -> Path:
    candidate = os.getenv("OD_EVENT_LOG")
    if candidate:
        return Path(candidate).expanduser()
    return data_dir / "logs" / "mail_events.log"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SingleSubmissionRequest(_CamelModel):
    subjects: List[Subject] = Field(min_length=1)
    students: List[Student] = Field(min_length=1)
    timetable_file_url: Optional[str] = None

    @model_validator(mode="after")
    def _require_complete_rows(self) -> "SingleSubmissionRequest":
        blank: List[str] = []
        for label, rows in (("subjects", self.subjects), ("students", self.students)):
            for index, row in enumerate(rows):
                for key, value in row.to_document().items():
                    if not str(value).strip():
                        blank.append(f"{label}[{index}].{key}")
        if blank:
            raise ValueError(f"{', '.join(blank)} must not be blank")
        return self


class GenerateEmailRequest(_CamelModel):
    id: Optional[str] = None
    to: Optional[str] = None
    custom_content: Optional[str] = None


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    payload: Dict[str, Any] = {"error": message}
    payload.update(extra)
    return JSONResponse(payload, status_code=status_code)


async def _read_json_object(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def create_app(
    *,
    store: Optional[SubmissionStore] = None,
    composer: Optional[EmailComposer] = None,
    workflow: Optional[ODWorkflow] = None,
    dispatcher: Optional[MailDispatcher] = None,
    timetables: Optional[TimetableStorage] = None,
) -> FastAPI:
    """Build the application around explicitly constructed components."""

    data_dir = _resolve_data_dir()
    event_log = EventLog(_resolve_event_log(data_dir))

    if store is None:
        documents = (
            InMemoryDocumentStore()
            if os.getenv("OD_STORE", "").strip().lower() == "memory"
            else JsonFileDocumentStore(data_dir / "documents")
        )
        store = SubmissionStore(documents, AnonymousSessionProvider(), event_log=event_log)
    composer = composer or EmailComposer(signature=os.getenv("OD_SIGNATURE") or DEFAULT_SIGNATURE)
    workflow = workflow or ODWorkflow(store, composer)
    dispatcher = dispatcher or MailDispatcher(store, composer, event_log=event_log)
    timetables = timetables or TimetableStorage(data_dir / "files")

    app = FastAPI(title="OD Mailer", version="1.0.0")
    app.state.store = store
    app.state.workflow = workflow
    app.state.dispatcher = dispatcher
    app.state.timetables = timetables

    @app.exception_handler(RequestValidationError)
    async def _validation_failed(request: Request, exc: RequestValidationError) -> JSONResponse:
        messages = format_validation_errors(exc.errors())
        return _error(400, "; ".join(messages) or "Invalid request")

    @app.exception_handler(StorePermissionError)
    async def _store_denied(request: Request, exc: StorePermissionError) -> JSONResponse:
        logger.error("Store rejected request: %s", exc)
        return _error(403, PERMISSION_DENIED_MESSAGE)

    @app.exception_handler(StoreError)
    async def _store_failed(request: Request, exc: StoreError) -> JSONResponse:
        logger.error("Store failure: %s", exc)
        return _error(500, str(exc) or "Failed to save")

    @app.get("/healthz")
    async def healthz() -> Dict[str, bool]:
        return {"ok": True}

    @app.post("/api/forms", status_code=201)
    async def submit_single(request: SingleSubmissionRequest) -> Dict[str, Any]:
        receipt = await run_in_threadpool(
            workflow.submit_single,
            request.subjects,
            request.students,
            timetable_url=request.timetable_file_url,
        )
        return {
            "id": receipt.id,
            "email": receipt.email,
            "counts": {
                "subjects": len(receipt.submission.subjects),
                "students": len(receipt.submission.students),
            },
        }

    @app.post("/api/forms/bulk", status_code=201)
    async def submit_bulk(
        file: UploadFile = File(...),
        file_type: str = Form(""),
    ) -> Any:
        content = await file.read()
        try:
            receipt = await run_in_threadpool(
                workflow.submit_bulk,
                content,
                file.filename,
                file_type=file_type or None,
            )
        except RecordImportError as exc:
            return _error(400, str(exc), reason=exc.reason, missing=exc.missing)

        submission = receipt.submission
        return {
            "id": receipt.id,
            "subjects": [subject.to_document() for subject in submission.subjects],
            "students": [student.to_document() for student in submission.students],
            "recordIds": receipt.record_ids,
            "email": receipt.combined_email,
            "counts": {
                "subjects": len(submission.subjects),
                "students": len(submission.students),
                "skippedRows": receipt.rows_skipped,
            },
        }

    @app.post("/api/timetables", status_code=201)
    async def upload_timetable(file: UploadFile = File(...)) -> Any:
        content = await file.read()
        try:
            url = await run_in_threadpool(timetables.save, file.filename, content)
        except FileStorageError as exc:
            return _error(400, str(exc))
        return {"url": url, "fileName": file.filename}

    @app.get("/files/timetables/{name}")
    async def download_timetable(name: str) -> Any:
        path = timetables.resolve(name)
        if path is None:
            return _error(404, "File not found")
        return FileResponse(path, filename=name)

    @app.post("/api/generate-email")
    async def generate_email(request: Request) -> JSONResponse:
        raw = await _read_json_object(request)
        try:
            payload = GenerateEmailRequest.model_validate(raw)
        except ValidationError:
            payload = GenerateEmailRequest()
        if not payload.id or not payload.to:
            return _error(400, "Missing id/to")

        try:
            result = await run_in_threadpool(
                dispatcher.send, payload.id, payload.to, payload.custom_content
            )
        except InvalidRecipientError as exc:
            return _error(400, str(exc))
        except SubmissionNotFoundError:
            return _error(404, "Record not found")
        except MailConfigError as exc:
            return _error(500, str(exc))
        except StoreError:
            raise
        except MailServiceError as exc:
            logger.error("Email generation failed: %s", exc)
            return _error(500, str(exc) or "Failed")
        except Exception as exc:
            logger.exception("Email generation failed")
            return _error(500, str(exc) or "Failed")

        body: Dict[str, Any] = {
            "ok": True,
            "messageId": result.message_id,
            "html": result.html,
            "from": result.sender,
            "fallback": result.fallback,
        }
        if result.preview_url:
            body["preview"] = result.preview_url
        if result.note:
            body["note"] = result.note
        return JSONResponse(body)

    return app


app = create_app()
