"""Service layer: import, composition, persistence and mail dispatch."""

from .email_composer import EmailComposer, EmailTemplateError
from .file_storage import FileStorageError, TimetableStorage
from .mail_dispatcher import (
    DispatchResult,
    InvalidRecipientError,
    MailConfigError,
    MailDeliveryError,
    MailDispatcher,
    MailServiceError,
    MailSettings,
    SubmissionNotFoundError,
)
from .od_workflow import ODWorkflow
from .record_importer import RecordImporter, RecordImportError
from .submission_store import (
    InMemoryDocumentStore,
    JsonFileDocumentStore,
    StoreError,
    StorePermissionError,
    SubmissionStore,
)

__all__ = [
    "DispatchResult",
    "EmailComposer",
    "EmailTemplateError",
    "FileStorageError",
    "InMemoryDocumentStore",
    "InvalidRecipientError",
    "JsonFileDocumentStore",
    "MailConfigError",
    "MailDeliveryError",
    "MailDispatcher",
    "MailServiceError",
    "MailSettings",
    "ODWorkflow",
    "RecordImportError",
    "RecordImporter",
    "StoreError",
    "StorePermissionError",
    "SubmissionNotFoundError",
    "SubmissionStore",
    "TimetableStorage",
]
