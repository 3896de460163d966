"""
Error taxonomy for the extraction → transform → index → search pipeline.

Every error carries a stable machine-readable ``code`` and the HTTP status
the API layer maps it to. Pipeline stages raise these; the consumer records
them onto the document's status/error fields, the API turns them into the
uniform ErrorResponse envelope.

    ExtractionError        unreadable / corrupt source   → document failed
    TransformError         malformed content item         → document failed
    IndexingError          search engine down / bulk fail → message requeued
    ValidationError        no usable search filter        → 400, never retried
    QueueError             broker unavailable             → degraded mode
    StatusTransitionError  illegal status transition      → 409
    DocumentNotFoundError  unknown or foreign document    → 404
    UploadTooLargeError    upload over max_upload_bytes   → 413
"""

from __future__ import annotations


class DocSearchError(Exception):
    """Base class for all domain errors."""

    code:        str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(self, message: str, *, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class ExtractionError(DocSearchError):
    code = "EXTRACTION_ERROR"
    status_code = 422


class TransformError(DocSearchError):
    code = "TRANSFORM_ERROR"
    status_code = 422


class IndexingError(DocSearchError):
    code = "INDEX_ERROR"
    status_code = 503


class ValidationError(DocSearchError):
    code = "VALIDATION_ERROR"
    status_code = 400


class QueueError(DocSearchError):
    code = "QUEUE_ERROR"
    status_code = 503


class StatusTransitionError(DocSearchError):
    code = "INVALID_STATUS_TRANSITION"
    status_code = 409


class DocumentNotFoundError(DocSearchError):
    code = "DOCUMENT_NOT_FOUND"
    status_code = 404


class UploadTooLargeError(DocSearchError):
    code = "FILE_TOO_LARGE"
    status_code = 413
