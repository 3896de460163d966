"""
Upload Service

Accepts a PDF upload and starts the pipeline:
  1. Reject empty / oversized files and anything that is not a PDF (magic bytes)
  2. Save the file under upload_dir/<doc_id>.pdf
  3. Insert the document record (status=queued)
  4. Submit the Celery extraction task
  5. Return 202 with the new document id

owner_id always comes from the verified token, never from the request.
A broker failure at step 4 is not fatal: the record stays queued and the
periodic republish job resubmits it.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone

from fastapi import UploadFile

from docsearch.core.errors import UploadTooLargeError, ValidationError
from docsearch.schemas.documents import DocumentUploadResponse, ProcessingStatus
from docsearch.services.documents import DocumentRepository, sanitize_filename
from docsearch.storage.content import save_upload

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


class TaskPublisher:
    """
    Sends the extraction task to the Celery broker.
    Import is deferred so the broker is not needed at module load time.
    """

    async def submit_extraction(
        self,
        *,
        doc_id:      str,
        owner_id:    str,
        source_path: str,
        filename:    str,
    ) -> None:
        from docsearch.workers.tasks import extract_document

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: extract_document.apply_async(
                kwargs={
                    "doc_id":      doc_id,
                    "owner_id":    owner_id,
                    "source_path": source_path,
                    "filename":    filename,
                },
            ),
        )
        logger.info("Extraction task submitted | doc=%s owner=%s", doc_id, owner_id)


class UploadService:

    def __init__(
        self,
        repository: DocumentRepository,
        publisher:  TaskPublisher,
        upload_dir: str,
        max_bytes:  int,
    ) -> None:
        self._repository = repository
        self._publisher  = publisher
        self._upload_dir = upload_dir
        self._max_bytes  = max_bytes

    async def accept(self, file: UploadFile, owner_id: str) -> DocumentUploadResponse:
        data = await self._read_upload(file)
        filename = sanitize_filename(file.filename or "upload.pdf")
        doc_id = uuid.uuid4()

        source_path = await save_upload(self._upload_dir, str(doc_id), data)
        doc = await self._repository.create(
            doc_id=doc_id,
            owner_id=owner_id,
            filename=filename,
            source_path=source_path,
            size_bytes=len(data),
        )

        try:
            await self._publisher.submit_extraction(
                doc_id=str(doc.id),
                owner_id=owner_id,
                source_path=source_path,
                filename=filename,
            )
        except Exception as exc:
            # The record is queued; the republish job picks it up
            logger.error("Failed to submit extraction task | doc=%s error=%s", doc.id, exc)

        return DocumentUploadResponse(
            document_id=str(doc.id),
            filename=filename,
            processing_status=ProcessingStatus.QUEUED,
            size_bytes=len(data),
            created_at=doc.created_at or datetime.now(timezone.utc),
        )

    async def _read_upload(self, file: UploadFile | None) -> bytes:
        if file is None or not file.filename:
            raise ValidationError(
                "A PDF file is required",
                details=[{"field": "pdf", "message": "missing file", "code": "MISSING_FILE"}],
            )

        data = await file.read()
        if not data:
            raise ValidationError(
                "Uploaded file is empty",
                details=[{"field": "pdf", "message": "empty file", "code": "MISSING_FILE"}],
            )
        if len(data) > self._max_bytes:
            raise UploadTooLargeError(
                f"File is {len(data)} bytes; limit is {self._max_bytes}",
                details=[{"field": "pdf", "message": "file too large", "code": "FILE_TOO_LARGE"}],
            )
        if not data.startswith(PDF_MAGIC):
            raise ValidationError(
                "Only PDF files are accepted",
                details=[{"field": "pdf", "message": "not a PDF", "code": "UNSUPPORTED_FILE_TYPE"}],
            )
        return data
