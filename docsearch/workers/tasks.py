"""
Celery Tasks — Extraction stage

Task: extract_document
  1. Skip unless the document is queued (or failed, for re-processing)
  2. Extract text + tables from the stored PDF (PyMuPDF)
  3. Structure into paragraph / image / table content items
  4. Save the content JSON, status → parsing
  5. Publish the work message for the indexing consumer

  Extraction errors mark the document failed and are not retried: a corrupt
  PDF stays corrupt. A broker failure after step 4 leaves the document in
  parsing; republish_stale_documents picks it up later.

Task: republish_stale_documents
  Beat task. Resubmits extraction for documents stuck in queued and
  republishes work messages for documents stuck in parsing, at most
  MAX_RECOVERY_ATTEMPTS times per stage before marking them failed.
"""

from __future__ import annotations

import logging
from typing import Any

from docsearch.core.config import settings
from docsearch.core.errors import ExtractionError, QueueError
from docsearch.processing.extractor import ContentExtractor
from docsearch.processing.structurer import Structurer
from docsearch.schemas.documents import ExtractedContent, ProcessingStatus, WorkMessage
from docsearch.services.documents import DocumentRepository
from docsearch.services.ingestion import TaskPublisher
from docsearch.services.status import StatusTracker
from docsearch.storage.content import ContentStore, build_content_store
from docsearch.workers.celery_app import (
    MAX_RECOVERY_ATTEMPTS,
    STALE_PARSING_SECONDS,
    STALE_QUEUED_SECONDS,
    celery_app,
)
from docsearch.workers.queue import WorkQueueProducer, build_topology
from docsearch.workers.runtime import run_async

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Extraction task
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docsearch.workers.tasks.extract_document",
    acks_late=True,
    reject_on_worker_lost=True,
    soft_time_limit=270,
    time_limit=330,
)
def extract_document(
    *,
    doc_id:      str,
    owner_id:    str,
    source_path: str,
    filename:    str,
) -> dict[str, Any]:
    return run_async(
        ExtractionJob().run(
            doc_id=doc_id,
            owner_id=owner_id,
            source_path=source_path,
            filename=filename,
        )
    )


class ExtractionJob:
    """Collaborators are injectable so the job can be tested without Celery."""

    def __init__(
        self,
        extractor:     ContentExtractor | None = None,
        structurer:    Structurer | None = None,
        content_store: ContentStore | None = None,
        status:        StatusTracker | None = None,
        producer:      WorkQueueProducer | None = None,
    ) -> None:
        self._extractor  = extractor or ContentExtractor()
        self._structurer = structurer or Structurer()
        self._store      = content_store or build_content_store(settings)
        self._status     = status or StatusTracker()
        self._producer   = producer or WorkQueueProducer(
            settings.rabbitmq_url, build_topology(settings),
        )

    async def run(
        self,
        *,
        doc_id:      str,
        owner_id:    str,
        source_path: str,
        filename:    str,
    ) -> dict[str, Any]:
        current = await self._status.get_status(doc_id)
        if current not in (ProcessingStatus.QUEUED, ProcessingStatus.FAILED):
            logger.warning("Document already in status=%s, skipping | doc=%s", current.value, doc_id)
            return {"status": "skipped", "current_status": current.value}

        # --- Extract + structure ----------------------------------------
        try:
            result = await self._extractor.extract(source_path)
            items = self._structurer.structure(result.text, result.tables)
        except ExtractionError as exc:
            logger.error("Extraction failed | doc=%s error=%s", doc_id, exc)
            await self._status.update_status(doc_id, ProcessingStatus.FAILED, error=str(exc))
            return {"status": ProcessingStatus.FAILED.value, "error": str(exc)}
        except Exception as exc:
            # Re-raised so task_failure fires; the document no longer looks queued
            logger.exception("Extraction crashed | doc=%s", doc_id)
            await self._status.update_status(
                doc_id, ProcessingStatus.FAILED, error=f"Extraction error: {exc}",
            )
            raise
        content = ExtractedContent(
            pdf_id=doc_id,
            total_pages=result.page_count,
            data=[item.model_dump(mode="json") for item in items],
        )

        # --- Persist content, status → parsing --------------------------
        try:
            content_ref = await self._store.save(content)
            await self._status.mark_parsed(doc_id, content_ref, result.page_count)
        except Exception as exc:
            logger.exception("Saving extracted content failed | doc=%s", doc_id)
            await self._status.update_status(doc_id, ProcessingStatus.FAILED, error=f"Content store error: {exc}")
            raise

        # --- Hand off to the indexing consumer --------------------------
        message = WorkMessage(
            doc_id=doc_id,
            owner_id=owner_id,
            source_ref=filename,
            content_ref=content_ref,
            page_count=result.page_count,
            text_length=len(result.text),
            table_count=result.table_count,
        )
        published = True
        try:
            await self._producer.publish(message)
        except QueueError as exc:
            # Extraction is kept; the stale-document job republishes later
            logger.error("Work message not published | doc=%s error=%s", doc_id, exc)
            published = False

        logger.info(
            "Extraction complete | doc=%s pages=%d items=%d tables=%d published=%s",
            doc_id, result.page_count, len(items), result.table_count, published,
        )
        return {
            "status":      ProcessingStatus.PARSING.value,
            "doc_id":      doc_id,
            "content_ref": content_ref,
            "items":       len(items),
            "published":   published,
        }


# ---------------------------------------------------------------------------
# Republish scanner — runs every 5 minutes via Celery Beat
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docsearch.workers.tasks.republish_stale_documents",
    acks_late=True,
    soft_time_limit=55,
    time_limit=60,
)
def republish_stale_documents() -> dict[str, int]:
    return run_async(_republish_stale_documents_async())


async def _republish_stale_documents_async(
    repository: DocumentRepository | None = None,
    producer:   WorkQueueProducer | None = None,
    publisher:  TaskPublisher | None = None,
    status:     StatusTracker | None = None,
) -> dict[str, int]:
    """
    Every re-send bumps recovery_attempts and updated_at, so a document is
    picked up at most once per stale window and at most MAX_RECOVERY_ATTEMPTS
    times per stage before it is marked failed.
    """
    repository = repository or DocumentRepository()
    producer = producer or WorkQueueProducer(settings.rabbitmq_url, build_topology(settings))
    publisher = publisher or TaskPublisher()
    status = status or StatusTracker()

    queued = await repository.list_stale(ProcessingStatus.QUEUED, STALE_QUEUED_SECONDS)
    resubmitted, abandoned = 0, 0
    for doc in queued:
        if await _give_up_if_exhausted(doc, status):
            abandoned += 1
            continue
        try:
            await publisher.submit_extraction(
                doc_id=str(doc.id),
                owner_id=doc.owner_id,
                source_path=doc.source_path,
                filename=doc.filename,
            )
        except Exception as exc:
            logger.error("Resubmit stopped | doc=%s error=%s", doc.id, exc)
            break
        await repository.record_recovery(str(doc.id))
        resubmitted += 1
        logger.info("Resubmitted stale document | doc=%s", doc.id)

    stale = await repository.list_stale(ProcessingStatus.PARSING, STALE_PARSING_SECONDS)
    republished = 0
    for doc in stale:
        if not doc.content_ref:
            logger.warning("Stale document has no content_ref | doc=%s", doc.id)
            continue
        if await _give_up_if_exhausted(doc, status):
            abandoned += 1
            continue
        try:
            await producer.publish(WorkMessage(
                doc_id=str(doc.id),
                owner_id=doc.owner_id,
                source_ref=doc.filename,
                content_ref=doc.content_ref,
                page_count=doc.page_count or 1,
            ))
        except QueueError as exc:
            logger.error("Republish stopped, broker unavailable | error=%s", exc)
            break
        await repository.record_recovery(str(doc.id))
        republished += 1
        logger.info("Republished stale document | doc=%s", doc.id)

    return {
        "stale":       len(stale),
        "republished": republished,
        "resubmitted": resubmitted,
        "abandoned":   abandoned,
    }


async def _give_up_if_exhausted(doc, status: StatusTracker) -> bool:
    attempts = doc.recovery_attempts or 0
    if attempts < MAX_RECOVERY_ATTEMPTS:
        return False
    logger.error(
        "Recovery exhausted, marking failed | doc=%s status=%s attempts=%d",
        doc.id, doc.status, attempts,
    )
    await status.update_status(
        str(doc.id),
        ProcessingStatus.FAILED,
        error=f"Stuck in {doc.status} after {attempts} recovery attempts",
    )
    return True
