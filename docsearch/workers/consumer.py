"""
Work Queue Consumer — ETL + indexing stage

One message in flight per consumer (prefetch_count=1, manual ack):

  receive ─► parse envelope ─► IndexingPipeline.process()
                 │ malformed          │ ok            │ error
                 ▼                    ▼               ▼
          reject → dead letter       ack       status failed, then
                                               requeue while attempts remain,
                                               else reject → dead letter

IndexingPipeline.process():
  1. skip if the document is already ready (duplicate delivery)
  2. status → transform
  3. load content_ref, ETL transform, validate
  4. delete any previous search documents of doc_id, bulk index
  5. status → ready
  On failure: delete partial search documents, status → failed + error text.

Run with:  docsearch-consumer
"""

from __future__ import annotations

import logging
from typing import Any

from kombu import Connection
from kombu.mixins import ConsumerMixin
from pydantic import ValidationError as PydanticValidationError

from docsearch.core.config import settings
from docsearch.core.errors import (
    DocumentNotFoundError,
    IndexingError,
    StatusTransitionError,
    TransformError,
)
from docsearch.processing.etl import (
    document_statistics,
    transform_content_items,
    validate_search_documents,
)
from docsearch.schemas.documents import ProcessingStatus, WorkEnvelope, WorkMessage
from docsearch.search.indexer import Indexer, IndexResult, build_indexer, create_es_client
from docsearch.services.status import StatusTracker
from docsearch.storage.content import ContentStore, build_content_store
from docsearch.workers.queue import QueueTopology, build_topology
from docsearch.workers.runtime import close_worker_loop, run_async

logger = logging.getLogger(__name__)

# The document row is gone or already moved on; the message goes straight to
# the dead-letter queue. Everything else is requeued up to max_attempts.
PERMANENT_ERRORS = (
    DocumentNotFoundError,
    StatusTransitionError,
)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class IndexingPipeline:

    def __init__(
        self,
        content_store: ContentStore,
        status:        StatusTracker,
        indexer:       Indexer,
    ) -> None:
        self._store   = content_store
        self._status  = status
        self._indexer = indexer

    async def process(self, message: WorkMessage) -> IndexResult | None:
        doc_id = message.doc_id

        current = await self._status.get_status(doc_id)
        if current is ProcessingStatus.READY:
            logger.warning("Document already ready, skipping | doc=%s", doc_id)
            return None

        await self._status.update_status(doc_id, ProcessingStatus.TRANSFORM)

        try:
            result = await self._transform_and_index(message)
            # Indexed documents must not stay searchable unless this lands
            await self._status.update_status(doc_id, ProcessingStatus.READY)
        except Exception as exc:
            await self._record_failure(doc_id, exc)
            raise

        return result

    async def _transform_and_index(self, message: WorkMessage) -> IndexResult:
        doc_id = message.doc_id
        content = await self._store.load(message.content_ref)

        documents = transform_content_items(
            content.data,
            doc_id=doc_id,
            owner_id=message.owner_id,
            total_pages=content.total_pages or message.page_count,
        )

        report = validate_search_documents(documents)
        for warning in report.warnings:
            logger.warning("Validation | doc=%s %s", doc_id, warning)
        if not report.is_valid:
            raise TransformError(
                f"{len(report.errors)} invalid search documents for {doc_id}",
                details=[{"message": error} for error in report.errors],
            )

        stats = document_statistics(documents)
        logger.info(
            "Transformed | doc=%s total=%d by_type=%s text_length=%d",
            doc_id, stats["total"], stats["by_type"], stats["total_text_length"],
        )

        await self._indexer.delete_document(doc_id)
        result = await self._indexer.index_documents(documents, doc_id)
        if not result.success:
            raise TransformError(result.error or f"Nothing indexed for {doc_id}")
        if result.indexed_count < len(documents):
            logger.warning(
                "Partial index | doc=%s indexed=%d expected=%d",
                doc_id, result.indexed_count, len(documents),
            )
        return result

    async def _record_failure(self, doc_id: str, exc: Exception) -> None:
        try:
            await self._indexer.delete_document(doc_id)
        except IndexingError as cleanup_exc:
            logger.error("Cleanup failed | doc=%s error=%s", doc_id, cleanup_exc)
        try:
            await self._status.update_status(doc_id, ProcessingStatus.FAILED, error=str(exc))
        except Exception as status_exc:
            logger.error(
                "Could not record failure | doc=%s error=%s status_error=%s",
                doc_id, exc, status_exc,
            )


# ---------------------------------------------------------------------------
# Consumer
# ---------------------------------------------------------------------------

def parse_work_message(body: Any) -> WorkMessage:
    """Accept the {type, timestamp, data} envelope, or a bare data object."""
    if isinstance(body, dict) and "data" in body:
        return WorkEnvelope.model_validate(body).data
    return WorkMessage.model_validate(body)


def delivery_attempts(message) -> int:
    """1 on first delivery; the quorum queue counts earlier returns."""
    headers = message.headers or {}
    try:
        return int(headers.get("x-delivery-count", 0)) + 1
    except (TypeError, ValueError):
        return 1


class DocumentConsumer(ConsumerMixin):

    def __init__(
        self,
        connection:   Connection,
        pipeline:     IndexingPipeline,
        topology:     QueueTopology | None = None,
        max_attempts: int = 5,
    ) -> None:
        self.connection    = connection
        self._pipeline     = pipeline
        self._topology     = topology or build_topology()
        self._max_attempts = max_attempts

    def get_consumers(self, Consumer, channel):
        topology = self._topology
        # Declare the dead-letter side too so rejected messages always have a home
        topology.dead_exchange(channel).declare()
        topology.dead_queue(channel).declare()
        return [
            Consumer(
                queues=[topology.queue],
                callbacks=[self.on_message],
                accept=["json"],
                prefetch_count=1,
            ),
        ]

    def on_message(self, body: Any, message) -> None:
        try:
            work = parse_work_message(body)
        except PydanticValidationError as exc:
            logger.error("Malformed work message, dead-lettering | error=%s body=%r", exc, body)
            message.reject(requeue=False)
            return

        attempt = delivery_attempts(message)
        logger.info("Received | doc=%s attempt=%d", work.doc_id, attempt)

        try:
            run_async(self._pipeline.process(work))
        except PERMANENT_ERRORS as exc:
            logger.error("Permanent failure, dead-lettering | doc=%s error=%s", work.doc_id, exc)
            message.reject(requeue=False)
        except Exception as exc:
            if attempt >= self._max_attempts:
                logger.error(
                    "Giving up, dead-lettering | doc=%s attempts=%d error=%s",
                    work.doc_id, attempt, exc,
                )
                message.reject(requeue=False)
            else:
                logger.warning(
                    "Processing failed, requeueing | doc=%s attempt=%d/%d error=%s",
                    work.doc_id, attempt, self._max_attempts, exc,
                )
                message.requeue()
        else:
            message.ack()
            logger.info("Processed | doc=%s", work.doc_id)


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

def build_pipeline() -> tuple[IndexingPipeline, Any]:
    """Compose the pipeline from settings. Returns (pipeline, es_client)."""
    client = create_es_client(settings)
    indexer = build_indexer(client, settings)
    run_async(indexer.ensure_index())
    pipeline = IndexingPipeline(
        content_store=build_content_store(settings),
        status=StatusTracker(),
        indexer=indexer,
    )
    return pipeline, client


def main() -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    pipeline, client = build_pipeline()
    logger.info(
        "Consumer starting | queue=%s max_attempts=%d",
        settings.work_queue, settings.max_delivery_attempts,
    )
    try:
        with Connection(settings.rabbitmq_url, heartbeat=30) as conn:
            DocumentConsumer(
                conn,
                pipeline,
                topology=build_topology(settings),
                max_attempts=settings.max_delivery_attempts,
            ).run()
    finally:
        run_async(client.close())
        close_worker_loop()


if __name__ == "__main__":
    main()
