"""
Unit Tests — IndexingPipeline + DocumentConsumer
════════════════════════════════════════════════
  ✅ happy path: transform → delete old → index → ready, message acked
  ✅ indexer failure → status failed with error text, message requeued
  ✅ attempts exhausted → reject (dead letter)
  ✅ transform errors follow the bounded requeue path
  ✅ unknown document and malformed messages → reject without requeue
  ✅ a failed ready write removes the indexed documents and records failed
  ✅ redelivery for a ready document → acked, nothing re-indexed

Consumer tests are synchronous: on_message drives the pipeline on the
process-wide worker loop exactly as the kombu callback does.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from sqlalchemy.exc import OperationalError

from docsearch.core.errors import DocumentNotFoundError, IndexingError, TransformError
from docsearch.schemas.documents import (
    ExtractedContent,
    ProcessingStatus,
    WorkEnvelope,
    WorkMessage,
)
from docsearch.search.indexer import NO_DOCUMENTS_ERROR, IndexResult
from docsearch.workers.consumer import (
    DocumentConsumer,
    IndexingPipeline,
    delivery_attempts,
    parse_work_message,
)
from docsearch.workers.queue import build_topology
from docsearch.workers.runtime import close_worker_loop


@pytest.fixture(autouse=True)
def _worker_loop():
    yield
    close_worker_loop()


@pytest.fixture
def work_message(test_document_id, test_owner_id) -> WorkMessage:
    return WorkMessage(
        doc_id=test_document_id,
        owner_id=test_owner_id,
        source_ref="report.pdf",
        content_ref=f"/data/content/{test_document_id}.json",
        page_count=2,
        text_length=120,
        table_count=1,
    )


@pytest.fixture
def pipeline(mock_content_store, mock_status, mock_indexer) -> IndexingPipeline:
    return IndexingPipeline(mock_content_store, mock_status, mock_indexer)


def _amqp_message(delivery_count: int | None = None) -> MagicMock:
    message = MagicMock()
    message.headers = {} if delivery_count is None else {"x-delivery-count": delivery_count}
    return message


def _consumer(pipeline, max_attempts: int = 3) -> DocumentConsumer:
    return DocumentConsumer(
        MagicMock(),
        pipeline,
        topology=build_topology(),
        max_attempts=max_attempts,
    )


def _status_targets(mock_status) -> list[ProcessingStatus]:
    return [c.args[1] for c in mock_status.update_status.await_args_list]


@pytest.mark.unit
@pytest.mark.pipeline
class TestIndexingPipeline:

    async def test_happy_path(self, pipeline, work_message, mock_status, mock_indexer):
        result = await pipeline.process(work_message)

        assert result.indexed_count == 3
        assert _status_targets(mock_status) == [ProcessingStatus.TRANSFORM, ProcessingStatus.READY]
        mock_indexer.delete_document.assert_awaited_once_with(work_message.doc_id)
        documents, doc_id = mock_indexer.index_documents.await_args.args
        assert doc_id == work_message.doc_id
        assert {d.owner_id for d in documents} == {work_message.owner_id}
        assert all(d.total_pages == 2 for d in documents)

    async def test_indexer_failure_marks_failed(self, pipeline, work_message, mock_status, mock_indexer):
        mock_indexer.index_documents = AsyncMock(side_effect=IndexingError("cluster down"))

        with pytest.raises(IndexingError):
            await pipeline.process(work_message)

        assert _status_targets(mock_status) == [ProcessingStatus.TRANSFORM, ProcessingStatus.FAILED]
        assert mock_status.update_status.await_args.kwargs["error"] == "cluster down"
        # Pre-index delete + cleanup delete
        assert mock_indexer.delete_document.await_count == 2

    async def test_nothing_indexed_is_a_transform_error(self, pipeline, work_message, mock_indexer, mock_content_store):
        mock_content_store.load.return_value = ExtractedContent(pdf_id=work_message.doc_id, data=[])
        mock_indexer.index_documents = AsyncMock(return_value=IndexResult(
            success=False, indexed_count=0, doc_id=work_message.doc_id, error=NO_DOCUMENTS_ERROR,
        ))

        with pytest.raises(TransformError, match=NO_DOCUMENTS_ERROR):
            await pipeline.process(work_message)

    async def test_ready_document_is_skipped(self, pipeline, work_message, mock_status, mock_indexer):
        mock_status.get_status.return_value = ProcessingStatus.READY

        assert await pipeline.process(work_message) is None
        mock_status.update_status.assert_not_called()
        mock_indexer.index_documents.assert_not_called()

    async def test_missing_content_propagates(self, pipeline, work_message, mock_content_store, mock_status):
        mock_content_store.load.side_effect = FileNotFoundError("gone")

        with pytest.raises(FileNotFoundError):
            await pipeline.process(work_message)
        assert _status_targets(mock_status)[-1] is ProcessingStatus.FAILED

    async def test_status_write_failure_does_not_mask_original_error(
        self, pipeline, work_message, mock_status, mock_indexer,
    ):
        mock_indexer.index_documents = AsyncMock(side_effect=IndexingError("cluster down"))

        async def _update(doc_id, target, error=None):
            if target is ProcessingStatus.FAILED:
                raise RuntimeError("db down")
            return target

        mock_status.update_status = AsyncMock(side_effect=_update)

        with pytest.raises(IndexingError):
            await pipeline.process(work_message)


@pytest.mark.unit
@pytest.mark.pipeline
class TestDocumentConsumer:

    def test_success_acks(self, pipeline, work_message):
        message = _amqp_message()
        _consumer(pipeline).on_message(WorkEnvelope(data=work_message).to_wire(), message)

        message.ack.assert_called_once()
        message.requeue.assert_not_called()
        message.reject.assert_not_called()

    def test_indexer_failure_marks_failed_and_requeues(self, pipeline, work_message, mock_indexer, mock_status):
        mock_indexer.index_documents = AsyncMock(side_effect=IndexingError("cluster down"))
        message = _amqp_message(delivery_count=0)

        _consumer(pipeline, max_attempts=3).on_message(WorkEnvelope(data=work_message).to_wire(), message)

        message.requeue.assert_called_once()
        message.ack.assert_not_called()
        assert _status_targets(mock_status)[-1] is ProcessingStatus.FAILED

    def test_last_attempt_dead_letters(self, pipeline, work_message, mock_indexer):
        mock_indexer.index_documents = AsyncMock(side_effect=IndexingError("cluster down"))
        message = _amqp_message(delivery_count=2)

        _consumer(pipeline, max_attempts=3).on_message(WorkEnvelope(data=work_message).to_wire(), message)

        message.reject.assert_called_once_with(requeue=False)
        message.requeue.assert_not_called()

    def test_malformed_content_item_is_requeued(self, pipeline, work_message, mock_content_store, mock_status):
        mock_content_store.load.return_value = ExtractedContent(
            pdf_id=work_message.doc_id,
            data=[{"type": "table", "rows": "garbage"}],
        )
        message = _amqp_message(delivery_count=0)

        _consumer(pipeline, max_attempts=5).on_message(WorkEnvelope(data=work_message).to_wire(), message)

        message.requeue.assert_called_once()
        message.reject.assert_not_called()
        assert _status_targets(mock_status)[-1] is ProcessingStatus.FAILED

    def test_missing_content_file_is_requeued(self, pipeline, work_message, mock_content_store):
        mock_content_store.load.side_effect = FileNotFoundError("gone")
        message = _amqp_message(delivery_count=1)

        _consumer(pipeline, max_attempts=5).on_message(WorkEnvelope(data=work_message).to_wire(), message)

        message.requeue.assert_called_once()

    def test_unknown_document_dead_letters_immediately(self, pipeline, work_message, mock_status):
        mock_status.get_status.side_effect = DocumentNotFoundError("Document not found")
        message = _amqp_message(delivery_count=0)

        _consumer(pipeline, max_attempts=5).on_message(WorkEnvelope(data=work_message).to_wire(), message)

        message.reject.assert_called_once_with(requeue=False)
        message.requeue.assert_not_called()

    def test_ready_write_failure_on_last_attempt_leaves_nothing_searchable(
        self, pipeline, work_message, mock_status, mock_indexer,
    ):
        async def _update(doc_id, target, error=None):
            if target is ProcessingStatus.READY:
                raise OperationalError("UPDATE documents", {}, ConnectionResetError("connection reset"))
            return target

        mock_status.update_status = AsyncMock(side_effect=_update)
        message = _amqp_message(delivery_count=4)

        _consumer(pipeline, max_attempts=5).on_message(WorkEnvelope(data=work_message).to_wire(), message)

        message.reject.assert_called_once_with(requeue=False)
        assert ProcessingStatus.FAILED in _status_targets(mock_status)
        assert mock_indexer.delete_document.await_count == 2

    def test_malformed_message_is_rejected_unprocessed(self):
        pipeline = MagicMock()
        pipeline.process = AsyncMock()
        message = _amqp_message()

        _consumer(pipeline).on_message({"data": {"pdfId": "x"}}, message)

        message.reject.assert_called_once_with(requeue=False)
        pipeline.process.assert_not_called()

    def test_duplicate_delivery_of_ready_document_is_acked(self, pipeline, work_message, mock_status, mock_indexer):
        mock_status.get_status.return_value = ProcessingStatus.READY
        message = _amqp_message(delivery_count=1)

        _consumer(pipeline).on_message(WorkEnvelope(data=work_message).to_wire(), message)

        message.ack.assert_called_once()
        mock_indexer.index_documents.assert_not_called()


@pytest.mark.unit
class TestMessageHelpers:

    def test_envelope_and_bare_payloads_parse(self, work_message):
        wire = WorkEnvelope(data=work_message).to_wire()
        assert wire["type"] == "pdf.parsed"
        assert wire["data"]["pdfId"] == work_message.doc_id
        assert wire["data"]["jsonPath"] == work_message.content_ref

        assert parse_work_message(wire).doc_id == work_message.doc_id
        assert parse_work_message(wire["data"]).content_ref == work_message.content_ref

    @pytest.mark.parametrize("headers,expected", [
        (None, 1),
        ({}, 1),
        ({"x-delivery-count": 0}, 1),
        ({"x-delivery-count": 4}, 5),
        ({"x-delivery-count": "junk"}, 1),
    ])
    def test_delivery_attempts(self, headers, expected):
        message = MagicMock()
        message.headers = headers
        assert delivery_attempts(message) == expected
