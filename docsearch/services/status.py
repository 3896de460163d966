"""
Status Tracker

Single writer of documents.status. Every change goes through
ProcessingStatus.transition(), so an illegal move (e.g. ready → parsing)
raises StatusTransitionError instead of silently rewinding a document.

The row is locked (SELECT … FOR UPDATE) for the read-check-write so the
Celery task and the queue consumer cannot interleave on the same document.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import AbstractAsyncContextManager
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docsearch.core.errors import DocumentNotFoundError
from docsearch.db.session import session_scope
from docsearch.models.documents import Document
from docsearch.schemas.documents import ProcessingStatus

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

# Error text is stored verbatim; keep the column bounded
MAX_ERROR_CHARS = 2000


class StatusTracker:

    def __init__(self, scope: SessionScope = session_scope) -> None:
        self._scope = scope

    async def get_status(self, doc_id: str) -> ProcessingStatus:
        async with self._scope() as session:
            doc = await self._load(session, doc_id, lock=False)
            return doc.processing_status

    async def update_status(
        self,
        doc_id: str,
        status: ProcessingStatus,
        error:  str | None = None,
    ) -> ProcessingStatus:
        """
        Move the document to `status`. `error` is recorded only for failed;
        any other transition clears a previous error.
        """
        async with self._scope() as session:
            doc = await self._load(session, doc_id, lock=True)
            previous = doc.processing_status
            previous.transition(status)

            doc.status = status.value
            doc.error = (error or "unknown error")[:MAX_ERROR_CHARS] if status is ProcessingStatus.FAILED else None

        logger.info(
            "Status | doc=%s %s → %s%s",
            doc_id, previous.value, status.value,
            f" error={error}" if error else "",
        )
        return status

    async def mark_parsed(
        self,
        doc_id:      str,
        content_ref: str,
        page_count:  int,
    ) -> None:
        """Record extraction output and move the document to parsing."""
        async with self._scope() as session:
            doc = await self._load(session, doc_id, lock=True)
            previous = doc.processing_status
            previous.transition(ProcessingStatus.PARSING)

            doc.status = ProcessingStatus.PARSING.value
            doc.error = None
            doc.content_ref = content_ref
            doc.page_count = page_count
            doc.recovery_attempts = 0

        logger.info(
            "Status | doc=%s %s → parsing content_ref=%s pages=%d",
            doc_id, previous.value, content_ref, page_count,
        )

    @staticmethod
    async def _load(session: AsyncSession, doc_id: str, *, lock: bool) -> Document:
        try:
            key = uuid.UUID(str(doc_id))
        except ValueError as exc:
            raise DocumentNotFoundError(f"Document not found: {doc_id}") from exc

        stmt = select(Document).where(Document.id == key)
        if lock:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        doc = result.scalars().first()
        if doc is None:
            raise DocumentNotFoundError(f"Document not found: {doc_id}")
        return doc
