"""
Document Repository

Owner-scoped access to document records:
  create()                — insert the queued record for a new upload
  get()                   — fetch one record; 404 if missing or owned by someone else
  find_ids_by_filename()  — filename → doc ids, used by the search filename filter
  list_stale()            — documents stuck in a status, for the republish job
  record_recovery()       — count one re-send by that job and restart the stale clock

Request-path queries carry `owner_id`; a document owned by another user is
indistinguishable from a missing one. list_stale() is for system jobs only.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select, update

from docsearch.core.errors import DocumentNotFoundError
from docsearch.db.session import session_scope
from docsearch.models.documents import Document
from docsearch.schemas.documents import ProcessingStatus
from docsearch.services.status import SessionScope

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._\- ]")


def basename(filename: str) -> str:
    """Strip any directory component, / or \\ separated."""
    return re.sub(r"^.*[\\/]", "", filename or "")


def sanitize_filename(filename: str) -> str:
    """Basename with unsafe characters replaced; capped at 200 chars."""
    safe = _UNSAFE_FILENAME_CHARS.sub("_", basename(filename)).strip()
    return safe[:200] or "upload.pdf"


class DocumentRepository:

    def __init__(self, scope: SessionScope = session_scope) -> None:
        self._scope = scope

    async def create(
        self,
        *,
        owner_id:    str,
        filename:    str,
        source_path: str,
        size_bytes:  int,
        doc_id:      uuid.UUID | None = None,
    ) -> Document:
        doc = Document(
            id=doc_id or uuid.uuid4(),
            owner_id=owner_id,
            filename=filename,
            source_path=source_path,
            size_bytes=size_bytes,
            status=ProcessingStatus.QUEUED.value,
        )
        async with self._scope() as session:
            session.add(doc)
            await session.flush()
        logger.info("Document created | doc=%s owner=%s file=%s", doc.id, owner_id, filename)
        return doc

    async def get(self, doc_id: str, owner_id: str) -> Document:
        try:
            key = uuid.UUID(str(doc_id))
        except ValueError as exc:
            raise DocumentNotFoundError(f"Document not found: {doc_id}") from exc

        async with self._scope() as session:
            result = await session.execute(
                select(Document).where(
                    Document.id == key,
                    Document.owner_id == owner_id,
                )
            )
            doc = result.scalars().first()
        if doc is None:
            raise DocumentNotFoundError(f"Document not found: {doc_id}")
        return doc

    async def find_ids_by_filename(self, filename: str, owner_id: str) -> list[str]:
        """All of the owner's document ids whose stored filename matches the basename."""
        name = sanitize_filename(filename)
        async with self._scope() as session:
            result = await session.execute(
                select(Document.id).where(
                    Document.owner_id == owner_id,
                    Document.filename == name,
                )
            )
            ids = [str(row) for row in result.scalars().all()]
        logger.debug("Filename lookup | owner=%s file=%s matches=%d", owner_id, name, len(ids))
        return ids

    async def list_stale(
        self,
        status:        ProcessingStatus,
        older_than_s:  int,
        limit:         int = 50,
    ) -> list[Document]:
        """Documents sitting in `status` without an update for `older_than_s` seconds."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_s)
        async with self._scope() as session:
            result = await session.execute(
                select(Document)
                .where(
                    Document.status == status.value,
                    Document.updated_at < cutoff,
                )
                .order_by(Document.updated_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def record_recovery(self, doc_id: str) -> int:
        """Bump recovery_attempts and updated_at; returns the new attempt count."""
        async with self._scope() as session:
            result = await session.execute(
                update(Document)
                .where(Document.id == uuid.UUID(str(doc_id)))
                .values(
                    recovery_attempts=Document.recovery_attempts + 1,
                    updated_at=func.now(),
                )
                .returning(Document.recovery_attempts)
            )
            attempts = result.scalar_one()
        logger.debug("Recovery recorded | doc=%s attempts=%d", doc_id, attempts)
        return attempts
