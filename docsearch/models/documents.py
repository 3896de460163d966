"""
SQLAlchemy ORM Models — Document records

One row per uploaded PDF. The row is the single source of truth for the
document's processing status; the search index is derived data.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from docsearch.schemas.documents import ProcessingStatus


class Base(DeclarativeBase):
    pass


_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in ProcessingStatus)


class Document(Base):
    """
    Tracks a single uploaded PDF from upload → extraction → indexing.

    State machine (status column), see ProcessingStatus:
        queued     — file saved, extraction task submitted
        parsing    — content extracted, work message published
        transform  — consumer transforming + indexing
        ready      — searchable
        failed     — see error
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="documents_status_check"),
        Index("idx_documents_owner_id", "owner_id"),
        Index("idx_documents_owner_filename", "owner_id", "filename"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )

    # Taken from the verified bearer token, never from the request body
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)

    filename: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Sanitized basename as uploaded; used by the search filename filter",
    )
    source_path: Mapped[str] = mapped_column(Text, nullable=False)
    size_bytes:  Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    content_ref: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Handle of the extracted content JSON; set once extraction succeeds",
    )
    page_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    recovery_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
        comment="Times the stale-document job re-sent this document in its current stage",
    )

    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=ProcessingStatus.QUEUED.value,
        server_default=ProcessingStatus.QUEUED.value,
    )
    error: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Populated only when status='failed'",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    @property
    def processing_status(self) -> ProcessingStatus:
        return ProcessingStatus(self.status)

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} owner={self.owner_id} "
            f"status={self.status} file={self.filename!r}>"
        )
