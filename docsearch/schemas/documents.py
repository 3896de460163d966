"""
Document Pipeline — Pydantic Schemas

Covers every shape that crosses a process boundary:
  - ProcessingStatus state machine (documents.status column)
  - Extracted content items (Structurer → content store → ETL Transformer)
  - Work message published to RabbitMQ after extraction
  - Upload / status API responses and the uniform error envelope

Design decisions:
  - Content items are a discriminated union on `type`; the ETL layer parses
    raw dicts itself so unknown item types can be skipped instead of failing
    the whole document.
  - The work message keeps the camelCase wire names consumers already depend
    on (pdfId, userId, jsonPath …) while Python code uses snake_case.
  - All timestamps are timezone-aware UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from docsearch.core.errors import StatusTransitionError


# ---------------------------------------------------------------------------
# Processing pipeline state machine
# ---------------------------------------------------------------------------

class ProcessingStatus(str, Enum):
    """
    Maps to documents.status column.
    Transitions: queued → parsing → transform → ready
                 any non-terminal state → failed
                 failed → parsing | transform   (explicit re-processing)
    """
    QUEUED    = "queued"      # record created, extraction task submitted
    PARSING   = "parsing"     # extracted, work message published
    TRANSFORM = "transform"   # consumer running ETL + indexing
    READY     = "ready"       # indexed and visible to search
    FAILED    = "failed"      # see documents.error

    @property
    def is_terminal(self) -> bool:
        return self is ProcessingStatus.READY

    def can_transition(self, target: "ProcessingStatus") -> bool:
        if target is self:
            # Redelivery after a worker crash re-enters the same working state
            return self in (ProcessingStatus.PARSING, ProcessingStatus.TRANSFORM)
        return target in _ALLOWED_TRANSITIONS[self]

    def transition(self, target: "ProcessingStatus") -> "ProcessingStatus":
        """Return `target` if the move is legal, else raise StatusTransitionError."""
        if not self.can_transition(target):
            raise StatusTransitionError(
                f"Illegal status transition {self.value} → {target.value}"
            )
        return target


_ALLOWED_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.QUEUED:    frozenset({ProcessingStatus.PARSING, ProcessingStatus.FAILED}),
    ProcessingStatus.PARSING:   frozenset({
        ProcessingStatus.TRANSFORM, ProcessingStatus.READY, ProcessingStatus.FAILED,
    }),
    ProcessingStatus.TRANSFORM: frozenset({ProcessingStatus.READY, ProcessingStatus.FAILED}),
    ProcessingStatus.READY:     frozenset(),
    ProcessingStatus.FAILED:    frozenset({ProcessingStatus.PARSING, ProcessingStatus.TRANSFORM}),
}


# ---------------------------------------------------------------------------
# Extracted content items
# ---------------------------------------------------------------------------

class ContentType(str, Enum):
    PARAGRAPH = "paragraph"
    TABLE     = "table"
    IMAGE     = "image"


class _ContentItemBase(BaseModel):
    page:  int       = Field(1, ge=1, description="1-based page number")
    title: list[str] = Field(default_factory=list, description="Heading / caption words")

    @field_validator("page", mode="before")
    @classmethod
    def _default_page(cls, value: Any) -> Any:
        return 1 if value in (None, "", 0) else value

    @field_validator("title", mode="before")
    @classmethod
    def _split_title(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return value.split()
        return value


class ParagraphItem(_ContentItemBase):
    type: Literal["paragraph"] = "paragraph"
    text: str


class TableItem(_ContentItemBase):
    """
    headers : header row (column names before normalisation); may be empty,
              in which case the first row of `rows` is the header row.
    rows    : data rows, each an ordered list of cell strings.
    """
    type:    Literal["table"] = "table"
    headers: list[str]       = Field(default_factory=list)
    rows:    list[list[str]] = Field(default_factory=list)


class ImageItem(_ContentItemBase):
    type: Literal["image"] = "image"
    text: str        = Field("", description="Caption text")


ContentItem = Annotated[
    Union[ParagraphItem, TableItem, ImageItem],
    Field(discriminator="type"),
]


class ExtractedContent(BaseModel):
    """
    The document `content_ref` points at.

    `data` holds raw item dicts; the ETL transformer validates each one so a
    single unknown or malformed item is reported without discarding the rest.
    """
    pdf_id:       str
    total_pages:  int = 1
    extracted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data:         list[dict[str, Any]] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Work message — RabbitMQ payload
# ---------------------------------------------------------------------------

WORK_MESSAGE_TYPE = "pdf.parsed"


class WorkMessage(BaseModel):
    """
    Summary of one completed extraction.

    Carries scalars only; the full content is fetched from `content_ref`,
    which keeps the message small and safe to replay.
    """
    model_config = ConfigDict(populate_by_name=True)

    doc_id:      str      = Field(..., alias="pdfId")
    owner_id:    str      = Field(..., alias="userId")
    source_ref:  str      = Field(..., alias="filename")
    content_ref: str      = Field(..., alias="jsonPath")
    page_count:  int      = Field(1, alias="pageCount")
    text_length: int      = Field(0, alias="textLength")
    table_count: int      = Field(0, alias="tableCount")
    parsed_at:   datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="parsedAt",
    )


class WorkEnvelope(BaseModel):
    """Wire envelope: {type, timestamp, data: WorkMessage}."""
    type:      str      = WORK_MESSAGE_TYPE
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data:      WorkMessage

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# API responses
# ---------------------------------------------------------------------------

class DocumentUploadResponse(BaseModel):
    """HTTP 202 — the file is stored, extraction runs in the background."""
    document_id:       str
    filename:          str
    processing_status: ProcessingStatus = ProcessingStatus.QUEUED
    size_bytes:        int
    created_at:        datetime


class DocumentStatusResponse(BaseModel):
    """Polled by clients to track async processing progress."""
    document_id:       str
    filename:          str
    processing_status: ProcessingStatus
    error:             str | None = None
    updated_at:        datetime | None = None


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")
