"""
Document API Router

POST /api/v1/documents        — upload a PDF, returns 202 + document id
GET  /api/v1/documents/{id}   — poll processing status

Request lifecycle (upload):
  ┌──────────────────────────────────────────────────────────┐
  │ 1. JWT verification → owner_id (never client-supplied)   │
  │ 2. Size + magic-byte validation                          │
  │ 3. File saved under upload_dir/<doc_id>.pdf              │
  │ 4. DB insert (status=queued)                             │
  │ 5. Celery extraction task submitted → 202                │
  └──────────────────────────────────────────────────────────┘

Domain errors propagate to the app-level handler, which renders the
ErrorResponse envelope.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, File, UploadFile, status
from fastapi.responses import JSONResponse

from docsearch.auth.dependencies import CurrentUser, Repository, Uploads
from docsearch.schemas.documents import (
    DocumentStatusResponse,
    DocumentUploadResponse,
    ErrorResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Documents"],
)


@router.post(
    "",
    response_model=DocumentUploadResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload a PDF for extraction and indexing",
    responses={
        400: {"model": ErrorResponse, "description": "Missing, empty or non-PDF file"},
        401: {"model": ErrorResponse, "description": "Missing or invalid token"},
        413: {"model": ErrorResponse, "description": "File exceeds the upload limit"},
    },
)
async def upload_document(
    user:    CurrentUser,
    uploads: Uploads,
    pdf:     UploadFile = File(..., description="PDF file"),
) -> JSONResponse:
    result = await uploads.accept(pdf, owner_id=user.owner_id)
    logger.info(
        "Upload accepted | doc=%s owner=%s bytes=%d",
        result.document_id, user.owner_id, result.size_bytes,
    )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=result.model_dump(mode="json"),
        headers={
            "X-Document-ID": result.document_id,
            "Location":      f"/api/v1/documents/{result.document_id}",
        },
    )


@router.get(
    "/{document_id}",
    response_model=DocumentStatusResponse,
    summary="Poll processing status",
    responses={
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def get_document_status(
    document_id: str,
    user:        CurrentUser,
    repository:  Repository,
) -> DocumentStatusResponse:
    """Another owner's document is reported as not found."""
    doc = await repository.get(document_id, owner_id=user.owner_id)
    return DocumentStatusResponse(
        document_id=str(doc.id),
        filename=doc.filename,
        processing_status=doc.processing_status,
        error=doc.error,
        updated_at=doc.updated_at,
    )
