"""
Composed FastAPI Dependencies

Route handlers import from here, never from auth/token, services or the
search package directly. Long-lived clients (Elasticsearch, SearchService)
are created once in the app lifespan and read from app.state.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from docsearch.auth.token import TokenPayload, get_current_user
from docsearch.core.config import settings
from docsearch.search.service import SearchService
from docsearch.services.documents import DocumentRepository
from docsearch.services.ingestion import TaskPublisher, UploadService


def get_repository() -> DocumentRepository:
    return DocumentRepository()


def get_search_service(request: Request) -> SearchService:
    return request.app.state.search_service


def get_upload_service(
    repository: Annotated[DocumentRepository, Depends(get_repository)],
) -> UploadService:
    return UploadService(
        repository=repository,
        publisher=TaskPublisher(),
        upload_dir=settings.upload_dir,
        max_bytes=settings.max_upload_bytes,
    )


# ---------------------------------------------------------------------------
# Type aliases for route signatures
# ---------------------------------------------------------------------------

CurrentUser = Annotated[TokenPayload,       Depends(get_current_user)]
Repository  = Annotated[DocumentRepository, Depends(get_repository)]
Search      = Annotated[SearchService,      Depends(get_search_service)]
Uploads     = Annotated[UploadService,      Depends(get_upload_service)]
