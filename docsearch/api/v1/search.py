"""
Search API Router

GET /api/v1/search

Every search is scoped to the token's owner. At least one of query,
pdf_filename, type, page_number or total_pages is required; otherwise 400.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Query

from docsearch.auth.dependencies import CurrentUser, Search
from docsearch.schemas.documents import ContentType, ErrorResponse
from docsearch.schemas.search import SearchRequest, SearchResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Search"])


@router.get(
    "/search",
    response_model=SearchResponse,
    response_model_by_alias=True,
    summary="Full-text and filtered search over indexed content",
    responses={
        400: {"model": ErrorResponse, "description": "No query or filter given"},
        401: {"model": ErrorResponse},
        503: {"model": ErrorResponse, "description": "Search backend unavailable"},
    },
)
async def search(
    user:         CurrentUser,
    service:      Search,
    query:        Annotated[str | None, Query(max_length=1000)] = None,
    pdf_filename: str | None = None,
    type:         ContentType | None = None,
    page_number:  Annotated[int | None, Query(ge=1)] = None,
    total_pages:  Annotated[int | None, Query(ge=1)] = None,
    sort_by:      str | None = None,
    sort_order:   str | None = None,
    size:         Annotated[int, Query(ge=1, le=100)] = 20,
    from_:        Annotated[int, Query(ge=0, alias="from")] = 0,
) -> SearchResponse:
    request = SearchRequest(
        query=query,
        pdf_filename=pdf_filename,
        type=type,
        page_number=page_number,
        total_pages=total_pages,
        sort_by=sort_by,
        sort_order=sort_order,
        size=size,
        from_=from_,
    )
    response = await service.search(request, owner_id=user.owner_id)
    logger.info(
        "Search | owner=%s type=%s total=%d returned=%d",
        user.owner_id, type.value if type else "-", response.total, len(response.hits),
    )
    return response
