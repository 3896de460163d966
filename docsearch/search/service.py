"""
Search Service

Runs one owner-scoped search:
  1. resolve pdf_filename → doc ids through the document repository
     (lookup failure is logged and the filename filter dropped)
  2. QueryBuilder builds the body
  3. Elasticsearch executes it
  4. hits are reshaped into SearchResponse
"""

from __future__ import annotations

import logging
from typing import Protocol

from elasticsearch import ApiError, AsyncElasticsearch, TransportError

from docsearch.core.errors import IndexingError
from docsearch.schemas.search import Pagination, SearchRequest, SearchResponse
from docsearch.search.query_builder import QueryBuilder

logger = logging.getLogger(__name__)


class FilenameLookup(Protocol):
    async def find_ids_by_filename(self, filename: str, owner_id: str) -> list[str]: ...


class SearchService:

    def __init__(
        self,
        client:     AsyncElasticsearch,
        index_name: str,
        lookup:     FilenameLookup,
        builder:    QueryBuilder | None = None,
    ) -> None:
        self._client  = client
        self._index   = index_name
        self._lookup  = lookup
        self._builder = builder or QueryBuilder()

    async def search(self, request: SearchRequest, owner_id: str) -> SearchResponse:
        doc_ids = await self._resolve_filename(request.pdf_filename, owner_id)
        body = self._builder.build_body(request, owner_id, doc_ids)

        try:
            resp = await self._client.search(
                index=self._index,
                query=body["query"],
                sort=body["sort"],
                highlight=body["highlight"],
                size=body["size"],
                from_=body["from"],
            )
        except (TransportError, ApiError) as exc:
            logger.error("Search failed | owner=%s error=%s", owner_id, exc)
            raise IndexingError(f"Search failed: {exc}") from exc

        hits_block = resp.get("hits", {})
        total = _total(hits_block.get("total"))
        hits = [self._builder.format_hit(hit) for hit in hits_block.get("hits", [])]

        logger.info(
            "Search | owner=%s query=%r type=%s total=%d returned=%d",
            owner_id, request.query, request.type.value if request.type else None,
            total, len(hits),
        )
        return SearchResponse(
            total=total,
            hits=hits,
            pagination=Pagination(from_=request.from_, size=request.size, total=total),
        )

    async def _resolve_filename(self, filename: str | None, owner_id: str) -> list[str] | None:
        if not filename or not filename.strip():
            return None
        try:
            return await self._lookup.find_ids_by_filename(filename, owner_id)
        except Exception as exc:
            logger.error(
                "Filename lookup failed, filter dropped | owner=%s file=%s error=%s",
                owner_id, filename, exc,
            )
            return None


def _total(value) -> int:
    # ES 7+ returns {"value": n, "relation": "eq"}
    if isinstance(value, dict):
        return int(value.get("value", 0))
    return int(value or 0)
