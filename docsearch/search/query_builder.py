"""
Query Builder

Translates a SearchRequest into an Elasticsearch request body and shapes raw
hits into the public SearchHit envelope. No I/O: the filename → doc_id
lookup is resolved by SearchService and passed in.

    bool.must
      term  user_id        always
      terms pdf_id         when a filename resolved (possibly to no ids)
      term  type / page_number / total_pages
      multi_match          free text, special characters escaped
"""

from __future__ import annotations

import re
from typing import Any

from docsearch.core.errors import ValidationError
from docsearch.schemas.documents import ContentType
from docsearch.schemas.search import ImageData, SearchHit, SearchRequest, TableData

# Lucene query-string operators that must not reach the engine unescaped
_SPECIAL_CHARS = re.compile(r'([+\-&|!(){}\[\]^"~*?:\\])')

TEXT_FIELDS  = ["title", "text"]
IMAGE_FIELDS = ["image.caption", "image.imagetext", "title", "text"]

_SORT_FIELDS = {
    "page_number": "page_number",
    "total_pages": "total_pages",
    "type":        "type",
}
_RELEVANCE = {"_score": {"order": "desc"}}


def escape_query(text: str) -> str:
    return _SPECIAL_CHARS.sub(r"\\\1", text)


class QueryBuilder:

    def build_query(
        self,
        request:  SearchRequest,
        owner_id: str,
        doc_ids:  list[str] | None = None,
    ) -> dict[str, Any]:
        """
        `doc_ids` is the resolved filename filter: None means "no filename
        filter", an empty list means "filename matched nothing".
        """
        if not request.has_filter():
            raise ValidationError(
                "At least one of query, pdf_filename, type, page_number "
                "or total_pages is required",
                details=[{"field": "query", "message": "no search criteria", "code": "MISSING_FILTER"}],
            )

        must: list[dict[str, Any]] = [{"term": {"user_id": owner_id}}]

        if doc_ids is not None:
            must.append({"terms": {"pdf_id": doc_ids}})
        if request.type is not None:
            must.append({"term": {"type": request.type.value}})
        if request.page_number is not None:
            must.append({"term": {"page_number": request.page_number}})
        if request.total_pages is not None:
            must.append({"term": {"total_pages": request.total_pages}})

        text = (request.query or "").strip()
        if text:
            fields = IMAGE_FIELDS if request.type is ContentType.IMAGE else TEXT_FIELDS
            must.append({
                "multi_match": {
                    "query":     escape_query(text),
                    "fields":    fields,
                    "type":      "best_fields",
                    "fuzziness": "AUTO",
                },
            })

        return {"bool": {"must": must}}

    def build_sort(self, sort_by: str | None, sort_order: str | None) -> list[dict[str, Any]]:
        """Unknown keys fall back to relevance instead of failing the search."""
        field = _SORT_FIELDS.get(sort_by or "")
        if field is None:
            return [_RELEVANCE]
        order = "asc" if sort_order == "asc" else "desc"
        return [{field: {"order": order}}]

    def build_body(
        self,
        request:  SearchRequest,
        owner_id: str,
        doc_ids:  list[str] | None = None,
    ) -> dict[str, Any]:
        return {
            "query":     self.build_query(request, owner_id, doc_ids),
            "sort":      self.build_sort(request.sort_by, request.sort_order),
            "highlight": {"fields": {"title": {}, "text": {}}},
            "size":      request.size,
            "from":      request.from_,
        }

    # ------------------------------------------------------------------
    # Result shaping
    # ------------------------------------------------------------------

    def format_hit(self, hit: dict[str, Any]) -> SearchHit:
        source = hit.get("_source") or {}
        highlight = hit.get("highlight") or {}

        formatted = SearchHit(
            id=hit.get("_id", ""),
            score=hit.get("_score"),
            doc_id=source.get("pdf_id"),
            owner_id=source.get("user_id"),
            type=source.get("type"),
            title=source.get("title"),
            page_number=source.get("page_number"),
            total_pages=source.get("total_pages"),
            text=source.get("text"),
            highlighted_text=_first(highlight.get("text")),
            highlighted_title=_first(highlight.get("title")),
        )

        if source.get("type") == ContentType.TABLE.value and source.get("table_structured"):
            rows = source["table_structured"]
            formatted.table_data = TableData(row_count=len(rows), rows=rows)
        if source.get("type") == ContentType.IMAGE.value and source.get("image"):
            image = source["image"]
            formatted.image_data = ImageData(
                caption=image.get("caption") or "",
                metadata=image.get("metadata") or {},
            )
        return formatted


def _first(fragments: list[str] | None) -> str | None:
    return fragments[0] if fragments else None
