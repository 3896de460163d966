"""
Search — Pydantic Schemas

SearchDocument is what gets written to Elasticsearch (one per content item);
SearchRequest / SearchResponse are the query API contract.

The index keeps the field names pdf_id / user_id; Python code works with
doc_id / owner_id through aliases.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from docsearch.schemas.documents import ContentType


# ---------------------------------------------------------------------------
# Indexed document
# ---------------------------------------------------------------------------

class TableRow(BaseModel):
    row_number: int
    row:        dict[str, str]


class ImageMetadata(BaseModel):
    width:  int = 0
    height: int = 0
    format: str = "unknown"


class ImageBlock(BaseModel):
    caption:   str = ""
    imagetext: str = ""
    metadata:  ImageMetadata = Field(default_factory=ImageMetadata)


class SearchDocument(BaseModel):
    """
    One indexed unit. `text` is always populated so free-text queries have a
    single uniform target; table_structured / image only exist on their type.
    """
    model_config = ConfigDict(populate_by_name=True)

    doc_id:      str = Field(..., alias="pdf_id")
    owner_id:    str = Field(..., alias="user_id")
    total_pages: int = 1
    page_number: int = 1
    type:        ContentType
    title:       str = ""
    text:        str = ""

    table_structured: list[TableRow] | None = None
    image:            ImageBlock | None     = None

    def to_index_body(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Query API
# ---------------------------------------------------------------------------

SORT_FIELDS = ("relevance", "page_number", "total_pages", "type")


class SearchRequest(BaseModel):
    """
    Query parameters. At least one of query / pdf_filename / type /
    page_number / total_pages must be set; the query builder enforces it.
    """
    model_config = ConfigDict(populate_by_name=True)

    query:        str | None         = Field(None, max_length=1000)
    pdf_filename: str | None         = None
    type:         ContentType | None = None
    page_number:  int | None         = Field(None, ge=1)
    total_pages:  int | None         = Field(None, ge=1)
    sort_by:      str | None         = None
    sort_order:   str | None         = None
    size:         int                = Field(20, ge=1, le=100)
    from_:        int                = Field(0, ge=0, alias="from")

    def has_filter(self) -> bool:
        for value in (
            self.query, self.pdf_filename, self.type,
            self.page_number, self.total_pages,
        ):
            if isinstance(value, str) and not value.strip():
                continue
            if value is not None:
                return True
        return False


class TableData(BaseModel):
    row_count: int
    rows:      list[dict[str, Any]]


class ImageData(BaseModel):
    caption:  str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class SearchHit(BaseModel):
    id:                str
    score:             float | None = None
    doc_id:            str | None   = None
    owner_id:          str | None   = None
    type:              str | None   = None
    title:             str | None   = None
    page_number:       int | None   = None
    total_pages:       int | None   = None
    text:              str | None   = None
    highlighted_text:  str | None   = None
    highlighted_title: str | None   = None
    table_data:        TableData | None = None
    image_data:        ImageData | None = None


class Pagination(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: int = Field(0, alias="from")
    size:  int
    total: int


class SearchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total:      int
    hits:       list[SearchHit]
    pagination: Pagination
