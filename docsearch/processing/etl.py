"""
ETL Transformer
═══════════════

Maps content items to search documents. Pure: no I/O, no clock, the same
input always produces the same output.

  paragraph → text + flattened title
  table     → text  = cells joined " | ", rows joined "\n"
              table_structured = [{row_number, row: {column: cell}}]
  image     → text  = caption, image = {caption, imagetext "", metadata{0,0,"unknown"}}

Column names are resolved once per table from its header row:
  normalize_column_name("Revenue ($)") → "revenue"
  blank names are dropped, repeats become name, name_2, name_3 …
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from docsearch.core.errors import TransformError
from docsearch.schemas.documents import (
    ContentItem,
    ContentType,
    ImageItem,
    ParagraphItem,
    TableItem,
)
from docsearch.schemas.search import ImageBlock, SearchDocument, TableRow

logger = logging.getLogger(__name__)

_CONTENT_ITEM = TypeAdapter(ContentItem)
_KNOWN_TYPES = {t.value for t in ContentType}

_WHITESPACE   = re.compile(r"\s+")
_NON_KEY_CHAR = re.compile(r"[^a-z0-9_]")

TABLE_CELL_SEPARATOR = " | "


# ---------------------------------------------------------------------------
# Column names
# ---------------------------------------------------------------------------

def normalize_column_name(header: str) -> str:
    """
    lowercase → trim → whitespace runs to "_" → drop [^a-z0-9_] → trim "_".
    Idempotent: normalize(normalize(x)) == normalize(x).
    """
    name = (header or "").lower().strip()
    name = _WHITESPACE.sub("_", name)
    name = _NON_KEY_CHAR.sub("", name)
    return name.strip("_")


def resolve_columns(headers: list[str]) -> list[tuple[int, str]]:
    """
    (column index, key) for every header that survives normalisation.
    Blank keys are dropped; repeated keys get a positional suffix.
    """
    resolved: list[tuple[int, str]] = []
    seen: Counter[str] = Counter()
    taken: set[str] = set()
    for index, header in enumerate(headers):
        base = normalize_column_name(header)
        if not base:
            continue
        seen[base] += 1
        key = base if seen[base] == 1 else f"{base}_{seen[base]}"
        while key in taken:
            seen[base] += 1
            key = f"{base}_{seen[base]}"
        taken.add(key)
        resolved.append((index, key))
    return resolved


def build_table_structure(
    rows:    list[list[str]],
    headers: list[str] | None = None,
) -> list[TableRow]:
    """
    Column-keyed rows. With no explicit `headers` the first row is the header
    row. Missing cells become "". row_number is the 1-based data row index.
    """
    if headers:
        header_row, data_rows = headers, rows
    elif rows:
        header_row, data_rows = rows[0], rows[1:]
    else:
        return []

    columns = resolve_columns(header_row)
    structured: list[TableRow] = []
    for number, row in enumerate(data_rows, start=1):
        cells = {
            key: (row[index] if index < len(row) and row[index] is not None else "")
            for index, key in columns
        }
        structured.append(TableRow(row_number=number, row=cells))
    return structured


def flatten_title(title: list[str] | str | None) -> str:
    if not title:
        return ""
    if isinstance(title, str):
        return title
    return " ".join(title)


def table_text(headers: list[str], rows: list[list[str]]) -> str:
    lines = [headers] if headers else []
    lines.extend(rows)
    return "\n".join(TABLE_CELL_SEPARATOR.join(row) for row in lines)


# ---------------------------------------------------------------------------
# Transformation
# ---------------------------------------------------------------------------

def transform_content_items(
    items:       Iterable[dict[str, Any] | ParagraphItem | TableItem | ImageItem],
    doc_id:      str,
    owner_id:    str,
    total_pages: int = 1,
) -> list[SearchDocument]:
    """
    One SearchDocument per known item, in input order.
    Unknown item types are skipped with a warning; a known type that fails
    validation raises TransformError.
    """
    documents: list[SearchDocument] = []
    total_pages = total_pages or 1
    for position, raw in enumerate(items):
        item = _parse_item(raw, position)
        if item is None:
            continue

        base = {
            "doc_id":      doc_id,
            "owner_id":    owner_id,
            "total_pages": total_pages,
            "page_number": item.page or 1,
            "type":        item.type,
            "title":       flatten_title(item.title),
        }

        if isinstance(item, ParagraphItem):
            documents.append(SearchDocument(**base, text=item.text))
        elif isinstance(item, TableItem):
            documents.append(SearchDocument(
                **base,
                text=table_text(item.headers, item.rows),
                table_structured=build_table_structure(item.rows, item.headers),
            ))
        elif isinstance(item, ImageItem):
            documents.append(SearchDocument(
                **base,
                text=item.text or "",
                image=ImageBlock(caption=item.text or ""),
            ))
    return documents


def _parse_item(raw: Any, position: int) -> ParagraphItem | TableItem | ImageItem | None:
    if isinstance(raw, (ParagraphItem, TableItem, ImageItem)):
        return raw

    item_type = raw.get("type") if isinstance(raw, dict) else None
    if item_type not in _KNOWN_TYPES:
        logger.warning("Unknown content type skipped | position=%d type=%r", position, item_type)
        return None

    try:
        return _CONTENT_ITEM.validate_python(raw)
    except PydanticValidationError as exc:
        raise TransformError(
            f"Malformed {item_type} item at position {position}",
            details=[
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ],
        ) from exc


# ---------------------------------------------------------------------------
# Validation and statistics
# ---------------------------------------------------------------------------

@dataclass
class ValidationReport:
    errors:         list[str] = field(default_factory=list)
    warnings:       list[str] = field(default_factory=list)
    document_count: int = 0

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_search_documents(documents: list[SearchDocument]) -> ValidationReport:
    """Errors block indexing; warnings are only logged."""
    report = ValidationReport(document_count=len(documents))
    for index, doc in enumerate(documents):
        if not doc.doc_id:
            report.errors.append(f"Document {index}: missing pdf_id")
        if not doc.owner_id:
            report.errors.append(f"Document {index}: missing user_id")
        if doc.total_pages < 1:
            report.errors.append(f"Document {index}: invalid total_pages {doc.total_pages}")
        if doc.page_number < 1:
            report.errors.append(f"Document {index}: invalid page_number {doc.page_number}")

        if doc.type is ContentType.PARAGRAPH and not doc.text:
            report.warnings.append(f"Document {index}: paragraph has no text")
        if doc.type is ContentType.TABLE and not doc.table_structured:
            report.warnings.append(f"Document {index}: table has no structured rows")
        if doc.type is not ContentType.TABLE and doc.table_structured:
            report.errors.append(f"Document {index}: table_structured on a {doc.type.value}")
    return report


def document_statistics(documents: list[SearchDocument]) -> dict[str, Any]:
    by_type: Counter[str] = Counter(doc.type.value for doc in documents)
    by_page: Counter[int] = Counter(doc.page_number for doc in documents)
    return {
        "total":             len(documents),
        "by_type":           dict(by_type),
        "by_page":           dict(sorted(by_page.items())),
        "total_text_length": sum(len(doc.text) for doc in documents),
    }
