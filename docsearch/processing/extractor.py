"""
Content Extractor
═════════════════

Reads a PDF with PyMuPDF and returns its text layer, page count and tables.

  1. fitz opens the file; every page yields its text and the cell matrices
     of any grids page.find_tables() recognises
  2. TableDetectionChain picks the first strategy that finds tables
  3. Lines consumed by a table are removed from the returned text, so the
     Structurer never sees table rows as prose

Missing, unreadable and corrupt files raise ExtractionError; the worker
records that on the document instead of retrying.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field

from docsearch.core.errors import ExtractionError
from docsearch.processing.structurer import PAGE_BREAK
from docsearch.processing.tables import DetectedTable, PageText, TableDetectionChain

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """
    text       : full text with table lines removed, pages separated by a
                 form-feed line
    tables     : tables found by the winning detector
    page_count : number of pages (≥ 1)
    pages      : per-page text and grid matrices as read from the file
    elapsed_ms : extraction wall time (ms)
    """
    text:       str
    tables:     list[DetectedTable]
    page_count: int
    pages:      list[PageText] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def table_count(self) -> int:
        return len(self.tables)


class ContentExtractor:
    """
    Usage:
        extractor = ContentExtractor()
        result = await extractor.extract("/data/uploads/report.pdf")
    """

    def __init__(
        self,
        chain:       TableDetectionChain | None = None,
        find_grids:  bool = True,
    ) -> None:
        self._chain      = chain or TableDetectionChain()
        self._find_grids = find_grids

    async def extract(self, path: str) -> ExtractionResult:
        if not os.path.isfile(path):
            raise ExtractionError(f"Source file not found: {path}")

        loop = asyncio.get_running_loop()
        t0 = time.monotonic()
        pages = await loop.run_in_executor(None, self._read_pages, path)

        result = self.build_result(pages)
        result.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Extraction | path=%s pages=%d chars=%d tables=%d elapsed_ms=%.0f",
            path, result.page_count, len(result.text),
            result.table_count, result.elapsed_ms,
        )
        return result

    def build_result(self, pages: list[PageText]) -> ExtractionResult:
        """Run table detection over already-read pages and clean the text."""
        tables = self._chain.detect(pages)
        consumed = {position for table in tables for position in table.consumed_lines}
        full_text = f"\n{PAGE_BREAK}\n".join(
            remove_lines(page.text, {i for number, i in consumed if number == page.page_number})
            for page in pages
        )
        return ExtractionResult(
            text=full_text,
            tables=tables,
            page_count=max(len(pages), 1),
            pages=pages,
        )

    def _read_pages(self, path: str) -> list[PageText]:
        """Blocking read — runs in thread executor."""
        import fitz  # PyMuPDF; imported here to avoid module-level import cost

        try:
            doc = fitz.open(path)
        except Exception as exc:
            raise ExtractionError(f"Cannot open PDF {path}: {exc}") from exc

        pages: list[PageText] = []
        try:
            if doc.needs_pass:
                raise ExtractionError(f"PDF is password protected: {path}")
            for index, page in enumerate(doc):
                pages.append(PageText(
                    page_number=index + 1,
                    text=page.get_text("text"),
                    grid_tables=self._find_grid_tables(page) if self._find_grids else [],
                ))
        except ExtractionError:
            raise
        except Exception as exc:
            raise ExtractionError(f"Cannot read PDF {path}: {exc}") from exc
        finally:
            doc.close()
        return pages

    @staticmethod
    def _find_grid_tables(page) -> list[list[list[str]]]:
        try:
            found = page.find_tables()
        except Exception as exc:
            logger.debug("find_tables failed | page=%d error=%s", page.number + 1, exc)
            return []
        return [table.extract() for table in found.tables]


def remove_lines(text: str, indexes: set[int]) -> str:
    """Drop the lines at `indexes` (0-based) from one page of text."""
    if not indexes:
        return text
    return "\n".join(
        line for index, line in enumerate(text.split("\n")) if index not in indexes
    )
