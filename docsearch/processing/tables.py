"""
Table Detection Strategies
══════════════════════════

Design: Strategy + Chain
────────────────────────
Tables are found by a list of detectors tried in order; the first one that
returns at least one table wins and the rest are skipped.

  Strategy 1: GridTableDetector
    - Converts the ruled/aligned grids PyMuPDF found with page.find_tables()
    - Most reliable, but only sees tables that have a real grid structure

  Strategy 2: HeaderSignatureDetector
    - Scans text lines for a known header signature
      (e.g. "ID  Product Name  Units Sold  Revenue")
    - Parses each following line as <id><name><units><$amount>, splitting
      from the right so names containing digits or quotes survive intact

  Strategy 3: WhitespaceColumnDetector
    - Any line with ≥3 segments separated by 2+ spaces or a tab is a row
    - First row is the header row

Every detector is pure over the PageText list the extractor produced, so
the chain can be exercised without a real PDF.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_SIGNATURE_TOKENS = ("ID", "Product Name", "Units Sold")
DEFAULT_SIGNATURE_HEADERS = ["ID", "Product Name", "Units Sold", "Revenue ($)"]
DEFAULT_SIGNATURE_TITLE = "Q4 2024 Sales Performance"

# Lines that always end a signature table
NON_TABLE_MARKERS = ("Figure", "Sample Image")

# Data rows shorter than this after the leading id are treated as prose
MIN_ROW_REMAINDER_CHARS = 10

_ROW_PATTERN      = re.compile(r"^(\d+)(.+)$")
_TRAILING_AMOUNT  = re.compile(r"\$[\d,]+$")
_TRAILING_NUMBER  = re.compile(r"[\d,]+$")
_COLUMN_SEPARATOR = re.compile(r"\s{2,}|\t")

MIN_WHITESPACE_COLUMNS = 3


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class PageText:
    """
    Text and grid tables read from a single page.

    page_number : 1-based page index
    text        : raw text layer of the page
    grid_tables : cell matrices from PyMuPDF find_tables(), one per table
    """
    page_number: int
    text:        str
    grid_tables: list[list[list[str]]] = field(default_factory=list)


@dataclass
class DetectedTable:
    """
    One table found by a detector.

    headers        : header row (raw column names)
    rows           : data rows, header excluded
    title          : table title if the detector knows one, else ""
    page           : 1-based page the table starts on
    strategy       : detector name, for logging
    consumed_lines : (page_number, line_index) of every text line that belongs
                     to the table and must be removed from the extracted text
    """
    headers:        list[str]
    rows:           list[list[str]]
    title:          str = ""
    page:           int = 1
    strategy:       str = ""
    consumed_lines: list[tuple[int, int]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Abstract strategy
# ---------------------------------------------------------------------------

class TableDetector(ABC):
    """Base for table detection strategies."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique name for logging."""

    @abstractmethod
    def detect(self, pages: list[PageText]) -> list[DetectedTable]:
        """Return every table found, or [] when the strategy does not apply."""


# ---------------------------------------------------------------------------
# Strategy 1: structural grids
# ---------------------------------------------------------------------------

class GridTableDetector(TableDetector):

    @property
    def name(self) -> str:
        return "grid"

    def detect(self, pages: list[PageText]) -> list[DetectedTable]:
        tables: list[DetectedTable] = []
        for page in pages:
            for matrix in page.grid_tables:
                cleaned = [
                    [_clean_cell(cell) for cell in row]
                    for row in matrix
                    if any(_clean_cell(cell) for cell in row)
                ]
                if len(cleaned) < 2:
                    continue
                tables.append(DetectedTable(
                    headers=cleaned[0],
                    rows=cleaned[1:],
                    page=page.page_number,
                    strategy=self.name,
                ))
        return tables


def _clean_cell(cell: object) -> str:
    if cell is None:
        return ""
    return " ".join(str(cell).split())


# ---------------------------------------------------------------------------
# Strategy 2: header signature + record pattern
# ---------------------------------------------------------------------------

class HeaderSignatureDetector(TableDetector):
    """
    Finds a line that carries every signature token (with or without the
    whitespace between them) and parses the lines that follow it.

    Row split, right to left:
        "1 MacBook Pro 16\" 1,245 $3,107,500"
        → amount "$3,107,500", units "1,245", name "MacBook Pro 16\""
    """

    def __init__(
        self,
        tokens:  tuple[str, ...] = DEFAULT_SIGNATURE_TOKENS,
        headers: list[str] | None = None,
        title:   str = DEFAULT_SIGNATURE_TITLE,
    ) -> None:
        self._tokens  = tokens
        self._squashed_tokens = tuple(_squash(t) for t in tokens)
        self._headers = headers or list(DEFAULT_SIGNATURE_HEADERS)
        self._title   = title

    @property
    def name(self) -> str:
        return "header_signature"

    def detect(self, pages: list[PageText]) -> list[DetectedTable]:
        for page in pages:
            lines = page.text.split("\n")
            for index, line in enumerate(lines):
                if not self._is_signature(line):
                    continue
                rows, consumed = self._parse_rows(lines, index + 1)
                if not rows:
                    continue
                return [DetectedTable(
                    headers=list(self._headers),
                    rows=rows,
                    title=self._title,
                    page=page.page_number,
                    strategy=self.name,
                    consumed_lines=[
                        (page.page_number, i) for i in (index, *consumed)
                    ],
                )]
        return []

    def _is_signature(self, line: str) -> bool:
        if all(token in line for token in self._tokens):
            return True
        squashed = _squash(line)
        return all(token in squashed for token in self._squashed_tokens)

    def _parse_rows(self, lines: list[str], start: int) -> tuple[list[list[str]], list[int]]:
        rows: list[list[str]] = []
        consumed: list[int] = []
        for offset, raw in enumerate(lines[start:]):
            line = raw.strip()
            if not line or any(marker in line for marker in NON_TABLE_MARKERS):
                break
            row = split_record(line)
            if row is None:
                break
            rows.append(row)
            consumed.append(start + offset)
        return rows, consumed


def split_record(line: str) -> list[str] | None:
    """
    Split one `<id><name><units><$amount>` line into four cells.
    Returns None when the line is not a data row.
    """
    match = _ROW_PATTERN.match(line.strip())
    if match is None:
        return None
    row_id, rest = match.groups()
    if len(rest) <= MIN_ROW_REMAINDER_CHARS:
        return None

    remainder = rest.strip()
    amount = ""
    amount_match = _TRAILING_AMOUNT.search(remainder)
    if amount_match:
        amount = amount_match.group(0)
        remainder = remainder[:amount_match.start()].strip()

    units = ""
    units_match = _TRAILING_NUMBER.search(remainder)
    if units_match:
        units = units_match.group(0)
        remainder = remainder[:units_match.start()].strip()

    return [row_id.strip(), remainder or rest.strip(), units, amount]


def _squash(value: str) -> str:
    return re.sub(r"\s+", "", value)


# ---------------------------------------------------------------------------
# Strategy 3: whitespace-aligned columns
# ---------------------------------------------------------------------------

class WhitespaceColumnDetector(TableDetector):

    def __init__(self, min_columns: int = MIN_WHITESPACE_COLUMNS) -> None:
        self._min_columns = min_columns

    @property
    def name(self) -> str:
        return "whitespace_columns"

    def detect(self, pages: list[PageText]) -> list[DetectedTable]:
        matrix: list[list[str]] = []
        consumed: list[tuple[int, int]] = []
        first_page = 0
        for page in pages:
            for index, raw in enumerate(page.text.split("\n")):
                line = raw.strip()
                if not line:
                    continue
                parts = [p.strip() for p in _COLUMN_SEPARATOR.split(line)]
                parts = [p for p in parts if p]
                if len(parts) < self._min_columns:
                    continue
                if not matrix:
                    first_page = page.page_number
                matrix.append(parts)
                consumed.append((page.page_number, index))

        if not matrix:
            return []
        return [DetectedTable(
            headers=matrix[0],
            rows=matrix[1:],
            page=first_page or 1,
            strategy=self.name,
            consumed_lines=consumed,
        )]


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------

class TableDetectionChain:
    """
    Try detectors in order; first non-empty result wins.

    A detector that raises is logged and skipped so one broken strategy
    never costs the document its text.
    """

    def __init__(self, detectors: list[TableDetector] | None = None) -> None:
        self._detectors = detectors if detectors is not None else default_detectors()

    def detect(self, pages: list[PageText]) -> list[DetectedTable]:
        for detector in self._detectors:
            try:
                tables = detector.detect(pages)
            except Exception as exc:
                logger.warning(
                    "Table detector failed | strategy=%s error=%s", detector.name, exc,
                )
                continue
            if tables:
                logger.info(
                    "Tables detected | strategy=%s count=%d rows=%d",
                    detector.name, len(tables), sum(len(t.rows) for t in tables),
                )
                return tables
        logger.debug("No tables detected | strategies=%d", len(self._detectors))
        return []


def default_detectors() -> list[TableDetector]:
    return [
        GridTableDetector(),
        HeaderSignatureDetector(),
        WhitespaceColumnDetector(),
    ]
