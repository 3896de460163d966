"""
Structurer
══════════

Turns extracted text plus detected tables into an ordered list of content
items (paragraph / image / table).

Line classes, checked in this order:
  caption    "Figure …"              → image item emitted immediately,
                                        current title is reset
  title      known heading, or short unpunctuated standalone line while no
             paragraph is pending     → flushes the pending paragraph under
                                        the previous title
  body       everything else          → appended to the pending paragraph

A paragraph is closed when its last line ends in . ! or ? AND the next line
is a title or there is no next line. Anything left at the end is flushed as
a final paragraph. Tables follow the text items.
"""

from __future__ import annotations

import logging

from docsearch.processing.tables import DetectedTable
from docsearch.schemas.documents import ImageItem, ParagraphItem, TableItem

logger = logging.getLogger(__name__)

KNOWN_TITLES = frozenset({
    "Introduction",
    "Background",
    "Q4 2024 Sales Performance",
    "Sample Image",
})

CAPTION_PREFIX = "Figure "
DEFAULT_IMAGE_TITLE = "Sample Image"

# Page separator the extractor places between page texts
PAGE_BREAK = "\f"

MAX_TITLE_CHARS = 50
_SENTENCE_TERMINATORS = (".", "!", "?")
_TITLE_REJECT_ENDINGS = (".", ",", ";")
_SENTENCE_WORDS = (" a ", " the ", " and ")


ContentItemModel = ParagraphItem | ImageItem | TableItem


class Structurer:

    def __init__(
        self,
        known_titles:   frozenset[str] = KNOWN_TITLES,
        caption_prefix: str = CAPTION_PREFIX,
        image_title:    str = DEFAULT_IMAGE_TITLE,
    ) -> None:
        self._known_titles   = known_titles
        self._caption_prefix = caption_prefix
        self._image_title    = image_title

    def structure(
        self,
        text:   str,
        tables: list[DetectedTable] | None = None,
    ) -> list[ContentItemModel]:
        items: list[ContentItemModel] = list(self._structure_text(text))
        for index, table in enumerate(tables or []):
            items.append(TableItem(
                title=(table.title or f"Table {index + 1}").split(),
                page=table.page,
                headers=list(table.headers),
                rows=[list(row) for row in table.rows],
            ))
        logger.debug(
            "Structured | items=%d tables=%d", len(items), len(tables or []),
        )
        return items

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def _structure_text(self, text: str) -> list[ContentItemModel]:
        lines = _page_lines(text)
        items: list[ContentItemModel] = []

        paragraph: list[str] = []
        paragraph_page = 1
        title: str | None = None

        def flush() -> None:
            nonlocal paragraph
            if paragraph:
                items.append(ParagraphItem(
                    text=" ".join(paragraph).strip(),
                    title=title.split() if title else [],
                    page=paragraph_page,
                ))
                paragraph = []

        for index, (page, line) in enumerate(lines):
            if line.startswith(self._caption_prefix):
                items.append(ImageItem(
                    text=line,
                    title=(title or self._image_title).split(),
                    page=page,
                ))
                title = None
                continue

            if line in self._known_titles or (
                not paragraph and self._looks_like_title(line)
            ):
                flush()
                title = line
                continue

            if not paragraph:
                paragraph_page = page
            paragraph.append(line)

            if line.endswith(_SENTENCE_TERMINATORS):
                at_end = index + 1 >= len(lines)
                if at_end or self._next_is_title(lines[index + 1][1]):
                    flush()
                    title = None

        flush()
        return items

    def _looks_like_title(self, line: str) -> bool:
        return (
            len(line) < MAX_TITLE_CHARS
            and not line.endswith(_TITLE_REJECT_ENDINGS)
            and not any(word in line for word in _SENTENCE_WORDS)
        )

    def _next_is_title(self, line: str) -> bool:
        # Lookahead is looser than _looks_like_title: trailing commas and
        # " and " do not disqualify the next line.
        if line in self._known_titles:
            return True
        return (
            len(line) < MAX_TITLE_CHARS
            and not line.endswith(".")
            and " a " not in line
            and " the " not in line
        )


def _page_lines(text: str) -> list[tuple[int, str]]:
    """Non-empty stripped lines paired with their 1-based page number."""
    page = 1
    lines: list[tuple[int, str]] = []
    for raw in text.split("\n"):
        if raw == PAGE_BREAK:
            page += 1
            continue
        line = raw.strip()
        if line:
            lines.append((page, line))
    return lines
