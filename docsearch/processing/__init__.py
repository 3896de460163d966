"""
Document Processing Package
════════════════════════════

Everything between a stored PDF and the documents that get indexed:

  Text + Table Extraction → Structuring → ETL Transform

Modules
───────
  tables.py      Strategy chain for table detection (grid → header signature → whitespace)
  extractor.py   PyMuPDF reader; runs the chain and strips table lines from the text
  structurer.py  Line classifier that emits paragraph / image / table content items
  etl.py         Pure content item → SearchDocument mapping, validation, statistics

Design principles
─────────────────
  • Extraction is the only I/O here; structuring and ETL are pure functions of their input.
  • Extraction runs in the Celery worker, ETL in the queue consumer, never in the API process.
"""

from docsearch.processing.etl import (
    ValidationReport,
    document_statistics,
    normalize_column_name,
    transform_content_items,
    validate_search_documents,
)
from docsearch.processing.extractor import ContentExtractor, ExtractionResult
from docsearch.processing.structurer import Structurer
from docsearch.processing.tables import TableDetectionChain

__all__ = [
    "ContentExtractor",
    "ExtractionResult",
    "Structurer",
    "TableDetectionChain",
    "ValidationReport",
    "document_statistics",
    "normalize_column_name",
    "transform_content_items",
    "validate_search_documents",
]
