"""
Search Package
══════════════

  mapping.py        index settings + mapping (custom_text_analyzer)
  indexer.py        bulk writer, delete-by-doc, index management
  query_builder.py  SearchRequest → Elasticsearch body; hit → SearchHit
  service.py        owner-scoped search with filename → doc id resolution
"""

from docsearch.search.indexer import Indexer, IndexResult, create_es_client
from docsearch.search.query_builder import QueryBuilder
from docsearch.search.service import SearchService

__all__ = [
    "Indexer",
    "IndexResult",
    "QueryBuilder",
    "SearchService",
    "create_es_client",
]
