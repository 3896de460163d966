"""
Index settings and mapping for the search documents index.

title / text / image captions share one analyzer:
standard tokenizer → lowercase → asciifolding → stop words.
"""

from __future__ import annotations

TEXT_ANALYZER = "custom_text_analyzer"

INDEX_SETTINGS: dict = {
    "analysis": {
        "analyzer": {
            TEXT_ANALYZER: {
                "type": "custom",
                "tokenizer": "standard",
                "filter": ["lowercase", "asciifolding", "stop"],
            },
        },
    },
}

INDEX_MAPPINGS: dict = {
    "properties": {
        "pdf_id":      {"type": "keyword"},
        "user_id":     {"type": "keyword"},
        "total_pages": {"type": "integer"},
        "page_number": {"type": "integer"},
        "type":        {"type": "keyword"},
        "title":       {"type": "text", "analyzer": TEXT_ANALYZER},
        "text":        {"type": "text", "analyzer": TEXT_ANALYZER},
        "table_structured": {
            "type": "nested",
            "properties": {
                "row_number": {"type": "integer"},
                # column_name → cell; column names differ per table
                "row": {"type": "object", "dynamic": True},
            },
        },
        "image": {
            "properties": {
                "caption":   {"type": "text", "analyzer": TEXT_ANALYZER},
                "imagetext": {"type": "text", "analyzer": TEXT_ANALYZER},
                "metadata": {
                    "properties": {
                        "width":  {"type": "integer"},
                        "height": {"type": "integer"},
                        "format": {"type": "keyword"},
                    },
                },
            },
        },
    },
}
