"""docsearch: PDF extraction, ETL and Elasticsearch search pipeline."""

__version__ = "1.0.0"
