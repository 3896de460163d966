"""
Indexer — Elasticsearch bulk writer

  index_documents()  bulk index in batches; per-item rejections are logged
                     and subtracted from indexed_count, they do not fail the call
  delete_document()  delete-by-query on pdf_id; run before re-indexing so a
                     redelivered message never leaves duplicates behind
  ensure_index()     create the index with its mapping when missing
  index_stats()      document count and store size
  ping()             liveness for /ready

Transport failures (cluster unreachable, 5xx) raise IndexingError so the
consumer marks the document failed and requeues the message.

Document ids are "<doc_id>:<position>", so indexing the same content twice
overwrites rather than duplicates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from elasticsearch import ApiError, AsyncElasticsearch, NotFoundError, TransportError

from docsearch.core.config import Settings, settings as default_settings
from docsearch.core.errors import IndexingError
from docsearch.schemas.search import SearchDocument
from docsearch.search.mapping import INDEX_MAPPINGS, INDEX_SETTINGS

logger = logging.getLogger(__name__)

NO_DOCUMENTS_ERROR = "No documents to index"


@dataclass
class IndexResult:
    success:       bool
    indexed_count: int
    doc_id:        str
    error:         str | None = None
    failed_count:  int = 0


class Indexer:

    def __init__(
        self,
        client:     AsyncElasticsearch,
        index_name: str,
        batch_size: int = 500,
        refresh:    bool = True,
    ) -> None:
        self._client     = client
        self._index      = index_name
        self._batch_size = max(batch_size, 1)
        self._refresh    = refresh

    @property
    def index_name(self) -> str:
        return self._index

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def index_documents(
        self,
        documents: list[SearchDocument],
        doc_id:    str,
    ) -> IndexResult:
        if not documents:
            logger.warning("Nothing to index | doc=%s", doc_id)
            return IndexResult(success=False, indexed_count=0, doc_id=doc_id, error=NO_DOCUMENTS_ERROR)

        failed = 0
        for start in range(0, len(documents), self._batch_size):
            batch = documents[start:start + self._batch_size]
            operations: list[dict] = []
            for offset, document in enumerate(batch):
                operations.append({"index": {"_index": self._index, "_id": f"{doc_id}:{start + offset}"}})
                operations.append(document.to_index_body())

            try:
                resp = await self._client.bulk(operations=operations, refresh=self._refresh)
            except (TransportError, ApiError) as exc:
                logger.error("Bulk index failed | doc=%s batch_start=%d error=%s", doc_id, start, exc)
                raise IndexingError(f"Bulk index failed for {doc_id}: {exc}") from exc

            if resp.get("errors"):
                rejected = [
                    item["index"]
                    for item in resp.get("items", [])
                    if item.get("index", {}).get("error")
                ]
                failed += len(rejected)
                for item in rejected[:5]:
                    logger.warning(
                        "Document rejected | doc=%s id=%s error=%s",
                        doc_id, item.get("_id"), item.get("error"),
                    )

        indexed = len(documents) - failed
        logger.info(
            "Indexed | doc=%s count=%d failed=%d index=%s",
            doc_id, indexed, failed, self._index,
        )
        return IndexResult(success=True, indexed_count=indexed, doc_id=doc_id, failed_count=failed)

    async def delete_document(self, doc_id: str) -> int:
        """Remove every search document of `doc_id`; returns the number deleted."""
        try:
            resp = await self._client.delete_by_query(
                index=self._index,
                query={"term": {"pdf_id": doc_id}},
                refresh=self._refresh,
                conflicts="proceed",
            )
        except NotFoundError:
            return 0
        except (TransportError, ApiError) as exc:
            logger.error("Delete by doc failed | doc=%s error=%s", doc_id, exc)
            raise IndexingError(f"Delete failed for {doc_id}: {exc}") from exc

        deleted = int(resp.get("deleted", 0))
        logger.info("Deleted | doc=%s count=%d", doc_id, deleted)
        return deleted

    # ------------------------------------------------------------------
    # Index management
    # ------------------------------------------------------------------

    async def ensure_index(self) -> bool:
        """Create the index if missing. Returns True when it was created."""
        try:
            if await self._client.indices.exists(index=self._index):
                return False
            await self._client.indices.create(
                index=self._index,
                settings=INDEX_SETTINGS,
                mappings=INDEX_MAPPINGS,
            )
        except ApiError as exc:
            if exc.meta.status == 400 and "resource_already_exists" in str(exc):
                return False
            raise IndexingError(f"Cannot create index {self._index}: {exc}") from exc
        except TransportError as exc:
            raise IndexingError(f"Cannot create index {self._index}: {exc}") from exc

        logger.info("Index created | index=%s", self._index)
        return True

    async def index_stats(self) -> dict:
        try:
            resp = await self._client.indices.stats(index=self._index)
        except (TransportError, ApiError) as exc:
            raise IndexingError(f"Cannot read stats for {self._index}: {exc}") from exc
        total = resp["indices"][self._index]["total"]
        return {
            "index":          self._index,
            "document_count": total["docs"]["count"],
            "storage_bytes":  total["store"]["size_in_bytes"],
        }

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (TransportError, ApiError) as exc:
            logger.warning("Elasticsearch ping failed: %s", exc)
            return False


# ---------------------------------------------------------------------------
# Client factory
# ---------------------------------------------------------------------------

def create_es_client(cfg: Settings | None = None) -> AsyncElasticsearch:
    cfg = cfg or default_settings
    kwargs: dict = {}
    if cfg.elasticsearch_url.startswith("https"):
        kwargs["verify_certs"] = cfg.elasticsearch_verify_certs
    if cfg.elasticsearch_username:
        kwargs["basic_auth"] = (cfg.elasticsearch_username, cfg.elasticsearch_password)
    return AsyncElasticsearch(cfg.elasticsearch_url, **kwargs)


def build_indexer(client: AsyncElasticsearch, cfg: Settings | None = None) -> Indexer:
    cfg = cfg or default_settings
    return Indexer(
        client,
        index_name=cfg.elasticsearch_index,
        batch_size=cfg.index_batch_size,
        refresh=cfg.index_refresh,
    )
