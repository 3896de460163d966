"""
Extracted Content Store

The extraction task writes one JSON document per PDF
({pdf_id, total_pages, extracted_at, data}) and hands the consumer an opaque
`content_ref` in the work message. Two backends:

  LocalContentStore   <content_dir>/<doc_id>.json     ref = absolute path
  S3ContentStore      s3://<bucket>/content/<doc_id>.json

Both raise FileNotFoundError for an unknown ref. Writes are idempotent:
re-extracting a document overwrites its previous content.
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod

import aioboto3
from botocore.exceptions import ClientError

from docsearch.core.config import Settings, settings as default_settings
from docsearch.schemas.documents import ExtractedContent

logger = logging.getLogger(__name__)

S3_CONTENT_PREFIX = "content"


class ContentStore(ABC):

    @abstractmethod
    async def save(self, content: ExtractedContent) -> str:
        """Persist `content` and return its content_ref."""

    @abstractmethod
    async def load(self, content_ref: str) -> ExtractedContent:
        """Read back the document a content_ref points at."""


# ---------------------------------------------------------------------------
# Local filesystem
# ---------------------------------------------------------------------------

class LocalContentStore(ContentStore):

    def __init__(self, root: str) -> None:
        self._root = os.path.abspath(root)

    def path_for(self, doc_id: str) -> str:
        return os.path.join(self._root, f"{doc_id}.json")

    async def save(self, content: ExtractedContent) -> str:
        path = self.path_for(content.pdf_id)
        body = content.model_dump_json(indent=2)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write, path, body)
        logger.info("Content saved | doc=%s path=%s items=%d", content.pdf_id, path, len(content.data))
        return path

    async def load(self, content_ref: str) -> ExtractedContent:
        loop = asyncio.get_running_loop()
        body = await loop.run_in_executor(None, self._read, content_ref)
        return ExtractedContent.model_validate_json(body)

    @staticmethod
    def _write(path: str, body: str) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp = f"{path}.tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(body)
        os.replace(tmp, path)

    @staticmethod
    def _read(path: str) -> str:
        with open(path, encoding="utf-8") as fh:
            return fh.read()


# ---------------------------------------------------------------------------
# S3
# ---------------------------------------------------------------------------

class S3ContentStore(ContentStore):

    def __init__(
        self,
        bucket:            str,
        region:            str,
        access_key_id:     str = "",
        secret_access_key: str = "",
    ) -> None:
        self._bucket  = bucket
        self._region  = region
        # Empty keys fall through to the default credential chain (task role)
        self._session = aioboto3.Session(
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
        )

    def _client(self):
        return self._session.client("s3", region_name=self._region)

    def key_for(self, doc_id: str) -> str:
        return f"{S3_CONTENT_PREFIX}/{doc_id}.json"

    async def save(self, content: ExtractedContent) -> str:
        key = self.key_for(content.pdf_id)
        body = content.model_dump_json().encode("utf-8")
        async with self._client() as s3:
            await s3.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=body,
                ContentType="application/json",
            )
        logger.info("Content saved | doc=%s key=s3://%s/%s size=%d", content.pdf_id, self._bucket, key, len(body))
        return f"s3://{self._bucket}/{key}"

    async def load(self, content_ref: str) -> ExtractedContent:
        bucket, key = _split_s3_ref(content_ref)
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=bucket, Key=key)
                body = await resp["Body"].read()
            except ClientError as exc:
                code = exc.response["Error"]["Code"]
                if code in ("NoSuchKey", "404"):
                    raise FileNotFoundError(f"Content not found: {content_ref}") from exc
                raise
        return ExtractedContent.model_validate_json(body)


def _split_s3_ref(content_ref: str) -> tuple[str, str]:
    if not content_ref.startswith("s3://"):
        raise FileNotFoundError(f"Not an S3 content ref: {content_ref}")
    bucket, _, key = content_ref[len("s3://"):].partition("/")
    if not bucket or not key:
        raise FileNotFoundError(f"Malformed S3 content ref: {content_ref}")
    return bucket, key


def build_content_store(cfg: Settings | None = None) -> ContentStore:
    cfg = cfg or default_settings
    if cfg.content_store_backend == "s3":
        return S3ContentStore(
            bucket=cfg.s3_bucket,
            region=cfg.aws_region,
            access_key_id=cfg.aws_access_key_id,
            secret_access_key=cfg.aws_secret_access_key,
        )
    return LocalContentStore(cfg.content_dir)


# ---------------------------------------------------------------------------
# Uploaded source files
# ---------------------------------------------------------------------------

async def save_upload(upload_dir: str, doc_id: str, data: bytes) -> str:
    """Write the raw PDF where the extraction worker can open it; returns the path."""
    path = os.path.join(os.path.abspath(upload_dir), f"{doc_id}.pdf")
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, _write_bytes, path, data)
    logger.info("Upload saved | doc=%s path=%s size=%d", doc_id, path, len(data))
    return path


def _write_bytes(path: str, data: bytes) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as fh:
        fh.write(data)
