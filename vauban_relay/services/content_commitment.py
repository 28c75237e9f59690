"""
Content Commitment Service

Computes the digest committed on-chain for a content body and keeps the body
retrievable locally under that digest, before and regardless of whether the
chain ever confirms it.

Records are write-once per hash and are only removed by an explicit prune().
"""

import json
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Protocol

import structlog

from ..models.content import ContentRecord, compute_content_hash
from .blob_store import BlobStore, BlobStoreError

logger = structlog.get_logger(__name__)


class ContentCache(Protocol):
    def get(self, content_hash: str) -> ContentRecord | None: ...

    def put_if_absent(self, record: ContentRecord) -> bool:
        """Store ``record`` unless its hash is present. Returns True if stored."""
        ...

    def prune(self, older_than: datetime) -> int: ...

    def __len__(self) -> int: ...


class InMemoryContentCache:
    """Process-local content cache."""

    def __init__(self) -> None:
        self._records: dict[str, ContentRecord] = {}
        self._lock = threading.Lock()

    def get(self, content_hash: str) -> ContentRecord | None:
        return self._records.get(content_hash.lower())

    def put_if_absent(self, record: ContentRecord) -> bool:
        with self._lock:
            if record.hash in self._records:
                return False
            self._records[record.hash] = record
            return True

    def prune(self, older_than: datetime) -> int:
        with self._lock:
            stale = [h for h, r in self._records.items() if r.cached_at < older_than]
            for content_hash in stale:
                del self._records[content_hash]
            return len(stale)

    def __len__(self) -> int:
        return len(self._records)


class FileContentCache(InMemoryContentCache):
    """
    Content cache persisted to a JSON file.

    The file maps hash to ``{"body", "cached_at"}`` and is rewritten
    atomically after every change.
    """

    def __init__(self, path: str | Path):
        super().__init__()
        self._path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error("content_cache_load_failed", path=str(self._path), error=str(e))
            return

        for content_hash, entry in data.items():
            try:
                record = ContentRecord(
                    hash=content_hash,
                    body=entry["body"],
                    cached_at=entry["cached_at"],
                )
            except (KeyError, ValueError) as e:
                logger.warning("content_cache_entry_skipped", content_hash=content_hash, error=str(e))
                continue
            self._records[record.hash] = record

        logger.info("content_cache_loaded", path=str(self._path), records=len(self._records))

    def _flush(self) -> None:
        payload = {
            h: {"body": r.body, "cached_at": r.cached_at.isoformat()}
            for h, r in self._records.items()
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=".content-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp_path, self._path)
        except OSError:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def put_if_absent(self, record: ContentRecord) -> bool:
        with self._lock:
            if record.hash in self._records:
                return False
            self._records[record.hash] = record
            self._flush()
            return True

    def prune(self, older_than: datetime) -> int:
        removed = super().prune(older_than)
        if removed:
            with self._lock:
                self._flush()
        return removed


class ContentCommitment:
    """
    Commit content bodies by digest.

    Args:
        cache: Local durable cache keyed by hash
        blob_store: Optional external store consulted on cache misses
    """

    def __init__(self, cache: ContentCache | None = None, blob_store: BlobStore | None = None):
        self.cache: ContentCache = cache if cache is not None else InMemoryContentCache()
        self.blob_store = blob_store

    def commit(self, body: str) -> str:
        """
        Digest ``body``, cache it under the digest and return the digest.

        Idempotent: committing the same body again returns the same hash and
        leaves the original record untouched.
        """
        record = ContentRecord.from_body(body)
        if self.cache.put_if_absent(record):
            logger.debug("content_committed", content_hash=record.hash, size=len(body))
        return record.hash

    def resolve(self, content_hash: str) -> str | None:
        """Local lookup only. None on a miss."""
        record = self.cache.get(content_hash)
        return record.body if record else None

    async def fetch(self, content_hash: str) -> str | None:
        """
        Resolve locally, falling back to the blob store.

        A remote body whose digest differs from ``content_hash`` is rejected.
        A verified remote hit is cached.
        """
        body = self.resolve(content_hash)
        if body is not None or self.blob_store is None:
            return body

        try:
            remote = await self.blob_store.retrieve(content_hash)
        except BlobStoreError as e:
            logger.warning("content_fetch_failed", content_hash=content_hash, error=str(e))
            return None

        if remote is None:
            return None
        if compute_content_hash(remote) != content_hash.lower():
            logger.warning("content_digest_mismatch", content_hash=content_hash)
            return None

        self.commit(remote)
        return remote

    async def commit_and_store(self, body: str) -> tuple[str, str]:
        """
        Commit locally, then push to the blob store when one is configured.

        Returns:
            (content_hash, reference); the reference is the hash itself when
            there is no blob store
        """
        content_hash = self.commit(body)
        if self.blob_store is None:
            return content_hash, content_hash
        reference = await self.blob_store.store(content_hash, body)
        return content_hash, reference

    def prune(self, older_than: datetime) -> int:
        """Drop cached records older than ``older_than``. Never called implicitly."""
        removed = self.cache.prune(older_than)
        if removed:
            logger.info("content_cache_pruned", removed=removed)
        return removed
