"""
Off-chain blob store client.

The relay only needs two operations from the blob store: put a body and get
a body back by its content hash. Anything else about the store (pinning,
replication, gateways) is its own business.
"""

from typing import Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)


class BlobStoreError(Exception):
    """Raised when the blob store rejects or fails a request."""
    pass


class BlobStore(Protocol):
    async def store(self, content_hash: str, body: str) -> str:
        """Store ``body`` and return the store's reference for it."""
        ...

    async def retrieve(self, content_hash: str) -> str | None:
        """Return the body for ``content_hash``, or None when unknown."""
        ...


class HttpBlobStore:
    """
    Blob store reached over HTTP.

    ``POST {base_url}/add`` with ``{"hash", "content"}`` answers ``{"cid"}``;
    ``GET {base_url}/{hash}`` answers the raw body or 404.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def store(self, content_hash: str, body: str) -> str:
        try:
            response = await self._client.post("/add", json={"hash": content_hash, "content": body})
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("blob_store_failed", content_hash=content_hash, error=str(e))
            raise BlobStoreError(f"Failed to store content: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise BlobStoreError(f"Blob store returned a non-JSON response: {e}") from e
        if not isinstance(payload, dict):
            raise BlobStoreError("Blob store response must be a JSON object")

        reference = payload.get("cid") or content_hash
        logger.info("blob_stored", content_hash=content_hash, reference=reference)
        return reference

    async def retrieve(self, content_hash: str) -> str | None:
        try:
            response = await self._client.get(f"/{content_hash}")
        except httpx.HTTPError as e:
            raise BlobStoreError(f"Failed to retrieve content: {e}") from e

        if response.status_code == 404:
            return None
        if response.is_error:
            raise BlobStoreError(f"Blob store returned {response.status_code}")
        return response.text

    async def close(self) -> None:
        await self._client.aclose()
