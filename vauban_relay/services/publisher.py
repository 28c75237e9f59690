"""
Machine-to-machine publishing.

Automated publishers post full articles through the relayer account. The
article is serialized to JSON, committed by digest, handed to the blob
store, and the digest is registered on-chain with ``publish_post``.
"""

import json
from decimal import Decimal
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from ..chains.abis import BLOG_REGISTRY_ABI
from ..chains.base_client import BaseChainClient, ContractCall
from ..exceptions import ExecutionError, ServiceUnavailableError
from ..kernel.event_system import EventBus
from ..models.events import EventName
from .blob_store import BlobStoreError
from .content_commitment import ContentCommitment

logger = structlog.get_logger(__name__)

SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"
WEI_PER_TOKEN = 10**18


class PublishRequest(BaseModel):
    """Article submitted by an M2M client."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = Field(min_length=3, max_length=200)
    slug: str = Field(min_length=3, max_length=100, pattern=SLUG_PATTERN)
    content: str = Field(min_length=100, max_length=500_000)
    excerpt: str = Field(min_length=10, max_length=500)
    tags: list[str] = Field(min_length=1, max_length=10)
    cover_image: HttpUrl | None = Field(default=None, alias="coverImage")
    is_paid: bool = Field(default=False, alias="isPaid")
    price: float = Field(default=0, ge=0, le=1_000_000)
    is_encrypted: bool = Field(default=False, alias="isEncrypted")

    def content_document(self) -> str:
        """JSON document stored off-chain; its digest is what gets committed."""
        return json.dumps(
            {
                "title": self.title,
                "slug": self.slug,
                "content": self.content,
                "excerpt": self.excerpt,
                "tags": self.tags,
                "coverImage": str(self.cover_image) if self.cover_image else None,
            },
            separators=(",", ":"),
            ensure_ascii=False,
        )

    @property
    def price_wei(self) -> int:
        if not self.is_paid:
            return 0
        return int(Decimal(str(self.price)) * WEI_PER_TOKEN)


class PublishService:
    """Publishes articles through the relayer."""

    def __init__(
        self,
        chain_client: BaseChainClient,
        commitment: ContentCommitment,
        event_bus: EventBus,
        blog_registry_address: str | None,
        confirmation_timeout_seconds: float = 120,
    ):
        self.chain = chain_client
        self.commitment = commitment
        self.event_bus = event_bus
        self.blog_registry_address = blog_registry_address
        self.confirmation_timeout_seconds = confirmation_timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.blog_registry_address and self.chain.relayer_address)

    async def publish(self, article: PublishRequest) -> dict[str, Any]:
        if not self.configured:
            raise ServiceUnavailableError(
                "M2M publishing not configured",
                message="Server is missing relayer configuration",
            )

        document = article.content_document()
        try:
            content_hash, content_uri = await self.commitment.commit_and_store(document)
        except BlobStoreError as e:
            logger.error("m2m_storage_failed", slug=article.slug, error=str(e))
            raise ExecutionError("Storage error", message="Failed to upload content") from e

        call = ContractCall(
            contract_address=self.blog_registry_address,
            function_name="publish_post",
            args=(content_uri, content_hash, article.price_wei, article.is_encrypted),
            abi=BLOG_REGISTRY_ABI,
        )
        try:
            handle = await self.chain.submit(call)
            await self.chain.confirm(handle, timeout_seconds=self.confirmation_timeout_seconds)
        except Exception as e:
            logger.error("m2m_publish_failed", slug=article.slug, error=str(e))
            raise ExecutionError("Internal server error", message=str(e)) from e

        logger.info("m2m_published", slug=article.slug, tx_hash=handle.tx_hash, content_hash=content_hash)

        self.event_bus.emit(
            EventName.SUBJECT_PUBLISHED,
            {
                "slug": article.slug,
                "title": article.title,
                "txHash": handle.tx_hash,
                "contentHash": content_hash,
            },
        )
        return {
            "txHash": handle.tx_hash,
            "contentHash": content_hash,
            "contentUri": content_uri,
            "title": article.title,
            "slug": article.slug,
        }
