"""Relay services."""

from .blob_store import BlobStore, BlobStoreError, HttpBlobStore
from .content_commitment import ContentCommitment, FileContentCache, InMemoryContentCache
from .publisher import PublishRequest, PublishService
from .relay_service import RelayService, RelayState
from .scheduler import (
    FileScheduledPostStore,
    InMemoryScheduledPostStore,
    ScheduledPost,
    ScheduledPostStatus,
    ScheduledPublishService,
    ScheduleRequest,
)
from .session_keys import (
    FileSessionKeyStore,
    InMemorySessionKeyStore,
    SessionKeyAgent,
    SessionKeyStore,
    WalletProvider,
)

__all__ = [
    "BlobStore",
    "BlobStoreError",
    "ContentCommitment",
    "FileContentCache",
    "FileScheduledPostStore",
    "FileSessionKeyStore",
    "HttpBlobStore",
    "InMemoryContentCache",
    "InMemoryScheduledPostStore",
    "InMemorySessionKeyStore",
    "PublishRequest",
    "PublishService",
    "RelayService",
    "RelayState",
    "ScheduleRequest",
    "ScheduledPost",
    "ScheduledPostStatus",
    "ScheduledPublishService",
    "SessionKeyAgent",
    "SessionKeyStore",
    "WalletProvider",
]
