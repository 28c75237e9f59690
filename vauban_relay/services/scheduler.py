"""
Scheduled Publishing Service

Articles queued for a future time and published through the M2M path once
they fall due. A periodic trigger calls publish_due(); each due post is
published at most once and ends up ``published`` or ``failed``.
"""

import asyncio
import json
import os
import tempfile
import threading
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

import structlog
from pydantic import Field, field_validator

from ..exceptions import NotFoundError, RelayError, RequestError, ServiceUnavailableError
from ..kernel.event_system import EventBus
from ..models.base import RelayModel, ensure_aware, utc_now
from ..models.events import EventName
from .publisher import PublishRequest, PublishService

logger = structlog.get_logger(__name__)


class ScheduledPostStatus(str, Enum):
    PENDING = "pending"
    PUBLISHED = "published"
    FAILED = "failed"


class ScheduleRequest(RelayModel):
    """Body of a scheduling request."""

    scheduled_at: datetime = Field(alias="scheduledAt")
    author_address: str = Field(min_length=1, alias="authorAddress")
    post_data: PublishRequest = Field(alias="postData")

    @field_validator("scheduled_at", mode="before")
    @classmethod
    def normalize_scheduled_at(cls, v: Any) -> Any:
        return ensure_aware(v)


class ScheduledPost(RelayModel):
    """A queued article and where it is in its lifecycle."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    scheduled_at: datetime = Field(alias="scheduledAt")
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    author_address: str = Field(alias="authorAddress")
    post_data: PublishRequest = Field(alias="postData")
    status: ScheduledPostStatus = ScheduledPostStatus.PENDING
    error: str | None = None
    published_at: datetime | None = Field(default=None, alias="publishedAt")
    tx_hash: str | None = Field(default=None, alias="txHash")

    @field_validator("scheduled_at", "created_at", "published_at", mode="before")
    @classmethod
    def normalize_timestamps(cls, v: Any) -> Any:
        return ensure_aware(v)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def is_due(self, now: datetime) -> bool:
        return self.status == ScheduledPostStatus.PENDING and self.scheduled_at <= now


# =============================================================================
# Storage
# =============================================================================


class ScheduledPostStore(Protocol):
    def load(self) -> list[ScheduledPost]: ...

    def save(self, posts: list[ScheduledPost]) -> None: ...


class InMemoryScheduledPostStore:
    def __init__(self) -> None:
        self._posts: list[ScheduledPost] = []

    def load(self) -> list[ScheduledPost]:
        return [post.model_copy(deep=True) for post in self._posts]

    def save(self, posts: list[ScheduledPost]) -> None:
        self._posts = [post.model_copy(deep=True) for post in posts]


class FileScheduledPostStore:
    """
    Schedule persisted as a JSON list.

    An unreadable file is treated as an empty schedule; entries that no longer
    validate are skipped. The file is rewritten atomically on every save.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> list[ScheduledPost]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error("schedule_load_failed", path=str(self._path), error=str(e))
            return []
        if not isinstance(data, list):
            logger.error("schedule_load_failed", path=str(self._path), error="expected a list")
            return []

        posts = []
        for entry in data:
            try:
                posts.append(ScheduledPost.model_validate(entry))
            except ValueError as e:
                logger.warning("scheduled_post_skipped", error=str(e))
        return posts

    def save(self, posts: list[ScheduledPost]) -> None:
        payload = [post.to_dict() for post in posts]
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=".scheduled-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                os.replace(tmp_path, self._path)
            except OSError:
                Path(tmp_path).unlink(missing_ok=True)
                raise


# =============================================================================
# Service
# =============================================================================


class ScheduledPublishService:
    """
    Queue articles and publish them when due.

    Args:
        publisher: Performs the actual M2M publish
        event_bus: Receives ``subject:scheduled`` when a post is queued
        store: Persistence for the schedule
        clock: Current time, injectable for tests
    """

    def __init__(
        self,
        publisher: PublishService,
        event_bus: EventBus,
        store: ScheduledPostStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.publisher = publisher
        self.event_bus = event_bus
        self.store: ScheduledPostStore = store if store is not None else InMemoryScheduledPostStore()
        self._clock = clock
        # Serializes read-modify-write cycles so a post is never published twice
        self._lock = asyncio.Lock()

    async def schedule(self, request: ScheduleRequest) -> ScheduledPost:
        if request.scheduled_at <= self._clock():
            raise RequestError("scheduledAt must be in the future")

        post = ScheduledPost(
            scheduledAt=request.scheduled_at,
            authorAddress=request.author_address,
            postData=request.post_data,
        )
        async with self._lock:
            posts = self.store.load()
            posts.append(post)
            self.store.save(posts)

        logger.info(
            "post_scheduled",
            post_id=post.id,
            slug=post.post_data.slug,
            scheduled_at=post.scheduled_at.isoformat(),
        )
        self.event_bus.emit(
            EventName.SUBJECT_SCHEDULED,
            {
                "subjectId": post.id,
                "scheduledAt": post.scheduled_at.isoformat(),
                "slug": post.post_data.slug,
                "author": post.author_address,
            },
        )
        return post

    def list_posts(
        self,
        author: str | None = None,
        status: ScheduledPostStatus | None = None,
    ) -> list[ScheduledPost]:
        """Posts ordered by scheduled time, optionally filtered."""
        posts = self.store.load()
        if author:
            posts = [p for p in posts if p.author_address.lower() == author.lower()]
        if status is not None:
            posts = [p for p in posts if p.status == status]
        return sorted(posts, key=lambda p: p.scheduled_at)

    async def cancel(self, post_id: str) -> None:
        """Remove a pending post. Published and failed posts stay on record."""
        async with self._lock:
            posts = self.store.load()
            post = next((p for p in posts if p.id == post_id), None)
            if post is None:
                raise NotFoundError("Scheduled post not found")
            if post.status != ScheduledPostStatus.PENDING:
                raise RequestError("Can only cancel pending posts")

            self.store.save([p for p in posts if p.id != post_id])
        logger.info("scheduled_post_cancelled", post_id=post_id)

    async def publish_due(self) -> dict[str, Any]:
        """
        Publish every pending post whose time has come.

        Failures are recorded on the post and do not stop the run.

        Raises:
            ServiceUnavailableError: The publisher is not configured
        """
        if not self.publisher.configured:
            raise ServiceUnavailableError(
                "M2M publishing not configured",
                message="Server is missing relayer configuration",
            )

        results: list[dict[str, Any]] = []
        async with self._lock:
            posts = self.store.load()
            now = self._clock()

            for post in posts:
                if not post.is_due(now):
                    continue

                try:
                    data = await self.publisher.publish(post.post_data)
                except RelayError as e:
                    post.status = ScheduledPostStatus.FAILED
                    post.error = e.message or e.error
                    results.append({"id": post.id, "status": post.status.value, "error": post.error})
                    logger.error("scheduled_publish_failed", post_id=post.id, error=post.error)
                    continue

                post.status = ScheduledPostStatus.PUBLISHED
                post.published_at = self._clock()
                post.tx_hash = data["txHash"]
                results.append({"id": post.id, "status": post.status.value, "txHash": post.tx_hash})
                logger.info("scheduled_post_published", post_id=post.id, tx_hash=post.tx_hash)

            if results:
                self.store.save(posts)

        published = sum(1 for r in results if r["status"] == ScheduledPostStatus.PUBLISHED.value)
        return {
            "processed": len(results),
            "published": published,
            "failed": len(results) - published,
            "pendingRemaining": sum(1 for p in posts if p.status == ScheduledPostStatus.PENDING),
            "results": results,
        }
