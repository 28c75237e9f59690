"""
Scheduled Publishing API Routes

Queue management is gated by the M2M API key. The publish trigger is called
by an external scheduler and authenticates with ``Authorization: Bearer``.
"""

import hmac
from typing import Any

import structlog
from fastapi import APIRouter, Query, Request
from pydantic import ValidationError

from ...config import Settings
from ...exceptions import AuthorizationError, RequestError, ServiceUnavailableError
from ...services.scheduler import ScheduledPostStatus, ScheduleRequest
from ..dependencies import M2MGateDep, SchedulerDep, SettingsDep
from .m2m import enforce_rate_limit, require_api_key, validation_details

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Scheduled"])

REQUIRED_FIELDS = ("scheduledAt", "authorAddress", "postData")


def _require_cron_secret(request: Request, settings: Settings) -> None:
    if settings.cron_secret is None:
        if settings.is_production:
            raise ServiceUnavailableError("Cron not configured", message="CRON_SECRET is not set")
        return

    expected = f"Bearer {settings.cron_secret.get_secret_value()}"
    provided = request.headers.get("Authorization", "")
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("cron_unauthorized", client_ip=request.client.host if request.client else None)
        raise AuthorizationError("Unauthorized")


@router.post("/scheduled")
async def schedule_post(
    request: Request,
    gate: M2MGateDep,
    scheduler: SchedulerDep,
) -> dict[str, Any]:
    """Queue an article for publishing at ``scheduledAt``."""
    api_key = require_api_key(request, gate)
    enforce_rate_limit(gate, api_key)

    try:
        body = await request.json()
    except ValueError as e:
        raise RequestError("Invalid request body") from e
    if not isinstance(body, dict):
        raise RequestError("Invalid request body")
    if any(not body.get(field) for field in REQUIRED_FIELDS):
        raise RequestError(f"Missing required fields: {', '.join(REQUIRED_FIELDS)}")

    try:
        schedule_request = ScheduleRequest.model_validate(body)
    except ValidationError as e:
        raise RequestError(
            "Validation error",
            message="Invalid request body",
            details=validation_details(e),
        ) from e

    post = await scheduler.schedule(schedule_request)
    return {
        "success": True,
        "post": post.to_dict(),
        "message": f"Post scheduled for {post.scheduled_at.isoformat()}",
    }


@router.get("/scheduled")
async def list_scheduled_posts(
    request: Request,
    gate: M2MGateDep,
    scheduler: SchedulerDep,
    author: str | None = None,
    status: str | None = None,
) -> dict[str, Any]:
    """Scheduled posts ordered by time, optionally filtered by author and status."""
    require_api_key(request, gate)

    status_filter = None
    if status:
        try:
            status_filter = ScheduledPostStatus(status)
        except ValueError as e:
            raise RequestError(f"Invalid status: {status}") from e

    posts = scheduler.list_posts(author=author, status=status_filter)
    return {"posts": [post.to_dict() for post in posts]}


@router.delete("/scheduled")
async def cancel_scheduled_post(
    request: Request,
    gate: M2MGateDep,
    scheduler: SchedulerDep,
    post_id: str | None = Query(default=None, alias="id"),
) -> dict[str, Any]:
    require_api_key(request, gate)
    if not post_id:
        raise RequestError("Missing post id")

    await scheduler.cancel(post_id)
    return {"success": True, "message": "Scheduled post cancelled"}


@router.get("/cron/publish-scheduled")
async def publish_scheduled_posts(
    request: Request,
    settings: SettingsDep,
    scheduler: SchedulerDep,
) -> dict[str, Any]:
    """Publish every pending post that has fallen due."""
    _require_cron_secret(request, settings)

    summary = await scheduler.publish_due()
    logger.info(
        "scheduled_run_complete",
        processed=summary["processed"],
        published=summary["published"],
        failed=summary["failed"],
    )
    return {"success": True, **summary}
