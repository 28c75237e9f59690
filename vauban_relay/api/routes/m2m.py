"""
M2M Publishing API Routes

Automated publishers authenticate with ``X-API-Key`` and are limited to a
fixed number of requests per window.
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ...exceptions import AuthorizationError, RateLimitError, RequestError, ServiceUnavailableError
from ...security.api_keys import M2MGate
from ...services.publisher import PublishRequest
from ..dependencies import M2MGateDep, PublishServiceDep

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/m2m", tags=["M2M"])

API_KEY_HEADER = "X-API-Key"


def iso_timestamp(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, UTC).isoformat().replace("+00:00", "Z")


def validation_details(error: ValidationError) -> list[dict[str, Any]]:
    return [{"loc": list(err["loc"]), "type": err["type"], "msg": err["msg"]} for err in error.errors()]


def require_api_key(request: Request, gate: M2MGate) -> str:
    api_key = request.headers.get(API_KEY_HEADER)
    if not gate.validate(api_key):
        logger.warning("m2m_unauthorized", client_ip=request.client.host if request.client else None)
        raise AuthorizationError("Unauthorized", message="Invalid or missing API key")
    return api_key


def enforce_rate_limit(gate: M2MGate, api_key: str) -> None:
    if not gate.check_rate_limit(api_key):
        reset_at = gate.reset_at(api_key)
        raise RateLimitError(
            message="Too many requests. Please try again later.",
            details={"resetAt": iso_timestamp(reset_at)},
            headers={
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(int(reset_at * 1000)),
            },
        )


@router.post("/publish", status_code=201)
async def publish_article(
    request: Request,
    gate: M2MGateDep,
    publisher: PublishServiceDep,
) -> JSONResponse:
    """Publish an article through the relayer."""
    if not publisher.configured:
        raise ServiceUnavailableError(
            "M2M publishing not configured",
            message="Server is missing relayer configuration",
        )

    api_key = require_api_key(request, gate)
    enforce_rate_limit(gate, api_key)

    try:
        body = await request.json()
        article = PublishRequest.model_validate(body)
    except ValidationError as e:
        raise RequestError(
            "Validation error",
            message="Invalid request body",
            details=validation_details(e),
        ) from e
    except ValueError as e:
        raise RequestError("Validation error", message="Invalid request body") from e

    data = await publisher.publish(article)
    return JSONResponse(
        status_code=201,
        content={"success": True, "data": data},
        headers=gate.rate_limit_headers(api_key),
    )


@router.get("/publish")
async def publish_info(
    request: Request,
    gate: M2MGateDep,
    publisher: PublishServiceDep,
) -> dict[str, Any]:
    """API info and configuration status."""
    api_key = require_api_key(request, gate)
    return {
        "status": "ok",
        "configured": publisher.configured,
        "rateLimit": {
            "remaining": gate.remaining(api_key),
            "resetAt": iso_timestamp(gate.reset_at(api_key)),
        },
        "endpoints": {"publish": "POST /api/m2m/publish"},
    }
