"""
Gasless Relay API Routes

Session-key signed comments are verified and submitted by the relayer.
The body is read as raw JSON so that missing fields surface as the relay's
own 400 response rather than a schema error.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Request

from ...exceptions import RequestError
from ..dependencies import RelayServiceDep

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/relay", tags=["Relay"])


@router.post("/comment")
async def relay_comment(request: Request, relay_service: RelayServiceDep) -> dict[str, Any]:
    """
    Relay a comment signed with a session key.

    Body: ``{subjectId, contentHash, parentId?, sessionPublicKey,
    userAddress, signature, nonce}``. ``postId`` and ``parentCommentId`` are
    accepted as aliases.
    """
    try:
        payload = await request.json()
    except ValueError as e:
        raise RequestError("Invalid request body") from e

    result = await relay_service.relay(payload)
    return result.to_response()


@router.get("/comment")
async def relay_health(relay_service: RelayServiceDep) -> dict[str, Any]:
    """Relayer and destination contract, masked."""
    return relay_service.health().to_response()
