"""
Vauban Relay - FastAPI Application Factory

Creates and configures the FastAPI application with:
- Relay, M2M publishing and event routes
- Middleware (correlation ID, request logging, CORS)
- Error handlers rendering RelayError as structured JSON
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..chains import BaseChainClient, ChainClientError, create_chain_client
from ..config import Settings, get_settings
from ..exceptions import RelayError
from ..kernel.event_system import EventBus
from ..monitoring import configure_logging
from ..security.api_keys import M2MGate
from ..security.policy import SecurityPolicy
from ..security.signing import SignatureVerifier, verify_relay_signature
from ..services.blob_store import BlobStore, HttpBlobStore
from ..services.content_commitment import ContentCommitment, FileContentCache, InMemoryContentCache
from ..services.publisher import PublishService
from ..services.relay_service import RelayService
from ..services.scheduler import (
    FileScheduledPostStore,
    InMemoryScheduledPostStore,
    ScheduledPublishService,
)
from .middleware import CorrelationIdMiddleware, RequestLoggingMiddleware

logger = structlog.get_logger(__name__)


class RelayApp:
    """
    Relay application container.

    Holds references to all components for dependency injection. The event
    bus lives exactly as long as the container.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        chain_client: BaseChainClient | None = None,
        event_bus: EventBus | None = None,
        signature_verifier: SignatureVerifier | None = None,
        blob_store: BlobStore | None = None,
    ) -> None:
        self.settings = settings
        self.event_bus = event_bus if event_bus is not None else EventBus(
            max_listeners=settings.event_max_listeners
        )
        self.chain = chain_client if chain_client is not None else create_chain_client(settings)
        self.policy = SecurityPolicy.from_settings(settings)

        if blob_store is None and settings.blob_store_url:
            blob_store = HttpBlobStore(settings.blob_store_url, timeout=settings.blob_store_timeout_seconds)
        self.blob_store = blob_store

        cache = (
            FileContentCache(settings.content_cache_path)
            if settings.content_cache_path
            else InMemoryContentCache()
        )
        self.commitment = ContentCommitment(cache, blob_store)

        self.m2m_gate = M2MGate(
            api_key=settings.m2m_api_key.get_secret_value() if settings.m2m_api_key else None,
            max_requests=settings.m2m_rate_limit_requests,
            window_seconds=settings.m2m_rate_limit_window_seconds,
        )

        self.relay_service = RelayService(
            chain_client=self.chain,
            event_bus=self.event_bus,
            policy=self.policy,
            social_contract_address=settings.social_contract_address,
            confirmation_timeout_seconds=settings.confirmation_timeout_seconds,
            verifier=signature_verifier or verify_relay_signature,
        )
        self.publish_service = PublishService(
            chain_client=self.chain,
            commitment=self.commitment,
            event_bus=self.event_bus,
            blog_registry_address=settings.blog_registry_address,
            confirmation_timeout_seconds=settings.confirmation_timeout_seconds,
        )
        schedule_store = (
            FileScheduledPostStore(settings.scheduled_posts_path)
            if settings.scheduled_posts_path
            else InMemoryScheduledPostStore()
        )
        self.scheduler = ScheduledPublishService(self.publish_service, self.event_bus, schedule_store)

        self.is_ready = False
        self.chain_ready = False
        self.started_at: datetime | None = None

    async def initialize(self) -> None:
        """Connect the chain client. A failed connection leaves the app degraded, not down."""
        try:
            await self.chain.initialize()
            self.chain_ready = True
        except ChainClientError as e:
            logger.error("chain_client_unavailable", error=str(e))
            self.chain_ready = False

        self.is_ready = True
        self.started_at = datetime.now(UTC)
        logger.info(
            "relay_app_initialized",
            environment=self.settings.app_env,
            signature_enforcement=self.policy.enforcement.value,
            chain_ready=self.chain_ready,
            relayer=self.chain.relayer_address,
        )

    async def shutdown(self) -> None:
        self.is_ready = False
        await self.chain.close()
        close_blob_store = getattr(self.blob_store, "close", None)
        if close_blob_store is not None:
            await close_blob_store()
        self.event_bus.destroy()
        logger.info("relay_app_shutdown")

    def get_status(self) -> dict[str, Any]:
        return {
            "ready": self.is_ready,
            "chain_ready": self.chain_ready,
            "environment": self.settings.app_env,
            "signature_enforcement": self.policy.enforcement.value,
            "m2m_configured": self.publish_service.configured,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "events": self.event_bus.get_metrics(),
        }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialize and shut down the relay container."""
    relay_app: RelayApp = app.state.relay
    try:
        await relay_app.initialize()
        yield
    finally:
        shutdown_timeout = 30.0
        try:
            await asyncio.wait_for(relay_app.shutdown(), timeout=shutdown_timeout)
        except TimeoutError:
            logger.error("relay_shutdown_timeout", timeout_seconds=shutdown_timeout)


def create_app(
    settings: Settings | None = None,
    *,
    chain_client: BaseChainClient | None = None,
    event_bus: EventBus | None = None,
    signature_verifier: SignatureVerifier | None = None,
    blob_store: BlobStore | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to use (environment when None)
        chain_client: Ledger client override
        event_bus: Event bus override
        signature_verifier: Signature check override
        blob_store: Off-chain store override

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    configure_logging(
        level=settings.log_level,
        json_output=settings.is_production,
        service_name=settings.app_name,
    )

    relay_app = RelayApp(
        settings,
        chain_client=chain_client,
        event_bus=event_bus,
        signature_verifier=signature_verifier,
        blob_store=blob_store,
    )

    app = FastAPI(
        title="Vauban Relay",
        description="Gasless relay for session-key signed actions",
        version=__version__,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.relay = relay_app

    cors_origins = settings.cors_origins_list
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "X-API-Key", "X-Correlation-ID"],
            expose_headers=["X-Correlation-ID", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
        )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    # Exception handlers
    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=exc.headers or None,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "path": str(request.url.path)},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # Field location and error type only; submitted values are not echoed.
        details = [
            {"loc": list(err.get("loc", [])), "type": err.get("type", "unknown"), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"error": "Validation error", "details": details})

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "unhandled_exception",
            path=str(request.url.path),
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "path": str(request.url.path)},
        )

    from .routes import events, m2m, relay, scheduled

    app.include_router(relay.router, prefix="/api")
    app.include_router(m2m.router, prefix="/api")
    app.include_router(events.router, prefix="/api")
    app.include_router(scheduled.router, prefix="/api")

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "healthy" if relay_app.is_ready else "starting"}

    @app.get("/ready", include_in_schema=False)
    async def ready() -> Response:
        if not relay_app.is_ready:
            return JSONResponse(status_code=503, content={"status": "not_ready"})
        if not relay_app.chain_ready:
            return JSONResponse(
                status_code=503,
                content={"status": "degraded", "reason": "chain_unreachable"},
                headers={"Retry-After": "5"},
            )
        return JSONResponse(content={"status": "ready", **relay_app.get_status()})

    logger.info("fastapi_app_created", environment=settings.app_env)
    return app


def run_server(
    host: str | None = None,
    port: int | None = None,
    reload: bool = False,
) -> None:
    """
    Run the relay server.

    For production use:
        uvicorn vauban_relay.api.app:create_app --factory --host 0.0.0.0 --port 8000
    """
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "vauban_relay.api.app:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run_server(reload=True)
