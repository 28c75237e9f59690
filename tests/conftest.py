"""
Vauban Relay - Test Fixtures

Shared pytest fixtures for all test modules.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# =============================================================================
# TEST ENVIRONMENT SETUP
# =============================================================================

# Safety check: Prevent accidental production use
if os.environ.get("APP_ENV", "") == "production":
    raise RuntimeError("Test fixtures cannot be loaded in a production environment.")

os.environ["APP_ENV"] = "testing"

from vauban_relay.api.app import create_app  # noqa: E402
from vauban_relay.chains import (  # noqa: E402
    BaseChainClient,
    ContractCall,
    MockChainClient,
    TransactionHandle,
    TransactionOutcome,
    TransactionStatus,
)
from vauban_relay.config import Settings  # noqa: E402
from vauban_relay.kernel.event_system import EventBus  # noqa: E402
from vauban_relay.models.events import EventName  # noqa: E402

SOCIAL_CONTRACT = "0x1111111111111111111111111111111111111111"
BLOG_REGISTRY = "0x2222222222222222222222222222222222222222"
SESSION_KEY_MANAGER = "0x3333333333333333333333333333333333333333"
RELAYER = "0x4444444444444444444444444444444444444444"
USER = "0x5555555555555555555555555555555555555555"
M2M_API_KEY = "vb_TESTKEYtestkey0123456789ABCDEFG"


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "app_env": "testing",
        "chain_backend": "mock",
        "social_contract_address": SOCIAL_CONTRACT,
        "blog_registry_address": BLOG_REGISTRY,
        "session_key_manager_address": SESSION_KEY_MANAGER,
        "relayer_address": RELAYER,
        "m2m_api_key": M2M_API_KEY,
        "confirmation_timeout_seconds": 5,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Testing settings with the in-memory chain backend."""
    return make_settings()


@pytest.fixture
def production_settings() -> Settings:
    return make_settings(app_env="production")


# =============================================================================
# Kernel Fixtures
# =============================================================================


@pytest.fixture
def event_bus() -> Generator[EventBus, None, None]:
    """Fresh event bus, destroyed after the test."""
    bus = EventBus()
    yield bus
    bus.destroy()


@pytest.fixture
def recorded_events(event_bus: EventBus) -> list[tuple[str, dict[str, Any]]]:
    """Every event emitted on ``event_bus`` during the test, in order."""
    events: list[tuple[str, dict[str, Any]]] = []
    for name in EventName:
        event_bus.on(name, lambda payload, name=name: events.append((name.value, payload)))
    return events


# =============================================================================
# Chain Fixtures
# =============================================================================


@pytest.fixture
async def mock_chain() -> AsyncGenerator[MockChainClient, None]:
    """Initialized in-memory chain."""
    client = MockChainClient(
        relayer_address=RELAYER,
        session_key_manager_address=SESSION_KEY_MANAGER,
    )
    await client.initialize()
    yield client
    await client.close()


@pytest.fixture
def stub_chain() -> MagicMock:
    """Chain client whose submission confirms as 0xtxhash123."""
    chain = MagicMock(spec=BaseChainClient)
    chain.relayer_address = RELAYER
    chain.session_key_manager_address = SESSION_KEY_MANAGER
    chain.initialize = AsyncMock()
    chain.close = AsyncMock()
    chain.submit = AsyncMock(
        return_value=TransactionHandle(
            tx_hash="0xtxhash123",
            from_address=RELAYER,
            call=ContractCall(SOCIAL_CONTRACT, "add_comment_with_session_key", ()),
        )
    )
    chain.confirm = AsyncMock(
        return_value=TransactionOutcome(
            tx_hash="0xtxhash123",
            status=TransactionStatus.CONFIRMED,
            block_number=1,
        )
    )
    return chain


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def app_chain() -> MockChainClient:
    """In-memory chain for the application; the lifespan initializes it."""
    return MockChainClient(
        relayer_address=RELAYER,
        session_key_manager_address=SESSION_KEY_MANAGER,
    )


@pytest.fixture
def app(settings: Settings, app_chain: MockChainClient, event_bus: EventBus) -> FastAPI:
    """Application wired to the in-memory chain and the test event bus."""
    return create_app(settings, chain_client=app_chain, event_bus=event_bus)


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Create a synchronous test client."""
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client. ASGITransport skips lifespan, so initialize here."""
    await app.state.relay.initialize()
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
