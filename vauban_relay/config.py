"""
Vauban Relay Configuration Management

Centralized configuration using Pydantic Settings for type-safe environment
variable loading with validation.

SECURITY NOTE: RELAYER_PRIVATE_KEY controls the account that pays for every
relayed transaction. Load it from a secrets manager in production.
"""

import logging
import re
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_HEX_KEY = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ═══════════════════════════════════════════════════════════════
    # APPLICATION
    # ═══════════════════════════════════════════════════════════════
    app_name: str = Field(default="vauban-relay", description="Application name")
    app_env: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    # API Server
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated CORS origins",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into list."""
        origins = [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]
        if self.app_env == "production" and "*" in origins:
            raise ValueError("Wildcard CORS origin not allowed in production")
        return origins

    # ═══════════════════════════════════════════════════════════════
    # CHAIN
    # ═══════════════════════════════════════════════════════════════
    chain_backend: Literal["evm", "mock"] = Field(
        default="evm", description="Chain client implementation"
    )
    rpc_url: str = Field(default="http://localhost:8545", description="JSON-RPC endpoint")
    chain_id: int | None = Field(
        default=None, description="Chain ID (read from the node when unset)"
    )
    relayer_private_key: SecretStr | None = Field(
        default=None, description="Private key of the relayer account"
    )
    relayer_address: str | None = Field(
        default=None, description="Relayer address (derived from the key when unset)"
    )
    social_contract_address: str | None = Field(
        default=None, description="Social contract receiving relayed comments"
    )
    session_key_manager_address: str | None = Field(
        default=None, description="Session key manager contract"
    )
    blog_registry_address: str | None = Field(
        default=None, description="Blog registry contract used for M2M publishing"
    )
    confirmation_timeout_seconds: float = Field(
        default=120.0, gt=0, description="Upper bound on waiting for a receipt"
    )
    signature_enforcement: Literal["strict", "permissive"] | None = Field(
        default=None,
        description="Signature policy override (strict in production when unset)",
    )

    # ═══════════════════════════════════════════════════════════════
    # SESSION KEYS
    # ═══════════════════════════════════════════════════════════════
    session_key_expiry_seconds: int = Field(
        default=7 * 24 * 60 * 60, ge=60, description="Session key lifetime"
    )

    # ═══════════════════════════════════════════════════════════════
    # CONTENT
    # ═══════════════════════════════════════════════════════════════
    content_cache_path: str | None = Field(
        default=None, description="JSON file backing the content cache (memory when unset)"
    )
    blob_store_url: str | None = Field(
        default=None, description="Base URL of the off-chain blob store"
    )
    blob_store_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Blob store request timeout"
    )

    # ═══════════════════════════════════════════════════════════════
    # M2M PUBLISHING
    # ═══════════════════════════════════════════════════════════════
    m2m_api_key: SecretStr | None = Field(default=None, description="M2M API key")
    m2m_rate_limit_requests: int = Field(
        default=10, ge=1, description="Requests allowed per window"
    )
    m2m_rate_limit_window_seconds: int = Field(
        default=60, ge=1, description="Rate limit window"
    )

    # ═══════════════════════════════════════════════════════════════
    # SCHEDULED PUBLISHING
    # ═══════════════════════════════════════════════════════════════
    scheduled_posts_path: str | None = Field(
        default=None, description="JSON file backing the schedule (memory when unset)"
    )
    cron_secret: SecretStr | None = Field(
        default=None, description="Bearer secret required by the publish-scheduled trigger"
    )

    # ═══════════════════════════════════════════════════════════════
    # EVENTS
    # ═══════════════════════════════════════════════════════════════
    event_max_listeners: int = Field(
        default=100, ge=1, description="Listener count that triggers a leak warning"
    )
    event_stream_heartbeat_seconds: float = Field(
        default=30.0, gt=0, description="SSE heartbeat interval"
    )

    @field_validator("relayer_private_key")
    @classmethod
    def validate_relayer_key(cls, v: SecretStr | None) -> SecretStr | None:
        if v is None:
            return v
        raw = v.get_secret_value().strip()
        if not raw:
            return None
        if not _HEX_KEY.match(raw):
            raise ValueError("Relayer private key must be 32 bytes of hex")
        return SecretStr(raw if raw.startswith("0x") else f"0x{raw}")

    @model_validator(mode="after")
    def validate_signature_policy(self) -> "Settings":
        if self.app_env == "production" and self.signature_enforcement == "permissive":
            raise ValueError("Permissive signature enforcement is not allowed in production")
        if self.app_env == "production" and self.chain_backend == "mock":
            logger.warning("Mock chain backend configured in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def relayer_configured(self) -> bool:
        return self.relayer_private_key is not None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
