"""Configuration management for Relay."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from relay.core.capabilities import HANDOFF_CAPABILITY
from relay.core.types import AgentIdentity


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # Model Configuration
    model: str = Field(default="anthropic:claude-sonnet-4-20250514", description="provider:model for the LLM")
    api_key: str | None = Field(default=None, description="API key for the LLM provider")
    api_base: str | None = Field(default=None, description="Optional API base URL")
    max_tokens: int = Field(default=16384, ge=1, description="Maximum output tokens per step")
    model_timeout_seconds: float | None = Field(default=None, gt=0, description="Upstream call timeout")

    # Handoff Loop Configuration
    max_handoffs: int = Field(default=2, ge=0, description="Maximum agent-to-agent handoffs per request")
    max_steps_per_session: int = Field(default=10, ge=1, description="Step ceiling for one generation session")
    default_agent: AgentIdentity = Field(
        default=AgentIdentity.CUSTOMER_MGMT, description="Agent for fresh conversations"
    )

    # Gap Telemetry Configuration
    read_only_capabilities: set[str] = Field(
        default_factory=lambda: {"list_projects", "list_artifacts", HANDOFF_CAPABILITY},
        description="Capabilities that do not count as acting on the user's request",
    )
    gap_detection_agents: set[AgentIdentity] = Field(
        default_factory=lambda: {AgentIdentity.PRODUCT_MGMT},
        description="Agents whose turns are checked for gaps",
    )
    gap_min_message_chars: int = Field(default=20, ge=0, description="User messages at or below this are ignored")
    gap_description_max_chars: int = Field(default=500, ge=1, description="Truncation for recorded messages")
    telemetry_path: Path | None = Field(default=None, description="JSON-lines file for gap records")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")


def get_settings(**overrides: object) -> Settings:
    """Get application settings.

    Args:
        overrides: Explicit field values taking precedence over the environment

    Returns:
        Settings instance
    """
    return Settings(**overrides)  # type: ignore[arg-type]
