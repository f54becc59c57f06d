"""Environment-bound configuration objects.

Every settings class loads from environment variables and the project's .env
file. Components receive their settings object as a constructor argument;
``get_settings()`` is only the cached entry point used by runtime assembly.

Example:
    from taskpilot.config.settings import get_settings

    settings = get_settings()
    max_concurrency = settings.registry.max_concurrency
    threshold = settings.validation.completion_threshold
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


load_dotenv()

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class RegistrySettings(BaseSettings):
    """Tool dispatch policy.

    - max_retries: attempts per direct tool call, including the first (default: 3);
      plan execution makes one attempt per step attempt instead
    - default_timeout_ms: timeout for tools that don't declare one
    - enable_parallel / max_concurrency: batch dispatch limits
    - backoff_base_ms: retry delay is 2^attempt * backoff_base_ms
    - history_limit: capped execution history size
    """

    max_retries: int = Field(
        default=3, ge=1, le=10,
        validation_alias=AliasChoices("TOOL_MAX_RETRIES", "REGISTRY_MAX_RETRIES"),
    )
    default_timeout_ms: int = Field(
        default=30000, gt=0,
        validation_alias=AliasChoices("TOOL_DEFAULT_TIMEOUT_MS", "REGISTRY_DEFAULT_TIMEOUT_MS"),
    )
    enable_parallel: bool = Field(default=True, alias="TOOL_ENABLE_PARALLEL")
    max_concurrency: int = Field(
        default=5, ge=1, le=64,
        validation_alias=AliasChoices("TOOL_MAX_CONCURRENCY", "REGISTRY_MAX_CONCURRENCY"),
    )
    enable_metrics: bool = Field(default=True, alias="TOOL_ENABLE_METRICS")
    backoff_base_ms: int = Field(default=1000, ge=0, alias="TOOL_BACKOFF_BASE_MS")
    history_limit: int = Field(default=1000, ge=1, alias="TOOL_HISTORY_LIMIT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class AgentSettings(BaseSettings):
    """Execution governance: step retries and confirmation policy."""

    max_retries: int = Field(default=3, ge=1, le=10, alias="AGENT_MAX_RETRIES")
    timeout_ms: int = Field(default=30000, gt=0, alias="AGENT_TIMEOUT_MS")
    auto_confirm_low_risk: bool = Field(
        default=True,
        validation_alias=AliasChoices("AUTO_CONFIRM_LOW_RISK", "AGENT_AUTO_CONFIRM_LOW_RISK"),
    )
    require_confirmation_high_risk: bool = Field(
        default=True,
        validation_alias=AliasChoices("REQUIRE_CONFIRMATION_HIGH_RISK", "AGENT_REQUIRE_CONFIRMATION_HIGH_RISK"),
    )
    simulation_enabled: bool = Field(default=True, alias="AGENT_SIMULATION_ENABLED")
    risk_threshold: float = Field(default=0.7, ge=0.0, le=1.0, alias="AGENT_RISK_THRESHOLD")
    backoff_base_ms: int = Field(default=1000, ge=0, alias="AGENT_BACKOFF_BASE_MS")
    default_account: str = Field(
        default=ZERO_ADDRESS,
        validation_alias=AliasChoices("AGENT_DEFAULT_ACCOUNT", "WALLET_ADDRESS"),
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class ValidationSettings(BaseSettings):
    """Validator thresholds and retry advice."""

    pass_threshold: float = Field(default=0.6, ge=0.0, le=1.0, alias="VALIDATION_PASS_THRESHOLD")
    completion_threshold: float = Field(default=0.9, ge=0.0, le=1.0, alias="VALIDATION_COMPLETION_THRESHOLD")
    max_attempts: int = Field(default=3, ge=0, alias="VALIDATION_MAX_ATTEMPTS")
    min_retry_confidence: float = Field(default=0.2, ge=0.0, le=1.0, alias="VALIDATION_MIN_RETRY_CONFIDENCE")
    base_delay_ms: int = Field(default=2000, ge=0, alias="VALIDATION_BASE_DELAY_MS")
    max_delay_ms: int = Field(default=30000, ge=0, alias="VALIDATION_MAX_DELAY_MS")
    history_limit: int = Field(default=10, ge=1, alias="VALIDATION_HISTORY_LIMIT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class StreamingSettings(BaseSettings):
    """Incremental response delivery."""

    enable_streaming: bool = Field(default=True, alias="STREAMING_ENABLED")
    chunk_size: int = Field(default=20, ge=1, alias="STREAMING_CHUNK_SIZE")
    chunk_delay_ms: int = Field(default=50, ge=0, alias="STREAMING_CHUNK_DELAY_MS")
    max_retries: int = Field(default=3, ge=0, alias="STREAMING_MAX_RETRIES")
    completion_timeout_ms: int = Field(default=30000, gt=0, alias="STREAMING_COMPLETION_TIMEOUT_MS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class ObservabilitySettings(BaseSettings):
    """Logging and persistence locations.

    - history_db_path: SQLite file for session history (unset keeps history in memory)
    - tools_config_path: YAML file with per-tool overrides
    """

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: str = Field(default="logs", alias="LOG_DIR")
    history_db_path: Optional[str] = Field(default=None, alias="HISTORY_DB_PATH")
    tools_config_path: Optional[str] = Field(default=None, alias="TOOLS_CONFIG_PATH")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class Settings(BaseSettings):
    """Root settings object aggregating all sections."""

    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    streaming: StreamingSettings = Field(default_factory=StreamingSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
