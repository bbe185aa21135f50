"""
Constants and configuration for the agent engine.
Centralizes all magic numbers and configuration values.
Includes Pydantic validation for environment variables.
"""

from __future__ import annotations

import os
import threading

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import (
    DotEnvSettingsSource,
    PydanticBaseSettingsSource,
)

# ============================================================================
# Project Paths
# ============================================================================

#: Project root directory (parent of src/)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent

# ============================================================================
# Model Configuration - Single Source of Truth
# ============================================================================


@dataclass(frozen=True, slots=True)
class ModelPricing:
    """Per-model pricing used by the usage ledger.

    Attributes:
        id: API model name (e.g., "gpt-4.1")
        input_per_million: USD per one million input tokens
        output_per_million: USD per one million output tokens
    """

    id: str
    input_per_million: float
    output_per_million: float


#: Price table for cost accounting. Unknown models are billed at the capable tier price.
MODEL_PRICING: tuple[ModelPricing, ...] = (
    ModelPricing("gpt-4.1", 2.00, 8.00),
    ModelPricing("gpt-4.1-mini", 0.40, 1.60),
    ModelPricing("gpt-4.1-nano", 0.10, 0.40),
    ModelPricing("gpt-4o", 2.50, 10.00),
    ModelPricing("gpt-4o-mini", 0.15, 0.60),
    ModelPricing("gpt-5", 1.25, 10.00),
    ModelPricing("gpt-5-mini", 0.25, 2.00),
)

MODEL_PRICES: dict[str, ModelPricing] = {m.id: m for m in MODEL_PRICING}

#: Default model for the capable/slow tier
DEFAULT_CAPABLE_MODEL = "gpt-4.1"

#: Default model for the cheap/fast tier (also used for document extraction)
DEFAULT_FAST_MODEL = "gpt-4.1-mini"

# ============================================================================
# Engine Limits
# ============================================================================

#: Messages of history kept for round 1 of the tool loop.
MAX_HISTORY_MESSAGES = 20

#: Request body ceiling (4 MiB). The hosting platform rejects bodies above 4.5 MB,
#: so this keeps a safety margin and lets us answer with a proper 413.
MAX_REQUEST_BODY_SIZE = 4 * 1024 * 1024

#: Completion token ceilings chosen by the complexity router.
STANDARD_MAX_TOKENS = 4096
EXTENDED_MAX_TOKENS = 16384

#: Completion token ceiling for document extraction calls.
EXTRACTION_MAX_TOKENS = 4096

#: Provider rounds allowed per request.
MAX_TOOL_ROUNDS = 10

#: Backoff schedule (seconds) for provider rate limits. Retry count is its length.
RETRY_DELAYS: tuple[float, ...] = (2.0, 5.0, 10.0)

#: Serialized size budget for a tool result entering model context.
TOOL_RESULT_MAX_BYTES = 15_000

#: Items kept from oversized list results.
TOOL_RESULT_MAX_ITEMS = 20

#: Words in the current message above which the capable tier is used.
COMPLEXITY_WORD_THRESHOLD = 60

#: Tools invoked by the previous assistant turn above which the capable tier is used.
COMPLEXITY_TOOL_THRESHOLD = 2

#: Domain action keywords that route to the capable tier (substring match, lowercase).
COMPLEXITY_KEYWORDS: tuple[str, ...] = (
    "cotiza",
    "cotización",
    "presupuesto",
    "analiz",
    "análisis",
    "compar",
    "cronograma",
    "programa",
    "tdr",
    "quote",
    "quotation",
    "analy",
    "compare",
    "schedul",
    "estimate",
)

#: Keywords that extend the completion token ceiling (substring match, lowercase).
DOCUMENT_KEYWORDS: tuple[str, ...] = (
    "pdf",
    "documento",
    "document",
    "tdr",
    "términos de referencia",
    "analiz",
    "analy",
)

#: Monthly provider spend ceiling in USD.
MONTHLY_BUDGET_USD = 25.0

#: Usage percentage at which completed responses carry a budget notice.
BUDGET_WARNING_PERCENT = 80.0

#: Bounded event buffer between the engine and the HTTP stream.
STREAM_BUFFER_SIZE = 256

#: Characters kept from the first user message when titling a session.
SESSION_TITLE_MAX_LENGTH = 60

# ============================================================================
# Stream Event Names
# ============================================================================

EVENT_CONVERSATION_INFO = "conversation_info"
EVENT_STATUS = "status"
EVENT_TEXT_DELTA = "text_delta"
EVENT_TOOL_CALL_START = "tool_call_start"
EVENT_TOOL_CALL_END = "tool_call_end"
EVENT_ERROR = "error"
EVENT_DONE = "done"

# Status phases
PHASE_ANALYZING_PDF = "analyzing_pdf"
PHASE_GENERATING = "generating"
PHASE_EXECUTING_TOOLS = "executing_tools"
PHASE_IDLE = "idle"

# ============================================================================
# Usage Categories
# ============================================================================

USAGE_CATEGORY_CHAT = "chat"
USAGE_CATEGORY_DOCUMENT_EXTRACTION = "document_extraction"

# ============================================================================
# Logging Configuration
# ============================================================================

#: Maximum size in bytes for log files before rotation (10MB).
LOG_MAX_SIZE = 10 * 1024 * 1024

#: Number of conversation log backups to retain during rotation.
LOG_BACKUP_COUNT_CONVERSATIONS = 5

#: Number of error log backups to retain during rotation.
LOG_BACKUP_COUNT_ERRORS = 3

#: Maximum characters to show in log previews for user input/response.
LOG_PREVIEW_LENGTH = 50

#: Length of the component id attached to log records.
SESSION_ID_LENGTH = 8

#: Token counter cache size.
TOKEN_CACHE_SIZE = 128

# ============================================================================
# Environment Configuration with Pydantic Validation
# ============================================================================

#: Valid environment names for configuration loading
Environment = Literal["development", "production", "test"]

#: Project directory for .env file resolution
_ENV_DIR = PROJECT_ROOT


def _get_env_files() -> list[Path]:
    """Determine which .env files to load based on APP_ENV.

    Load order (later files override earlier - pydantic-settings last-wins):
    1. .env (base defaults) - lowest priority
    2. .env.{environment} (environment-specific overrides)
    3. .env.local (local developer overrides, gitignored) - highest priority

    Returns:
        List of Path objects for env files that exist.
    """
    env_name = os.getenv("APP_ENV", "development").lower()
    if env_name not in ("development", "production", "test"):
        env_name = "development"

    candidates = [
        _ENV_DIR / ".env",
        _ENV_DIR / f".env.{env_name}",
        _ENV_DIR / ".env.local",
    ]
    return [p for p in candidates if p.exists()]


def _reload_dotenv_into_environ() -> None:
    """Reload our dotenv files into os.environ so environment-specific values win."""
    from dotenv import load_dotenv

    for env_file in _get_env_files():
        load_dotenv(env_file, override=True)


class Settings(BaseSettings):
    """Environment settings with validation and environment-specific file support.

    Configuration priority (highest to lowest):
    1. Values passed to Settings() constructor
    2. Environment variables (standard Docker/K8s behavior)
    3. .env.local > .env.{APP_ENV} > .env (dotenv files, last wins)
    """

    # Environment identification
    app_env: Environment = Field(default="development", description="Application environment")

    # Provider
    openai_api_key: str | None = Field(default=None, description="OpenAI API key for authentication")
    openai_base_url: str | None = Field(default=None, description="Optional OpenAI-compatible endpoint")
    capable_model: str = Field(default=DEFAULT_CAPABLE_MODEL, description="Model for the capable/slow tier")
    fast_model: str = Field(default=DEFAULT_FAST_MODEL, description="Model for the cheap/fast tier")
    extraction_model: str = Field(default=DEFAULT_FAST_MODEL, description="Model for document extraction calls")

    # Engine limits
    max_history_messages: int = Field(default=MAX_HISTORY_MESSAGES, ge=1, description="History window size")
    max_request_body_size: int = Field(default=MAX_REQUEST_BODY_SIZE, gt=0, description="Request size ceiling")
    standard_max_tokens: int = Field(default=STANDARD_MAX_TOKENS, gt=0, description="Standard token ceiling")
    extended_max_tokens: int = Field(default=EXTENDED_MAX_TOKENS, gt=0, description="Extended token ceiling")
    extraction_max_tokens: int = Field(default=EXTRACTION_MAX_TOKENS, gt=0, description="Extraction ceiling")
    max_tool_rounds: int = Field(default=MAX_TOOL_ROUNDS, ge=1, description="Maximum provider rounds")
    retry_delays: list[float] = Field(default_factory=lambda: list(RETRY_DELAYS), description="Backoff schedule")
    tool_result_max_bytes: int = Field(default=TOOL_RESULT_MAX_BYTES, gt=0, description="Tool result budget")
    tool_result_max_items: int = Field(default=TOOL_RESULT_MAX_ITEMS, ge=1, description="List items kept")

    # Complexity heuristics
    complexity_word_threshold: int = Field(default=COMPLEXITY_WORD_THRESHOLD, ge=0)
    complexity_tool_threshold: int = Field(default=COMPLEXITY_TOOL_THRESHOLD, ge=0)
    complexity_keywords: list[str] = Field(default_factory=lambda: list(COMPLEXITY_KEYWORDS))
    document_keywords: list[str] = Field(default_factory=lambda: list(DOCUMENT_KEYWORDS))

    # Budget
    monthly_budget_usd: float = Field(default=MONTHLY_BUDGET_USD, gt=0, description="Monthly spend ceiling")
    budget_warning_percent: float = Field(default=BUDGET_WARNING_PERCENT, ge=0, le=100)

    # Streaming
    stream_buffer_size: int = Field(default=STREAM_BUFFER_SIZE, ge=1, description="Buffered events per stream")

    # Debug and logging
    debug: bool = Field(default=False, description="Enable debug logging")
    enable_content_logging: bool = Field(default=False, description="Log redacted message previews")
    http_request_logging: bool = Field(default=False, description="Enable HTTP request/response logging")
    http_read_timeout: float = Field(default=600.0, description="HTTP read timeout for provider calls (seconds)")

    # Database (empty URL -> in-memory collaborators)
    database_url: str | None = Field(default=None, description="PostgreSQL connection string")
    db_pool_min_size: int = Field(default=2, description="Minimum PostgreSQL connections")
    db_pool_max_size: int = Field(default=10, description="Maximum PostgreSQL connections")
    db_command_timeout: float = Field(default=60.0, description="Default query timeout (seconds)")
    db_connection_timeout: float = Field(default=10.0, description="Connection acquire timeout (seconds)")

    # Auth
    allow_localhost_noauth: bool = Field(
        default=True,
        description="Allow auth bypass on localhost during local development",
    )
    default_user_id: str = Field(default="local-dev-user", description="Identity used by the localhost bypass")
    jwt_secret: str = Field(default="change-me-in-prod", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")

    # CORS
    cors_allow_origins: str = Field(default="*", description="Comma-separated allowed origins")

    # Hot-reload support (development only)
    config_hot_reload: bool = Field(default=False, description="Reload settings on every access")

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Constructor values, then environment variables, then dotenv files."""
        dotenv_source = DotEnvSettingsSource(
            settings_cls,
            env_file=_get_env_files(),
            env_file_encoding="utf-8",
        )
        return (init_settings, env_settings, dotenv_source)

    @field_validator("app_env", mode="before")
    @classmethod
    def validate_app_env(cls, v: str | None) -> str:
        """Validate and normalize APP_ENV value."""
        if v is None:
            return "development"
        normalized = str(v).lower()
        if normalized not in ("development", "production", "test"):
            raise ValueError(f"app_env must be 'development', 'production', or 'test', got '{v}'")
        return normalized

    @field_validator("retry_delays")
    @classmethod
    def validate_retry_delays(cls, v: list[float]) -> list[float]:
        """Backoff delays must be non-negative."""
        if any(delay < 0 for delay in v):
            raise ValueError("retry_delays must be non-negative")
        return v

    @field_validator("complexity_keywords", "document_keywords")
    @classmethod
    def normalize_keywords(cls, v: list[str]) -> list[str]:
        """Keywords are matched against lowercased text."""
        return [k.lower() for k in v if k.strip()]

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Validate JWT secret meets minimum security requirements."""
        if not v or len(v) < 8:
            raise ValueError("jwt_secret must be at least 8 characters")
        return v

    @model_validator(mode="after")
    def validate_limits(self) -> Settings:
        """Cross-field validation."""
        if self.extended_max_tokens < self.standard_max_tokens:
            raise ValueError("extended_max_tokens must be >= standard_max_tokens")

        if self.app_env == "production":
            if self.jwt_secret == "change-me-in-prod":
                raise ValueError(
                    "Configuration Error: jwt_secret must be changed from default in production.\n"
                    "Set JWT_SECRET to a secure random string in your .env.production file."
                )
            if self.allow_localhost_noauth:
                raise ValueError(
                    "Configuration Error: allow_localhost_noauth must be False in production.\n"
                    "Set ALLOW_LOCALHOST_NOAUTH=false in your .env.production file."
                )
        return self

    @property
    def max_retries(self) -> int:
        """Retry count derived from the backoff schedule."""
        return len(self.retry_delays)

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"


# ============================================================================
# Settings Management (Thread-safe with Hot-Reload Support)
# ============================================================================


class _SettingsManager:
    """Thread-safe settings manager with optional hot-reload support."""

    __slots__ = ("_instance", "_lock")

    def __init__(self) -> None:
        self._instance: Settings | None = None
        self._lock = threading.Lock()

    def get(self) -> Settings:
        """Get settings instance, reloading on each call when hot-reload is enabled."""
        if self._instance is not None and not self._instance.config_hot_reload:
            return self._instance

        with self._lock:
            # Double-check after acquiring lock
            if self._instance is not None and not self._instance.config_hot_reload:
                return self._instance

            _reload_dotenv_into_environ()
            self._instance = Settings()
            return self._instance

    def reload(self) -> Settings:
        """Force reload settings from environment files."""
        with self._lock:
            _reload_dotenv_into_environ()
            self._instance = Settings()
            return self._instance

    def clear(self) -> None:
        """Clear cached settings instance."""
        with self._lock:
            self._instance = None


# Module-level singleton manager
_settings_manager = _SettingsManager()


def get_settings() -> Settings:
    """Get settings instance with optional hot-reload support.

    Returns:
        Validated Settings instance.

    Raises:
        ValueError: If required configuration is missing or invalid.
    """
    return _settings_manager.get()


def reload_settings() -> Settings:
    """Force reload settings from environment files."""
    return _settings_manager.reload()


def clear_settings_cache() -> None:
    """Clear cached settings instance.

    Primarily useful for testing to ensure fresh settings on each test.
    """
    _settings_manager.clear()
