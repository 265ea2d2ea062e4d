"""
Application Configuration

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator, Field
from typing import List, Any
from functools import lru_cache
import json


DEFAULT_CORS_ORIGINS = (
    "https://stageflow.startupstage.com,"
    "https://stageflow-rev-ops.netlify.app,"
    "https://stageflow-app.netlify.app,"
    "http://localhost:8888,"
    "http://localhost:5173,"
    "http://localhost:3000"
)


def _split_list(value: Any) -> List[str]:
    """
    Parse a list-valued setting from JSON or a comma-separated string.

    Args:
        value: Raw setting value

    Returns:
        List[str]: Non-empty, stripped entries
    """
    if not value or not isinstance(value, str):
        return []

    try:
        parsed = json.loads(value)
        if isinstance(parsed, list):
            return [str(item).strip() for item in parsed if str(item).strip()]
    except (json.JSONDecodeError, TypeError):
        pass

    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    """

    # Application
    APP_NAME: str = "StageFlow Edge"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # Return stripped raw error messages to clients (ignored in production)
    EXPOSE_ERROR_DETAILS: bool = False

    # Identity provider (Supabase GoTrue)
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: str = ""
    SUPABASE_JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"
    SESSION_BACKEND_TIMEOUT_SECONDS: float = 5.0

    # Session cookies
    SESSION_REFRESH_THRESHOLD_SECONDS: int = 300  # 5 minutes
    SESSION_PROACTIVE_REFRESH: bool = False
    ACCESS_TOKEN_COOKIE_MAX_AGE: int = 3600  # 1 hour
    REFRESH_TOKEN_COOKIE_MAX_AGE: int = 7 * 24 * 3600  # 7 days
    COOKIE_SECURE: bool = True
    COOKIE_DOMAIN: str = ""

    # CSRF
    CSRF_TOKEN_MAX_AGE: int = 3600

    # CORS
    # Stored as string so Pydantic Settings does not try to parse it as JSON.
    # The first entry is the canonical (production) origin.
    cors_origins_str: str = Field(
        default=DEFAULT_CORS_ORIGINS,
        alias="CORS_ALLOWED_ORIGINS"
    )
    CORS_PREVIEW_SUFFIX: str = ".netlify.app"
    CORS_PREVIEW_PRODUCT: str = "stageflow"
    CORS_MAX_AGE: int = 86400  # 24 hours
    CORS_OMIT_DISALLOWED: bool = False

    @property
    def CORS_ALLOWED_ORIGINS(self) -> List[str]:
        """
        Get CORS origins as a list.

        Parses from string format (comma-separated or JSON).
        """
        origins = _split_list(self.cors_origins_str)
        return origins if origins else _split_list(DEFAULT_CORS_ORIGINS)

    # Auth middleware rollout
    ENABLE_AUTH_MIDDLEWARE: bool = False
    AUTH_ROLLOUT_PERCENTAGE: int = 0
    auth_whitelist_str: str = Field(default="", alias="AUTH_WHITELIST_USERS")
    auth_blacklist_str: str = Field(default="", alias="AUTH_BLACKLIST_USERS")
    cookie_only_endpoints_str: str = Field(
        default="ai-assistant,ai-assistant-stream,ai-insights",
        alias="AUTH_COOKIE_ONLY_ENDPOINTS"
    )
    AUTH_DEBUG: bool = False

    @property
    def AUTH_WHITELIST_USERS(self) -> List[str]:
        return _split_list(self.auth_whitelist_str)

    @property
    def AUTH_BLACKLIST_USERS(self) -> List[str]:
        return _split_list(self.auth_blacklist_str)

    @property
    def AUTH_COOKIE_ONLY_ENDPOINTS(self) -> List[str]:
        return _split_list(self.cookie_only_endpoints_str)

    # Debug/diagnostic endpoints
    ENABLE_DEBUG_ENDPOINTS: bool = False

    # Rate Limiting
    RATE_LIMIT_PER_MINUTE: int = 60

    # Metrics (empty = in-process counters only)
    METRICS_REDIS_URL: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # Monitoring (Sentry)
    SENTRY_DSN: str = ""
    SENTRY_ENABLED: bool = False

    @model_validator(mode="before")
    @classmethod
    def join_list_settings(cls, data: Any) -> Any:
        """
        Convert list values for list-valued settings into comma-separated strings.

        The Field aliases map the environment names onto the *_str fields.
        """
        if not isinstance(data, dict):
            return data

        for key in ("CORS_ALLOWED_ORIGINS", "AUTH_WHITELIST_USERS",
                    "AUTH_BLACKLIST_USERS", "AUTH_COOKIE_ONLY_ENDPOINTS"):
            value = data.get(key)
            if isinstance(value, (list, tuple, set)):
                data[key] = ",".join(str(item) for item in value)

        return data

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def expose_error_details(self) -> bool:
        """Raw error details are never exposed in production."""
        return self.EXPOSE_ERROR_DETAILS and not self.is_production

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        env_prefix="",
        populate_by_name=True,
        env_parse_none_str=None
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
