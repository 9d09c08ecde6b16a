"""
Unified Configuration
All environment variables and settings in one place

ARCHITECTURE:
- Procore OAuth client credentials + bootstrap token pair
- One relational store (SQLite file or PostgreSQL) addressed by DATABASE_URL
- Settings are built once via get_settings() and passed explicitly to components

SECURITY:
- All secrets loaded from environment variables (or .env)
- ENCRYPTION_KEY encrypts OAuth tokens at rest
"""
import logging
from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hbsync.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"

SUPPORTED_DB_SCHEMES = ("sqlite://", "postgresql://", "postgres://")


def _redact(value: Optional[str]) -> str:
    return "[redacted]" if value else "undefined"


class Settings(BaseSettings):
    """
    Sync service settings.
    Validates all environment variables at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # ============================================================================
    # SERVER
    # ============================================================================

    environment: str = Field(default="production", description="Environment: development/staging/production")
    port: int = Field(default=8080, description="Control API port")
    debug: bool = Field(default=False, description="Debug mode")

    # ============================================================================
    # DATABASE (SQLite file or PostgreSQL)
    # ============================================================================

    database_url: str = Field(default="sqlite:///hb-report.db", description="sqlite:///path or postgresql://...")

    # ============================================================================
    # PROCORE OAUTH
    # ============================================================================

    procore_client_id: str = Field(validation_alias=AliasChoices("CLIENT_ID", "PROCORE_CLIENT_ID"))
    procore_client_secret: str = Field(validation_alias=AliasChoices("CLIENT_SECRET", "PROCORE_CLIENT_SECRET"))
    procore_company_id: str = Field(validation_alias=AliasChoices("COMPANY_ID", "PROCORE_COMPANY_ID"))
    procore_redirect_uri: str = Field(
        default="urn:ietf:wg:oauth:2.0:oob",
        validation_alias=AliasChoices("REDIRECT_URI", "PROCORE_REDIRECT_URI"),
    )
    procore_base_url: str = Field(
        default="https://api-sandbox.procore.com",
        validation_alias=AliasChoices("BASE_URL", "PROCORE_BASE_URL"),
    )
    procore_oauth_url: str = Field(
        default="https://login-sandbox.procore.com",
        validation_alias=AliasChoices("OAUTH_URL", "PROCORE_OAUTH_URL"),
    )

    # Bootstrap credentials (only needed until the first token is stored)
    procore_init_token: Optional[str] = Field(default=None, validation_alias=AliasChoices("INIT_TOKEN", "PROCORE_INIT_TOKEN"))
    procore_init_refresh_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("INIT_REF_TOKEN", "PROCORE_INIT_REFRESH_TOKEN"),
    )
    bootstrap_token_ttl: int = Field(default=7200, description="Assumed lifetime of the bootstrap token (seconds)")

    # ============================================================================
    # TOKEN MANAGER
    # ============================================================================

    token_owner_id: str = Field(default="admin", description="Owner key of the system token")
    token_refresh_buffer: int = Field(default=300, description="Refresh this many seconds before expiry")
    token_ready_timeout: float = Field(default=30.0, description="Bounded wait on the token ready gate (seconds)")
    token_retry_delay: float = Field(default=60.0, description="Background refresher delay after a failed cycle")

    # ============================================================================
    # REMOTE FETCHER
    # ============================================================================

    procore_request_timeout: float = Field(default=30.0, description="Per-call HTTP timeout (seconds)")
    procore_page_size: int = Field(default=100, description="per_page for paginated resources")
    procore_max_retries: int = Field(default=3, description="Attempts for 429/5xx responses")
    procore_retry_backoff: float = Field(default=1.0, description="Base back-off for 429/5xx retries (seconds)")

    # ============================================================================
    # SECURITY
    # ============================================================================

    encryption_key: str = Field(description="32-byte key as 64 hex characters; encrypts tokens at rest")
    api_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("SYNC_API_KEY", "API_KEY"))

    # ============================================================================
    # SCHEDULING / JOBS
    # ============================================================================

    sync_cron_hour: int = Field(default=0, ge=0, le=23)
    sync_cron_minute: int = Field(default=0, ge=0, le=59)
    redis_url: Optional[str] = Field(default=None, description="Redis URL for the dramatiq broker")

    # ============================================================================
    # LOGGING / ERROR TRACKING
    # ============================================================================

    log_dir: str = Field(default="logs", description="Directory of the rotating log sink")
    log_level: Optional[str] = Field(default=None, description="Console log level")
    log_retention_days: int = Field(default=14)
    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN for error tracking")

    @field_validator("procore_client_id", "procore_client_secret", "procore_company_id")
    @classmethod
    def _required_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("procore_base_url", "procore_oauth_url")
    @classmethod
    def _https_only(cls, value: str) -> str:
        if not value.startswith("https://"):
            raise ValueError("Procore baseUrl and oauthUrl must use HTTPS")
        return value.rstrip("/")

    @field_validator("encryption_key")
    @classmethod
    def _encryption_key_length(cls, value: str) -> str:
        try:
            raw = bytes.fromhex(value)
        except ValueError:
            raise ValueError("Encryption key must be hex encoded")
        if len(raw) != 32:
            raise ValueError("Encryption key must be 32 bytes long (64 hex characters)")
        return value

    @field_validator("database_url")
    @classmethod
    def _database_scheme(cls, value: str) -> str:
        if not value.startswith(SUPPORTED_DB_SCHEMES):
            raise ValueError(f"DATABASE_URL must start with one of {', '.join(SUPPORTED_DB_SCHEMES)}")
        return value

    @field_validator("log_level")
    @classmethod
    def _log_level_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ValueError("Invalid logger level")
        return value

    @model_validator(mode="after")
    def validate_settings(self):
        """
        Fill derived defaults and log a redacted configuration summary.
        """
        if self.log_level is None:
            self.log_level = "INFO" if self.environment == "production" else "DEBUG"

        if self.environment == "production":
            if self.debug:
                logger.warning("⚠️  DEBUG MODE ENABLED IN PRODUCTION!")
            if not self.sentry_dsn:
                logger.warning("⚠️  Sentry not configured in production. Error tracking disabled.")

        logger.info("=" * 80)
        logger.info("HB Report Sync Configuration Loaded")
        logger.info("=" * 80)
        logger.info(f"Environment: {self.environment}")
        logger.info(f"Database: {self.database_url.split('://', 1)[0]}")
        logger.info(f"Procore client id: {_redact(self.procore_client_id)}")
        logger.info(f"Procore client secret: {_redact(self.procore_client_secret)}")
        logger.info(f"Procore base URL: {self.procore_base_url}")
        logger.info(f"Procore OAuth URL: {self.procore_oauth_url}")
        logger.info(f"Procore company id: {self.procore_company_id}")
        logger.info(f"Bootstrap token: {_redact(self.procore_init_token)}")
        logger.info(f"Redis: {'✅ Configured' if self.redis_url else '❌ Not configured'}")
        logger.info("=" * 80)

        return self

    @property
    def has_bootstrap_credentials(self) -> bool:
        return bool(self.procore_init_token and self.procore_init_refresh_token)


@lru_cache
def get_settings() -> Settings:
    """
    Build settings once per process.

    Raises:
        ConfigurationError: If any setting is missing or invalid
    """
    try:
        return Settings()
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from e


# ============================================================================
# BROKER
# ============================================================================

class BrokerSettings(BaseSettings):
    """
    The slice of configuration the dramatiq broker needs at import time.
    Read from the same environment and .env file as Settings, without
    requiring the Procore credentials.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    redis_url: Optional[str] = Field(default=None, description="Redis URL for the dramatiq broker")


@lru_cache
def get_broker_settings() -> BrokerSettings:
    return BrokerSettings()
