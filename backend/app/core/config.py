"""Application configuration loaded from environment variables.

Settings for the database, API surface, provider execution, the credit
ledger and quota windows. Uses pydantic-settings for validation and .env
file support.
"""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_invariants() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "gateway_dev_password"  # nosec B105

# Minimum length for ADMIN_API_TOKEN in production (256 bits = 32 bytes)
_MIN_ADMIN_TOKEN_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "feature_gateway"
    database_user: str = "gateway_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Identity headers set by the upstream auth layer
    tenant_header: str = "X-Tenant-ID"
    user_header: str = "X-User-ID"

    # Admin API
    admin_token_header: str = "X-Admin-Token"
    admin_api_token: SecretStr = SecretStr("")

    # Provider execution
    # Bounded total time for one vendor call, independent of the caller's timeout
    provider_timeout_seconds: float = 60.0
    expose_provider_errors: bool = True

    # Ledger
    default_low_balance_threshold: int = 100
    usage_text_max_chars: int = 1000

    # Quota windows (start of day / month) are computed in this zone
    quota_timezone: str = "UTC"

    # Rate Limiting
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_invoke: str = "30/minute"
    rate_limit_enabled: bool = True

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Sync database URL for Alembic."""
        return (
            f"postgresql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def quota_zone(self) -> ZoneInfo:
        """Time zone used for daily/monthly quota windows."""
        return ZoneInfo(self.quota_timezone)

    @model_validator(mode="after")
    def check_invariants(self) -> "Settings":
        """Validate configuration invariants.

        Checks:
        - Provider timeout must be positive (all environments)
        - Low-balance threshold and text truncation must be non-negative
        - Quota time zone must be a known IANA zone
        - CORS must not use wildcard origin
        - Database password must not be the default in production
        - ADMIN_API_TOKEN must be set and >= 32 chars in production
        """
        if self.provider_timeout_seconds <= 0:
            msg = (
                "PROVIDER_TIMEOUT_SECONDS must be positive. "
                f"Got: {self.provider_timeout_seconds}"
            )
            raise ValueError(msg)
        if self.default_low_balance_threshold < 0:
            msg = (
                "DEFAULT_LOW_BALANCE_THRESHOLD cannot be negative. "
                f"Got: {self.default_low_balance_threshold}"
            )
            raise ValueError(msg)
        if self.usage_text_max_chars < 0:
            msg = f"USAGE_TEXT_MAX_CHARS cannot be negative. Got: {self.usage_text_max_chars}"
            raise ValueError(msg)

        try:
            ZoneInfo(self.quota_timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            msg = f"QUOTA_TIMEZONE is not a known time zone: {self.quota_timezone!r}"
            raise ValueError(msg) from exc

        if "*" in self.allowed_origins:
            msg = "ALLOWED_ORIGINS must not contain '*' (wildcard)."
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            token = self.admin_api_token.get_secret_value()
            if len(token) < _MIN_ADMIN_TOKEN_LENGTH:
                msg = (
                    f"ADMIN_API_TOKEN must be at least {_MIN_ADMIN_TOKEN_LENGTH} "
                    "characters in production."
                )
                raise ValueError(msg)

        return self


settings = Settings()
