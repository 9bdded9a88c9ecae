"""Application settings and configuration.

This module defines all configuration options for the Campus Gate service.
Settings are loaded from environment variables with sensible defaults; the
three signing/hashing secrets have no default and must be provided.
"""

from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_SECRET_LENGTH = 32

SmtpSecurity = Literal["starttls", "ssl", "none"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files. Field
    names are also accepted as keyword arguments, which is how tests build
    isolated configurations.
    """

    # Application metadata
    app_name: str = Field(default="Campus Gate", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./campus_gate.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")
    lock_timeout_seconds: float = Field(default=5.0, gt=0, alias="LOCK_TIMEOUT_SECONDS")

    # Membership policy
    allowed_email_domain: str = Field(default="kyonggi.ac.kr", alias="ALLOWED_EMAIL_DOMAIN")

    # One-time passcodes
    otp_ttl_minutes: int = Field(default=10, ge=1, alias="OTP_TTL_MINUTES")
    otp_max_failures: int = Field(default=5, ge=1, alias="OTP_MAX_FAILURES")
    otp_resend_cooldown_seconds: int = Field(
        default=20,
        ge=0,
        alias="OTP_RESEND_COOLDOWN_SECONDS",
    )
    otp_daily_send_limit: int = Field(default=5, ge=1, alias="OTP_DAILY_SEND_LIMIT")
    otp_hmac_secret: str = Field(min_length=MIN_SECRET_LENGTH, alias="OTP_HMAC_SECRET")
    otp_quota_timezone: str = Field(default="UTC", alias="OTP_QUOTA_TIMEZONE")

    # Access tokens (JWT)
    jwt_issuer: str = Field(default="campus-gate", alias="JWT_ISSUER")
    jwt_secret: str = Field(min_length=MIN_SECRET_LENGTH, alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_ttl_seconds: int = Field(default=900, ge=1, alias="ACCESS_TOKEN_TTL_SECONDS")

    # Refresh sessions and their cookie
    refresh_hash_secret: str = Field(min_length=MIN_SECRET_LENGTH, alias="REFRESH_HASH_SECRET")
    refresh_cookie_name: str = Field(default="KG_REFRESH", alias="REFRESH_COOKIE_NAME")
    refresh_cookie_path: str = Field(default="/api/v1/auth", alias="REFRESH_COOKIE_PATH")
    refresh_cookie_samesite: Literal["lax", "strict", "none"] = Field(
        default="lax",
        alias="REFRESH_COOKIE_SAMESITE",
    )
    refresh_cookie_secure: bool = Field(default=False, alias="REFRESH_COOKIE_SECURE")
    refresh_remember_me_seconds: int = Field(
        default=60 * 60 * 24 * 7,
        ge=1,
        alias="REFRESH_REMEMBER_ME_SECONDS",
    )
    refresh_session_ttl_seconds: int = Field(
        default=60 * 60 * 24,
        ge=1,
        alias="REFRESH_SESSION_TTL_SECONDS",
    )

    # Outbound mail
    mail_from: str = Field(default="no-reply@kyonggi.ac.kr", alias="MAIL_FROM")
    smtp_host: str | None = Field(default=None, alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_user: str | None = Field(default=None, alias="SMTP_USER")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_security: SmtpSecurity = Field(default="starttls", alias="SMTP_SECURITY")
    smtp_timeout_seconds: float = Field(default=10.0, alias="SMTP_TIMEOUT_SECONDS")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("allowed_email_domain")
    @classmethod
    def _normalize_domain(cls, value: str) -> str:
        domain = value.strip().lower().lstrip("@")
        if not domain or "." not in domain:
            raise ValueError("ALLOWED_EMAIL_DOMAIN must be a full domain name")
        return domain

    @field_validator("refresh_cookie_path")
    @classmethod
    def _check_cookie_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("REFRESH_COOKIE_PATH must start with '/'")
        return value

    @model_validator(mode="after")
    def _check_cookie_policy(self) -> "Settings":
        # Browsers drop SameSite=None cookies that are not Secure.
        if self.refresh_cookie_samesite == "none" and not self.refresh_cookie_secure:
            raise ValueError("REFRESH_COOKIE_SAMESITE=none requires REFRESH_COOKIE_SECURE=true")
        return self

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides.

        Returns:
            The active database URL (test database if in testing mode, otherwise production)
        """
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling such as Alembic."""
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url


settings = Settings()  # type: ignore[call-arg]
