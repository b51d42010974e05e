"""Settings for the passwordless sign-in service.

Values come from environment variables (case-insensitive) or a `.env`
file. Insecure combinations are refused at startup.
"""

from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Local docker-compose password; refused in production
_INSECURE_DEFAULT_PASSWORD = "passwordless_dev_password"  # nosec B105

# 256-bit HMAC key
_MIN_AUTH_SECRET_LENGTH = 32

_POSITIVE_MAGIC_LINK_FIELDS = (
    "magic_link_max_requests_per_window",
    "magic_link_rate_limit_window_minutes",
    "magic_link_token_lifespan_minutes",
)


class Settings(BaseSettings):
    """Environment-driven configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "passwordless"
    database_user: str = "passwordless_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # Credentialed CORS, so never "*"
    allowed_origins: list[str] = ["http://localhost:3000"]

    app_name: str = "Passwordless"
    environment: str = "development"
    log_level: str = "INFO"

    # Origin of the links placed in emails
    public_base_url: str = "http://localhost:8000"

    # Session and two-factor cookies
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "passwordless"
    auth_cookie_name: str = "passwordless.session-token"
    auth_cookie_secure: bool = True
    auth_cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    auth_cookie_domain: str = ""
    two_factor_cookie_name: str = "passwordless.two-factor-user-id"
    two_factor_cookie_minutes: int = 5
    two_factor_path: str = "/account/login-with-2fa"

    # Magic links
    magic_link_token_purpose: str = "MagicLinkLogin"
    magic_link_token_lifespan_minutes: int = 15
    magic_link_verify_path: str = "/api/v1/auth/login-with-magic-link"
    magic_link_max_requests_per_window: int = 3
    magic_link_rate_limit_window_minutes: int = 15
    # Blank keeps counts in process. Any `limits` storage URI
    # (e.g. "redis://localhost:6379/0") shares them between instances.
    magic_link_rate_limit_storage_url: str = ""

    # Resend
    email_from: str = "noreply@passwordless.local"
    email_from_name: str = "Passwordless"
    resend_api_key: SecretStr = SecretStr("")

    # slowapi limits, "count/period"
    rate_limit_magic_link_request: str = "20/hour"
    rate_limit_magic_link_verify: str = "30/minute"
    rate_limit_enabled: bool = True

    @property
    def database_url(self) -> str:
        """asyncpg URL used by the app and by Alembic."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    def _check_cookie_and_cors(self) -> None:
        if self.auth_cookie_samesite == "none" and not self.auth_cookie_secure:
            msg = (
                "AUTH_COOKIE_SECURE must be true when AUTH_COOKIE_SAMESITE=none; "
                "browsers drop SameSite=None cookies that are not Secure."
            )
            raise ValueError(msg)
        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS cannot contain the '*' wildcard because "
                "session cookies are sent with credentialed requests."
            )
            raise ValueError(msg)

    def _check_magic_link_limits(self) -> None:
        for field in _POSITIVE_MAGIC_LINK_FIELDS:
            value = getattr(self, field)
            if value < 1:
                msg = f"{field.upper()} must be at least 1, got {value}"
                raise ValueError(msg)

    def _check_production_secrets(self) -> None:
        if self.database_password == _INSECURE_DEFAULT_PASSWORD:
            msg = (
                "Cannot use default database password in production; "
                "set DATABASE_PASSWORD."
            )
            raise ValueError(msg)

        secret = self.auth_secret.get_secret_value()
        if not secret:
            msg = "AUTH_SECRET must be set in production"
            raise ValueError(msg)
        if len(secret) < _MIN_AUTH_SECRET_LENGTH:
            msg = f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} characters"
            raise ValueError(msg)

        if not self.resend_api_key.get_secret_value():
            msg = "RESEND_API_KEY must be set in production to deliver sign-in links"
            raise ValueError(msg)

    @model_validator(mode="after")
    def check_security(self) -> "Settings":
        """Refuse configurations that would be unsafe to run.

        Cookie, CORS, and magic link limits are checked everywhere. Secrets
        are checked only when ENVIRONMENT=production.
        """
        self._check_cookie_and_cors()
        self._check_magic_link_limits()
        if self.environment == "production":
            self._check_production_secrets()
        return self


settings = Settings()
