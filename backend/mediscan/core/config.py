"""Application configuration loaded from environment variables.

Settings for database, API, authentication, notification providers and the
OTP workflow. Uses pydantic-settings for validation and .env file support.
"""

from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure defaults that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "mediscan_dev_password"  # nosec B105
_INSECURE_DEFAULT_PEPPER = "mediscan-dev-otp-pepper"  # nosec B105

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "mediscan"
    database_user: str = "mediscan_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD
    # Full SQLAlchemy URL; wins over the host/port/name fields when set
    database_url_override: str = ""
    # Create missing tables at startup (local development only)
    database_auto_create: bool = False

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000

    # CORS (Security)
    # Default allows localhost:3000 for the Next.js frontend
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Authentication (JWT session cookie)
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "mediscan"
    auth_cookie_name: str = "mediscan.session-token"
    auth_cookie_secure: bool = True
    auth_cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    auth_cookie_domain: str = ""

    # Email (Resend)
    email_from: str = "MediScan <onboarding@resend.dev>"
    resend_api_key: SecretStr = SecretStr("")

    # SMS (Twilio)
    twilio_account_sid: str = ""
    twilio_auth_token: SecretStr = SecretStr("")
    twilio_from_number: str = ""

    # One-time passcodes
    otp_login_ttl_minutes: int = 10
    otp_password_reset_ttl_minutes: int = 15
    otp_pepper: SecretStr = SecretStr(_INSECURE_DEFAULT_PEPPER)
    # Return the raw code in the response body when delivery failed.
    # Degraded-mode escape hatch for local development; refused in production.
    otp_expose_code_on_delivery_failure: bool = True

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "5/minute", "20/hour")
    rate_limit_otp: str = "5/minute"
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def is_production(self) -> bool:
        """Check if running in the production environment."""
        return self.environment.lower() == "production"

    @property
    def twilio_enabled(self) -> bool:
        """Twilio credentials and sender number are all configured."""
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token.get_secret_value()
            and self.twilio_from_number
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate production security requirements.

        Security: Prevents deployment with known insecure defaults.
        Checks:
        - OTP windows must be positive (all environments)
        - SameSite=None requires Secure flag (all environments)
        - CORS must not use wildcard origin (all environments)
        - Database password and OTP pepper must not be defaults in production
        - AUTH_SECRET must be set and >= 32 chars in production
        - Raw codes must never be echoed back in production
        """
        if self.otp_login_ttl_minutes <= 0 or self.otp_password_reset_ttl_minutes <= 0:
            msg = (
                "OTP_LOGIN_TTL_MINUTES and OTP_PASSWORD_RESET_TTL_MINUTES "
                "must be positive."
            )
            raise ValueError(msg)

        if self.auth_cookie_samesite == "none" and not self.auth_cookie_secure:
            msg = (
                "AUTH_COOKIE_SECURE must be true when AUTH_COOKIE_SAMESITE=none. "
                "Browsers reject SameSite=None cookies without the Secure flag."
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "Session cookies are incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if self.is_production:
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            if self.otp_pepper.get_secret_value() == _INSECURE_DEFAULT_PEPPER:
                msg = "Set OTP_PEPPER to a long random value in production."
                raise ValueError(msg)

            secret_value = self.auth_secret.get_secret_value()
            if len(secret_value) < _MIN_AUTH_SECRET_LENGTH:
                msg = (
                    f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                    'characters in production. Generate with: python -c "import '
                    'secrets; print(secrets.token_hex(32))"'
                )
                raise ValueError(msg)

            if self.otp_expose_code_on_delivery_failure:
                msg = (
                    "OTP_EXPOSE_CODE_ON_DELIVERY_FAILURE must be false in "
                    "production."
                )
                raise ValueError(msg)

        return self


settings = Settings()
