"""Tests for application configuration.

Settings for database, authentication, notification providers and the OTP
workflow. Tests cover defaults, env var loading, and security validation.
"""

import pytest
from pydantic import SecretStr, ValidationError

from mediscan.core.config import (
    _INSECURE_DEFAULT_PASSWORD,
    _INSECURE_DEFAULT_PEPPER,
    Settings,
)

# Reusable test constants
_SECURE_DB_PASSWORD = "my-secure-production-password-123!"
_TEST_AUTH_SECRET = "a" * 64
_PRODUCTION = "production"


def _production(**overrides) -> Settings:
    """Build production settings that pass validation unless overridden."""
    values = {
        "environment": _PRODUCTION,
        "database_password": _SECURE_DB_PASSWORD,
        "auth_secret": SecretStr(_TEST_AUTH_SECRET),
        "otp_pepper": SecretStr("p" * 48),
        "otp_expose_code_on_delivery_failure": False,
    }
    values.update(overrides)
    return Settings(**values)


class TestDefaults:
    """Development defaults."""

    def test_otp_windows(self):
        s = Settings()
        assert s.otp_login_ttl_minutes == 10
        assert s.otp_password_reset_ttl_minutes == 15

    def test_resend_api_key_defaults_to_empty(self):
        s = Settings()
        assert s.resend_api_key.get_secret_value() == ""

    def test_twilio_disabled_without_credentials(self):
        s = Settings(twilio_account_sid="", twilio_from_number="")
        assert s.twilio_enabled is False

    def test_twilio_enabled_when_fully_configured(self):
        s = Settings(
            twilio_account_sid="AC123",
            twilio_auth_token=SecretStr("token"),
            twilio_from_number="+15550001111",
        )
        assert s.twilio_enabled is True


class TestDatabaseUrl:
    def test_builds_asyncpg_url(self):
        s = Settings(
            database_url_override="",
            database_user="u",
            database_password="p",
            database_host="db",
            database_port=6543,
            database_name="medi",
        )
        assert s.database_url == "postgresql+asyncpg://u:p@db:6543/medi"

    def test_override_wins(self):
        s = Settings(database_url_override="sqlite+aiosqlite:///./dev.db")
        assert s.database_url == "sqlite+aiosqlite:///./dev.db"


class TestEnvLoading:
    def test_resend_api_key_loaded_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("RESEND_API_KEY", "re_test123")
        s = Settings()
        assert s.resend_api_key.get_secret_value() == "re_test123"

    def test_password_reset_window_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("OTP_PASSWORD_RESET_TTL_MINUTES", "20")
        assert Settings().otp_password_reset_ttl_minutes == 20


class TestSecurityValidation:
    """Tests for check_production_security()."""

    def test_valid_production_settings(self):
        assert _production().is_production is True

    def test_allows_default_password_in_development(self):
        s = Settings(
            environment="development",
            database_password=_INSECURE_DEFAULT_PASSWORD,
        )
        assert s.database_password == _INSECURE_DEFAULT_PASSWORD

    def test_rejects_default_password_in_production(self):
        with pytest.raises(ValidationError, match="default database password"):
            _production(database_password=_INSECURE_DEFAULT_PASSWORD)

    def test_rejects_default_pepper_in_production(self):
        with pytest.raises(ValidationError, match="OTP_PEPPER"):
            _production(otp_pepper=SecretStr(_INSECURE_DEFAULT_PEPPER))

    def test_rejects_short_auth_secret_in_production(self):
        with pytest.raises(ValidationError, match="AUTH_SECRET"):
            _production(auth_secret=SecretStr("short"))

    def test_rejects_code_exposure_in_production(self):
        with pytest.raises(ValidationError, match="EXPOSE_CODE"):
            _production(otp_expose_code_on_delivery_failure=True)

    def test_rejects_samesite_none_without_secure(self):
        with pytest.raises(ValidationError, match="AUTH_COOKIE_SECURE"):
            Settings(auth_cookie_samesite="none", auth_cookie_secure=False)

    def test_rejects_wildcard_origin(self):
        with pytest.raises(ValidationError, match="wildcard"):
            Settings(allowed_origins=["*"])

    @pytest.mark.parametrize(
        "field", ["otp_login_ttl_minutes", "otp_password_reset_ttl_minutes"]
    )
    def test_rejects_non_positive_window(self, field: str):
        with pytest.raises(ValidationError, match="must be positive"):
            Settings(**{field: 0})
