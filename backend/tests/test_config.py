"""Tests for configuration validation.

Tests the Settings validation to ensure invalid configurations
are rejected at startup.
"""

import pytest
from pydantic import ValidationError

from otpgate.core.config import Settings


def make_settings(**overrides) -> Settings:
    values = {
        "jwt_access_secret": "a" * 40,
        "jwt_refresh_secret": "r" * 40,
        "email_api_key": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestSecretValidation:
    """Tests for JWT secret validation."""

    def test_valid_secrets_accepted(self):
        settings = make_settings()
        assert settings.effective_access_secret == "a" * 40
        assert settings.effective_refresh_secret == "r" * 40

    def test_short_secret_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            make_settings(jwt_access_secret="too-short")
        assert "32" in str(exc_info.value)

    def test_identical_secrets_rejected(self):
        with pytest.raises(ValidationError, match="must differ"):
            make_settings(jwt_access_secret="s" * 40, jwt_refresh_secret="s" * 40)

    def test_missing_secrets_fall_back_to_process_secrets(self):
        settings = make_settings(jwt_access_secret="", jwt_refresh_secret="")

        assert len(settings.effective_access_secret) >= 32
        assert settings.effective_access_secret != settings.effective_refresh_secret
        # Stable for the lifetime of the process
        assert settings.effective_access_secret == make_settings(
            jwt_access_secret="", jwt_refresh_secret=""
        ).effective_access_secret


class TestSecurityWarnings:
    def test_missing_secrets_and_email_key_warned(self):
        settings = make_settings(jwt_access_secret="", jwt_refresh_secret="")

        warnings = settings.check_security_configuration()

        assert any("JWT_ACCESS_SECRET" in w for w in warnings)
        assert any("JWT_REFRESH_SECRET" in w for w in warnings)
        assert any("EMAIL_API_KEY" in w for w in warnings)

    def test_production_configuration_has_no_warnings(self):
        settings = make_settings(email_api_key="key", debug=False)
        assert settings.check_security_configuration() == []

    def test_debug_warned(self):
        settings = make_settings(email_api_key="key", debug=True)
        assert any("Debug" in w for w in settings.check_security_configuration())


class TestMiscSettings:
    def test_log_level_normalised(self):
        assert make_settings(log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level_rejected(self):
        with pytest.raises(ValidationError):
            make_settings(log_level="chatty")

    def test_cors_origins_list(self):
        settings = make_settings(cors_origins="http://a.test, http://b.test ,")
        assert settings.cors_origins_list == ["http://a.test", "http://b.test"]

    def test_is_sqlite(self):
        assert make_settings(database_url="sqlite+aiosqlite:///x.db").is_sqlite is True
        assert make_settings(database_url="postgresql+asyncpg://u:p@h/db").is_sqlite is False

    def test_bounds_enforced(self):
        with pytest.raises(ValidationError):
            make_settings(otp_length=3)
        with pytest.raises(ValidationError):
            make_settings(blacklist_cache_max_entries=0)

    def test_defaults(self):
        settings = make_settings()
        assert settings.otp_ttl_minutes == 10
        assert settings.jwt_access_token_expire_days == 30
        assert settings.jwt_refresh_token_expire_days == 90
        assert settings.lockout_threshold == 5
        assert settings.lockout_minutes == 30
        assert settings.refresh_rotation_single_use is True
