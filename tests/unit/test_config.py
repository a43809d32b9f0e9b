"""
Tests for settings loading and validation.

Run tests:
    pytest tests/unit/test_config.py -v
"""

import base64

import pytest

from switchboard.core.config import REQUIRED_VARIABLES, ConfigurationError, load_settings

TEST_COOKIE_SECRET = base64.b64encode(b"k" * 32).decode()


@pytest.fixture
def clean_env(monkeypatch):
    for name in REQUIRED_VARIABLES:
        monkeypatch.delenv(name, raising=False)


class TestLoadSettings:
    """Fail-fast configuration."""

    def test_missing_variables_are_all_named(self, clean_env):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(_env_file=None)

        assert exc_info.value.missing == list(REQUIRED_VARIABLES)
        assert "Missing required environment variable: GOOGLE_CLIENT_ID" in str(exc_info.value)

    def test_blank_value_counts_as_missing(self, clean_env):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(
                GOOGLE_CLIENT_ID="   ",
                GOOGLE_CLIENT_SECRET="secret",
                APP_BASE_URL="http://localhost:8000",
                COOKIE_SECRET=TEST_COOKIE_SECRET,
                _env_file=None,
            )

        assert exc_info.value.missing == ["GOOGLE_CLIENT_ID"]

    def test_reads_environment(self, clean_env, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "env-client")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "env-secret")
        monkeypatch.setenv("APP_BASE_URL", "https://mail.example.com/")
        monkeypatch.setenv("COOKIE_SECRET", TEST_COOKIE_SECRET)

        settings = load_settings(_env_file=None)

        assert settings.GOOGLE_CLIENT_ID == "env-client"
        assert settings.APP_BASE_URL == "https://mail.example.com"


class TestDerivedSettings:
    """Properties computed from APP_BASE_URL and ENVIRONMENT."""

    def test_redirect_uri(self, settings):
        assert settings.redirect_uri == "http://localhost:8000/auth/callback"

    def test_cookie_secure_follows_scheme(self, settings):
        assert settings.cookie_secure is False

        secure = settings.model_copy(update={"APP_BASE_URL": "https://mail.example.com"})
        assert secure.cookie_secure is True

    def test_defaults(self, settings):
        assert settings.ENVIRONMENT == "development"
        assert settings.is_production is False
        assert settings.HTTP_TIMEOUT_SECONDS == 10.0
        assert settings.CACHE_DATABASE_URL.startswith("sqlite+aiosqlite://")
