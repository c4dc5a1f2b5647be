"""
Tests for configuration.
"""
import pytest
from pydantic import ValidationError
from cryptography.fernet import Fernet

from postmeeting.config import Settings
from postmeeting.exceptions import ConfigurationError


@pytest.fixture
def encryption_key():
    return Fernet.generate_key().decode()


@pytest.mark.unit
class TestConfiguration:
    """Test configuration management."""

    def test_default_values(self, encryption_key, monkeypatch):
        """Loop and retry defaults."""
        monkeypatch.delenv("RETRY_MULTIPLIER", raising=False)
        monkeypatch.delenv("SCHEDULE_WAIT_SECONDS", raising=False)
        settings = Settings(encryption_key=encryption_key)

        assert settings.tick_seconds == 30
        assert settings.initial_delay_seconds == 3
        assert settings.calendar_past_days == 14
        assert settings.recall_region == "us-east-1"
        assert settings.facebook_graph_version == "v18.0"
        assert settings.openai_model == "gpt-4o-mini"
        assert settings.max_retries == 3
        assert settings.retry_multiplier == 1.0

    def test_invalid_encryption_key_fails(self):
        """Test that a malformed encryption key is rejected."""
        with pytest.raises(ValidationError):
            Settings(encryption_key="invalid-key")

    def test_non_asyncpg_postgres_url_fails(self, encryption_key):
        """Test that a Postgres URL without asyncpg is rejected."""
        with pytest.raises(ValidationError):
            Settings(encryption_key=encryption_key, database_url="postgresql+psycopg2://u:p@localhost/db")

    def test_cors_origins_list(self, encryption_key):
        """Test that CORS origins are split from a comma-separated value."""
        settings = Settings(encryption_key=encryption_key, cors_origins="http://a.test, http://b.test,")
        assert settings.cors_origins_list == ["http://a.test", "http://b.test"]

    def test_provider_flags(self, encryption_key):
        """Test that provider flags follow configured credentials."""
        settings = Settings(
            encryption_key=encryption_key,
            google_client_id="id",
            google_client_secret="secret",
            linkedin_client_id="li",
            openai_api_key="",
        )
        assert settings.is_google_configured
        assert not settings.is_linkedin_configured
        assert not settings.is_openai_configured

    def test_cipher_round_trips(self, encryption_key):
        """Test that the configured cipher decrypts what it encrypts."""
        settings = Settings(encryption_key=encryption_key)
        assert settings.cipher.decrypt(settings.cipher.encrypt(b"x")) == b"x"


@pytest.mark.unit
class TestRecallKeys:
    """Per-region Recall.ai API keys."""

    def test_region_key_wins_over_fallback(self, encryption_key, monkeypatch):
        """Test that a region-specific key is preferred."""
        monkeypatch.setenv("RECALL_API_KEY_US_WEST_2", "west-key")
        settings = Settings(encryption_key=encryption_key, recall_api_key="fallback")
        assert settings.recall_api_key_for("us-west-2") == "west-key"
        assert settings.recall_api_key_for("eu-central-1") == "fallback"

    def test_missing_key_raises(self, encryption_key, monkeypatch):
        """Test that a missing Recall key raises a configuration error."""
        monkeypatch.delenv("RECALL_API_KEY", raising=False)
        monkeypatch.delenv("RECALL_API_KEY_EU_CENTRAL_1", raising=False)
        settings = Settings(encryption_key=encryption_key, recall_api_key=None)
        with pytest.raises(ConfigurationError):
            settings.recall_api_key_for("eu-central-1")

    def test_api_base_per_region(self, encryption_key):
        """Test that each region gets its own API base URL."""
        settings = Settings(encryption_key=encryption_key)
        assert settings.recall_api_base_for("us-west-2") == "https://us-west-2.recall.ai/api/v1"
        assert settings.recall_api_base_for() == "https://us-east-1.recall.ai/api/v1"
