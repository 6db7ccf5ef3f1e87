"""Tests for docvec.clients.settings module."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from docvec.clients.settings import Settings


@pytest.fixture
def no_dotenv():
    """Prevent a local .env file from leaking into tests."""
    with patch("pydantic_settings.sources.DotEnvSettingsSource.__call__", return_value={}):
        yield


class TestSettings:
    """Tests for Settings class."""

    def test_settings_default_values(self, no_dotenv):
        """Test Settings default values when no environment is set."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings()

            assert settings.gemini_api_key is None
            assert settings.embedding_provider == "gemini"
            assert settings.embedding_model == "text-embedding-004"
            assert settings.embedding_dimension == 768
            assert settings.embedding_max_text_length == 8000
            assert settings.embedding_max_retries == 3
            assert settings.embedding_cache_size == 1000
            assert settings.embedding_auto_migrate is True
            assert settings.migration_batch_size == 5
            assert settings.migration_batch_delay == 1.0
            assert settings.migration_placeholder_fallback is True
            assert settings.search_cache_size == 500
            assert settings.search_cache_ttl == 300.0
            assert settings.langfuse_host == "https://cloud.langfuse.com"

    def test_settings_from_environment(self, no_dotenv):
        """Test Settings reads provider credentials and model from env vars."""
        with patch.dict(
            os.environ,
            {
                "GEMINI_API_KEY": "gm-test123",
                "EMBEDDING_MODEL": "text-embedding-005",
                "EMBEDDING_AUTO_MIGRATE": "false",
                "MIGRATION_BATCH_SIZE": "10",
                "SEARCH_CACHE_TTL": "60",
            },
            clear=True,
        ):
            settings = Settings()

            assert settings.gemini_api_key == "gm-test123"
            assert settings.embedding_model == "text-embedding-005"
            assert settings.embedding_auto_migrate is False
            assert settings.migration_batch_size == 10
            assert settings.search_cache_ttl == 60.0

    def test_settings_env_vars_are_case_insensitive(self, no_dotenv):
        """Test lower-case environment variable names are accepted."""
        with patch.dict(os.environ, {"gemini_api_key": "lower"}, clear=True):
            settings = Settings()
            assert settings.gemini_api_key == "lower"

    def test_settings_ignores_unknown_env_vars(self, no_dotenv):
        """Test unrelated environment variables do not break loading."""
        with patch.dict(os.environ, {"UNRELATED_VARIABLE": "x"}, clear=True):
            settings = Settings()
            assert not hasattr(settings, "unrelated_variable")

    def test_settings_rejects_invalid_batch_size(self, no_dotenv):
        """Test field constraints are enforced."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValidationError):
                Settings(migration_batch_size=0)
