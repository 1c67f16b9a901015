"""Unit tests for x402_custody.config."""

import pytest

from x402_custody.chains import Environment
from x402_custody.config import ENV_PREFIX, Settings
from x402_custody.errors import ConfigurationError
from x402_custody.facilitator import DEFAULT_FACILITATOR_URL
from x402_custody.wallets.client import PRODUCTION_BASE_URL

VARIABLES = ["API_KEY", "ENVIRONMENT", "BASE_URL", "FACILITATOR_URL", "POLL_INTERVAL", "POLL_MAX_ATTEMPTS"]


@pytest.fixture
def env(monkeypatch, tmp_path):
    """Clean X402_CUSTODY_* environment and a path to a .env file."""
    for name in VARIABLES:
        # recorded first so values loaded from a .env file are undone too
        monkeypatch.setenv(ENV_PREFIX + name, "")
        monkeypatch.delenv(ENV_PREFIX + name)

    def set_env(**values):
        for name, value in values.items():
            monkeypatch.setenv(ENV_PREFIX + name, value)

    set_env.dotenv_path = str(tmp_path / ".env")
    return set_env


class TestSettingsFromEnv:
    """Tests for Settings.from_env."""

    def test_defaults(self, env):
        env(API_KEY="sk_staging_123")
        settings = Settings.from_env(env.dotenv_path)

        assert settings.api_key == "sk_staging_123"
        assert settings.environment is Environment.STAGING
        assert settings.facilitator_url == DEFAULT_FACILITATOR_URL
        assert settings.polling.interval == 5.0
        assert settings.polling.max_attempts == 60

    def test_overrides(self, env):
        env(
            API_KEY="sk_production_123",
            ENVIRONMENT="prod",
            FACILITATOR_URL="https://facilitator.example.com",
            POLL_INTERVAL="0.5",
            POLL_MAX_ATTEMPTS="3",
        )
        settings = Settings.from_env(env.dotenv_path)

        assert settings.environment is Environment.PRODUCTION
        assert settings.polling.interval == 0.5
        assert settings.polling.max_attempts == 3
        assert settings.wallet_api_config().resolved_base_url() == PRODUCTION_BASE_URL
        assert settings.facilitator_config().url == "https://facilitator.example.com"

    def test_reads_dotenv_file(self, env, tmp_path):
        dotenv = tmp_path / ".env"
        dotenv.write_text(f"{ENV_PREFIX}API_KEY=sk_from_file\n")
        assert Settings.from_env(str(dotenv)).api_key == "sk_from_file"

    def test_missing_api_key(self, env):
        with pytest.raises(ConfigurationError, match="API_KEY"):
            Settings.from_env(env.dotenv_path)

    def test_invalid_environment(self, env):
        env(API_KEY="k", ENVIRONMENT="moon")
        with pytest.raises(ConfigurationError, match="ENVIRONMENT"):
            Settings.from_env(env.dotenv_path)

    def test_invalid_number(self, env):
        env(API_KEY="k", POLL_MAX_ATTEMPTS="many")
        with pytest.raises(ConfigurationError, match="must be a number"):
            Settings.from_env(env.dotenv_path)
