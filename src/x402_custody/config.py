"""Settings for the wallet backend, the facilitator and polling.

Values come from explicit arguments or from ``X402_CUSTODY_*`` environment
variables, optionally loaded from a ``.env`` file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .chains import Environment
from .errors import ConfigurationError
from .facilitator import DEFAULT_FACILITATOR_URL, FacilitatorConfig
from .wallets.approvals import PollingConfig
from .wallets.client import WalletApiConfig

ENV_PREFIX = "X402_CUSTODY_"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_number(name: str, default: float, cast: type = float):
    value = _env(name)
    if value is None:
        return default
    try:
        return cast(value)
    except ValueError as e:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be a number, got {value!r}") from e


@dataclass
class Settings:
    api_key: str
    environment: Environment = Environment.STAGING
    base_url: Optional[str] = None
    facilitator_url: str = DEFAULT_FACILITATOR_URL
    polling: PollingConfig = field(default_factory=PollingConfig)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> Settings:
        """Build settings from the environment.

        Reads ``X402_CUSTODY_API_KEY`` (required), ``_ENVIRONMENT``,
        ``_BASE_URL``, ``_FACILITATOR_URL``, ``_POLL_INTERVAL`` and
        ``_POLL_MAX_ATTEMPTS``.

        Raises:
            ConfigurationError: If the API key is missing or a value is
                malformed.
        """
        load_dotenv(dotenv_path)

        api_key = _env("API_KEY")
        if not api_key:
            raise ConfigurationError(f"{ENV_PREFIX}API_KEY is not set")
        try:
            environment = Environment.parse(_env("ENVIRONMENT", Environment.STAGING.value))
        except ValueError as e:
            raise ConfigurationError(f"Invalid {ENV_PREFIX}ENVIRONMENT: {e}") from e

        defaults = PollingConfig()
        polling = PollingConfig(
            interval=_env_number("POLL_INTERVAL", defaults.interval),
            max_attempts=_env_number("POLL_MAX_ATTEMPTS", defaults.max_attempts, int),
        )
        return cls(
            api_key=api_key,
            environment=environment,
            base_url=_env("BASE_URL"),
            facilitator_url=_env("FACILITATOR_URL", DEFAULT_FACILITATOR_URL),
            polling=polling,
        )

    def wallet_api_config(self) -> WalletApiConfig:
        return WalletApiConfig(
            api_key=self.api_key, environment=self.environment, base_url=self.base_url
        )

    def facilitator_config(self) -> FacilitatorConfig:
        return FacilitatorConfig(url=self.facilitator_url)


__all__ = [
    "ENV_PREFIX",
    "Environment",
    "FacilitatorConfig",
    "PollingConfig",
    "Settings",
    "WalletApiConfig",
]
