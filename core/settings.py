"""
Environment-driven configuration for the ShopCheck suite.

Values come from the process environment, optionally seeded from a ``.env``
file via python-dotenv. Invalid values fail fast with ``ConfigurationError``.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

from core.constants import SITE_CONFIGS, SiteConfig
from exceptions import ConfigurationError, create_error_context


DEFAULT_POOL_PATH = "data/created_users.csv"

_TRUE_VALUES = ("true", "1", "t", "yes", "y")
_FALSE_VALUES = ("false", "0", "f", "no", "n")


def _env_bool(env: Dict[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(
        message=f"Invalid boolean for {key}: '{raw}'",
        config_key=key,
        expected_format="true/false",
        error_context=create_error_context(component="Settings", operation="parse_bool")
    )


def _env_number(env: Dict[str, str], key: str, default, cast=float, minimum=0):
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw.strip())
    except ValueError as e:
        raise ConfigurationError(
            message=f"Invalid number for {key}: '{raw}'",
            config_key=key,
            expected_format=f"{cast.__name__} >= {minimum}",
            error_context=create_error_context(component="Settings", operation="parse_number"),
            cause=e
        ) from e
    if value < minimum:
        raise ConfigurationError(
            message=f"{key} must be >= {minimum}, got {value}",
            config_key=key,
            expected_format=f"{cast.__name__} >= {minimum}",
            error_context=create_error_context(component="Settings", operation="parse_number")
        )
    return value


@dataclass(frozen=True)
class Settings:
    # Credential pool
    credential_pool_path: str = DEFAULT_POOL_PATH
    credential_lock_timeout: float = 10.0
    credential_lock_stale_after: float = 120.0
    credential_strict_parsing: bool = False

    # Sites under test
    automation_exercise_url: str = "https://automationexercise.com"
    automation_exercise_api_url: str = "https://automationexercise.com/api"
    test_region: str = "Lebanon"
    luma_url: str = "https://demo.hyva.io/"
    api_timeout: float = 30.0

    # Browser agent
    headless: bool = True
    llm_provider: str = "gemini"
    agent_max_attempts: int = 2

    site_configs: Dict[str, SiteConfig] = field(default_factory=lambda: dict(SITE_CONFIGS))

    @property
    def site_config(self) -> SiteConfig:
        """Ubuy storefront settings for ``test_region``."""
        return self.site_configs[self.test_region]

    @classmethod
    def from_env(cls, env: Optional[Dict[str, str]] = None) -> "Settings":
        """Build settings from ``env`` (defaults to ``os.environ``)."""
        env = dict(os.environ if env is None else env)

        region = env.get("TEST_REGION", "").strip() or "Lebanon"
        if region not in SITE_CONFIGS:
            raise ConfigurationError(
                message=f"Unknown TEST_REGION: '{region}'",
                config_key="TEST_REGION",
                expected_format=f"One of: {', '.join(SITE_CONFIGS)}",
                error_context=create_error_context(component="Settings", operation="parse_region")
            )

        return cls(
            credential_pool_path=env.get("CREDENTIAL_POOL_PATH", "").strip() or DEFAULT_POOL_PATH,
            credential_lock_timeout=_env_number(env, "CREDENTIAL_LOCK_TIMEOUT", 10.0),
            credential_lock_stale_after=_env_number(env, "CREDENTIAL_LOCK_STALE_AFTER", 120.0),
            credential_strict_parsing=_env_bool(env, "CREDENTIAL_STRICT_PARSING", False),
            automation_exercise_url=(env.get("AUTOMATION_EXERCISE_URL", "").strip()
                                     or "https://automationexercise.com").rstrip("/"),
            automation_exercise_api_url=(env.get("AUTOMATION_EXERCISE_API_URL", "").strip()
                                         or "https://automationexercise.com/api").rstrip("/"),
            test_region=region,
            luma_url=env.get("LUMA_URL", "").strip() or "https://demo.hyva.io/",
            api_timeout=_env_number(env, "API_TIMEOUT", 30.0),
            headless=_env_bool(env, "HEADLESS", True),
            llm_provider=env.get("LLM_PROVIDER", "").strip().lower() or "gemini",
            agent_max_attempts=_env_number(env, "AGENT_MAX_ATTEMPTS", 2, cast=int, minimum=1),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, loaded from ``.env`` and the environment on first use."""
    global _settings
    if _settings is None:
        load_dotenv()
        _settings = Settings.from_env()
    return _settings


def reset_settings():
    global _settings
    _settings = None
