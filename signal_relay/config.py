"""
Centralized configuration loader for Signal Relay.

Loads settings from a YAML file and environment variables, providing
sensible defaults when the configuration file is absent.

Provides:
    - Settings: Global application settings loaded from YAML + env vars
    - get_settings(): Cached singleton accessor for Settings
    - reset_settings(): Drop the cached instance (tests, reloads)
    - validate_env(): Startup validation of required environment variables
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

from signal_relay.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Load .env file (no-op if file does not exist)
# ---------------------------------------------------------------------------
load_dotenv()

# ---------------------------------------------------------------------------
# Project root directory (parent of signal_relay/)
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)


# ===========================================================================
# GLOBAL SETTINGS
# ===========================================================================


@dataclass
class Settings:
    """
    Global application settings.

    Loaded from ``config/settings.yaml`` when available, falling back to
    the defaults below.  Environment variables (``RELAY_<FIELD_NAME>``)
    override YAML values.
    """

    # Driver cadence
    tick_interval_seconds: int = 60

    # Lifecycle monitor
    signal_scan_limit: int = 20
    entry_tolerance: float = 0.005  # 0.5% slippage on pending entries

    # Tier delays (minutes)
    silver_delay_minutes: int = 15
    public_delay_min_minutes: int = 30
    public_delay_max_minutes: int = 60

    # Social channel
    rate_limit_service: str = "twitter"
    tweet_max_length: int = 280
    min_seconds_between_tweets: int = 120
    pre_send_jitter_seconds: Tuple[float, float] = (5.0, 30.0)
    post_retries: int = 2
    post_retry_delay: float = 2.0

    # LLM
    llm_model: str = "claude-sonnet-4-5"

    # Logging
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate cross-field constraints (fail fast on bad config)."""
        if self.tick_interval_seconds <= 0:
            raise ConfigurationError("tick_interval_seconds must be positive")
        if self.signal_scan_limit <= 0:
            raise ConfigurationError("signal_scan_limit must be positive")
        if not 0 <= self.entry_tolerance < 1:
            raise ConfigurationError("entry_tolerance must be in [0, 1)")
        if self.public_delay_min_minutes > self.public_delay_max_minutes:
            raise ConfigurationError(
                "public_delay_min_minutes must not exceed public_delay_max_minutes"
            )
        low, high = self.pre_send_jitter_seconds
        if low < 0 or low > high:
            raise ConfigurationError(
                f"Invalid pre_send_jitter_seconds range: {self.pre_send_jitter_seconds}"
            )
        if self.tweet_max_length <= 0:
            raise ConfigurationError("tweet_max_length must be positive")

    @classmethod
    def from_yaml(cls, path: Optional[Path] = None) -> "Settings":
        """
        Load settings from a YAML file.

        If the file does not exist, returns an instance with all defaults.
        Environment variables override YAML values for any known field.

        Args:
            path: Path to the YAML file. Defaults to
                ``<PROJECT_ROOT>/config/settings.yaml``.

        Returns:
            Populated Settings instance.

        Raises:
            ConfigurationError: If the YAML file exists but cannot be parsed,
                or a value has the wrong type.
        """
        path = path or PROJECT_ROOT / "config" / "settings.yaml"

        data: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    f"Failed to parse settings YAML at {path}: {exc}"
                ) from exc

        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name in data:
                kwargs[f.name] = data[f.name]

            env_key = f"RELAY_{f.name.upper()}"
            env_val = os.environ.get(env_key)
            if env_val is not None:
                kwargs[f.name] = env_val

            if f.name in kwargs:
                kwargs[f.name] = _coerce(f.name, kwargs[f.name], f.default)

        return cls(**kwargs)


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Cast a YAML / env value to the type of the field's default."""
    try:
        if isinstance(default, tuple):
            if isinstance(value, str):
                value = [part.strip() for part in value.split(",")]
            low, high = value
            return (float(low), float(high))
        if isinstance(default, bool):
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
        return str(value)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError(
            f"Invalid value for setting '{name}': {value!r} ({exc})"
        ) from exc


# ===========================================================================
# SINGLETON SETTINGS ACCESSOR
# ===========================================================================

_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global Settings singleton.

    On first call, loads from ``config/settings.yaml`` (or defaults).
    Subsequent calls return the cached instance.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings.from_yaml()
    return _settings_instance


def reset_settings() -> None:
    """Reset the cached Settings singleton."""
    global _settings_instance
    _settings_instance = None


# ===========================================================================
# ENVIRONMENT VARIABLE VALIDATION
# ===========================================================================

# Required environment variables for the system to function
REQUIRED_ENV_VARS: List[str] = [
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
    "ANTHROPIC_API_KEY",
]

# Optional: each one enables a channel or collaborator
OPTIONAL_ENV_VARS: List[str] = [
    "TWITTER_ACCESS_TOKEN",
    "TELEGRAM_BOT_TOKEN",
    "COINGECKO_API_KEY",
]


def validate_env(strict: bool = True) -> Dict[str, bool]:
    """
    Validate that required environment variables are set.

    Args:
        strict: If ``True``, raise ``ConfigurationError`` when any required
            variable is missing. If ``False``, return the status dict
            without raising.

    Returns:
        Dict mapping variable name to presence status (``True`` if set).

    Raises:
        ConfigurationError: If ``strict=True`` and required vars are missing.
    """
    status: Dict[str, bool] = {}
    missing: List[str] = []

    for var in REQUIRED_ENV_VARS:
        present = bool(os.environ.get(var))
        status[var] = present
        if not present:
            missing.append(var)

    for var in OPTIONAL_ENV_VARS:
        status[var] = bool(os.environ.get(var))

    if strict and missing:
        raise ConfigurationError(
            f"Missing required environment variables: {missing}. "
            f"Copy .env.example to .env and fill in the values."
        )

    return status
