import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

from dotenv import load_dotenv

from playbridge.domain.entities import PROVIDER_NAMES, BackoffOptions


class ConfigError(Exception):
    """Configuration error."""
    pass


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

_THRESHOLD_KEYS = {
    "fuzzy_min": "PROVIDERS_MBID_FUZZY_MIN",
    "duration_tolerance_ms": "PROVIDERS_MBID_DURATION_TOLERANCE_MS",
    "fuzzy_duration_penalty_ms": "PROVIDERS_MBID_FUZZY_DURATION_PENALTY_MS",
    "fuzzy_title_weight": "PROVIDERS_MBID_FUZZY_TITLE_WEIGHT",
    "fuzzy_artist_weight": "PROVIDERS_MBID_FUZZY_ARTIST_WEIGHT",
    "fuzzy_duration_weight": "PROVIDERS_MBID_FUZZY_DURATION_WEIGHT",
}


def load_env_file(path: Optional[Union[str, Path]] = None) -> bool:
    """Load a .env file without overriding variables already set in the process.

    Returns:
        True if a file was found and loaded
    """
    if path is not None and not Path(path).exists():
        raise ConfigError(f"Env file not found: {path}")
    return load_dotenv(dotenv_path=path, override=False)


def _read_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(f"{key} must be a boolean, got {raw!r}")


def _read_int(env: Mapping[str, str], key: str, default: int, minimum: int = 0) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}, got {value}")
    return value


def _read_float(env: Mapping[str, str], key: str) -> Optional[float]:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw.strip())
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")
    if not math.isfinite(value):
        raise ConfigError(f"{key} must be finite, got {raw!r}")
    return value


@dataclass(frozen=True)
class Settings:
    """Runtime settings read from the environment."""

    providers_enabled: Dict[str, bool] = field(default_factory=lambda: {name: True for name in PROVIDER_NAMES})
    breaker_threshold: int = 5
    breaker_cooldown_ms: int = 30_000
    http_timeout_ms: int = 15_000
    backoff_retries: int = 3
    backoff_base_ms: int = 500
    backoff_max_ms: int = 8_000
    batch_size: int = 100
    cache_enabled: bool = False
    cache_ttl_ms: int = 60_000
    cache_max_size: int = 1_000
    thresholds: Dict[str, float] = field(default_factory=dict)
    resolve_against_destination: bool = False

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        Args:
            env: Mapping to read from; defaults to os.environ

        Raises:
            ConfigError: If a value cannot be parsed
        """
        env = os.environ if env is None else env
        thresholds = {}
        for attr, key in _THRESHOLD_KEYS.items():
            value = _read_float(env, key)
            if value is not None:
                thresholds[attr] = value
        return cls(
            providers_enabled={
                name: _read_bool(env, f"PROVIDERS_{name.upper()}_ENABLED", True) for name in PROVIDER_NAMES
            },
            breaker_threshold=_read_int(env, "PROVIDER_CIRCUIT_BREAKER_THRESHOLD", 5, minimum=1),
            breaker_cooldown_ms=_read_int(env, "PROVIDER_CIRCUIT_BREAKER_COOLDOWN_MS", 30_000),
            http_timeout_ms=_read_int(env, "PROVIDER_HTTP_TIMEOUT_MS", 15_000, minimum=1),
            backoff_retries=_read_int(env, "PROVIDER_BACKOFF_RETRIES", 3),
            backoff_base_ms=_read_int(env, "PROVIDER_BACKOFF_BASE_MS", 500),
            backoff_max_ms=_read_int(env, "PROVIDER_BACKOFF_MAX_MS", 8_000),
            batch_size=_read_int(env, "PROVIDER_BATCH_SIZE", 100, minimum=1),
            cache_enabled=_read_bool(env, "PROVIDER_CACHE_ENABLED", False),
            cache_ttl_ms=_read_int(env, "PROVIDER_CACHE_TTL_MS", 60_000),
            cache_max_size=_read_int(env, "PROVIDER_CACHE_MAX_SIZE", 1_000, minimum=1),
            thresholds=thresholds,
            resolve_against_destination=_read_bool(env, "PLAYBRIDGE_RESOLVE_AGAINST_DESTINATION", False),
        )

    @property
    def backoff(self) -> BackoffOptions:
        return BackoffOptions(
            retries=self.backoff_retries,
            base_delay_ms=self.backoff_base_ms,
            max_delay_ms=self.backoff_max_ms,
        )

    def is_provider_enabled(self, name: str) -> bool:
        return bool(self.providers_enabled.get(name, False))

    def enabled_providers(self) -> List[str]:
        return [name for name in PROVIDER_NAMES if self.is_provider_enabled(name)]

    def summary(self) -> Dict[str, object]:
        """Settings snapshot safe to log."""
        return {
            "enabled_providers": self.enabled_providers(),
            "breaker_threshold": self.breaker_threshold,
            "breaker_cooldown_ms": self.breaker_cooldown_ms,
            "http_timeout_ms": self.http_timeout_ms,
            "backoff": {
                "retries": self.backoff_retries,
                "base_ms": self.backoff_base_ms,
                "max_ms": self.backoff_max_ms,
            },
            "batch_size": self.batch_size,
            "cache_enabled": self.cache_enabled,
            "resolve_against_destination": self.resolve_against_destination,
        }
