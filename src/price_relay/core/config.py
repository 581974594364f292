"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from price_relay.core.exceptions import ConfigError
from price_relay.core.models import DEFAULT_SPARKLINE_POINTS, PricePeriod, ProviderName

# Requests per second each upstream tolerates on its standard plan
_DEFAULT_RATE_LIMITS: dict[str, int] = {
    ProviderName.ALPHA.value: 5,
    ProviderName.FINNHUB.value: 30,
    ProviderName.YAHOO.value: 10,
}


class ProviderSettings(BaseModel):
    """Connection and budget settings for one upstream provider."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    api_key: str | None = None
    base_url: str | None = None
    rate_limit: int = 5
    rate_window: float = 1.0
    timeout: float = 10.0
    retry_count: int = 2

    @field_validator("api_key", mode="before")
    @classmethod
    def api_key_as_string(cls, v: object) -> object:
        # Env auto-casting turns all-digit keys into ints.
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("rate_limit")
    @classmethod
    def rate_limit_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("rate_limit must be >= 1 request per window")
        return v

    @field_validator("rate_window", "timeout")
    @classmethod
    def seconds_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be > 0 seconds")
        return v

    @field_validator("retry_count")
    @classmethod
    def retry_count_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("retry_count must be >= 0")
        return v


class ProvidersConfig(BaseModel):
    """Per-provider settings, keyed by provider id."""

    model_config = ConfigDict(frozen=True)

    alpha: ProviderSettings = ProviderSettings(rate_limit=_DEFAULT_RATE_LIMITS["alpha"])
    finnhub: ProviderSettings = ProviderSettings(rate_limit=_DEFAULT_RATE_LIMITS["finnhub"])
    yahoo: ProviderSettings = ProviderSettings(rate_limit=_DEFAULT_RATE_LIMITS["yahoo"])

    @model_validator(mode="before")
    @classmethod
    def apply_default_rate_limits(cls, data: object) -> object:
        """Partial provider sections keep that provider's own default budget."""
        if not isinstance(data, dict):
            return data
        result = dict(data)
        for name, limit in _DEFAULT_RATE_LIMITS.items():
            section = result.get(name)
            if isinstance(section, dict) and "rate_limit" not in section:
                result[name] = {**section, "rate_limit": limit}
        return result

    def get(self, provider_id: str) -> ProviderSettings:
        return getattr(self, ProviderName(provider_id).value)


class FeedConfig(BaseModel):
    """Failover, cache and health policy for the price adapter."""

    model_config = ConfigDict(frozen=True)

    primary_provider: str = ProviderName.ALPHA.value
    fallback_providers: list[str] = [ProviderName.FINNHUB.value, ProviderName.YAHOO.value]
    cache_enabled: bool = True
    cache_ttl: int = 300
    cache_max_entries: int = 1000
    unhealthy_threshold: int = 3
    decay_interval: float = 60.0
    sparkline_points: int = DEFAULT_SPARKLINE_POINTS
    search_limit: int = 20
    default_period: PricePeriod = PricePeriod.MONTH
    request_deadline: float | None = None

    @field_validator("fallback_providers", mode="before")
    @classmethod
    def split_comma_list(cls, v: object) -> object:
        """Accept "finnhub,yahoo" from env vars as well as YAML lists."""
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    @field_validator("cache_ttl", "cache_max_entries", "unhealthy_threshold",
                     "sparkline_points", "search_limit")
    @classmethod
    def positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("decay_interval")
    @classmethod
    def decay_interval_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("decay_interval must be > 0 seconds")
        return v

    @field_validator("request_deadline")
    @classmethod
    def deadline_positive(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("request_deadline must be > 0 seconds when set")
        return v

    @model_validator(mode="after")
    def primary_not_in_fallbacks(self) -> FeedConfig:
        if self.primary_provider in self.fallback_providers:
            raise ValueError(
                f"primary_provider {self.primary_provider!r} must not also be a fallback"
            )
        if len(set(self.fallback_providers)) != len(self.fallback_providers):
            raise ValueError("fallback_providers must not contain duplicates")
        return self

    @property
    def provider_order(self) -> list[str]:
        """Configured try-order before health is taken into account."""
        return [self.primary_provider, *self.fallback_providers]


class APIConfig(BaseModel):
    """FastAPI server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 8000
    api_key: str | None = None


class RelayConfig(BaseModel):
    """Root configuration for the entire price-relay system."""

    model_config = ConfigDict(frozen=True)

    providers: ProvidersConfig = ProvidersConfig()
    feed: FeedConfig = FeedConfig()
    api: APIConfig = APIConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "PRICE_RELAY_",
) -> RelayConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (PRICE_RELAY_FEED__PRIMARY_PROVIDER, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        PRICE_RELAY_PROVIDERS__FINNHUB__API_KEY=abc  ->  providers.finnhub.api_key
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return RelayConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("PRICE_RELAY_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from PRICE_RELAY_CONFIG not found: {env_path}",
                context={"field": "PRICE_RELAY_CONFIG", "value": env_path},
            )
        return p

    default = Path("price-relay.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int/float.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = [p.lower() for p in key[len(prefix):].split("__")]

        # The config-path variable is not a setting
        if parts == ["config"]:
            continue

        target = result
        for part in parts[:-1]:
            existing = target.get(part)
            if not isinstance(existing, dict):
                existing = dict(existing or {})
                target[part] = existing
            target = existing
        target[parts[-1]] = _auto_cast(value)

    return result


def _auto_cast(value: str) -> str | int | float | bool:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value
