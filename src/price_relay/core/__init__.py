"""price_relay.core: foundation types, config, and exceptions."""

from price_relay.core.config import (
    APIConfig,
    FeedConfig,
    ProviderSettings,
    ProvidersConfig,
    RelayConfig,
    load_config,
)
from price_relay.core.exceptions import (
    AllProvidersFailedError,
    ConfigError,
    PriceRelayError,
    ProviderError,
    RateLimitExceededError,
    SymbolNotFoundError,
    UnknownProviderError,
)
from price_relay.core.models import (
    CacheStats,
    HealthStatus,
    PricePeriod,
    PriceSnapshot,
    ProviderId,
    ProviderName,
    SearchResult,
    Symbol,
    SymbolMatch,
    build_snapshot,
    cache_key,
    compute_sparkline,
    is_valid_symbol,
    normalize_symbol,
    parse_number,
)

__all__ = [
    # Type aliases
    "Symbol",
    "ProviderId",
    # Enums
    "PricePeriod",
    "ProviderName",
    # Models
    "PriceSnapshot",
    "SymbolMatch",
    "SearchResult",
    "HealthStatus",
    "CacheStats",
    # Helpers
    "build_snapshot",
    "cache_key",
    "compute_sparkline",
    "is_valid_symbol",
    "normalize_symbol",
    "parse_number",
    # Config
    "RelayConfig",
    "ProviderSettings",
    "ProvidersConfig",
    "FeedConfig",
    "APIConfig",
    "load_config",
    # Exceptions
    "PriceRelayError",
    "ConfigError",
    "ProviderError",
    "SymbolNotFoundError",
    "RateLimitExceededError",
    "AllProvidersFailedError",
    "UnknownProviderError",
]
