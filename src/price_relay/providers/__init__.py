"""Upstream price providers.

Adding a new price source:
1. Subclass ``HTTPPriceProvider`` and implement ``get_price`` and ``search``,
   normalizing fields with ``build_snapshot``.
2. Register the class in ``registry.PROVIDER_CLASSES`` and give it a
   settings section in ``ProvidersConfig``.
3. Nothing else: the adapter only sees the ``PriceProvider`` protocol.
"""

from price_relay.providers.alpha_vantage import AlphaVantageProvider
from price_relay.providers.base import HTTPPriceProvider, PriceProvider
from price_relay.providers.finnhub import FinnhubProvider
from price_relay.providers.ratelimit import SlidingWindowRateLimiter
from price_relay.providers.registry import PROVIDER_CLASSES, build_providers
from price_relay.providers.yahoo import YahooFinanceProvider

__all__ = [
    # Protocols / bases
    "PriceProvider",
    "HTTPPriceProvider",
    "SlidingWindowRateLimiter",
    # Implementations
    "AlphaVantageProvider",
    "FinnhubProvider",
    "YahooFinanceProvider",
    # Registry
    "PROVIDER_CLASSES",
    "build_providers",
]
