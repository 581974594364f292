"""Build provider instances from configuration."""

from __future__ import annotations

import logging

from price_relay.core.config import ProvidersConfig
from price_relay.core.models import DEFAULT_SPARKLINE_POINTS, ProviderName
from price_relay.providers.alpha_vantage import AlphaVantageProvider
from price_relay.providers.base import HTTPPriceProvider
from price_relay.providers.finnhub import FinnhubProvider
from price_relay.providers.yahoo import YahooFinanceProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[HTTPPriceProvider]] = {
    ProviderName.ALPHA.value: AlphaVantageProvider,
    ProviderName.FINNHUB.value: FinnhubProvider,
    ProviderName.YAHOO.value: YahooFinanceProvider,
}

# Upstreams that refuse every request without a key
_KEY_REQUIRED = {ProviderName.ALPHA.value, ProviderName.FINNHUB.value}


def build_providers(
    config: ProvidersConfig,
    sparkline_points: int = DEFAULT_SPARKLINE_POINTS,
) -> dict[str, HTTPPriceProvider]:
    """Instantiate every enabled provider that has the credentials it needs.

    Returns
    -------
    dict[str, HTTPPriceProvider]
        Provider id -> provider, in registry order.
    """
    providers: dict[str, HTTPPriceProvider] = {}
    for provider_id, cls in PROVIDER_CLASSES.items():
        settings = config.get(provider_id)
        if not settings.enabled:
            logger.info("Provider %s disabled in config", provider_id)
            continue
        if provider_id in _KEY_REQUIRED and not settings.api_key:
            logger.info("Provider %s skipped: no api_key configured", provider_id)
            continue
        providers[provider_id] = cls(settings, sparkline_points=sparkline_points)
    return providers
