"""Finnhub provider (``/quote``, ``/stock/candle``, ``/search``)."""

from __future__ import annotations

import time
from typing import Any

from price_relay.core.exceptions import SymbolNotFoundError
from price_relay.core.models import (
    PricePeriod,
    PriceSnapshot,
    ProviderName,
    SymbolMatch,
    build_snapshot,
    normalize_symbol,
    parse_price,
    parse_timestamp,
)
from price_relay.providers.base import SEARCH_MATCH_LIMIT, HTTPPriceProvider

_SECONDS_PER_DAY = 24 * 60 * 60


class FinnhubProvider(HTTPPriceProvider):
    """Fetches quotes from the Finnhub REST API.

    The token travels in the ``X-Finnhub-Token`` header. Finnhub answers an
    unknown symbol with an all-zero quote rather than a 404, so ``c == 0``
    is treated as "not found". The quote endpoint carries no volume.
    """

    provider_id = ProviderName.FINNHUB.value
    default_base_url = "https://finnhub.io/api/v1"

    def _default_headers(self) -> dict[str, str]:
        if self._settings.api_key:
            return {"X-Finnhub-Token": self._settings.api_key}
        return {}

    async def get_price(
        self, symbol: str, period: PricePeriod = PricePeriod.MONTH
    ) -> PriceSnapshot:
        symbol = normalize_symbol(symbol)
        quote = await self._get_json("/quote", {"symbol": symbol}, symbol=symbol)
        if not isinstance(quote, dict) or parse_price(quote.get("c")) <= 0:
            raise SymbolNotFoundError(symbol, self.provider_id)

        closes = await self._history_or_empty(self._fetch_closes(symbol, period), symbol)
        return self.normalize_quote(quote, closes, symbol)

    def normalize_quote(
        self, quote: dict[str, Any], closes: list[float], symbol: str
    ) -> PriceSnapshot:
        """Map Finnhub's single-letter quote fields onto the canonical snapshot."""
        return build_snapshot(
            symbol=symbol,
            current=parse_price(quote.get("c")),
            previous_close=parse_price(quote.get("pc")),
            open=parse_price(quote.get("o")),
            high=parse_price(quote.get("h")),
            low=parse_price(quote.get("l")),
            volume=0,
            last_updated=parse_timestamp(quote.get("t")),
            closes=closes,
            provider=self.provider_id,
            sparkline_points=self._sparkline_points,
        )

    async def _fetch_closes(self, symbol: str, period: PricePeriod) -> list[float]:
        now = int(time.time())
        candles = await self._get_json(
            "/stock/candle",
            {
                "symbol": symbol,
                "resolution": "D",
                "from": now - period.days * _SECONDS_PER_DAY,
                "to": now,
            },
        )
        return self.extract_closes(candles)

    @staticmethod
    def extract_closes(candles: Any) -> list[float]:
        """Closing prices from a candle response; empty unless status is ``ok``."""
        if not isinstance(candles, dict) or candles.get("s") != "ok":
            return []
        closes = [parse_price(c) for c in candles.get("c") or []]
        return [c for c in closes if c > 0]

    async def search(self, query: str) -> list[SymbolMatch]:
        payload = await self._get_json("/search", {"q": query})
        hits = payload.get("result", []) if isinstance(payload, dict) else []
        results: list[SymbolMatch] = []
        for hit in hits[:SEARCH_MATCH_LIMIT]:
            sym = hit.get("symbol")
            if not sym:
                continue
            results.append(SymbolMatch(symbol=sym, name=hit.get("description") or sym))
        return results
