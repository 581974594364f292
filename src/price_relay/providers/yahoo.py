"""Yahoo Finance provider, talking to the public chart API directly.

Uses the unauthenticated ``/v8/finance/chart/`` endpoint for both the
current quote (``meta``) and daily closes, and ``/v1/finance/search`` for
symbol lookup. No API key required.
"""

from __future__ import annotations

import logging
from typing import Any

from price_relay.core.exceptions import ProviderError, SymbolNotFoundError
from price_relay.core.models import (
    PricePeriod,
    PriceSnapshot,
    ProviderName,
    SymbolMatch,
    build_snapshot,
    normalize_symbol,
    parse_number,
    parse_price,
    parse_timestamp,
)
from price_relay.providers.base import SEARCH_MATCH_LIMIT, HTTPPriceProvider

logger = logging.getLogger(__name__)

_CHART_PATH = "/v8/finance/chart"
_SEARCH_PATH = "/v1/finance/search"

# Map our periods to Yahoo Finance range strings
_RANGE_MAP: dict[PricePeriod, str] = {
    PricePeriod.WEEK: "5d",
    PricePeriod.MONTH: "1mo",
    PricePeriod.QUARTER: "3mo",
    PricePeriod.HALF_YEAR: "6mo",
    PricePeriod.YEAR: "1y",
}


class YahooFinanceProvider(HTTPPriceProvider):
    """Fetches quotes from Yahoo Finance's chart API."""

    provider_id = ProviderName.YAHOO.value
    default_base_url = "https://query1.finance.yahoo.com"

    async def get_price(
        self, symbol: str, period: PricePeriod = PricePeriod.MONTH
    ) -> PriceSnapshot:
        symbol = normalize_symbol(symbol)
        chart = await self._fetch_chart(symbol, "1d")
        meta = chart.get("meta") or {}
        if parse_price(meta.get("regularMarketPrice")) <= 0:
            raise SymbolNotFoundError(symbol, self.provider_id)

        closes = await self._history_or_empty(self._fetch_closes(symbol, period), symbol)
        return self.normalize_meta(meta, closes, symbol)

    def normalize_meta(
        self, meta: dict[str, Any], closes: list[float], symbol: str
    ) -> PriceSnapshot:
        """Map the chart ``meta`` object onto the canonical snapshot."""
        previous_close = meta.get("previousClose")
        if previous_close is None:
            previous_close = meta.get("chartPreviousClose")
        return build_snapshot(
            symbol=symbol,
            current=parse_price(meta.get("regularMarketPrice")),
            previous_close=parse_price(previous_close),
            open=parse_price(meta.get("regularMarketOpen")),
            high=parse_price(meta.get("regularMarketDayHigh")),
            low=parse_price(meta.get("regularMarketDayLow")),
            volume=parse_number(meta.get("regularMarketVolume")),
            market_cap=parse_number(meta.get("marketCap")) or None,
            last_updated=parse_timestamp(meta.get("regularMarketTime")),
            closes=closes,
            provider=self.provider_id,
            sparkline_points=self._sparkline_points,
        )

    async def _fetch_closes(self, symbol: str, period: PricePeriod) -> list[float]:
        chart = await self._fetch_chart(symbol, _RANGE_MAP[period])
        return self.extract_closes(chart)

    @staticmethod
    def extract_closes(chart: dict[str, Any]) -> list[float]:
        """Daily closes oldest-first; null bars (holidays, gaps) are skipped."""
        quotes = (chart.get("indicators") or {}).get("quote") or [{}]
        closes = [parse_price(c) for c in (quotes[0].get("close") or []) if c is not None]
        return [c for c in closes if c > 0]

    async def _fetch_chart(self, symbol: str, range_: str) -> dict[str, Any]:
        """Fetch ``chart.result[0]`` for a symbol and range."""
        data = await self._get_json(
            f"{_CHART_PATH}/{symbol}",
            {"range": range_, "interval": "1d"},
            symbol=symbol,
        )
        chart = data.get("chart", {}) if isinstance(data, dict) else {}

        err = chart.get("error")
        if err:
            code = err.get("code") if isinstance(err, dict) else str(err)
            if code == "Not Found":
                raise SymbolNotFoundError(symbol, self.provider_id)
            description = err.get("description") if isinstance(err, dict) else None
            raise ProviderError(
                f"yahoo API error for {symbol}: {code} ({description})",
                self.provider_id,
                retryable=True,
                context={"symbol": symbol, "code": code},
            )

        results = chart.get("result")
        if not results:
            raise SymbolNotFoundError(symbol, self.provider_id)
        return results[0]

    async def search(self, query: str) -> list[SymbolMatch]:
        data = await self._get_json(_SEARCH_PATH, {"q": query})
        quotes = data.get("quotes", []) if isinstance(data, dict) else []
        results: list[SymbolMatch] = []
        for quote in quotes:
            if str(quote.get("typeDisp", "")).lower() != "equity":
                continue
            sym = quote.get("symbol")
            if not sym:
                continue
            name = quote.get("longname") or quote.get("shortname") or sym
            results.append(SymbolMatch(symbol=sym, name=name))
            if len(results) >= SEARCH_MATCH_LIMIT:
                break
        return results
