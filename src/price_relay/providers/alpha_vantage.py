"""Alpha Vantage provider (GLOBAL_QUOTE + TIME_SERIES_DAILY + SYMBOL_SEARCH)."""

from __future__ import annotations

import logging
from typing import Any

from price_relay.core.exceptions import (
    ProviderError,
    SymbolNotFoundError,
)
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

_QUERY_PATH = "/query"
# "full" history is premium-only; "compact" returns the latest 100 trading days
_OUTPUT_SIZE = "compact"


class AlphaVantageProvider(HTTPPriceProvider):
    """Fetches quotes from Alpha Vantage's ``/query`` endpoint.

    Alpha Vantage reports most failures with HTTP 200 and a sentinel key in
    the body: ``Note``/``Information`` when throttled (retried like a 429),
    ``Information`` mentioning a premium feature for paid-only requests, and
    ``Error Message`` for unknown symbols. These are inspected before any
    field extraction.
    """

    provider_id = ProviderName.ALPHA.value
    default_base_url = "https://www.alphavantage.co"

    async def get_price(
        self, symbol: str, period: PricePeriod = PricePeriod.MONTH
    ) -> PriceSnapshot:
        symbol = normalize_symbol(symbol)
        payload = await self._query(
            {"function": "GLOBAL_QUOTE", "symbol": symbol}, symbol=symbol
        )
        quote = payload.get("Global Quote") if isinstance(payload, dict) else None
        if not quote or parse_price(quote.get("05. price")) <= 0:
            raise SymbolNotFoundError(symbol, self.provider_id)

        closes = await self._history_or_empty(self._fetch_closes(symbol, period), symbol)
        return self.normalize_quote(quote, closes, symbol)

    def normalize_quote(
        self, quote: dict[str, Any], closes: list[float], symbol: str
    ) -> PriceSnapshot:
        """Map a ``Global Quote`` object onto the canonical snapshot."""
        current = parse_price(quote.get("05. price"))
        if current <= 0:
            raise SymbolNotFoundError(symbol, self.provider_id)
        return build_snapshot(
            symbol=quote.get("01. symbol") or symbol,
            current=current,
            previous_close=parse_price(quote.get("08. previous close")),
            open=parse_price(quote.get("02. open")),
            high=parse_price(quote.get("03. high")),
            low=parse_price(quote.get("04. low")),
            volume=parse_number(quote.get("06. volume")),
            last_updated=parse_timestamp(quote.get("07. latest trading day")),
            closes=closes,
            provider=self.provider_id,
            sparkline_points=self._sparkline_points,
        )

    async def _fetch_closes(self, symbol: str, period: PricePeriod) -> list[float]:
        payload = await self._query(
            {"function": "TIME_SERIES_DAILY", "symbol": symbol, "outputsize": _OUTPUT_SIZE},
            symbol=symbol,
        )
        return self.extract_closes(payload, period)

    @staticmethod
    def extract_closes(payload: Any, period: PricePeriod) -> list[float]:
        """Closing prices oldest-first, limited to roughly the period's trading days."""
        series = payload.get("Time Series (Daily)") if isinstance(payload, dict) else None
        if not isinstance(series, dict):
            return []
        # ISO dates sort chronologically as strings
        days = sorted(series)
        trading_days = max(1, round(period.days * 5 / 7))
        closes = [parse_price(series[d].get("4. close")) for d in days[-trading_days:]
                  if isinstance(series[d], dict)]
        return [c for c in closes if c > 0]

    async def search(self, query: str) -> list[SymbolMatch]:
        payload = await self._query({"function": "SYMBOL_SEARCH", "keywords": query})
        matches = payload.get("bestMatches", []) if isinstance(payload, dict) else []
        results: list[SymbolMatch] = []
        for match in matches[:SEARCH_MATCH_LIMIT]:
            sym = match.get("1. symbol")
            if not sym:
                continue
            results.append(SymbolMatch(symbol=sym, name=match.get("2. name") or sym))
        return results

    def _throttle_detail(self, payload: Any) -> str | None:
        if not isinstance(payload, dict):
            return None
        note = payload.get("Note") or payload.get("Information")
        if not note or _is_premium_notice(str(note)):
            return None
        return str(note)

    async def _query(self, params: dict[str, str], *, symbol: str | None = None) -> Any:
        """Call ``/query`` with the API key and surface in-body errors.

        Throttle notes are retried inside ``_get_json``; what reaches here
        is either data, a premium-only notice, or an ``Error Message``.
        """
        payload = await self._get_json(
            _QUERY_PATH, {**params, "apikey": self._settings.api_key or ""}, symbol=symbol
        )
        if isinstance(payload, dict):
            info = payload.get("Information")
            if info and _is_premium_notice(str(info)):
                raise ProviderError(
                    f"alpha premium feature required: {str(info)[:200]}",
                    self.provider_id,
                    retryable=False,
                    context={"symbol": symbol, "function": params.get("function")},
                )
            if payload.get("Error Message"):
                if symbol is not None:
                    raise SymbolNotFoundError(
                        symbol, self.provider_id,
                        context={"detail": str(payload["Error Message"])[:200]},
                    )
                raise ProviderError(
                    f"alpha error: {str(payload['Error Message'])[:200]}",
                    self.provider_id,
                    retryable=False,
                )
        return payload


def _is_premium_notice(message: str) -> bool:
    return "premium" in message.lower()
