"""Tests for the HTTP providers (Alpha Vantage, Finnhub, Yahoo Finance)."""

from __future__ import annotations

from datetime import UTC, datetime

import httpx
import pytest
import respx

from price_relay.core.config import ProviderSettings, ProvidersConfig
from price_relay.core.exceptions import (
    ProviderError,
    RateLimitExceededError,
    SymbolNotFoundError,
)
from price_relay.core.models import PricePeriod
from price_relay.providers.alpha_vantage import AlphaVantageProvider
from price_relay.providers.base import PriceProvider
from price_relay.providers.finnhub import FinnhubProvider
from price_relay.providers.registry import build_providers
from price_relay.providers.yahoo import YahooFinanceProvider

ALPHA_URL = "https://www.alphavantage.co/query"
FINNHUB_URL = "https://finnhub.io/api/v1"
YAHOO_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart"
YAHOO_SEARCH_URL = "https://query1.finance.yahoo.com/v1/finance/search"


def _settings(**overrides) -> ProviderSettings:
    values = dict(api_key="demo", rate_limit=1000, retry_count=1, timeout=5.0)
    values.update(overrides)
    return ProviderSettings(**values)


# --- Fixtures ---


@pytest.fixture
async def alpha():
    async with AlphaVantageProvider(_settings()) as p:
        yield p


@pytest.fixture
async def finnhub():
    async with FinnhubProvider(_settings(api_key="fh-token")) as p:
        yield p


@pytest.fixture
async def yahoo():
    async with YahooFinanceProvider(_settings(api_key=None)) as p:
        yield p


@pytest.fixture
def no_throttle_wait(monkeypatch):
    """Retry in-body throttles without sleeping."""
    monkeypatch.setattr("price_relay.providers.base._DEFAULT_RETRY_AFTER", 0.0)


@pytest.fixture
def alpha_quote() -> dict:
    return {
        "Global Quote": {
            "01. symbol": "IBM",
            "02. open": "168.9000",
            "03. high": "170.2500",
            "04. low": "168.0100",
            "05. price": "169.6000",
            "06. volume": "3954672",
            "07. latest trading day": "2024-06-03",
            "08. previous close": "166.8500",
            "09. change": "2.7500",
            "10. change percent": "1.6482%",
        }
    }


@pytest.fixture
def alpha_series() -> dict:
    return {
        "Meta Data": {"2. Symbol": "IBM"},
        "Time Series (Daily)": {
            "2024-05-31": {"4. close": "166.8500"},
            "2024-06-03": {"4. close": "169.6000"},
            "2024-05-30": {"4. close": "165.6300"},
        },
    }


@pytest.fixture
def yahoo_chart() -> dict:
    return {
        "chart": {
            "result": [
                {
                    "meta": {
                        "symbol": "AAPL",
                        "regularMarketPrice": 194.03,
                        "previousClose": 192.25,
                        "regularMarketOpen": 192.9,
                        "regularMarketDayHigh": 194.99,
                        "regularMarketDayLow": 192.52,
                        "regularMarketVolume": 50080500,
                        "regularMarketTime": 1717372800,
                    },
                    "indicators": {"quote": [{"close": [190.0, None, 192.25, 194.03]}]},
                }
            ],
            "error": None,
        }
    }


# --- Shared HTTP plumbing (exercised through Alpha Vantage) ---


class TestHTTPPlumbing:
    async def test_satisfies_protocol(self, alpha):
        assert isinstance(alpha, PriceProvider)

    @respx.mock
    async def test_server_error_is_retryable(self, alpha):
        respx.get(ALPHA_URL).mock(return_value=httpx.Response(500))
        with pytest.raises(ProviderError) as exc_info:
            await alpha.get_price("IBM")
        assert exc_info.value.retryable is True
        assert exc_info.value.provider == "alpha"
        assert exc_info.value.context["status_code"] == 500

    @respx.mock
    async def test_404_with_symbol_is_not_found(self, alpha):
        respx.get(ALPHA_URL).mock(return_value=httpx.Response(404))
        with pytest.raises(SymbolNotFoundError):
            await alpha.get_price("IBM")

    @respx.mock
    async def test_client_error_not_retryable(self, alpha):
        respx.get(ALPHA_URL).mock(return_value=httpx.Response(403))
        with pytest.raises(ProviderError) as exc_info:
            await alpha.get_price("IBM")
        assert exc_info.value.retryable is False

    @respx.mock
    async def test_429_then_success(self, alpha, alpha_quote, alpha_series):
        route = respx.get(ALPHA_URL, params={"function": "GLOBAL_QUOTE"}).mock(
            side_effect=[
                httpx.Response(429, headers={"Retry-After": "0"}),
                httpx.Response(200, json=alpha_quote),
            ]
        )
        respx.get(ALPHA_URL, params={"function": "TIME_SERIES_DAILY"}).mock(
            return_value=httpx.Response(200, json=alpha_series)
        )
        snap = await alpha.get_price("IBM")
        assert snap.current == 169.6
        assert route.call_count == 2

    @respx.mock
    async def test_429_exhausts_retries(self, alpha):
        route = respx.get(ALPHA_URL).mock(
            return_value=httpx.Response(429, headers={"Retry-After": "0"})
        )
        with pytest.raises(RateLimitExceededError) as exc_info:
            await alpha.get_price("IBM")
        assert route.call_count == 2  # one try plus retry_count=1
        assert exc_info.value.retryable is True

    @respx.mock
    async def test_timeout_is_retryable(self, alpha):
        respx.get(ALPHA_URL).mock(side_effect=httpx.ConnectTimeout("slow"))
        with pytest.raises(ProviderError, match="timed out") as exc_info:
            await alpha.get_price("IBM")
        assert exc_info.value.retryable is True

    @respx.mock
    async def test_transport_error_is_retryable(self, alpha):
        respx.get(ALPHA_URL).mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(ProviderError, match="ConnectError") as exc_info:
            await alpha.get_price("IBM")
        assert exc_info.value.retryable is True

    @respx.mock
    async def test_malformed_json(self, alpha):
        respx.get(ALPHA_URL).mock(return_value=httpx.Response(200, text="<html>oops"))
        with pytest.raises(ProviderError, match="malformed JSON"):
            await alpha.get_price("IBM")

    @respx.mock
    async def test_every_request_goes_through_limiter(self, alpha, alpha_quote, alpha_series):
        respx.get(ALPHA_URL, params={"function": "GLOBAL_QUOTE"}).mock(
            return_value=httpx.Response(200, json=alpha_quote)
        )
        respx.get(ALPHA_URL, params={"function": "TIME_SERIES_DAILY"}).mock(
            return_value=httpx.Response(200, json=alpha_series)
        )
        await alpha.get_price("IBM")
        assert alpha.limiter.in_flight() == 2


# --- Alpha Vantage ---


class TestAlphaVantageProvider:
    @respx.mock
    async def test_get_price(self, alpha, alpha_quote, alpha_series):
        quote_route = respx.get(ALPHA_URL, params={"function": "GLOBAL_QUOTE"}).mock(
            return_value=httpx.Response(200, json=alpha_quote)
        )
        respx.get(ALPHA_URL, params={"function": "TIME_SERIES_DAILY"}).mock(
            return_value=httpx.Response(200, json=alpha_series)
        )

        snap = await alpha.get_price("ibm")

        assert snap.symbol == "IBM"
        assert snap.provider == "alpha"
        assert snap.current == 169.6
        assert snap.previous_close == 166.85
        assert snap.change == pytest.approx(2.75)
        assert snap.change_percent == pytest.approx(1.6482, abs=1e-4)
        assert snap.volume == 3954672
        assert snap.last_updated == datetime(2024, 6, 3, tzinfo=UTC)
        assert len(snap.sparkline) == 30
        assert snap.sparkline[-3:] == (165.63, 166.85, 169.6)
        assert quote_route.calls.last.request.url.params["apikey"] == "demo"

    @respx.mock
    async def test_throttle_note_waits_then_retries(
        self, alpha, alpha_quote, alpha_series, no_throttle_wait
    ):
        quote = respx.get(ALPHA_URL, params={"function": "GLOBAL_QUOTE"}).mock(
            side_effect=[
                httpx.Response(200, json={"Note": "Thank you for using Alpha Vantage!"}),
                httpx.Response(200, json=alpha_quote),
            ]
        )
        respx.get(ALPHA_URL, params={"function": "TIME_SERIES_DAILY"}).mock(
            return_value=httpx.Response(200, json=alpha_series)
        )
        snap = await alpha.get_price("IBM")
        assert snap.current == 169.6
        assert quote.call_count == 2
        assert alpha.limiter.in_flight() == 3

    @respx.mock
    async def test_throttle_information_exhausts_retries(self, alpha, no_throttle_wait):
        route = respx.get(ALPHA_URL).mock(
            return_value=httpx.Response(
                200, json={"Information": "Our standard API rate limit is 25 requests per day."}
            )
        )
        with pytest.raises(RateLimitExceededError) as exc_info:
            await alpha.get_price("IBM")
        assert route.call_count == 2  # one try plus retry_count=1
        assert exc_info.value.retryable is True

    @respx.mock
    async def test_premium_notice_is_not_a_rate_limit(self, alpha):
        route = respx.get(ALPHA_URL).mock(
            return_value=httpx.Response(
                200, json={"Information": "This is a premium endpoint. Please subscribe."}
            )
        )
        with pytest.raises(ProviderError, match="premium") as exc_info:
            await alpha.search("ibm")
        assert not isinstance(exc_info.value, RateLimitExceededError)
        assert exc_info.value.retryable is False
        assert route.call_count == 1

    @respx.mock
    async def test_error_message_is_not_found(self, alpha):
        respx.get(ALPHA_URL).mock(
            return_value=httpx.Response(200, json={"Error Message": "Invalid API call."})
        )
        with pytest.raises(SymbolNotFoundError):
            await alpha.get_price("ZZZZ")

    @respx.mock
    async def test_empty_quote_is_not_found(self, alpha):
        route = respx.get(ALPHA_URL).mock(
            return_value=httpx.Response(200, json={"Global Quote": {}})
        )
        with pytest.raises(SymbolNotFoundError):
            await alpha.get_price("ZZZZ")
        assert route.call_count == 1

    @respx.mock
    async def test_history_failure_gives_flat_sparkline(self, alpha, alpha_quote):
        respx.get(ALPHA_URL, params={"function": "GLOBAL_QUOTE"}).mock(
            return_value=httpx.Response(200, json=alpha_quote)
        )
        respx.get(ALPHA_URL, params={"function": "TIME_SERIES_DAILY"}).mock(
            return_value=httpx.Response(503)
        )
        snap = await alpha.get_price("IBM")
        assert snap.sparkline == (169.6,) * 30

    @respx.mock
    async def test_long_period_stays_on_free_history(self, alpha, alpha_quote, alpha_series):
        respx.get(ALPHA_URL, params={"function": "GLOBAL_QUOTE"}).mock(
            return_value=httpx.Response(200, json=alpha_quote)
        )
        series = respx.get(ALPHA_URL, params={"function": "TIME_SERIES_DAILY"}).mock(
            return_value=httpx.Response(200, json=alpha_series)
        )
        await alpha.get_price("IBM", PricePeriod.YEAR)
        assert series.calls.last.request.url.params["outputsize"] == "compact"

    def test_extract_closes_limits_to_period(self):
        series = {
            "Time Series (Daily)": {
                f"2024-01-{day:02d}": {"4. close": str(100 + day)} for day in range(1, 31)
            }
        }
        closes = AlphaVantageProvider.extract_closes(series, PricePeriod.WEEK)
        # round(7 * 5 / 7) = 5 trading days
        assert closes == [126.0, 127.0, 128.0, 129.0, 130.0]

    @respx.mock
    async def test_search(self, alpha):
        respx.get(ALPHA_URL, params={"function": "SYMBOL_SEARCH"}).mock(
            return_value=httpx.Response(
                200,
                json={
                    "bestMatches": [
                        {"1. symbol": "TSCO.LON", "2. name": "Tesco PLC"},
                        {"1. symbol": "TSCDY", "2. name": "Tesco plc"},
                        {"2. name": "missing symbol"},
                    ]
                },
            )
        )
        matches = await alpha.search("tesco")
        assert [m.symbol for m in matches] == ["TSCO.LON", "TSCDY"]
        assert matches[0].name == "Tesco PLC"


# --- Finnhub ---


class TestFinnhubProvider:
    @respx.mock
    async def test_get_price(self, finnhub):
        quote = respx.get(f"{FINNHUB_URL}/quote").mock(
            return_value=httpx.Response(
                200,
                json={"c": 100.5, "d": 1.5, "dp": 1.5152, "h": 101, "l": 98.5,
                      "o": 99.2, "pc": 99.0, "t": 1717372800},
            )
        )
        respx.get(f"{FINNHUB_URL}/stock/candle").mock(
            return_value=httpx.Response(200, json={"s": "ok", "c": [98.0, 99.0, 100.5]})
        )

        snap = await finnhub.get_price("ZZZ")

        assert snap.provider == "finnhub"
        assert snap.current == 100.5
        assert snap.change == pytest.approx(1.5)
        assert snap.change_percent == pytest.approx(1.515, abs=1e-3)
        assert snap.volume == 0
        assert snap.sparkline[-3:] == (98.0, 99.0, 100.5)
        assert quote.calls.last.request.headers["X-Finnhub-Token"] == "fh-token"

    @respx.mock
    async def test_zero_quote_is_not_found(self, finnhub):
        respx.get(f"{FINNHUB_URL}/quote").mock(
            return_value=httpx.Response(200, json={"c": 0, "d": None, "pc": 0, "t": 0})
        )
        with pytest.raises(SymbolNotFoundError):
            await finnhub.get_price("ZZZZ")

    @respx.mock
    async def test_no_candle_data(self, finnhub):
        respx.get(f"{FINNHUB_URL}/quote").mock(
            return_value=httpx.Response(200, json={"c": 10.0, "pc": 9.0})
        )
        respx.get(f"{FINNHUB_URL}/stock/candle").mock(
            return_value=httpx.Response(200, json={"s": "no_data"})
        )
        snap = await finnhub.get_price("ABC")
        assert snap.sparkline == (10.0,) * 30

    def test_extract_closes_requires_ok(self):
        assert FinnhubProvider.extract_closes({"s": "no_data", "c": [1.0]}) == []
        assert FinnhubProvider.extract_closes({"s": "ok", "c": [1.0, None, 2.0]}) == [1.0, 2.0]

    @respx.mock
    async def test_search(self, finnhub):
        respx.get(f"{FINNHUB_URL}/search").mock(
            return_value=httpx.Response(
                200,
                json={"count": 2, "result": [
                    {"symbol": "AAPL", "description": "APPLE INC"},
                    {"symbol": "AAPL.SW", "description": "APPLE INC"},
                ]},
            )
        )
        matches = await finnhub.search("apple")
        assert [m.symbol for m in matches] == ["AAPL", "AAPL.SW"]


# --- Yahoo Finance ---


class TestYahooFinanceProvider:
    @respx.mock
    async def test_get_price(self, yahoo, yahoo_chart):
        route = respx.get(f"{YAHOO_CHART_URL}/AAPL").mock(
            return_value=httpx.Response(200, json=yahoo_chart)
        )

        snap = await yahoo.get_price("aapl", PricePeriod.WEEK)

        assert snap.provider == "yahoo"
        assert snap.current == 194.03
        assert snap.previous_close == 192.25
        assert snap.high == 194.99
        assert snap.volume == 50080500
        assert snap.last_updated == datetime(2024, 6, 3, tzinfo=UTC)
        assert snap.sparkline[-3:] == (190.0, 192.25, 194.03)
        ranges = [c.request.url.params["range"] for c in route.calls]
        assert ranges == ["1d", "5d"]

    @respx.mock
    async def test_chart_previous_close_fallback(self, yahoo, yahoo_chart):
        meta = yahoo_chart["chart"]["result"][0]["meta"]
        del meta["previousClose"]
        meta["chartPreviousClose"] = 190.0
        respx.get(f"{YAHOO_CHART_URL}/AAPL").mock(
            return_value=httpx.Response(200, json=yahoo_chart)
        )
        snap = await yahoo.get_price("AAPL")
        assert snap.previous_close == 190.0

    @respx.mock
    async def test_not_found_error_body(self, yahoo):
        respx.get(f"{YAHOO_CHART_URL}/ZZZZ").mock(
            return_value=httpx.Response(
                200,
                json={"chart": {"result": None, "error": {
                    "code": "Not Found", "description": "No data found, symbol may be delisted",
                }}},
            )
        )
        with pytest.raises(SymbolNotFoundError):
            await yahoo.get_price("ZZZZ")

    @respx.mock
    async def test_other_error_body_is_retryable(self, yahoo):
        respx.get(f"{YAHOO_CHART_URL}/AAPL").mock(
            return_value=httpx.Response(
                200,
                json={"chart": {"result": None, "error": {
                    "code": "Internal Server Error", "description": "busy",
                }}},
            )
        )
        with pytest.raises(ProviderError) as exc_info:
            await yahoo.get_price("AAPL")
        assert exc_info.value.retryable is True
        assert not isinstance(exc_info.value, SymbolNotFoundError)

    def test_extract_closes_skips_null_bars(self, yahoo_chart):
        result = yahoo_chart["chart"]["result"][0]
        assert YahooFinanceProvider.extract_closes(result) == [190.0, 192.25, 194.03]

    @respx.mock
    async def test_search_keeps_equities(self, yahoo):
        respx.get(YAHOO_SEARCH_URL).mock(
            return_value=httpx.Response(
                200,
                json={"quotes": [
                    {"symbol": "MSFT", "longname": "Microsoft Corporation", "typeDisp": "Equity"},
                    {"symbol": "MSFT240621C00400000", "typeDisp": "Option"},
                    {"symbol": "MSF.DE", "shortname": "MICROSOFT", "typeDisp": "equity"},
                ]},
            )
        )
        matches = await yahoo.search("microsoft")
        assert [(m.symbol, m.name) for m in matches] == [
            ("MSFT", "Microsoft Corporation"),
            ("MSF.DE", "MICROSOFT"),
        ]


# --- Registry ---


class TestBuildProviders:
    async def test_skips_providers_without_key(self):
        providers = build_providers(ProvidersConfig())
        try:
            assert list(providers) == ["yahoo"]
        finally:
            for p in providers.values():
                await p.aclose()

    async def test_builds_keyed_providers_in_order(self):
        config = ProvidersConfig.model_validate(
            {"alpha": {"api_key": "a"}, "finnhub": {"api_key": "f"}}
        )
        providers = build_providers(config, sparkline_points=10)
        try:
            assert list(providers) == ["alpha", "finnhub", "yahoo"]
            assert providers["finnhub"].limiter.max_requests == 30
        finally:
            for p in providers.values():
                await p.aclose()

    async def test_disabled_provider_skipped(self):
        config = ProvidersConfig.model_validate({"yahoo": {"enabled": False}})
        assert build_providers(config) == {}

    async def test_custom_base_url(self):
        config = ProvidersConfig.model_validate(
            {"yahoo": {"base_url": "http://localhost:9999/"}}
        )
        providers = build_providers(config)
        try:
            with respx.mock:
                respx.get("http://localhost:9999/v1/finance/search").mock(
                    return_value=httpx.Response(200, json={"quotes": []})
                )
                assert await providers["yahoo"].search("x") == []
        finally:
            await providers["yahoo"].aclose()
