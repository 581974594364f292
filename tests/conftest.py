"""Shared pytest fixtures for price-relay."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from price_relay.core.config import FeedConfig
from price_relay.core.exceptions import ProviderError
from price_relay.core.models import (
    PricePeriod,
    PriceSnapshot,
    SymbolMatch,
    build_snapshot,
)
from price_relay.feed.adapter import PriceAdapter
from price_relay.feed.cache import SnapshotCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """Scripted provider: answers from a queue, or a default, and counts calls.

    Each scripted item is either a ``(current, previous_close)`` pair or an
    exception instance to raise.
    """

    def __init__(
        self,
        provider_id: str,
        default: tuple[float, float] | BaseException | None = (100.0, 99.0),
        matches: list[SymbolMatch] | BaseException | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.default = default
        self.script: list[tuple[float, float] | BaseException] = []
        self.matches = matches if matches is not None else []
        self.calls: list[tuple[str, PricePeriod]] = []
        self.search_calls: list[str] = []
        self.closed = False

    def fail_with(self, error: BaseException) -> FakeProvider:
        self.default = error
        return self

    async def get_price(
        self, symbol: str, period: PricePeriod = PricePeriod.MONTH
    ) -> PriceSnapshot:
        self.calls.append((symbol, period))
        outcome = self.script.pop(0) if self.script else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        current, previous_close = outcome
        return build_snapshot(
            symbol=symbol,
            current=current,
            previous_close=previous_close,
            open=previous_close,
            high=max(current, previous_close),
            low=min(current, previous_close),
            volume=1_000,
            last_updated=datetime(2024, 6, 3, 15, 30, tzinfo=UTC),
            closes=[previous_close, current],
            provider=self.provider_id,
        )

    async def search(self, query: str) -> list[SymbolMatch]:
        self.search_calls.append(query)
        if isinstance(self.matches, BaseException):
            raise self.matches
        return list(self.matches)

    async def aclose(self) -> None:
        self.closed = True

    @property
    def call_count(self) -> int:
        return len(self.calls)


def server_error(provider_id: str) -> ProviderError:
    return ProviderError(
        f"{provider_id} server error 500", provider_id, retryable=True,
        context={"status_code": 500},
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_snapshot() -> PriceSnapshot:
    return build_snapshot(
        symbol="AAPL",
        current=189.25,
        previous_close=187.5,
        open=188.0,
        high=190.1,
        low=187.2,
        volume=52_000_000,
        market_cap=2.9e12,
        last_updated=datetime(2024, 6, 3, 20, 0, tzinfo=UTC),
        closes=[180.0 + i * 0.25 for i in range(40)],
        provider="alpha",
    )


@pytest.fixture
def feed_config() -> FeedConfig:
    return FeedConfig(primary_provider="alpha", fallback_providers=["finnhub", "yahoo"])


@pytest.fixture
def providers() -> dict[str, FakeProvider]:
    return {
        "alpha": FakeProvider("alpha", default=(190.0, 188.0)),
        "finnhub": FakeProvider("finnhub", default=(190.5, 188.0)),
        "yahoo": FakeProvider("yahoo", default=(191.0, 188.0)),
    }


@pytest.fixture
def adapter(providers, feed_config, clock) -> PriceAdapter:
    cache = SnapshotCache(ttl=feed_config.cache_ttl, clock=clock)
    return PriceAdapter(providers, feed_config, cache=cache)
