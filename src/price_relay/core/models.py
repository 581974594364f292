"""Pydantic data models: the type contracts shared by every layer."""

from __future__ import annotations

import math
import re
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# --- Type Aliases ---

Symbol = str
ProviderId = str

# --- Constants ---

DEFAULT_SPARKLINE_POINTS = 30
STALE_SUFFIX = "-stale"

_SYMBOL_RE = re.compile(r"^[A-Z]{1,5}$")

# --- Enumerations ---


class PricePeriod(StrEnum):
    """History windows a caller may request for the sparkline."""

    WEEK = "1W"
    MONTH = "1M"
    QUARTER = "3M"
    HALF_YEAR = "6M"
    YEAR = "1Y"

    @property
    def days(self) -> int:
        """Calendar days of history covered by this period."""
        return _PERIOD_DAYS[self]


_PERIOD_DAYS: dict[PricePeriod, int] = {
    PricePeriod.WEEK: 7,
    PricePeriod.MONTH: 30,
    PricePeriod.QUARTER: 91,
    PricePeriod.HALF_YEAR: 182,
    PricePeriod.YEAR: 365,
}


class ProviderName(StrEnum):
    """Built-in provider identifiers."""

    ALPHA = "alpha"
    FINNHUB = "finnhub"
    YAHOO = "yahoo"


# --- Snapshot Models ---


class PriceSnapshot(BaseModel):
    """One normalized point-in-time quote for a symbol.

    Built fresh by a provider on every successful call and never mutated
    afterwards; fallback and stale tagging produce new instances. The
    sparkline is a tuple so a cached snapshot cannot be altered through a
    reference handed to an earlier caller.
    """

    model_config = ConfigDict(frozen=True)

    symbol: Symbol
    current: float = Field(ge=0)
    open: float = Field(ge=0)
    high: float = Field(ge=0)
    low: float = Field(ge=0)
    previous_close: float = Field(ge=0)
    change: float
    change_percent: float
    volume: int = Field(ge=0)
    market_cap: float | None = None
    last_updated: datetime
    sparkline: tuple[float, ...]
    provider: ProviderId
    fallback_used: bool = False
    primary_error: str | None = None

    @field_validator("symbol")
    @classmethod
    def symbol_uppercase(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol must not be empty")
        return v

    @field_validator("sparkline")
    @classmethod
    def sparkline_not_empty(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        if not v:
            raise ValueError("sparkline must not be empty")
        return v

    @property
    def is_stale(self) -> bool:
        """True when this snapshot was served from an expired cache entry."""
        return self.provider.endswith(STALE_SUFFIX)

    def as_fallback(self, primary_error: str | None) -> PriceSnapshot:
        """Return a copy tagged as coming from a non-primary source."""
        return self.model_copy(
            update={"fallback_used": True, "primary_error": primary_error}
        )

    def as_stale(self, reason: str) -> PriceSnapshot:
        """Return a copy tagged as served from an expired cache entry."""
        provider = self.provider
        if not provider.endswith(STALE_SUFFIX):
            provider = f"{provider}{STALE_SUFFIX}"
        return self.model_copy(
            update={"provider": provider, "fallback_used": True, "primary_error": reason}
        )


class SymbolMatch(BaseModel):
    """A single symbol search hit as reported by one provider."""

    model_config = ConfigDict(frozen=True)

    symbol: Symbol
    name: str


class SearchResult(BaseModel):
    """A de-duplicated search hit, annotated with the provider that found it."""

    model_config = ConfigDict(frozen=True)

    symbol: Symbol
    name: str
    provider: ProviderId


class HealthStatus(BaseModel):
    """Read-only view of a provider's health for operational visibility."""

    model_config = ConfigDict(frozen=True)

    is_healthy: bool
    error_count: int
    last_checked: datetime
    last_error: str | None = None


class CacheStats(BaseModel):
    """Counters describing snapshot cache usage."""

    model_config = ConfigDict(frozen=True)

    size: int
    hits: int
    misses: int
    stale_hits: int

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


# --- Normalization Helpers ---


def normalize_symbol(raw: str) -> Symbol:
    """Canonical form of a ticker: stripped and upper-cased."""
    return raw.strip().upper()


def is_valid_symbol(symbol: str) -> bool:
    """Inbound symbols must be 1-5 letters (after normalization)."""
    return bool(_SYMBOL_RE.match(normalize_symbol(symbol)))


def cache_key(symbol: str, period: PricePeriod | str) -> str:
    """Cache key for a (symbol, period) lookup."""
    return f"{normalize_symbol(symbol)}:{PricePeriod(period).value}"


def parse_number(value: Any, default: float = 0.0) -> float:
    """Coerce a loosely-typed upstream value to float.

    Strings such as ``"1.23%"`` or ``"1,234.5"`` are accepted. Missing,
    non-numeric, NaN and infinite values yield ``default`` instead of
    raising, since a garbled secondary field should not fail a quote.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, str):
        cleaned = value.strip().rstrip("%").replace(",", "")
        if not cleaned:
            return default
        try:
            number = float(cleaned)
        except ValueError:
            return default
    elif isinstance(value, (int, float)):
        number = float(value)
    else:
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def parse_price(value: Any) -> float:
    """Like parse_number, but negative prices are treated as garbage."""
    number = parse_number(value)
    return number if number > 0 else 0.0


def parse_timestamp(value: Any) -> datetime:
    """Parse an upstream timestamp (epoch seconds or ISO date) as UTC.

    Falls back to the current time when the value is unusable.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    epoch = parse_number(value, default=-1.0)
    if epoch > 0:
        return datetime.fromtimestamp(epoch, tz=UTC)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            pass
        else:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return datetime.now(UTC)


def compute_sparkline(
    prices: list[float],
    points: int = DEFAULT_SPARKLINE_POINTS,
    fill: float | None = None,
) -> tuple[float, ...]:
    """Fit a closing-price series (oldest first) to exactly ``points`` values.

    Short series are padded on the left by repeating the earliest value.
    Long series are down-sampled by fixed-stride selection. An empty series
    becomes a flat line at ``fill`` (or 0.0).
    """
    if points < 1:
        raise ValueError(f"points must be >= 1, got {points}")
    if not prices:
        return (fill if fill is not None else 0.0,) * points
    if len(prices) == points:
        return tuple(prices)
    if len(prices) < points:
        return (prices[0],) * (points - len(prices)) + tuple(prices)

    step = len(prices) / points
    return tuple(prices[math.floor(i * step)] for i in range(points))


def build_snapshot(
    *,
    symbol: str,
    current: float,
    previous_close: float,
    open: float,
    high: float,
    low: float,
    volume: float,
    last_updated: datetime,
    closes: list[float],
    provider: ProviderId,
    market_cap: float | None = None,
    sparkline_points: int = DEFAULT_SPARKLINE_POINTS,
) -> PriceSnapshot:
    """Assemble a PriceSnapshot, deriving change fields and the sparkline.

    ``change_percent`` is ``change / previous_close * 100`` when the previous
    close is positive, otherwise 0.
    """
    change = current - previous_close
    change_percent = (change / previous_close) * 100 if previous_close > 0 else 0.0
    return PriceSnapshot(
        symbol=symbol,
        current=current,
        open=open,
        high=high,
        low=low,
        previous_close=previous_close,
        change=round(change, 6),
        change_percent=round(change_percent, 6),
        volume=max(0, int(volume)),
        market_cap=market_cap if market_cap else None,
        last_updated=last_updated,
        sparkline=compute_sparkline(closes, sparkline_points, fill=current),
        provider=provider,
    )
