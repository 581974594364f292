"""API-specific response schemas (Pydantic v2)."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


# -- Error --


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    error: str
    detail: str | None = None


class ProvidersFailedResponse(ErrorResponse):
    """503 body: every provider failed and nothing was cached."""

    symbol: str
    tried: list[str]
    failures: dict[str, str]


# -- Search --


class SearchResultResponse(BaseModel):
    symbol: str
    name: str
    provider: str


class SearchResponse(BaseModel):
    """Symbol search results, de-duplicated across providers."""

    query: str
    count: int
    results: list[SearchResultResponse]


# -- Health --


class ProviderHealthResponse(BaseModel):
    is_healthy: bool
    error_count: int
    last_checked: datetime
    last_error: str | None = None


class HealthResponse(BaseModel):
    """Service status plus per-provider health."""

    status: str  # "ok" | "degraded" | "down"
    version: str
    primary_provider: str
    providers: dict[str, ProviderHealthResponse]


# -- Cache --


class CacheStatsResponse(BaseModel):
    enabled: bool
    ttl: int
    size: int
    hits: int
    misses: int
    stale_hits: int
    hit_rate: float
