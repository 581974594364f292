"""FastAPI route definitions for the price-relay API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response

import price_relay
from price_relay.api.deps import get_adapter
from price_relay.api.schemas import (
    CacheStatsResponse,
    HealthResponse,
    ProviderHealthResponse,
    SearchResponse,
    SearchResultResponse,
)
from price_relay.core.models import PricePeriod, PriceSnapshot, is_valid_symbol, normalize_symbol
from price_relay.feed.adapter import PriceAdapter

router = APIRouter()


# -- Prices --


@router.get("/price/{symbol}", response_model=PriceSnapshot)
async def get_price(
    symbol: str,
    response: Response,
    period: PricePeriod | None = Query(None, description="History window for the sparkline"),
    force_provider: str | None = Query(None, description="Only ask this provider"),
    skip_cache: bool = Query(False),
    adapter: PriceAdapter = Depends(get_adapter),
):
    """Current quote for a symbol, with failover and cache fallback."""
    if not is_valid_symbol(symbol):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid symbol {symbol!r}: expected 1-5 letters",
        )

    snapshot = await adapter.get_price_data(
        normalize_symbol(symbol),
        period=period,
        force_provider=force_provider,
        skip_cache=skip_cache,
    )
    response.headers["X-Fallback-Used"] = "true" if snapshot.fallback_used else "false"
    return snapshot


# -- Search --


@router.get("/search", response_model=SearchResponse)
async def search_symbols(
    q: str = Query(..., min_length=1, description="Company name or partial ticker"),
    limit: int | None = Query(None, ge=1, le=100),
    adapter: PriceAdapter = Depends(get_adapter),
):
    """Best-effort symbol search across every provider."""
    results = await adapter.search(q, limit=limit)
    return SearchResponse(
        query=q,
        count=len(results),
        results=[
            SearchResultResponse(symbol=r.symbol, name=r.name, provider=r.provider)
            for r in results
        ],
    )


# -- Health --


@router.get("/health", response_model=HealthResponse)
async def health_check(adapter: PriceAdapter = Depends(get_adapter)):
    """Service status and per-provider health."""
    statuses = adapter.get_health_status()
    healthy = sum(1 for s in statuses.values() if s.is_healthy)
    if statuses and healthy == len(statuses):
        status = "ok"
    elif healthy:
        status = "degraded"
    else:
        status = "down"

    return HealthResponse(
        status=status,
        version=price_relay.__version__,
        primary_provider=adapter.config.primary_provider,
        providers={
            pid: ProviderHealthResponse(**s.model_dump()) for pid, s in statuses.items()
        },
    )


# -- Cache --


@router.get("/cache", response_model=CacheStatsResponse)
async def cache_stats(adapter: PriceAdapter = Depends(get_adapter)):
    """Snapshot cache counters."""
    stats = adapter.cache_stats()
    return CacheStatsResponse(
        enabled=adapter.config.cache_enabled,
        ttl=adapter.cache.ttl,
        size=stats.size,
        hits=stats.hits,
        misses=stats.misses,
        stale_hits=stats.stale_hits,
        hit_rate=stats.hit_rate,
    )


@router.delete("/cache", status_code=204)
async def clear_cache(adapter: PriceAdapter = Depends(get_adapter)):
    """Drop every cached snapshot."""
    adapter.clear_cache()
    return Response(status_code=204)
