"""PriceAdapter: cache, failover across providers, and stale fallback.

Lookup flow for one symbol:

    cache (fresh) → providers in health order → cache (stale) → AllProvidersFailedError

Providers are tried strictly one at a time. A provider failure is recorded
against its health and the next provider is tried; only total exhaustion
with nothing cached is surfaced to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping

from price_relay.core.config import FeedConfig, RelayConfig
from price_relay.core.exceptions import (
    AllProvidersFailedError,
    ProviderError,
    UnknownProviderError,
)
from price_relay.core.models import (
    CacheStats,
    HealthStatus,
    PricePeriod,
    PriceSnapshot,
    ProviderId,
    SearchResult,
    cache_key,
    normalize_symbol,
)
from price_relay.feed.cache import SnapshotCache
from price_relay.feed.health import HealthTracker
from price_relay.providers.base import PriceProvider
from price_relay.providers.registry import build_providers

logger = logging.getLogger(__name__)

STALE_REASON = "All providers failed, using stale data"
DEADLINE_SKIP = "skipped: request deadline exceeded"


class PriceAdapter:
    """Serves price snapshots from the first provider able to answer.

    Parameters
    ----------
    providers : Mapping[str, PriceProvider]
        Registered providers keyed by id.
    config : FeedConfig | None
        Failover, cache and health policy. Defaults to ``FeedConfig()``.
    cache : SnapshotCache | None
        Custom cache (useful for testing). Built from config if None.
    health : HealthTracker | None
        Custom health tracker. Built over the registered providers if None.
    """

    def __init__(
        self,
        providers: Mapping[ProviderId, PriceProvider],
        config: FeedConfig | None = None,
        cache: SnapshotCache | None = None,
        health: HealthTracker | None = None,
    ) -> None:
        self._providers = dict(providers)
        self._config = config or FeedConfig()
        self._cache = cache if cache is not None else SnapshotCache(
            ttl=self._config.cache_ttl,
            max_entries=self._config.cache_max_entries,
        )
        self._health = health if health is not None else HealthTracker(
            self._providers, threshold=self._config.unhealthy_threshold
        )
        self._maintenance: asyncio.Task[None] | None = None

        if self._config.primary_provider not in self._providers:
            logger.warning(
                "Primary provider %s is not registered; available: %s",
                self._config.primary_provider, ", ".join(self._providers) or "none",
            )

    # --- Lifecycle ---

    async def __aenter__(self) -> PriceAdapter:
        self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    def start(self) -> None:
        """Launch the background decay/sweep task. Idempotent."""
        if self._maintenance is not None and not self._maintenance.done():
            return
        self._maintenance = asyncio.create_task(
            self._maintenance_loop(), name="price-relay-maintenance"
        )

    async def stop(self) -> None:
        """Cancel the background task, if running."""
        task, self._maintenance = self._maintenance, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def aclose(self) -> None:
        """Stop maintenance and close every provider."""
        await self.stop()
        for provider in self._providers.values():
            await provider.aclose()

    async def _maintenance_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.decay_interval)
            self.run_maintenance()

    def run_maintenance(self) -> None:
        """One decay tick plus a sweep of expired cache entries."""
        self._health.decay()
        removed = self._cache.sweep()
        logger.debug("Maintenance tick: decayed health, swept %d cache entries", removed)

    # --- Accessors ---

    @property
    def config(self) -> FeedConfig:
        return self._config

    @property
    def health(self) -> HealthTracker:
        return self._health

    @property
    def cache(self) -> SnapshotCache:
        return self._cache

    @property
    def provider_ids(self) -> list[ProviderId]:
        return list(self._providers)

    # --- Price lookup ---

    async def get_price_data(
        self,
        symbol: str,
        *,
        period: PricePeriod | str | None = None,
        force_provider: ProviderId | None = None,
        skip_cache: bool = False,
        deadline: float | None = None,
    ) -> PriceSnapshot:
        """Return a snapshot for ``symbol``, failing over as needed.

        Parameters
        ----------
        period : PricePeriod | str | None
            History window for the sparkline. Defaults to the configured one.
        force_provider : str | None
            Try exactly this provider and no other.
        skip_cache : bool
            Bypass the fresh-cache read (the result is still cached).
        deadline : float | None
            Seconds allowed for the whole failover walk. Falls back to
            ``request_deadline`` from config; None means unbounded.

        Raises
        ------
        UnknownProviderError
            ``force_provider`` is not registered.
        AllProvidersFailedError
            Every provider failed and no cached entry exists.
        """
        symbol = normalize_symbol(symbol)
        if not symbol:
            raise ValueError("symbol must not be empty")
        period = PricePeriod(period or self._config.default_period)
        key = cache_key(symbol, period)
        caching = self._config.cache_enabled

        if caching and not skip_cache:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("Cache hit for %s", key)
                return cached

        order = self._try_order(force_provider)
        if deadline is None:
            deadline = self._config.request_deadline
        loop = asyncio.get_running_loop()
        ends_at = loop.time() + deadline if deadline is not None else None

        failures: dict[ProviderId, str] = {}
        last_error: str | None = None
        deadline_hit = False

        for provider_id in order:
            remaining: float | None = None
            if ends_at is not None:
                remaining = ends_at - loop.time()
                if deadline_hit or remaining <= 0:
                    failures[provider_id] = DEADLINE_SKIP
                    continue

            provider = self._providers[provider_id]
            try:
                async with asyncio.timeout(remaining) as scope:
                    snapshot = await provider.get_price(symbol, period)
            except TimeoutError:
                if scope.expired():
                    # Deadline expiry is not counted against provider health
                    deadline_hit = True
                    failures[provider_id] = f"request deadline of {deadline:g}s exceeded"
                    logger.warning(
                        "Deadline hit while %s was fetching %s", provider_id, symbol
                    )
                    continue
                last_error = self._record_failure(provider_id, symbol, "timed out")
                failures[provider_id] = last_error
                continue
            except ProviderError as e:
                last_error = self._record_failure(provider_id, symbol, str(e))
                failures[provider_id] = last_error
                continue
            except Exception as e:
                logger.exception("Unexpected error from %s for %s", provider_id, symbol)
                last_error = self._record_failure(
                    provider_id, symbol, f"{type(e).__name__}: {e}"
                )
                failures[provider_id] = last_error
                continue

            self._health.record_success(provider_id)
            if provider_id != self._config.primary_provider:
                reason = last_error or self._primary_skip_reason(force_provider)
                snapshot = snapshot.as_fallback(reason)
                logger.warning(
                    "Served %s from fallback provider %s (%s)", symbol, provider_id, reason
                )
            if caching:
                self._cache.set(key, snapshot)
            return snapshot

        if caching:
            stale = self._cache.get_stale(key)
            if stale is not None:
                logger.warning(
                    "All providers failed for %s, serving stale data from %s",
                    symbol, stale.provider,
                )
                return stale.as_stale(STALE_REASON)

        raise AllProvidersFailedError(symbol, failures)

    def _record_failure(self, provider_id: ProviderId, symbol: str, reason: str) -> str:
        logger.warning("Provider %s failed for %s: %s", provider_id, symbol, reason)
        self._health.record_failure(provider_id, reason)
        return reason

    def _try_order(self, force_provider: ProviderId | None) -> list[ProviderId]:
        if force_provider is not None:
            if force_provider not in self._providers:
                raise UnknownProviderError(force_provider, list(self._providers))
            return [force_provider]
        return self._health.ordered_providers(
            self._config.primary_provider, self._config.fallback_providers
        )

    def _primary_skip_reason(self, force_provider: ProviderId | None) -> str:
        """Why the primary was not the one to answer when it raised nothing."""
        primary = self._config.primary_provider
        if force_provider is not None:
            return f"provider {force_provider} forced by caller"
        if primary not in self._providers:
            return f"primary provider {primary} is not configured"
        return f"primary provider {primary} is unhealthy"

    # --- Search ---

    async def search(self, query: str, limit: int | None = None) -> list[SearchResult]:
        """Best-effort symbol search across providers, de-duplicated by symbol.

        Provider failures are logged and skipped; they never raise and do
        not count against provider health. A ``limit`` below 1 raises
        ValueError.
        """
        if limit is None:
            limit = self._config.search_limit
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        query = query.strip()
        if not query:
            return []

        results: list[SearchResult] = []
        seen: set[str] = set()
        order = self._health.ordered_providers(
            self._config.primary_provider, self._config.fallback_providers
        )
        for provider_id in order:
            try:
                matches = await self._providers[provider_id].search(query)
            except Exception as e:
                logger.debug("Search via %s failed for %r: %s", provider_id, query, e)
                continue

            for match in matches:
                symbol = normalize_symbol(match.symbol)
                if symbol in seen:
                    continue
                seen.add(symbol)
                results.append(
                    SearchResult(symbol=symbol, name=match.name, provider=provider_id)
                )
            if len(results) >= limit:
                break

        return results[:limit]

    # --- Operational views ---

    def get_health_status(self) -> dict[ProviderId, HealthStatus]:
        return self._health.snapshot()

    def cache_stats(self) -> CacheStats:
        return self._cache.stats()

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Price cache cleared")


def create_price_adapter(config: RelayConfig) -> PriceAdapter:
    """Composition root: build providers from config and wrap them."""
    providers = build_providers(config.providers, sparkline_points=config.feed.sparkline_points)
    logger.info(
        "Price adapter ready with providers: %s (primary %s)",
        ", ".join(providers) or "none", config.feed.primary_provider,
    )
    return PriceAdapter(providers, config.feed)
