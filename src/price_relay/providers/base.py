"""Provider protocol and the shared HTTP plumbing behind every upstream.

Architecture
------------
Each upstream source is wrapped by one provider class:

    Upstream JSON → Provider._get_json → normalize → PriceSnapshot → PriceAdapter

- **PriceProvider** is the adapter-facing protocol. The adapter depends
  only on this interface, so tests can substitute scripted fakes.

- **HTTPPriceProvider** owns the httpx client, the per-provider
  sliding-window budget, and the mapping from transport/HTTP failures to
  the ProviderError family. Concrete providers only build requests and
  extract fields.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Protocol, runtime_checkable

import httpx

from price_relay.core.config import ProviderSettings
from price_relay.core.exceptions import (
    ProviderError,
    RateLimitExceededError,
    SymbolNotFoundError,
)
from price_relay.core.models import (
    DEFAULT_SPARKLINE_POINTS,
    PricePeriod,
    PriceSnapshot,
    SymbolMatch,
)
from price_relay.providers.ratelimit import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

USER_AGENT = "price-relay/0.1"
SEARCH_MATCH_LIMIT = 10

# Longest Retry-After we are willing to sleep through inside one call
_MAX_RETRY_AFTER = 5.0
_DEFAULT_RETRY_AFTER = 1.0


@runtime_checkable
class PriceProvider(Protocol):
    """Adapter-facing interface for one upstream price source."""

    @property
    def provider_id(self) -> str: ...

    async def get_price(
        self, symbol: str, period: PricePeriod = PricePeriod.MONTH
    ) -> PriceSnapshot:
        """Fetch and normalize the current quote plus recent closes.

        Raises
        ------
        ProviderError
            On any upstream failure. SymbolNotFoundError when the upstream
            explicitly has no such symbol.
        """
        ...

    async def search(self, query: str) -> list[SymbolMatch]:
        """Look up symbols by name or partial ticker."""
        ...

    async def aclose(self) -> None: ...


class HTTPPriceProvider(ABC):
    """Base class for providers that talk to a JSON-over-HTTP upstream.

    Parameters
    ----------
    settings : ProviderSettings
        Credentials, base URL, budget and timeout.
    sparkline_points : int
        Length every normalized sparkline is fitted to.
    client : httpx.AsyncClient | None
        Pre-built client (useful for testing). Created from settings if None.
    limiter : SlidingWindowRateLimiter | None
        Custom limiter. Built from ``settings.rate_limit`` if None.
    """

    provider_id: str = "base"
    default_base_url: str = ""

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        sparkline_points: int = DEFAULT_SPARKLINE_POINTS,
        client: httpx.AsyncClient | None = None,
        limiter: SlidingWindowRateLimiter | None = None,
    ) -> None:
        self._settings = settings
        self._sparkline_points = sparkline_points
        self._base_url = (settings.base_url or self.default_base_url).rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            headers={"User-Agent": USER_AGENT, **self._default_headers()},
            timeout=httpx.Timeout(settings.timeout),
            follow_redirects=True,
        )
        self._limiter = limiter or SlidingWindowRateLimiter(
            settings.rate_limit,
            settings.rate_window,
            provider=self.provider_id,
        )

    async def __aenter__(self) -> HTTPPriceProvider:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    @property
    def limiter(self) -> SlidingWindowRateLimiter:
        return self._limiter

    def _default_headers(self) -> dict[str, str]:
        """Extra headers sent with every request (e.g. auth tokens)."""
        return {}

    def _throttle_detail(self, payload: Any) -> str | None:
        """Throttle message carried in a 2xx body, or None.

        Upstreams that signal throttling in the body rather than with a 429
        override this; a non-None result is retried like a 429.
        """
        return None

    # --- Provider interface ---

    @abstractmethod
    async def get_price(
        self, symbol: str, period: PricePeriod = PricePeriod.MONTH
    ) -> PriceSnapshot: ...

    @abstractmethod
    async def search(self, query: str) -> list[SymbolMatch]: ...

    # --- Helpers for subclasses ---

    async def _history_or_empty(self, coro: Any, symbol: str) -> list[float]:
        """Await a history fetch, degrading to no history on provider errors.

        The quote is the critical call; a missing sparkline should not fail it.
        """
        try:
            return await coro
        except ProviderError as e:
            logger.warning(
                "%s history unavailable for %s, using flat sparkline: %s",
                self.provider_id, symbol, e,
            )
            return []

    async def _get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        symbol: str | None = None,
    ) -> Any:
        """GET a JSON document from the upstream, within the request budget.

        Failure mapping:
            - HTTP 404: SymbolNotFoundError (when a symbol is known), else
              non-retryable ProviderError.
            - HTTP 429: sleep for Retry-After (capped) and retry up to
              ``retry_count`` times, then RateLimitExceededError.
            - 2xx body flagged by ``_throttle_detail``: handled like a 429
              with the default wait.
            - HTTP 5xx: retryable ProviderError.
            - Other non-2xx: non-retryable ProviderError.
            - Timeouts and transport errors: retryable ProviderError.
            - Undecodable body: retryable ProviderError.
        """
        url = f"{self._base_url}{path}"
        retry_after: float | None = None

        for attempt in range(self._settings.retry_count + 1):
            await self._limiter.acquire()
            try:
                response = await self._client.get(path, params=params)
            except httpx.TimeoutException as e:
                raise ProviderError(
                    f"{self.provider_id} request timed out: {url}",
                    self.provider_id,
                    retryable=True,
                    context={"url": url, "symbol": symbol, "error": str(e)},
                ) from e
            except httpx.RequestError as e:
                raise ProviderError(
                    f"{self.provider_id} request failed: {type(e).__name__}: {e}",
                    self.provider_id,
                    retryable=True,
                    context={"url": url, "symbol": symbol},
                ) from e

            status = response.status_code
            if status == 429:
                retry_after = _parse_retry_after(response.headers.get("Retry-After"))
                if attempt < self._settings.retry_count:
                    logger.warning(
                        "Rate limited (429) by %s, waiting %.1fs (attempt %d/%d)",
                        self.provider_id, retry_after,
                        attempt + 1, self._settings.retry_count,
                    )
                    await asyncio.sleep(retry_after)
                    continue
                raise RateLimitExceededError(
                    self.provider_id,
                    retry_after=retry_after,
                    context={"url": url, "symbol": symbol, "status_code": status},
                )

            if status == 404:
                if symbol is not None:
                    raise SymbolNotFoundError(
                        symbol, self.provider_id, context={"url": url, "status_code": status}
                    )
                raise ProviderError(
                    f"HTTP 404 from {self.provider_id}: {url}",
                    self.provider_id,
                    retryable=False,
                    context={"url": url, "status_code": status},
                )

            if status >= 500:
                raise ProviderError(
                    f"{self.provider_id} server error {status}: {url}",
                    self.provider_id,
                    retryable=True,
                    context={"url": url, "symbol": symbol, "status_code": status},
                )

            if not 200 <= status < 300:
                raise ProviderError(
                    f"HTTP {status} from {self.provider_id}: {url}",
                    self.provider_id,
                    retryable=False,
                    context={"url": url, "symbol": symbol, "status_code": status},
                )

            try:
                payload = response.json()
            except ValueError as e:
                raise ProviderError(
                    f"{self.provider_id} returned malformed JSON: {url}",
                    self.provider_id,
                    retryable=True,
                    context={"url": url, "symbol": symbol, "body": response.text[:200]},
                ) from e

            throttled = self._throttle_detail(payload)
            if throttled is None:
                return payload
            retry_after = _DEFAULT_RETRY_AFTER
            if attempt < self._settings.retry_count:
                logger.warning(
                    "Throttled by %s (%s), waiting %.1fs (attempt %d/%d)",
                    self.provider_id, throttled[:80], retry_after,
                    attempt + 1, self._settings.retry_count,
                )
                await asyncio.sleep(retry_after)
                continue
            raise RateLimitExceededError(
                self.provider_id,
                retry_after=retry_after,
                context={"url": url, "symbol": symbol, "detail": throttled[:200]},
            )

        raise RateLimitExceededError(
            self.provider_id, retry_after=retry_after, context={"url": url, "symbol": symbol}
        )


def _parse_retry_after(value: str | None) -> float:
    """Seconds to wait from a Retry-After header, capped to keep calls bounded."""
    if value is None:
        return _DEFAULT_RETRY_AFTER
    try:
        seconds = float(value)
    except ValueError:
        return _DEFAULT_RETRY_AFTER
    return min(max(seconds, 0.0), _MAX_RETRY_AFTER)
