"""Custom exception hierarchy for price-relay."""

from typing import Any


class PriceRelayError(Exception):
    """Base exception for all price-relay errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(PriceRelayError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str, the config field that failed validation
        value: Any, the invalid value (redacted for secrets)
    """


class ProviderError(PriceRelayError):
    """A single upstream provider failed to answer.

    Policy: never surfaced to callers directly. The adapter records it
    against the provider's health and moves on to the next provider.

    Context keys:
        symbol: str | None, the symbol being fetched
        status_code: int | None, upstream HTTP status, if any
        url: str | None, the upstream URL
    """

    def __init__(
        self,
        message: str,
        provider: str,
        retryable: bool = True,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context)
        self.provider = provider
        self.retryable = retryable


class SymbolNotFoundError(ProviderError):
    """The upstream explicitly reported that the symbol does not exist.

    Policy: not retryable against the same provider, but the adapter still
    tries the remaining providers since coverage differs between sources.
    """

    def __init__(
        self,
        symbol: str,
        provider: str,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(
            f"Price data not found for {symbol}",
            provider,
            retryable=False,
            context={"symbol": symbol, **(context or {})},
        )
        self.symbol = symbol


class RateLimitExceededError(ProviderError):
    """Upstream throttling persisted after waiting and retrying.

    Policy: the provider waits (Retry-After) and retries internally first;
    this is only raised once its retry budget is spent.

    Context keys:
        retry_after: float | None, seconds the upstream asked us to wait
    """

    def __init__(
        self,
        provider: str,
        retry_after: float | None = None,
        context: dict[str, Any] | None = None,
    ):
        message = f"Rate limit exceeded for {provider}"
        if retry_after:
            message += f", retry after {retry_after:g}s"
        super().__init__(
            message,
            provider,
            retryable=True,
            context={"retry_after": retry_after, **(context or {})},
        )
        self.retry_after = retry_after


class AllProvidersFailedError(PriceRelayError):
    """Every provider in the try-order failed and no cached data exists.

    Policy: terminal. Surfaced to the caller with every provider's reason.

    Context keys:
        symbol: str, the requested symbol
        failures: dict[str, str], provider id -> last failure reason
    """

    def __init__(self, symbol: str, failures: dict[str, str]):
        if failures:
            detail = "; ".join(f"{name}: {reason}" for name, reason in failures.items())
        else:
            detail = "no providers available"
        super().__init__(
            f"All price providers failed for {symbol}: {detail}",
            context={"symbol": symbol, "failures": dict(failures)},
        )
        self.symbol = symbol
        self.failures = dict(failures)


class UnknownProviderError(PriceRelayError):
    """A caller asked for a provider that is not registered.

    Context keys:
        provider: str, the requested provider id
        available: list[str], registered provider ids
    """

    def __init__(self, provider: str, available: list[str]):
        super().__init__(
            f"Unknown price provider: {provider!r} (available: {', '.join(available) or 'none'})",
            context={"provider": provider, "available": list(available)},
        )
        self.provider = provider
