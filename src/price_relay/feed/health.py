"""Per-provider health bookkeeping and failover ordering.

A provider is unhealthy while its error count is at or above the threshold.
Failures raise the count, successes and the periodic decay tick lower it by
one (floor 0). Nothing is ever removed: unhealthy providers are still tried,
just after every healthy one.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from price_relay.core.models import HealthStatus, ProviderId

logger = logging.getLogger(__name__)

DEFAULT_UNHEALTHY_THRESHOLD = 3


@dataclass
class ProviderHealth:
    """Mutable health record for one provider."""

    error_count: int = 0
    is_healthy: bool = True
    last_checked: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_error: str | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def to_status(self) -> HealthStatus:
        return HealthStatus(
            is_healthy=self.is_healthy,
            error_count=self.error_count,
            last_checked=self.last_checked,
            last_error=self.last_error,
        )


class HealthTracker:
    """Tracks provider health and orders providers for failover.

    Parameters
    ----------
    provider_ids : Iterable[str]
        Providers to track. All start healthy.
    threshold : int
        Error count at which a provider becomes unhealthy. Default: 3.
    """

    def __init__(
        self,
        provider_ids: Iterable[ProviderId],
        threshold: int = DEFAULT_UNHEALTHY_THRESHOLD,
    ) -> None:
        if threshold < 1:
            raise ValueError(f"threshold must be >= 1, got {threshold}")
        self._threshold = threshold
        self._records: dict[ProviderId, ProviderHealth] = {
            pid: ProviderHealth() for pid in provider_ids
        }

    @property
    def threshold(self) -> int:
        return self._threshold

    def _record(self, provider_id: ProviderId) -> ProviderHealth:
        try:
            return self._records[provider_id]
        except KeyError:
            raise KeyError(f"Untracked provider: {provider_id}") from None

    def _apply(self, provider_id: ProviderId, record: ProviderHealth, count: int) -> None:
        """Set the count and recompute health. Caller holds the record lock."""
        was_healthy = record.is_healthy
        record.error_count = count
        record.is_healthy = count < self._threshold
        record.last_checked = datetime.now(UTC)
        if was_healthy and not record.is_healthy:
            logger.warning(
                "Provider %s marked unhealthy after %d errors (last: %s)",
                provider_id, count, record.last_error,
            )
        elif not was_healthy and record.is_healthy:
            logger.info("Provider %s recovered (error count %d)", provider_id, count)

    def record_success(self, provider_id: ProviderId) -> None:
        record = self._record(provider_id)
        with record.lock:
            self._apply(provider_id, record, max(0, record.error_count - 1))

    def record_failure(self, provider_id: ProviderId, error: str | BaseException) -> None:
        record = self._record(provider_id)
        with record.lock:
            record.last_error = str(error)
            self._apply(provider_id, record, record.error_count + 1)

    def decay(self) -> None:
        """Lower every non-zero error count by one."""
        for provider_id, record in self._records.items():
            with record.lock:
                if record.error_count > 0:
                    self._apply(provider_id, record, record.error_count - 1)

    def is_healthy(self, provider_id: ProviderId) -> bool:
        record = self._record(provider_id)
        with record.lock:
            return record.is_healthy

    def ordered_providers(
        self, primary: ProviderId, fallbacks: Iterable[ProviderId]
    ) -> list[ProviderId]:
        """Healthy providers first (primary leading), then unhealthy ones.

        Within each group the configured order is kept. Ids the tracker does
        not know about are dropped.
        """
        configured: list[ProviderId] = []
        for pid in [primary, *fallbacks]:
            if pid in self._records and pid not in configured:
                configured.append(pid)

        healthy = [pid for pid in configured if self.is_healthy(pid)]
        unhealthy = [pid for pid in configured if pid not in healthy]
        return healthy + unhealthy

    def snapshot(self) -> dict[ProviderId, HealthStatus]:
        """Point-in-time copy of every provider's health."""
        result: dict[ProviderId, HealthStatus] = {}
        for provider_id, record in self._records.items():
            with record.lock:
                result[provider_id] = record.to_status()
        return result
