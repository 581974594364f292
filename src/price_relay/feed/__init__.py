"""price_relay.feed: caching, provider health, and failover orchestration."""

from price_relay.feed.adapter import PriceAdapter, create_price_adapter
from price_relay.feed.cache import CacheEntry, SnapshotCache
from price_relay.feed.health import HealthTracker, ProviderHealth

__all__ = [
    "PriceAdapter",
    "create_price_adapter",
    "SnapshotCache",
    "CacheEntry",
    "HealthTracker",
    "ProviderHealth",
]
