"""price-relay: multi-provider market price feed with failover and caching."""

__version__ = "0.1.0"
