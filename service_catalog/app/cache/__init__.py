"""
Cache package for the Catalog Service.

Provides a Redis-backed cache that silently degrades to process memory
when Redis is unreachable. Listing responses are cached under the
``items::`` namespace and purged on every catalog mutation.
"""

from .cache_service import CacheEntry, CacheService, DEFAULT_TTL_SECONDS

__all__ = ["CacheEntry", "CacheService", "DEFAULT_TTL_SECONDS"]
