"""Cached execution of GitHub collection fetches.

This package owns:
- the cache executor (descriptor -> cached or freshly fetched CollectionResult)
- the TTL and background refresh policy applied to every collection kind
"""

from .base_cached import CollectionCacheExecutor

__all__ = ["CollectionCacheExecutor"]
