# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Cache executor for collection fetch descriptors.

Shared execute() flow, for every collection kind:
- cache lookup by FetchDescriptor.cache_key()
- TTL check against the descriptor's staleness budget (max_age_seconds)
- stale + background_refresh: return the stale value now, refresh out of band
- otherwise fetch under a per-key inflight lock (concurrent identical fetches coalesce)
- cache write + per-cache hit/miss/write stats
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Optional, Set

from cache.cache_collections import CollectionResultCache
from common import DEFAULT_BACKGROUND_REFRESH_WORKERS

from .. import GITHUB_API_STATS
from ..collection_types import CollectionResult, FetchDescriptor
from ..entity_classification import CLASSIFICATION_VERSION

_logger = logging.getLogger(__name__)


class CollectionCacheExecutor:
    """Serve collection results from the cache or run the descriptor's fetch chain.

    Example:
        executor = CollectionCacheExecutor(CollectionResultCache(cache_file=path))
        result = executor.execute(descriptor)
        ...
        executor.shutdown()  # waits for background refreshes
    """

    def __init__(
        self,
        store: Optional[CollectionResultCache] = None,
        *,
        background_workers: int = DEFAULT_BACKGROUND_REFRESH_WORKERS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store if store is not None else CollectionResultCache(
            cache_file=None, classification_version=CLASSIFICATION_VERSION
        )
        self._clock = clock
        self._background_workers = max(1, int(background_workers))
        self._background_pool: Optional[ThreadPoolExecutor] = None
        self._pool_mu = threading.Lock()

        # Keys with a background refresh queued or running (at most one per key).
        self._refreshing: Set[str] = set()

        # Inflight request deduplication: per-key locks to prevent concurrent identical fetches.
        self._inflight_locks_mu = threading.Lock()
        self._inflight_locks: Dict[str, threading.Lock] = {}

    def __enter__(self) -> "CollectionCacheExecutor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown(wait=True)
        return False

    def execute(self, descriptor: FetchDescriptor) -> CollectionResult:
        """Return a fresh cached result or fetch, store and return a new one."""
        name = descriptor.endpoint_name
        key = descriptor.cache_key()

        entry = self.store.get_entry(key)
        if entry is not None:
            if self._is_fresh(entry, descriptor):
                self._cache_hit(name)
                return CollectionResult.from_dict(entry)
            self._cache_miss(f"{name}.expired")
            if descriptor.background_refresh:
                self._schedule_refresh(descriptor, key)
                return CollectionResult.from_dict(entry)
        else:
            self._cache_miss(f"{name}.missing")

        with self._inflight_lock(key):
            # Re-check cache (another thread may have populated it).
            entry2 = self.store.get_entry(key)
            if entry2 is not None and self._is_fresh(entry2, descriptor):
                self._cache_hit(name)
                return CollectionResult.from_dict(entry2)
            return self._fetch_and_store(descriptor, key)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the background refresh pool (a new one is created on demand)."""
        with self._pool_mu:
            pool = self._background_pool
            self._background_pool = None
        if pool is not None:
            pool.shutdown(wait=wait)

    def _is_fresh(self, entry: Dict, descriptor: FetchDescriptor) -> bool:
        return self.store.is_fresh(entry, max_age_s=descriptor.max_age_seconds, now=self._clock())

    def _fetch_and_store(self, descriptor: FetchDescriptor, key: str) -> CollectionResult:
        result = descriptor.invocation(descriptor.token, descriptor.parameters)
        self.store.put(key, copy.deepcopy(result.to_dict()), ts=self._clock())
        self._cache_write(descriptor.endpoint_name)
        _logger.debug(
            "Stored %s (%d entities, %d page(s), dirty=%s, used_api_tokens=%d)",
            descriptor.endpoint_name,
            len(result),
            len(result.meta.pages),
            result.meta.dirty,
            result.cost.used_api_tokens,
        )
        return result

    def _schedule_refresh(self, descriptor: FetchDescriptor, key: str) -> None:
        with self._pool_mu:
            if key in self._refreshing:
                return
            self._refreshing.add(key)
            if self._background_pool is None:
                self._background_pool = ThreadPoolExecutor(
                    max_workers=self._background_workers, thread_name_prefix="collection-refresh"
                )
            pool = self._background_pool
        GITHUB_API_STATS.incr("background_refresh_total")
        pool.submit(self._background_refresh, descriptor, key)

    def _background_refresh(self, descriptor: FetchDescriptor, key: str) -> None:
        """Refresh one entry; failures are logged and never reach the original caller."""
        try:
            with self._inflight_lock(key):
                self._fetch_and_store(descriptor, key)
        except Exception as e:
            GITHUB_API_STATS.incr("background_refresh_errors_total")
            _logger.warning("Background refresh of %s failed: %s", descriptor.endpoint_name, e)
        finally:
            with self._pool_mu:
                self._refreshing.discard(key)

    def _inflight_lock(self, key: str) -> threading.Lock:
        """Return a per-key lock to dedupe concurrent network fetches across threads."""
        k = str(key or "") or "__default__"
        with self._inflight_locks_mu:
            lk = self._inflight_locks.get(k)
            if lk is None:
                lk = threading.Lock()
                self._inflight_locks[k] = lk
            return lk

    def _cache_hit(self, name: str) -> None:
        GITHUB_API_STATS.bump(GITHUB_API_STATS.cache_hits, str(name or "unknown"))

    def _cache_miss(self, name: str) -> None:
        GITHUB_API_STATS.bump(GITHUB_API_STATS.cache_misses, str(name or "unknown"))

    def _cache_write(self, name: str) -> None:
        GITHUB_API_STATS.bump(GITHUB_API_STATS.cache_writes, str(name or "unknown"))
