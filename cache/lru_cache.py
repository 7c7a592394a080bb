#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Bounded in-memory LRU cache (thread-safe).

Used for per-identity objects that are expensive to build and must not grow
without bound for the lifetime of the process (e.g. per-user contexts).
"""

from __future__ import annotations

from collections import OrderedDict
from threading import Lock
from typing import Callable, Generic, Hashable, Optional, TypeVar

from .cache_base import BaseCacheStats

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class LRUCache(Generic[K, V]):
    def __init__(self, capacity: int):
        if int(capacity) <= 0:
            raise ValueError(f"capacity must be positive, got {capacity!r}")
        self.capacity = int(capacity)
        self._mu = Lock()
        self._items: "OrderedDict[K, V]" = OrderedDict()
        self.stats = BaseCacheStats()
        self.evictions = 0

    def __len__(self) -> int:
        with self._mu:
            return len(self._items)

    def __contains__(self, key: object) -> bool:
        with self._mu:
            return key in self._items

    def get(self, key: K) -> Optional[V]:
        with self._mu:
            if key not in self._items:
                self.stats.miss += 1
                return None
            self._items.move_to_end(key)
            self.stats.hit += 1
            return self._items[key]

    def put(self, key: K, value: V) -> None:
        with self._mu:
            self._put_locked(key, value)

    def get_or_create(self, key: K, factory: Callable[[K], V]) -> V:
        """Return the cached value, building it with factory(key) on a miss."""
        with self._mu:
            if key in self._items:
                self._items.move_to_end(key)
                self.stats.hit += 1
                return self._items[key]
            self.stats.miss += 1
            value = factory(key)
            self._put_locked(key, value)
            return value

    def _put_locked(self, key: K, value: V) -> None:
        self._items[key] = value
        self._items.move_to_end(key)
        self.stats.write += 1
        while len(self._items) > self.capacity:
            self._items.popitem(last=False)
            self.evictions += 1
