#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Base class for disk-backed caches with locking and persistence.

Shared by:
- cache_collections.py (filtered collection results, keyed by fetch descriptor)
- cache_pages.py       (raw page bodies + ETags, keyed by request URL)
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Tuple

try:
    import fcntl  # type: ignore
except ImportError:  # pragma: no cover - non-POSIX
    fcntl = None  # type: ignore

_logger = logging.getLogger(__name__)


@dataclass
class BaseCacheStats:
    """Basic cache statistics tracked automatically by BaseDiskCache."""
    hit: int = 0
    miss: int = 0
    write: int = 0


class BaseDiskCache:
    """Thread-safe cache with optional disk persistence and inter-process locking.

    Provides:
    - Thread-safe in-memory dict guarded by a Lock
    - Disk persistence with inter-process locking (fcntl), atomic tmp+rename writes
    - Lazy loading (load on first access)
    - Merge on write (disk first, memory wins for conflicts)

    With `cache_file=None` the cache is memory-only (nothing is ever written).

    On-disk schema: {"version": <int>, "items": {<key>: <entry>, ...}}
    """

    def __init__(self, *, cache_file: Optional[Path], schema_version: int = 1):
        self._mu = Lock()
        self._cache_file = Path(cache_file) if cache_file is not None else None
        self._schema_version = schema_version
        self._data: Dict[str, Any] = {}
        self._loaded = False
        self._dirty = False
        self._initial_disk_count: Optional[int] = None
        self.stats = BaseCacheStats()

    @property
    def cache_file(self) -> Optional[Path]:
        return self._cache_file

    def _lock_file_path(self) -> Path:
        """Path to lock file (next to cache file)."""
        assert self._cache_file is not None
        return self._cache_file.with_name(f".{self._cache_file.name}.lock")

    def _acquire_disk_lock(self, *, timeout_s: float = 10.0) -> Optional[Any]:
        """Best-effort inter-process lock for the cache file.

        Returns file handle on success, None on failure/timeout.
        """
        if fcntl is None or self._cache_file is None:
            return None

        lock_path = self._lock_file_path()
        lock_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            fh = open(lock_path, "w")
        except OSError as e:
            _logger.debug("Cannot open lock file %s: %s", lock_path, e)
            return None

        start = time.monotonic()
        while time.monotonic() - start < float(timeout_s):
            try:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                return fh
            except OSError:
                time.sleep(0.1)

        fh.close()
        _logger.debug("Timed out waiting for %s", lock_path)
        return None

    def _release_disk_lock(self, lock_fh: Optional[Any]) -> None:
        """Release inter-process lock."""
        if lock_fh is None:
            return
        try:
            if fcntl is not None:
                fcntl.flock(lock_fh.fileno(), fcntl.LOCK_UN)
        finally:
            lock_fh.close()

    def _read_disk_items(self) -> Dict[str, Any]:
        """Read the items dict from disk; unreadable or corrupt files count as empty."""
        if self._cache_file is None or not self._cache_file.exists():
            return {}
        try:
            raw = json.loads(self._cache_file.read_text() or "{}")
        except (OSError, ValueError) as e:
            _logger.warning("Ignoring unreadable cache file %s: %s", self._cache_file, e)
            return {}
        if not isinstance(raw, dict):
            return {}
        if raw.get("version") != self._schema_version:
            # Schema bump: start fresh rather than misinterpret old entries.
            _logger.debug("Cache %s has schema %r, expected %d; ignoring", self._cache_file, raw.get("version"), self._schema_version)
            return {}
        items = raw.get("items")
        return dict(items) if isinstance(items, dict) else {}

    def _load_once(self) -> None:
        """Load cache from disk (once per instance). Caller holds self._mu."""
        if self._loaded:
            return
        self._loaded = True
        items = self._read_disk_items()
        self._initial_disk_count = len(items)
        self._data = {"version": self._schema_version, "items": items}

    def _persist(self) -> None:
        """Persist cache to disk with inter-process merge. Caller holds self._mu."""
        if not self._dirty or self._cache_file is None:
            self._dirty = False
            return

        self._cache_file.parent.mkdir(parents=True, exist_ok=True)
        mem_items: Dict[str, Any] = dict(self._get_items())

        lock_fh = self._acquire_disk_lock(timeout_s=10.0)
        try:
            merged = {
                "version": self._schema_version,
                "items": {**self._read_disk_items(), **mem_items},
            }

            tmp = f"{self._cache_file}.tmp.{os.getpid()}"
            Path(tmp).write_text(json.dumps(merged, separators=(",", ":")))
            os.replace(tmp, str(self._cache_file))

            self._data = merged
            self._dirty = False
        finally:
            self._release_disk_lock(lock_fh)

    def flush(self) -> None:
        """Persist cache to disk."""
        with self._mu:
            self._persist()

    def get_cache_sizes(self) -> Tuple[int, int]:
        """Return (mem_count, disk_count); disk_count is the count before this run's writes."""
        with self._mu:
            self._load_once()
            mem_count = len(self._get_items())
            disk_count = self._initial_disk_count if self._initial_disk_count is not None else 0
            return (mem_count, disk_count)

    def _get_items(self) -> Dict[str, Any]:
        items = self._data.get("items") if isinstance(self._data, dict) else None
        if not isinstance(items, dict):
            items = {}
            self._data = {"version": self._schema_version, "items": items}
        return items

    def _check_item(self, key: str) -> Optional[Any]:
        """Look up an item and count the hit/miss. Caller holds self._mu."""
        value = self._get_items().get(key)
        if value is not None:
            self.stats.hit += 1
        else:
            self.stats.miss += 1
        return value

    def _set_item(self, key: str, value: Any) -> None:
        """Set an item and mark dirty. Caller holds self._mu."""
        self._get_items()[key] = value
        self._dirty = True
        self.stats.write += 1

