#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Collection results cache.

Key:   FetchDescriptor.cache_key()  e.g. "orgRepos:3f2a9c...:{"org":"contoso"}"
Entry: {
         "ts": <epoch seconds of last successful fetch>,
         "value": [<filtered entity>, ...],
         "meta": {"pages": [<etag>, ...], "dirty": bool, "last_modified": [...]},
         "cost": {"rest_api_calls": N, ...}
       }

TTL is decided by the caller (the descriptor's staleness budget), so reads return
the raw entry and `is_fresh()` applies the budget.
"""

from __future__ import annotations

import copy
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .cache_base import BaseDiskCache


class CollectionResultCache(BaseDiskCache):
    """Cache for filtered collection results (with per-page ETags and cost)."""

    # Includes the entity allow-list version: a different projection must not be served.
    _SCHEMA_VERSION = 1

    def __init__(self, *, cache_file: Optional[Path], classification_version: int = 1):
        super().__init__(cache_file=cache_file, schema_version=self._SCHEMA_VERSION * 1000 + int(classification_version))

    def get_entry(self, key: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the raw entry (fresh or stale), or None."""
        with self._mu:
            self._load_once()
            ent = self._check_item(key)
            if not isinstance(ent, dict):
                return None
            return copy.deepcopy(ent)

    @staticmethod
    def is_fresh(entry: Dict[str, Any], *, max_age_s: int, now: Optional[float] = None) -> bool:
        try:
            ts = float(entry.get("ts", 0) or 0)
        except (ValueError, TypeError):
            return False
        if ts <= 0:
            return False
        now_f = time.time() if now is None else float(now)
        return (now_f - ts) < max(0, int(max_age_s))

    def put(self, key: str, value: Dict[str, Any], *, ts: Optional[float] = None) -> None:
        """Store a serialized CollectionResult (see CollectionResult.to_dict())."""
        entry = dict(value)
        entry["ts"] = float(time.time() if ts is None else ts)
        with self._mu:
            self._load_once()
            self._set_item(key, entry)
            self._persist()
