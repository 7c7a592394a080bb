#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Per-request page cache for conditional (ETag) requests.

Key:   "<token hash>:<full request URL incl. query>"
Entry: {"ts": <epoch>, "etag": "W/\"abc\"", "data": <JSON body>, "next_url": <Link rel=next or null>}

A 304 Not Modified response carries no body, so the binding serves `data` and
`next_url` from here. 304s do not count against GitHub's rate limit.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Dict, Optional

from .cache_base import BaseDiskCache


class PageETagCache(BaseDiskCache):
    _SCHEMA_VERSION = 1

    def __init__(self, *, cache_file: Optional[Path]):
        super().__init__(cache_file=cache_file, schema_version=self._SCHEMA_VERSION)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the cached page ({"etag", "data", "next_url"}) or None."""
        with self._mu:
            self._load_once()
            ent = self._check_item(key)
            if not isinstance(ent, dict):
                return None
            etag = ent.get("etag")
            if not isinstance(etag, str) or not etag.strip():
                return None
            return dict(ent)

    def get_etag(self, key: str) -> Optional[str]:
        ent = self.get(key)
        return str(ent["etag"]).strip() if ent else None

    def put(self, key: str, *, etag: str, data: Any, next_url: Optional[str]) -> None:
        with self._mu:
            self._load_once()
            self._set_item(key, {
                "ts": int(time.time()),
                "etag": str(etag).strip(),
                "data": data,
                "next_url": next_url,
            })
            self._persist()
