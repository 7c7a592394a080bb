# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Shared pytest fixtures and fakes.

Run from the repository root:
    pytest -v
"""

import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pytest

# Set up path for imports
repo_dir = Path(__file__).parent
if str(repo_dir) not in sys.path:
    sys.path.insert(0, str(repo_dir))

from common_github import GITHUB_API_STATS
from common_github.collection_types import (
    CollectionMetadata,
    CollectionResult,
    FetchDescriptor,
    Page,
    PageMeta,
)
from common_github.cost import Cost


def make_page(
    data: Any,
    etag: Optional[str] = '"e0"',
    *,
    status: int = 200,
    next_url: Optional[str] = None,
    retry_after: Optional[float] = None,
    last_modified: Optional[str] = None,
) -> Page:
    return Page(
        data=data,
        meta=PageMeta(etag=etag, status_actual=status, retry_after=retry_after, last_modified=last_modified),
        cost=Cost.for_response(status_code=status, remaining=4000),
        next_url=next_url,
    )


def make_pages(datas: Sequence[Any], **per_page: Sequence[Any]) -> List[Page]:
    """One Page per data item, chained with next_url "page-<n>".

    Keyword lists (etags, statuses, retry_afters, last_modifieds) override per page.
    """
    etags = per_page.get("etags") or [f'"e{i}"' for i in range(len(datas))]
    statuses = per_page.get("statuses") or [200] * len(datas)
    retry_afters = per_page.get("retry_afters") or [None] * len(datas)
    last_modifieds = per_page.get("last_modifieds") or [None] * len(datas)
    pages = []
    for i, data in enumerate(datas):
        pages.append(make_page(
            data,
            etags[i],
            status=statuses[i],
            next_url=f"page-{i + 1}" if i + 1 < len(datas) else None,
            retry_after=retry_afters[i],
            last_modified=last_modifieds[i],
        ))
    return pages


class FakeEndpoint:
    """Collection endpoint serving a fixed list of pages.

    `fail_at` (page index) raises `error` instead of returning that page.
    """

    def __init__(self, pages: Sequence[Page], *, fail_at: Optional[int] = None, error: Optional[Exception] = None):
        self.pages = list(pages)
        self.fail_at = fail_at
        self.error = error or RuntimeError("endpoint failure")
        self.calls: List[tuple] = []

    def _serve(self, index: int) -> Page:
        if self.fail_at is not None and index == self.fail_at:
            raise self.error
        return self.pages[index]

    def call(self, token: str, endpoint_name: str, parameters: Mapping[str, Any]) -> Page:
        self.calls.append(("call", token, endpoint_name, dict(parameters)))
        return self._serve(0)

    def get_next_page(self, token: str, page: Page) -> Page:
        self.calls.append(("next", token, page.next_url))
        return self._serve(int(str(page.next_url).split("-")[1]))

    def has_next_page(self, page: Page) -> bool:
        return bool(page is not None and page.next_url)


class RecordingExecutor:
    """Cache executor without a cache: records descriptors and runs them."""

    def __init__(self):
        self.descriptors: List[FetchDescriptor] = []

    def execute(self, descriptor: FetchDescriptor) -> CollectionResult:
        self.descriptors.append(descriptor)
        return descriptor.invocation(descriptor.token, descriptor.parameters)


def make_result(entities: Sequence[Dict[str, Any]], *, etag: str = '"x"', dirty: bool = True, calls: int = 1) -> CollectionResult:
    return CollectionResult(
        entities=tuple(entities),
        meta=CollectionMetadata(pages=(etag,), dirty=dirty),
        cost=Cost(rest_api_calls=calls, used_api_tokens=calls if dirty else 0, cache_hits=0 if dirty else calls),
    )


class InFlightCounter:
    """Thread-safe counter of concurrently running calls (tracks the maximum)."""

    def __init__(self):
        self._mu = threading.Lock()
        self.current = 0
        self.max_seen = 0
        self.total = 0

    def __enter__(self):
        with self._mu:
            self.current += 1
            self.total += 1
            self.max_seen = max(self.max_seen, self.current)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        with self._mu:
            self.current -= 1
        return False


@pytest.fixture(autouse=True)
def reset_api_stats():
    GITHUB_API_STATS.reset()
    yield
    GITHUB_API_STATS.reset()
