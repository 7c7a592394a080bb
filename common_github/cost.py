# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""API usage cost accounting.

Every page response carries a Cost; collections and cross-org results carry the
sum of their pages. Merging is additive for counters and min() for the
remaining-quota snapshot, so it is associative and commutative.

ETag 304 responses are counted as `cache_hits` and do not consume `used_api_tokens`
(GitHub does not charge rate limit for them).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional


@dataclass
class Cost:
    rest_api_calls: int = 0
    used_api_tokens: int = 0
    cache_hits: int = 0
    # Lowest X-RateLimit-Remaining observed; None when no response reported it.
    remaining_api_tokens: Optional[int] = None

    @classmethod
    def for_response(cls, *, status_code: int, remaining: Optional[int] = None) -> "Cost":
        """Cost of a single REST response."""
        not_modified = int(status_code) == 304
        return cls(
            rest_api_calls=1,
            used_api_tokens=0 if not_modified else 1,
            cache_hits=1 if not_modified else 0,
            remaining_api_tokens=remaining,
        )

    def add(self, other: Optional["Cost"]) -> "Cost":
        """Merge `other` into this cost in place and return self."""
        if other is None:
            return self
        self.rest_api_calls += int(other.rest_api_calls)
        self.used_api_tokens += int(other.used_api_tokens)
        self.cache_hits += int(other.cache_hits)
        self.remaining_api_tokens = _min_optional(self.remaining_api_tokens, other.remaining_api_tokens)
        return self

    def __add__(self, other: "Cost") -> "Cost":
        if not isinstance(other, Cost):
            return NotImplemented
        return Cost().add(self).add(other)

    @classmethod
    def sum(cls, costs: Iterable[Optional["Cost"]]) -> "Cost":
        total = cls()
        for c in costs:
            total.add(c)
        return total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rest_api_calls": self.rest_api_calls,
            "used_api_tokens": self.used_api_tokens,
            "cache_hits": self.cache_hits,
            "remaining_api_tokens": self.remaining_api_tokens,
        }

    @classmethod
    def from_dict(cls, d: Optional[Mapping[str, Any]]) -> "Cost":
        if not d:
            return cls()
        remaining = d.get("remaining_api_tokens")
        return cls(
            rest_api_calls=int(d.get("rest_api_calls", 0) or 0),
            used_api_tokens=int(d.get("used_api_tokens", 0) or 0),
            cache_hits=int(d.get("cache_hits", 0) or 0),
            remaining_api_tokens=int(remaining) if remaining is not None else None,
        )


def _min_optional(a: Optional[int], b: Optional[int]) -> Optional[int]:
    if a is None:
        return b
    if b is None:
        return a
    return min(int(a), int(b))
