# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Types shared by the collection pipeline, the cache executor and the cross-org fan-out.

This module exists to avoid circular imports between `common_github/collection_methods.py`,
`common_github/api/base_cached.py` and `common_github/cross_org.py`.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
)

from common import DEFAULT_COLLECTION_MAX_AGE_S

from .cost import Cost


NOT_MODIFIED = 304


def freeze_parameters(parameters: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    """Copy endpoint parameters into a read-only mapping (the caller's dict is never touched)."""
    return MappingProxyType(dict(parameters or {}))


@dataclass(frozen=True)
class PageMeta:
    """Response metadata for one page."""

    etag: Optional[str] = None
    status_actual: Optional[int] = None
    retry_after: Optional[float] = None
    last_modified: Optional[str] = None


@dataclass(frozen=True)
class Page:
    """One server response: raw entities (a list, or any other JSON value) + meta + cost."""

    data: Any
    meta: PageMeta = field(default_factory=PageMeta)
    cost: Optional[Cost] = None
    next_url: Optional[str] = None


@dataclass(frozen=True)
class PageRequest:
    """What the paginated fetcher keeps about each page for metadata analysis."""

    meta: Optional[PageMeta]
    cost: Optional[Cost]


@dataclass(frozen=True)
class CollectionMetadata:
    # ETags, one per page, in fetch order (earliest first).
    pages: Tuple[str, ...] = ()
    # True iff at least one page returned fresh (non-304) content.
    dirty: bool = False
    # Last-Modified values seen on dirty pages (collected only; see analyze_pages()).
    last_modified: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"pages": list(self.pages), "dirty": self.dirty, "last_modified": list(self.last_modified)}

    @classmethod
    def from_dict(cls, d: Optional[Mapping[str, Any]]) -> "CollectionMetadata":
        d = d or {}
        return cls(
            pages=tuple(str(x) for x in (d.get("pages") or [])),
            dirty=bool(d.get("dirty", False)),
            last_modified=tuple(str(x) for x in (d.get("last_modified") or [])),
        )


@dataclass(frozen=True)
class CollectionResult(Sequence[Dict[str, Any]]):
    """Ordered filtered entities with the collection metadata and total cost attached."""

    entities: Tuple[Dict[str, Any], ...] = ()
    meta: CollectionMetadata = field(default_factory=CollectionMetadata)
    cost: Cost = field(default_factory=Cost)

    def __getitem__(self, index):  # type: ignore[override]
        return self.entities[index]

    def __len__(self) -> int:
        return len(self.entities)

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self.entities)

    def to_dict(self) -> Dict[str, Any]:
        return {"value": list(self.entities), "meta": self.meta.to_dict(), "cost": self.cost.to_dict()}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "CollectionResult":
        value = d.get("value")
        return cls(
            entities=tuple(v for v in (value if isinstance(value, list) else []) if isinstance(v, dict)),
            meta=CollectionMetadata.from_dict(d.get("meta")),
            cost=Cost.from_dict(d.get("cost")),
        )


_TRUE_STRINGS = ("1", "true", "yes", "on")
_FALSE_STRINGS = ("0", "false", "no", "off", "")


def parse_bool(raw: Any) -> bool:
    """Parse a flag from YAML or a query string ("false" is False). ValueError otherwise."""
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        s = raw.strip().lower()
        if s in _TRUE_STRINGS:
            return True
        if s in _FALSE_STRINGS:
            return False
    raise ValueError(f"Not a boolean: {raw!r}")


@dataclass(frozen=True)
class CacheOptions:
    """Cache-control options, kept apart from endpoint parameters.

    max_age_seconds: staleness budget; None means DEFAULT_COLLECTION_MAX_AGE_S.
    background_refresh: serve a stale cached value now and refresh it out of band.
    individual_max_age_seconds: per-organization staleness for cross-org calls.
    """

    max_age_seconds: Optional[int] = None
    background_refresh: bool = False
    individual_max_age_seconds: Optional[int] = None

    _FIELD_ALIASES = {
        "max_age_seconds": "max_age_seconds",
        "maxAgeSeconds": "max_age_seconds",
        "background_refresh": "background_refresh",
        "backgroundRefresh": "background_refresh",
        "individual_max_age_seconds": "individual_max_age_seconds",
        "individualMaxAgeSeconds": "individual_max_age_seconds",
    }

    @classmethod
    def coerce(cls, value: Union["CacheOptions", Mapping[str, Any], None]) -> "CacheOptions":
        """Accept CacheOptions, a mapping (unknown keys ignored) or None."""
        if value is None:
            return cls()
        if isinstance(value, CacheOptions):
            return value
        kwargs: Dict[str, Any] = {}
        for key, raw in value.items():
            name = cls._FIELD_ALIASES.get(str(key))
            if name is None or raw is None:
                continue
            kwargs[name] = parse_bool(raw) if name == "background_refresh" else int(raw)
        return cls(**kwargs)

    @property
    def effective_max_age_seconds(self) -> int:
        if self.max_age_seconds is None:
            return DEFAULT_COLLECTION_MAX_AGE_S
        return int(self.max_age_seconds)

    def for_individual_call(self) -> "CacheOptions":
        """Options for one organization's call inside a cross-org fan-out."""
        max_age = self.individual_max_age_seconds
        if max_age is None:
            max_age = self.max_age_seconds
        return CacheOptions(max_age_seconds=max_age, background_refresh=self.background_refresh)


@dataclass(frozen=True, eq=False)
class FetchDescriptor:
    """Identifies one cacheable collection query.

    Equality and the cache key are (endpoint_name, parameters, token); the token only
    appears hashed in the key and is hidden from repr().
    """

    endpoint_name: str
    invocation: Callable[[str, Mapping[str, Any]], CollectionResult] = field(repr=False)
    parameters: Mapping[str, Any] = field(default_factory=dict)
    max_age_seconds: int = DEFAULT_COLLECTION_MAX_AGE_S
    background_refresh: bool = False
    token: str = field(default="", repr=False)

    def cache_key(self) -> str:
        token_hash = hashlib.sha256(str(self.token or "").encode("utf-8")).hexdigest()[:16]
        params = json.dumps(dict(self.parameters or {}), sort_keys=True, default=str, separators=(",", ":"))
        return f"{self.endpoint_name}:{token_hash}:{params}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FetchDescriptor):
            return NotImplemented
        return self.cache_key() == other.cache_key()

    def __hash__(self) -> int:
        return hash(self.cache_key())


class CollectionEndpoint(Protocol):
    """The remote collection endpoint as seen by the paginated fetcher."""

    def call(self, token: str, endpoint_name: str, parameters: Mapping[str, Any]) -> Page: ...

    def get_next_page(self, token: str, page: Page) -> Page: ...

    def has_next_page(self, page: Page) -> bool: ...


class CacheExecutor(Protocol):
    def execute(self, descriptor: FetchDescriptor) -> CollectionResult: ...


@dataclass(frozen=True)
class CrossOrganizationResult:
    """Per-organization entity lists (configuration order) with aggregate meta and cost."""

    orgs: Mapping[str, List[Dict[str, Any]]]
    meta: CollectionMetadata = field(default_factory=CollectionMetadata)
    cost: Cost = field(default_factory=Cost)


@dataclass(frozen=True)
class ConsolidatedResult(Mapping[Any, Dict[str, Any]]):
    """Entities from all organizations grouped by a key field.

    Each entry: {<key_field>: <key>, "orgs": {<org name>: <that org's entity>}}
    """

    entries: Mapping[Any, Dict[str, Any]]
    key_field: str = "id"
    meta: CollectionMetadata = field(default_factory=CollectionMetadata)
    cost: Cost = field(default_factory=Cost)

    def __getitem__(self, key: Any) -> Dict[str, Any]:
        return self.entries[key]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.entries)
