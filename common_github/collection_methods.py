# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Paginated, filtered, cost-accounted GitHub collections.

Pipeline for one collection query (run by the cache executor on a miss):

    fetch_all()        every page of the collection, sequentially, honoring Retry-After
      -> project()     keep only the allow-listed fields of each entity
      -> analyze_pages()  per-page ETags, dirty flag, summed Cost

CollectionMethods binds each collection kind (org repos, org teams, ...) to its
endpoint name and allow-list and hands a FetchDescriptor to the cache executor.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from common_types import CollectionKind, EntityKind

from . import GITHUB_API_STATS
from .collection_types import (
    NOT_MODIFIED,
    CacheExecutor,
    CacheOptions,
    CollectionEndpoint,
    CollectionMetadata,
    CollectionResult,
    FetchDescriptor,
    PageRequest,
    freeze_parameters,
)
from .cost import Cost
from .entity_classification import fields_to_keep
from .exceptions import InvalidPagesError

_logger = logging.getLogger(__name__)


def fetch_all(
    endpoint: CollectionEndpoint,
    token: str,
    endpoint_name: str,
    parameters: Mapping[str, Any],
    *,
    page_limit: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[List[Any], List[PageRequest]]:
    """Fetch every page of a collection.

    Returns (entities in page order, one PageRequest per page). Any endpoint error
    propagates and nothing accumulated so far is returned.

    Between pages, a Retry-After value on the last (non-final) page suspends the loop
    for exactly that many seconds before the next request.
    """
    limit = int(page_limit) if page_limit else None
    entities: List[Any] = []
    page_requests: List[PageRequest] = []
    recent = None
    pages = 0
    done = False

    while not done:
        if recent is None:
            page = endpoint.call(token, endpoint_name, parameters)
        else:
            page = endpoint.get_next_page(token, recent)
        if page is None:
            break
        recent = page
        pages += 1
        if isinstance(page.data, list):
            entities.extend(page.data)
        page_requests.append(PageRequest(meta=page.meta, cost=page.cost))

        done = (limit is not None and pages >= limit) or not endpoint.has_next_page(page)
        delay_s = page.meta.retry_after if page.meta is not None else None
        if not done and delay_s:
            _logger.info("Retry-After header was present on %s page %d. Delaying %ss before next page.", endpoint_name, pages, delay_s)
            GITHUB_API_STATS.incr("retry_after_sleeps_total")
            GITHUB_API_STATS.incr("retry_after_sleep_s_total", float(delay_s))
            sleep(float(delay_s))

    _logger.debug("Fetched %s: %d page(s), %d entities", endpoint_name, pages, len(entities))
    return entities, page_requests


def project(entities: Iterable[Any], allow_list: Optional[Sequence[str]]) -> List[Dict[str, Any]]:
    """Copy each entity keeping only the allow-listed fields (None keeps all).

    None entities are skipped; values are not modified; order is preserved.
    """
    keep_all = allow_list is None
    allowed = frozenset(allow_list or ())
    out: List[Dict[str, Any]] = []
    for entity in entities:
        if entity is None:
            continue
        if not isinstance(entity, Mapping):
            _logger.debug("Skipping non-object collection entry of type %s", type(entity).__name__)
            continue
        out.append({k: v for k, v in entity.items() if keep_all or k in allowed})
    return out


def analyze_pages(page_requests: Sequence[Optional[PageRequest]]) -> Tuple[CollectionMetadata, Cost]:
    """Derive collection metadata and total cost from the per-page records.

    Raises:
        InvalidPagesError: a page has no ETag.
    """
    pages: List[str] = []
    dirty = False
    dirty_modified: List[str] = []
    total = Cost()
    for req in page_requests:
        meta = req.meta if req is not None else None
        if meta is None or not meta.etag:
            raise InvalidPagesError("Invalid set of responses for pages")
        pages.append(str(meta.etag))
        if meta.status_actual and int(meta.status_actual) != NOT_MODIFIED:
            dirty = True
            if meta.last_modified:
                dirty_modified.append(str(meta.last_modified))
        if req.cost is not None:
            total.add(req.cost)

    if dirty_modified:
        # Collections normally do not return Last-Modified; direct entities do.
        # Preferring the newest Last-Modified over the refresh time is not implemented.
        _logger.debug("Last-Modified response was present (%d page(s)); not used for freshness.", len(dirty_modified))

    return CollectionMetadata(pages=tuple(pages), dirty=dirty, last_modified=tuple(dirty_modified)), total


def merge_collection_metadata(results: Iterable[Any]) -> Tuple[CollectionMetadata, Cost]:
    """Compose several results' meta/cost into one aggregate, in iteration order."""
    pages: List[str] = []
    last_modified: List[str] = []
    dirty = False
    total = Cost()
    for r in results:
        meta = getattr(r, "meta", None)
        if isinstance(meta, CollectionMetadata):
            pages.extend(meta.pages)
            last_modified.extend(meta.last_modified)
            dirty = dirty or meta.dirty
        total.add(getattr(r, "cost", None))
    return CollectionMetadata(pages=tuple(pages), dirty=dirty, last_modified=tuple(last_modified)), total


def fetch_filtered_collection(
    endpoint: CollectionEndpoint,
    token: str,
    endpoint_name: str,
    parameters: Mapping[str, Any],
    allow_list: Optional[Sequence[str]],
    *,
    page_limit: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> CollectionResult:
    """fetch_all() -> project() -> analyze_pages() as one CollectionResult."""
    entities, page_requests = fetch_all(endpoint, token, endpoint_name, parameters, page_limit=page_limit, sleep=sleep)
    filtered = project(entities, allow_list)
    meta, cost = analyze_pages(page_requests)
    return CollectionResult(entities=tuple(filtered), meta=meta, cost=cost)


@dataclass(frozen=True)
class CollectionBinding:
    cache_name: CollectionKind
    endpoint_name: str
    entity_kind: EntityKind


COLLECTION_BINDINGS: Dict[CollectionKind, CollectionBinding] = {
    b.cache_name: b
    for b in (
        CollectionBinding(CollectionKind.ORG_REPOS, "repos.getForOrg", EntityKind.REPO),
        CollectionBinding(CollectionKind.ORG_TEAMS, "orgs.getTeams", EntityKind.TEAM),
        CollectionBinding(CollectionKind.ORG_MEMBERS, "orgs.getMembers", EntityKind.MEMBER),
        CollectionBinding(CollectionKind.REPO_TEAM_PERMISSIONS, "repos.getTeams", EntityKind.TEAM_PERMISSIONS),
        CollectionBinding(CollectionKind.REPO_COLLABORATORS, "repos.getCollaborators", EntityKind.MEMBER),
        CollectionBinding(CollectionKind.REPO_BRANCHES, "repos.getBranches", EntityKind.BRANCHES),
        CollectionBinding(CollectionKind.TEAM_MEMBERS, "orgs.getTeamMembers", EntityKind.MEMBER),
        CollectionBinding(CollectionKind.TEAM_REPOS, "orgs.getTeamRepos", EntityKind.REPO_TEAM_PERMISSIONS),
    )
}

CacheOptionsLike = Union[CacheOptions, Mapping[str, Any], None]


class CollectionMethods:
    """One cached, filtered collection call per collection kind.

    Example:
        methods = CollectionMethods(GitHubAPIClient(), CollectionCacheExecutor())
        repos = methods.get_org_repos(token, {"org": "contoso"}, {"max_age_seconds": 900})
        repos.meta.pages, repos.cost.used_api_tokens
    """

    def __init__(
        self,
        endpoint: CollectionEndpoint,
        executor: CacheExecutor,
        *,
        page_limit: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.endpoint = endpoint
        self.executor = executor
        self.page_limit = page_limit
        self._sleep = sleep

    def _invocation(self, binding: CollectionBinding) -> Callable[[str, Mapping[str, Any]], CollectionResult]:
        allow_list = fields_to_keep(binding.entity_kind)

        def invoke(token: str, parameters: Mapping[str, Any]) -> CollectionResult:
            return fetch_filtered_collection(
                self.endpoint,
                token,
                binding.endpoint_name,
                parameters,
                allow_list,
                page_limit=self.page_limit,
                sleep=self._sleep,
            )

        return invoke

    def collection(
        self,
        kind: Union[CollectionKind, str],
        token: str,
        parameters: Optional[Mapping[str, Any]] = None,
        cache_options: CacheOptionsLike = None,
    ) -> CollectionResult:
        binding = COLLECTION_BINDINGS[CollectionKind(kind)]
        options = CacheOptions.coerce(cache_options)
        descriptor = FetchDescriptor(
            endpoint_name=binding.cache_name.value,
            invocation=self._invocation(binding),
            parameters=freeze_parameters(parameters),
            max_age_seconds=options.effective_max_age_seconds,
            background_refresh=options.background_refresh,
            token=token,
        )
        return self.executor.execute(descriptor)

    def get_org_repos(self, token: str, parameters: Optional[Mapping[str, Any]] = None, cache_options: CacheOptionsLike = None) -> CollectionResult:
        return self.collection(CollectionKind.ORG_REPOS, token, parameters, cache_options)

    def get_org_teams(self, token: str, parameters: Optional[Mapping[str, Any]] = None, cache_options: CacheOptionsLike = None) -> CollectionResult:
        return self.collection(CollectionKind.ORG_TEAMS, token, parameters, cache_options)

    def get_org_members(self, token: str, parameters: Optional[Mapping[str, Any]] = None, cache_options: CacheOptionsLike = None) -> CollectionResult:
        return self.collection(CollectionKind.ORG_MEMBERS, token, parameters, cache_options)

    def get_repo_teams(self, token: str, parameters: Optional[Mapping[str, Any]] = None, cache_options: CacheOptionsLike = None) -> CollectionResult:
        return self.collection(CollectionKind.REPO_TEAM_PERMISSIONS, token, parameters, cache_options)

    def get_repo_collaborators(self, token: str, parameters: Optional[Mapping[str, Any]] = None, cache_options: CacheOptionsLike = None) -> CollectionResult:
        return self.collection(CollectionKind.REPO_COLLABORATORS, token, parameters, cache_options)

    def get_repo_branches(self, token: str, parameters: Optional[Mapping[str, Any]] = None, cache_options: CacheOptionsLike = None) -> CollectionResult:
        return self.collection(CollectionKind.REPO_BRANCHES, token, parameters, cache_options)

    def get_team_members(self, token: str, parameters: Optional[Mapping[str, Any]] = None, cache_options: CacheOptionsLike = None) -> CollectionResult:
        return self.collection(CollectionKind.TEAM_MEMBERS, token, parameters, cache_options)

    def get_team_repos(self, token: str, parameters: Optional[Mapping[str, Any]] = None, cache_options: CacheOptionsLike = None) -> CollectionResult:
        return self.collection(CollectionKind.TEAM_REPOS, token, parameters, cache_options)
