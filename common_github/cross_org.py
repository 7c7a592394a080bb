# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Cross-organization fan-out and consolidation.

One collection query is run once per configured organization (each with its own
token), with at most `parallel_calls` fetches in flight. Results come back in
configuration order with aggregated metadata and cost:

    CrossOrganizationResult.orgs  {"alpha": [...], "beta": [...]}

consolidate() turns that into one view keyed by an entity field (default "id"):

    {42: {"id": 42, "orgs": {"alpha": {...}, "beta": {...}}}}
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

from common import OperationDefaults

from .collection_methods import CacheOptionsLike, CollectionMethods, merge_collection_metadata
from .collection_types import (
    CacheOptions,
    CollectionResult,
    ConsolidatedResult,
    CrossOrganizationResult,
    freeze_parameters,
)
from .exceptions import ConsolidationError

_logger = logging.getLogger(__name__)

T = TypeVar("T")

# (token, parameters, cache_options) -> CollectionResult, e.g. CollectionMethods.get_org_teams
OrgOperation = Callable[[str, Mapping[str, Any], CacheOptions], CollectionResult]
# (org name, parent entity) -> child parameters, or None to skip the entity
ChildParameters = Callable[[str, Mapping[str, Any]], Optional[Mapping[str, Any]]]

_DEFAULTS = OperationDefaults()


def run_bounded(tasks: Sequence[Tuple[Any, Callable[[], T]]], parallel_calls: int) -> Dict[Any, T]:
    """Run (key, fn) tasks with at most `parallel_calls` in flight.

    On the first failure, calls that have not started are cancelled, calls already in
    flight finish (their results are discarded) and the failure is raised.

    A worker sets `failed` before it can pick up another task, so once a call has
    failed no queued call reaches `fn`, even before the main thread sees the error.
    """
    results: Dict[Any, T] = {}
    if not tasks:
        return results
    failed = threading.Event()

    def guarded(fn: Callable[[], T]) -> Callable[[], Optional[T]]:
        def call() -> Optional[T]:
            if failed.is_set():
                return None
            try:
                return fn()
            except BaseException:
                failed.set()
                raise
        return call

    with ThreadPoolExecutor(max_workers=max(1, int(parallel_calls)), thread_name_prefix="cross-org") as executor:
        futs: Dict[Future, Any] = {executor.submit(guarded(fn)): key for key, fn in tasks}
        try:
            for fut in as_completed(futs):
                results[futs[fut]] = fut.result()
        except BaseException:
            for fut in futs:
                fut.cancel()
            raise
    return results


def fan_out(
    orgs_with_tokens: Mapping[str, str],
    operation: OrgOperation,
    parameters: Optional[Mapping[str, Any]] = None,
    cache_options: CacheOptionsLike = None,
    parallel_calls: int = _DEFAULTS.cross_orgs_members_parallel_calls,
) -> CrossOrganizationResult:
    """Run `operation` once per organization with parameters + {"org": name}."""
    individual = CacheOptions.coerce(cache_options).for_individual_call()
    base = dict(parameters or {})

    def task(name: str, token: str) -> Callable[[], CollectionResult]:
        params = freeze_parameters({**base, "org": name})
        return lambda: operation(token, params, individual)

    order = list(orgs_with_tokens)
    results = run_bounded([(name, task(name, orgs_with_tokens[name])) for name in order], parallel_calls)

    ordered = [results[name] for name in order]
    meta, cost = merge_collection_metadata(ordered)
    _logger.debug("Cross-org fan-out over %d organization(s): dirty=%s, rest_api_calls=%d", len(order), meta.dirty, cost.rest_api_calls)
    return CrossOrganizationResult(
        orgs={name: list(results[name]) for name in order},
        meta=meta,
        cost=cost,
    )


def fan_out_nested(
    orgs_with_tokens: Mapping[str, str],
    parent_operation: OrgOperation,
    child_operation: OrgOperation,
    child_parameters: ChildParameters,
    attach_as: str,
    parameters: Optional[Mapping[str, Any]] = None,
    cache_options: CacheOptionsLike = None,
    parallel_calls: int = _DEFAULTS.cross_orgs_members_parallel_calls,
) -> CrossOrganizationResult:
    """Fetch a parent collection per organization, then a child collection per parent entity.

    Each parent entity is copied with the child entities attached under `attach_as`
    (e.g. teams with "members"). Both rounds share the same concurrency bound.
    """
    parents = fan_out(orgs_with_tokens, parent_operation, parameters, cache_options, parallel_calls)
    individual = CacheOptions.coerce(cache_options).for_individual_call()

    tasks: List[Tuple[Any, Callable[[], CollectionResult]]] = []
    for name in parents.orgs:
        token = orgs_with_tokens[name]
        for index, entity in enumerate(parents.orgs[name]):
            child_params = child_parameters(name, entity)
            if child_params is None:
                _logger.warning("Skipping %s lookup for an entity without an identifier in %s", attach_as, name)
                continue
            frozen = freeze_parameters(child_params)
            tasks.append(((name, index), (lambda t=token, p=frozen: child_operation(t, p, individual))))

    children = run_bounded(tasks, parallel_calls)

    orgs: Dict[str, List[Dict[str, Any]]] = {}
    ordered_children: List[CollectionResult] = []
    for name, entities in parents.orgs.items():
        out: List[Dict[str, Any]] = []
        for index, entity in enumerate(entities):
            child = children.get((name, index))
            merged = dict(entity)
            merged[attach_as] = list(child) if child is not None else []
            if child is not None:
                ordered_children.append(child)
            out.append(merged)
        orgs[name] = out

    meta, cost = merge_collection_metadata([parents] + ordered_children)
    return CrossOrganizationResult(orgs=orgs, meta=meta, cost=cost)


def consolidate(
    cross_result: CrossOrganizationResult,
    key_field: str = "id",
    translate: Optional[Callable[[Mapping[str, Any]], Mapping[str, Any]]] = None,
) -> ConsolidatedResult:
    """Group every organization's entities by `key_field`.

    Raises:
        ConsolidationError: an entity has no (or a falsy) key; nothing is returned.
    """
    orgs: Mapping[str, List[Dict[str, Any]]] = cross_result.orgs
    if translate is not None:
        orgs = translate(orgs)

    entries: Dict[Any, Dict[str, Any]] = {}
    for org_name, values in orgs.items():
        for val in values:
            key = val.get(key_field) if isinstance(val, Mapping) else None
            if not key:
                raise ConsolidationError(key_field, org_name)
            entry = entries.get(key)
            if entry is None:
                entry = {key_field: key, "orgs": {}}
                entries[key] = entry
            entry["orgs"][org_name] = val
    return ConsolidatedResult(entries=entries, key_field=key_field, meta=cross_result.meta, cost=cross_result.cost)


def translate_organization_names_from_lowercase(
    original_names: Iterable[str], mapping: Mapping[str, T]
) -> Dict[str, T]:
    """Return a copy of `mapping` with lowercase org keys restored to their configured case."""
    out: Dict[str, T] = dict(mapping)
    for name in original_names:
        lc = name.lower()
        if name != lc and lc in out:
            out[name] = out.pop(lc)
    return out


def _team_slug_parameters(org_name: str, team: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    slug = team.get("slug")
    return {"org": org_name, "team_slug": slug} if slug else None


def _repo_parameters(org_name: str, repo: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    repo_name = repo.get("name")
    return {"owner": org_name, "repo": repo_name} if repo_name else None


class CrossOrganizationCollections:
    """Cross-organization views over CollectionMethods.

    Example:
        cross = CrossOrganizationCollections(methods)
        teams = cross.org_teams({"alpha": tok_a, "beta": tok_b}, cache_options={"maxAgeSeconds": 7200})
        by_id = consolidate(teams)
    """

    def __init__(self, methods: CollectionMethods, *, defaults: Optional[OperationDefaults] = None):
        self.methods = methods
        self.defaults = defaults or _DEFAULTS

    def org_repos(self, orgs_with_tokens: Mapping[str, str], parameters: Optional[Mapping[str, Any]] = None, cache_options: CacheOptionsLike = None) -> CrossOrganizationResult:
        return fan_out(orgs_with_tokens, self.methods.get_org_repos, parameters, cache_options, self.defaults.cross_orgs_repos_parallel_calls)

    def org_teams(self, orgs_with_tokens: Mapping[str, str], parameters: Optional[Mapping[str, Any]] = None, cache_options: CacheOptionsLike = None) -> CrossOrganizationResult:
        return fan_out(orgs_with_tokens, self.methods.get_org_teams, parameters, cache_options, self.defaults.cross_orgs_members_parallel_calls)

    def org_members(self, orgs_with_tokens: Mapping[str, str], parameters: Optional[Mapping[str, Any]] = None, cache_options: CacheOptionsLike = None) -> CrossOrganizationResult:
        return fan_out(orgs_with_tokens, self.methods.get_org_members, parameters, cache_options, self.defaults.cross_orgs_members_parallel_calls)

    def team_members(self, orgs_with_tokens: Mapping[str, str], parameters: Optional[Mapping[str, Any]] = None, cache_options: CacheOptionsLike = None) -> CrossOrganizationResult:
        """Every team of every organization, each with a "members" list."""
        return fan_out_nested(
            orgs_with_tokens,
            self.methods.get_org_teams,
            self.methods.get_team_members,
            _team_slug_parameters,
            "members",
            parameters,
            cache_options,
            self.defaults.cross_orgs_members_parallel_calls,
        )

    def repo_collaborators(self, orgs_with_tokens: Mapping[str, str], parameters: Optional[Mapping[str, Any]] = None, cache_options: CacheOptionsLike = None) -> CrossOrganizationResult:
        """Every repository of every organization, each with a "collaborators" list."""
        return fan_out_nested(
            orgs_with_tokens,
            self.methods.get_org_repos,
            self.methods.get_repo_collaborators,
            _repo_parameters,
            "collaborators",
            parameters,
            cache_options,
            self.defaults.cross_orgs_repos_parallel_calls,
        )

    def repo_teams(self, orgs_with_tokens: Mapping[str, str], parameters: Optional[Mapping[str, Any]] = None, cache_options: CacheOptionsLike = None) -> CrossOrganizationResult:
        """Every repository of every organization, each with a "teams" list."""
        return fan_out_nested(
            orgs_with_tokens,
            self.methods.get_org_repos,
            self.methods.get_repo_teams,
            _repo_parameters,
            "teams",
            parameters,
            cache_options,
            self.defaults.cross_orgs_repos_parallel_calls,
        )
