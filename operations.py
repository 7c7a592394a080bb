#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Application-level access to the configured GitHub organizations.

Operations resolves organization names (lowercase internally, configured case in
consolidated results), applies the default staleness budgets and parallelism and
splits caller options into cache options and endpoint parameters.

    ops = create_operations(load_config())
    teams = ops.get_teams()            # consolidated by id across all organizations
    repos = ops.get_repos()            # flattened, configuration order
    ops.get_organization("Contoso").get_members()
"""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from cache.cache_collections import CollectionResultCache
from cache.cache_pages import PageETagCache
from cache.lru_cache import LRUCache
from common import (
    DEFAULT_BACKGROUND_REFRESH_WORKERS,
    DEFAULT_CROSS_ORG_MAX_AGE_S,
    DEFAULT_USER_CONTEXT_CAPACITY,
    ConfigError,
    OperationDefaults,
    OrganizationSettings,
    OrgsConfig,
    resolve_cache_path,
)
from common_github import GitHubAPIClient
from common_github.api import CollectionCacheExecutor
from common_github.collection_methods import CollectionMethods
from common_github.collection_types import (
    CacheOptions,
    CollectionResult,
    ConsolidatedResult,
    CrossOrganizationResult,
)
from common_github.cross_org import (
    CrossOrganizationCollections,
    consolidate,
    translate_organization_names_from_lowercase,
)
from common_github.entity_classification import CLASSIFICATION_VERSION
from common_github.exceptions import OrganizationNotConfiguredError

_logger = logging.getLogger(__name__)

# Option keys that control caching; everything else is an endpoint parameter.
_CACHE_OPTION_KEYS = {
    "maxAgeSeconds": "max_age_seconds",
    "max_age_seconds": "max_age_seconds",
    "backgroundRefresh": "background_refresh",
    "background_refresh": "background_refresh",
    "individualMaxAgeSeconds": "individual_max_age_seconds",
    "individual_max_age_seconds": "individual_max_age_seconds",
}


def split_options(
    options: Optional[Mapping[str, Any]],
    *,
    max_age_seconds: Optional[int] = None,
    background_refresh: Optional[bool] = None,
) -> Tuple[CacheOptions, Dict[str, Any]]:
    """Split caller options into (CacheOptions, endpoint parameters).

    `max_age_seconds` / `background_refresh` are applied only when the caller did not
    set them (an explicit 0 max age is kept). The input mapping is not modified.
    """
    cache_kwargs: Dict[str, Any] = {}
    parameters: Dict[str, Any] = {}
    for key, value in (options or {}).items():
        name = _CACHE_OPTION_KEYS.get(str(key))
        if name is None:
            parameters[key] = value
        elif value is not None:
            cache_kwargs[name] = value

    if cache_kwargs.get("max_age_seconds") is None and max_age_seconds is not None:
        cache_kwargs["max_age_seconds"] = max_age_seconds
    if cache_kwargs.get("background_refresh") is None and background_refresh is not None:
        cache_kwargs["background_refresh"] = background_refresh
    return CacheOptions.coerce(cache_kwargs), parameters


class UserContext:
    """Per-user object memoized by Operations.get_user_context()."""

    def __init__(self, operations: "Operations", user_id: int):
        self.operations = operations
        self.id = user_id

    def __repr__(self) -> str:
        return f"UserContext(id={self.id!r})"


class Organization:
    """One configured organization bound to its owner token."""

    def __init__(self, name: str, settings: OrganizationSettings, collections: CollectionMethods, defaults: OperationDefaults):
        self.name = name.lower()
        self.settings = settings
        self.collections = collections
        self.defaults = defaults

    def __repr__(self) -> str:
        return f"Organization(name={self.settings.name!r})"

    def _collection(self, method: Callable[..., CollectionResult], options: Optional[Mapping[str, Any]], max_age_seconds: int) -> CollectionResult:
        cache_options, parameters = split_options(options, max_age_seconds=max_age_seconds)
        parameters["org"] = self.name
        return method(self.settings.owner_token, parameters, cache_options)

    def get_repositories(self, options: Optional[Mapping[str, Any]] = None) -> CollectionResult:
        return self._collection(self.collections.get_org_repos, options, self.defaults.org_repos_stale_seconds)

    def get_teams(self, options: Optional[Mapping[str, Any]] = None) -> CollectionResult:
        return self._collection(self.collections.get_org_teams, options, self.defaults.org_teams_stale_seconds)

    def get_members(self, options: Optional[Mapping[str, Any]] = None) -> CollectionResult:
        return self._collection(self.collections.get_org_members, options, self.defaults.org_members_stale_seconds)


class Operations:
    """Entry point for per-organization and cross-organization collections."""

    def __init__(
        self,
        config: OrgsConfig,
        collections: CollectionMethods,
        *,
        defaults: Optional[OperationDefaults] = None,
        user_context_cache: Optional[LRUCache] = None,
        user_context_factory: Optional[Callable[["Operations", int], Any]] = None,
    ):
        self.config = config
        self.collections = collections
        self.defaults = defaults or config.defaults
        self.cross_organization = CrossOrganizationCollections(collections, defaults=self.defaults)
        self._user_contexts = user_context_cache if user_context_cache is not None else LRUCache(DEFAULT_USER_CONTEXT_CAPACITY)
        self._user_context_factory = user_context_factory or UserContext

        self.organization_original_names: List[str] = [o.name for o in config.organizations]
        self.organization_names: List[str] = [n.lower() for n in self.organization_original_names]
        self.organization_names_with_tokens: Dict[str, str] = {
            o.name.lower(): o.owner_token for o in config.organizations
        }
        self.organizations: Dict[str, Organization] = {
            o.name.lower(): Organization(o.name, o, collections, self.defaults) for o in config.organizations
        }

    # ----------------------------
    # Organizations
    # ----------------------------

    def get_organization(self, name: str) -> Organization:
        """Raises OrganizationNotConfiguredError for an unknown name (no network call)."""
        org = self.organizations.get(str(name or "").lower())
        if org is None:
            raise OrganizationNotConfiguredError(name)
        return org

    def get_organizations(self, names: Optional[List[str]] = None) -> List[Organization]:
        """The named organizations in the order given, or all of them in configuration order."""
        if not names:
            return list(self.organizations.values())
        return [self.get_organization(n) for n in names]

    def translate_organization_names_from_lowercase(self, mapping: Mapping[str, Any]) -> Dict[str, Any]:
        return translate_organization_names_from_lowercase(self.organization_original_names, mapping)

    # ----------------------------
    # Cross-organization collections
    # ----------------------------

    def get_repos(self) -> CollectionResult:
        """Every organization's repositories, flattened in configuration order."""
        cache_options = CacheOptions(max_age_seconds=self.defaults.cross_orgs_repos_stale_seconds_per_org)
        cross = self.cross_organization.org_repos(self.organization_names_with_tokens, None, cache_options)
        repos: List[Dict[str, Any]] = []
        for name in self.organization_names:
            repos.extend(cross.orgs.get(name) or [])
        return CollectionResult(entities=tuple(repos), meta=cross.meta, cost=cross.cost)

    def get_teams(
        self, org_name: Optional[str] = None, options: Optional[Mapping[str, Any]] = None
    ) -> Union[CollectionResult, ConsolidatedResult]:
        """One organization's teams, or all teams consolidated by id."""
        cache_options, parameters = split_options(
            options,
            max_age_seconds=self.defaults.cross_orgs_members_stale_seconds_per_org,
            background_refresh=True,
        )
        if not org_name:
            cross = self.cross_organization.org_teams(self.organization_names_with_tokens, parameters, cache_options)
            return consolidate(cross, "id", self.translate_organization_names_from_lowercase)
        return self.get_organization(org_name).get_teams(_combined(parameters, cache_options))

    def get_members(
        self, org_name: Optional[str] = None, options: Optional[Mapping[str, Any]] = None
    ) -> Union[CollectionResult, ConsolidatedResult]:
        """One organization's members, or all members consolidated by id."""
        cache_options, parameters = split_options(
            options,
            max_age_seconds=self.defaults.cross_orgs_members_stale_seconds_per_org,
            background_refresh=True,
        )
        if not org_name:
            cross = self.cross_organization.org_members(self.organization_names_with_tokens, parameters, cache_options)
            return consolidate(cross, "id", self.translate_organization_names_from_lowercase)
        return self.get_organization(org_name).get_members(_combined(parameters, cache_options))

    def get_teams_with_members(self, options: Optional[Mapping[str, Any]] = None) -> CrossOrganizationResult:
        cache_options, parameters = split_options(options, max_age_seconds=DEFAULT_CROSS_ORG_MAX_AGE_S, background_refresh=True)
        return self.cross_organization.team_members(self.organization_names_with_tokens, parameters, cache_options)

    def get_repo_collaborators(self, options: Optional[Mapping[str, Any]] = None) -> CrossOrganizationResult:
        cache_options, parameters = split_options(options, max_age_seconds=DEFAULT_CROSS_ORG_MAX_AGE_S, background_refresh=True)
        return self.cross_organization.repo_collaborators(self.organization_names_with_tokens, parameters, cache_options)

    def get_repo_teams(self, options: Optional[Mapping[str, Any]] = None) -> CrossOrganizationResult:
        cache_options, parameters = split_options(options, max_age_seconds=DEFAULT_CROSS_ORG_MAX_AGE_S, background_refresh=True)
        return self.cross_organization.repo_teams(self.organization_names_with_tokens, parameters, cache_options)

    # ----------------------------
    # Users and accounts
    # ----------------------------

    def get_user_context(self, user_id: Union[int, str]) -> Any:
        """Return the memoized context for a user id ("123" and 123 are the same user)."""
        uid = int(user_id, 10) if isinstance(user_id, str) else user_id
        return self._user_contexts.get_or_create(uid, lambda k: self._user_context_factory(self, k))

    @property
    def system_accounts_by_username(self) -> List[str]:
        return list(self.config.system_account_logins)

    def is_system_account_by_username(self, username: str) -> bool:
        lc = str(username or "").lower()
        return any(login.lower() == lc for login in self.config.system_account_logins)

    @property
    def central_operations_token(self) -> str:
        """Owner token of the first configured organization."""
        if not self.config.organizations:
            raise ConfigError("No organizations configured.")
        return self.config.organizations[0].owner_token


def _combined(parameters: Mapping[str, Any], cache_options: CacheOptions) -> Dict[str, Any]:
    combined = dict(parameters)
    combined["max_age_seconds"] = cache_options.max_age_seconds
    combined["background_refresh"] = cache_options.background_refresh
    return combined


def create_operations(
    config: OrgsConfig,
    *,
    base_url: str = "https://api.github.com",
    cache_dir: Optional[Path] = None,
    persistent: bool = True,
    background_workers: int = DEFAULT_BACKGROUND_REFRESH_WORKERS,
    page_limit: Optional[int] = None,
) -> Operations:
    """Wire the REST client, page/collection caches and cache executor into Operations.

    Cache files land in `cache_dir` (default: the orgs-utils cache directory);
    persistent=False keeps everything in memory.
    """
    if persistent:
        pages_file = Path(cache_dir) / "github_pages.json" if cache_dir else resolve_cache_path("github_pages.json")
        collections_file = Path(cache_dir) / "github_collections.json" if cache_dir else resolve_cache_path("github_collections.json")
    else:
        pages_file = collections_file = None

    client = GitHubAPIClient(base_url=base_url, page_cache=PageETagCache(cache_file=pages_file))
    executor = CollectionCacheExecutor(
        CollectionResultCache(cache_file=collections_file, classification_version=CLASSIFICATION_VERSION),
        background_workers=background_workers,
    )
    _logger.debug("Collection cache: %s", collections_file or "memory")
    return Operations(config, CollectionMethods(client, executor, page_limit=page_limit))
