#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
orgs-utils shared configuration and cache policy constants.

Configuration is a small YAML document:

    github:
      organizations:
        - name: Contoso
          ownerToken: ghp_...
        - name: contoso-labs
          ownerToken: ghp_...
      systemAccounts:
        logins: [contoso-bot]
    defaults:
      crossOrgsReposParallelCalls: 4
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

# Global logger for the module
_logger = logging.getLogger(__name__)

#
# Cache policy constants (single source of truth)
#
DEFAULT_COLLECTION_MAX_AGE_S: int = 600
# ^ Staleness budget (seconds) for any collection call whose caller did not pass max_age_seconds.
DEFAULT_CROSS_ORG_MAX_AGE_S: int = 60 * 10
# ^ Staleness budget for the nested cross-org views (teams with members, repo collaborators, repo teams).
DEFAULT_USER_CONTEXT_CAPACITY: int = 256
# ^ Max per-user context objects kept in memory by Operations.get_user_context().
DEFAULT_BACKGROUND_REFRESH_WORKERS: int = 2
# ^ Threads used to refresh stale cache entries out of band.


class ConfigError(Exception):
    """Raised for missing or malformed configuration."""


# ======================================================================================
# Cache location policy
#
# All persistent caches MUST live under:
#   - $ORGS_UTILS_CACHE_DIR       (explicit override), else
#   - ~/.cache/orgs-utils         (default)
# ======================================================================================

def orgs_utils_cache_dir() -> Path:
    """Return the cache directory for orgs-utils.

    Resolution order:
    - ORGS_UTILS_CACHE_DIR (explicit override)
    - ~/.cache/orgs-utils
    """
    override = os.environ.get("ORGS_UTILS_CACHE_DIR")
    if override:
        return Path(override).expanduser()

    return Path.home() / ".cache" / "orgs-utils"


def resolve_cache_path(cache_file: str) -> Path:
    """Resolve a cache file path into the global orgs-utils cache directory.

    - Absolute paths are used as-is.
    - Relative paths are rooted under `orgs_utils_cache_dir()`.
    - A leading ".cache/" is stripped so ".cache/foo.json" lands in ~/.cache/orgs-utils/foo.json.
    """
    p = Path(cache_file).expanduser()
    if p.is_absolute():
        return p

    rel = Path(*p.parts[1:]) if p.parts[:1] == (".",) else p

    if rel.parts[:1] == (".cache",):
        rel = Path(*rel.parts[1:])

    return orgs_utils_cache_dir() / rel


def default_config_path() -> Path:
    """Return the config path: $ORGS_UTILS_CONFIG, else ~/.config/orgs-utils/config.yaml."""
    override = os.environ.get("ORGS_UTILS_CONFIG")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "orgs-utils" / "config.yaml"


@dataclass(frozen=True)
class OperationDefaults:
    """Staleness budgets (seconds) and parallelism used by Operations."""

    org_repos_stale_seconds: int = 60 * 15
    org_repo_teams_stale_seconds: int = 60 * 3
    org_repo_collaborators_stale_seconds: int = 60 * 30
    org_repo_collaborator_stale_seconds: int = 30
    org_repo_details_stale_seconds: int = 60 * 5
    org_teams_stale_seconds: int = 60 * 5
    org_teams_slug_lookup_stale_seconds: int = 30
    org_members_stale_seconds: int = 60 * 30
    team_maintainers_stale_seconds: int = 60 * 2
    org_membership_stale_seconds: int = 60 * 5
    org_membership_direct_stale_seconds: int = 30
    cross_orgs_repos_stale_seconds_per_org: int = 60 * 60 * 2
    cross_orgs_repos_parallel_calls: int = 3
    cross_orgs_members_stale_seconds_per_org: int = 60 * 60 * 2
    cross_orgs_members_parallel_calls: int = 5
    corporate_links_stale_seconds: int = 60 * 5
    repo_branches_stale_seconds: int = 60 * 5
    account_detail_stale_seconds: int = 60 * 60 * 24
    org_repo_webhooks_stale_seconds: int = 60 * 60 * 8
    team_repository_permission_stale_seconds: int = 0

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "OperationDefaults":
        """Build defaults from a config mapping; accepts camelCase or snake_case keys."""
        if not raw:
            return cls()
        known = {f.name for f in fields(cls)}
        overrides: Dict[str, int] = {}
        for key, value in raw.items():
            name = _snake_case(str(key))
            if name not in known:
                _logger.debug("Ignoring unknown defaults key %r", key)
                continue
            try:
                overrides[name] = int(value)
            except (ValueError, TypeError) as e:
                raise ConfigError(f"defaults.{key} must be an integer, got {value!r}") from e
        return replace(cls(), **overrides)


def _snake_case(name: str) -> str:
    out: List[str] = []
    for ch in name:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out).lstrip("_")


@dataclass(frozen=True)
class OrganizationSettings:
    """One configured organization and the owner token used for it."""

    name: str
    owner_token: str = field(repr=False)


@dataclass(frozen=True)
class OrgsConfig:
    """Parsed configuration (immutable for the process lifetime)."""

    organizations: Tuple[OrganizationSettings, ...] = ()
    system_account_logins: Tuple[str, ...] = ()
    defaults: OperationDefaults = field(default_factory=OperationDefaults)

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "OrgsConfig":
        if raw is None:
            raw = {}
        if not isinstance(raw, Mapping):
            raise ConfigError("configuration root must be a mapping")
        github = raw.get("github") or {}
        if not isinstance(github, Mapping):
            raise ConfigError("'github' must be a mapping")

        orgs: List[OrganizationSettings] = []
        seen: Dict[str, str] = {}
        for i, entry in enumerate(github.get("organizations") or []):
            if not isinstance(entry, Mapping):
                raise ConfigError(f"github.organizations[{i}] must be a mapping")
            name = str(entry.get("name") or "").strip()
            token = entry.get("ownerToken", entry.get("owner_token"))
            if not name:
                raise ConfigError(f"github.organizations[{i}] is missing 'name'")
            if not token:
                raise ConfigError(f"Organization {name!r} is missing 'ownerToken'")
            lc = name.lower()
            if lc in seen:
                raise ConfigError(f"Organization {name!r} is configured twice (also as {seen[lc]!r})")
            seen[lc] = name
            orgs.append(OrganizationSettings(name=name, owner_token=str(token)))

        system_accounts = github.get("systemAccounts") or {}
        logins = system_accounts.get("logins") if isinstance(system_accounts, Mapping) else None

        return cls(
            organizations=tuple(orgs),
            system_account_logins=tuple(str(x) for x in (logins or [])),
            defaults=OperationDefaults.from_mapping(raw.get("defaults")),
        )


def load_config(path: Optional[Path] = None) -> OrgsConfig:
    """Load the YAML configuration file.

    Args:
        path: Config file. Defaults to `default_config_path()`.

    Raises:
        ConfigError: file missing, unreadable or malformed.
    """
    config_path = Path(path) if path is not None else default_config_path()
    try:
        with open(config_path, "r") as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    config = OrgsConfig.from_mapping(raw)
    _logger.debug("Loaded %d organization(s) from %s", len(config.organizations), config_path)
    return config
