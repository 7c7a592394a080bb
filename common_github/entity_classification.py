# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Field allow-lists per GitHub entity kind.

Collections are projected onto these fields before they are cached, which keeps
cache files small and the cached shape stable when GitHub adds fields.

Bump CLASSIFICATION_VERSION whenever a list changes: it is part of the collection
cache schema, so old entries with a different shape are not served.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from common_types import EntityKind

CLASSIFICATION_VERSION = 1

REPO_FIELDS: Tuple[str, ...] = (
    "id",
    "name",
    "full_name",
    "owner",
    "private",
    "html_url",
    "description",
    "fork",
    "url",
    "created_at",
    "updated_at",
    "pushed_at",
    "git_url",
    "ssh_url",
    "clone_url",
    "homepage",
    "size",
    "stargazers_count",
    "watchers_count",
    "language",
    "has_issues",
    "has_wiki",
    "has_pages",
    "forks_count",
    "open_issues_count",
    "license",
    "default_branch",
    "archived",
    "visibility",
    "permissions",
)

TEAM_FIELDS: Tuple[str, ...] = (
    "id",
    "name",
    "slug",
    "description",
    "privacy",
    "permission",
    "url",
    "html_url",
    "parent",
)

MEMBER_FIELDS: Tuple[str, ...] = (
    "id",
    "login",
    "avatar_url",
    "type",
    "site_admin",
    "permissions",
    "role_name",
)

BRANCH_FIELDS: Tuple[str, ...] = (
    "name",
    "commit",
    "protected",
)

# Teams as listed under a repository (GET /repos/{owner}/{repo}/teams).
TEAM_PERMISSION_FIELDS: Tuple[str, ...] = (
    "id",
    "name",
    "slug",
    "description",
    "privacy",
    "permission",
    "permissions",
)

# Repositories as listed under a team (GET /orgs/{org}/teams/{team_slug}/repos).
REPO_TEAM_PERMISSION_FIELDS: Tuple[str, ...] = (
    "id",
    "name",
    "full_name",
    "owner",
    "private",
    "html_url",
    "description",
    "fork",
    "archived",
    "permissions",
    "role_name",
)

ENTITY_FIELDS: Dict[EntityKind, Tuple[str, ...]] = {
    EntityKind.REPO: REPO_FIELDS,
    EntityKind.TEAM: TEAM_FIELDS,
    EntityKind.MEMBER: MEMBER_FIELDS,
    EntityKind.BRANCHES: BRANCH_FIELDS,
    EntityKind.TEAM_PERMISSIONS: TEAM_PERMISSION_FIELDS,
    EntityKind.REPO_TEAM_PERMISSIONS: REPO_TEAM_PERMISSION_FIELDS,
}


def fields_to_keep(kind: Optional[EntityKind]) -> Optional[Tuple[str, ...]]:
    """Allow-list for an entity kind; None keeps every field."""
    if kind is None:
        return None
    return ENTITY_FIELDS[EntityKind(kind)]
