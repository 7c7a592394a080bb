#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Common shared enums that must be used by both:
- `common.py` (configuration / policy constants)
- `common_github/*` (API binding, collection pipeline, cross-org fan-out)

This module MUST NOT import `common.py` or any common_github modules to avoid cycles.
"""

from __future__ import annotations

from enum import Enum


class EntityKind(str, Enum):
    """Entity classification keys; each one owns an allow-list of fields to keep."""

    REPO = "repo"
    TEAM = "team"
    MEMBER = "member"
    BRANCHES = "branches"
    TEAM_PERMISSIONS = "teamPermissions"
    REPO_TEAM_PERMISSIONS = "repoTeamPermissions"


class CollectionKind(str, Enum):
    """Cache names for the collection kinds exposed by CollectionMethods."""

    ORG_REPOS = "orgRepos"
    ORG_TEAMS = "orgTeams"
    ORG_MEMBERS = "orgMembers"
    REPO_TEAM_PERMISSIONS = "repoTeamPermissions"
    REPO_COLLABORATORS = "repoCollaborators"
    REPO_BRANCHES = "repoBranches"
    TEAM_MEMBERS = "teamMembers"
    TEAM_REPOS = "teamRepos"
