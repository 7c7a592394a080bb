# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""GitHub collection error types.

These are intentionally lightweight so the collection pipeline, the cache executor and
callers can catch specific error classes without creating import cycles.
"""

from __future__ import annotations

from typing import Optional

from common import ConfigError


class GitHubAPIError(Exception):
    def __init__(self, *, status_code: int, endpoint: str, message: str):
        super().__init__(message)
        self.status_code = int(status_code)
        self.endpoint = str(endpoint or "")


class GitHubAuthError(GitHubAPIError):
    pass


class GitHubForbiddenError(GitHubAPIError):
    pass


class GitHubNotFoundError(GitHubAPIError):
    pass


class GitHubRateLimitError(GitHubForbiddenError):
    def __init__(self, *, status_code: int, endpoint: str, message: str, retry_after: Optional[float] = None):
        super().__init__(status_code=status_code, endpoint=endpoint, message=message)
        self.retry_after = retry_after


class GitHubRequestError(GitHubAPIError):
    pass


class UnknownEndpointError(GitHubRequestError):
    def __init__(self, endpoint_name: str):
        super().__init__(status_code=0, endpoint=endpoint_name, message=f"Unknown collection endpoint {endpoint_name!r}")


class InvalidPagesError(Exception):
    """A page response lacked the ETag every collection page must carry."""


class ConsolidationError(Exception):
    """An entity lacked the key field while merging per-organization results."""

    def __init__(self, key_field: str, org_name: str):
        super().__init__(f"Entity missing property {key_field} during consolidation processing (organization {org_name}).")
        self.key_field = key_field
        self.org_name = org_name


class OrganizationNotConfiguredError(ConfigError):
    def __init__(self, name: str):
        super().__init__(f'Could not find configuration for the "{name}" organization.')
        self.name = name
