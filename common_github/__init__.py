# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""GitHub REST binding and API statistics for orgs-utils.

GitHubAPIClient is the collection endpoint used by the paginated fetcher
(common_github/collection_methods.py):

    page = client.call(token, "repos.getForOrg", {"org": "contoso"})
    while client.has_next_page(page):
        page = client.get_next_page(token, page)

ETag Support (conditional requests):
  - every page request sends If-None-Match with the ETag of the last response for the
    same URL + token (cache/cache_pages.py)
  - 304 Not Modified responses DON'T count against rate limit; the cached body is served
    and the page is reported with status_actual=304 (so the collection is not "dirty")

Rate limits:
  - X-RateLimit-Remaining is reported in each page's Cost
  - Retry-After on a successful page is reported in PageMeta.retry_after (the fetcher waits)
  - 403/429 with an exhausted quota or Retry-After raise GitHubRateLimitError (never retried here)
"""

# Standard library imports
import email.utils
import hashlib
import logging
import string
import threading
import time
import urllib.parse
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

# Third-party imports
import requests

# Local imports
from cache.cache_pages import PageETagCache

from .collection_types import NOT_MODIFIED, Page, PageMeta
from .cost import Cost
from .exceptions import (
    GitHubAPIError,
    GitHubAuthError,
    GitHubForbiddenError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubRequestError,
    UnknownEndpointError,
)

# Module logger
_logger = logging.getLogger(__name__)


# ======================================================================================
# GLOBAL API STATISTICS
# ======================================================================================
# The REST binding, the collection pipeline and the cache executor write here.
# show_org_collections.py prints these at the end of a run.

class _GitHubAPIStats:
    """Global singleton for tracking GitHub API REST call statistics."""

    def __init__(self):
        self._mu = threading.Lock()
        self.reset()

    def reset(self):
        """Reset all statistics (useful for testing)."""
        # REST call stats
        self.rest_calls_total = 0
        self.rest_calls_by_label = {}  # Dict[str, int] - count by endpoint label
        self.rest_success_total = 0
        self.rest_time_total_s = 0.0

        # Error stats
        self.rest_errors_total = 0
        self.rest_errors_by_status = {}  # Dict[int, int]
        self.rest_last_error = {}  # Dict[str, Any]

        # ETag stats (conditional requests)
        self.etag_304_total = 0  # 304 Not Modified responses (don't count against rate limit!)
        self.etag_304_by_label = {}  # Dict[str, int]

        # Retry-After pauses between pages
        self.retry_after_sleeps_total = 0
        self.retry_after_sleep_s_total = 0.0

        # Cache executor stats, by cache name (orgRepos, orgTeams, ...)
        self.cache_hits = {}  # Dict[str, int]
        self.cache_misses = {}  # Dict[str, int] - keys like "orgRepos.expired" / "orgRepos.missing"
        self.cache_writes = {}  # Dict[str, int]
        self.background_refresh_total = 0
        self.background_refresh_errors_total = 0

        # Latest rate limit snapshot from response headers
        self.core_rate_limit = None  # Optional[Dict] - {remaining, limit, reset_epoch, reset_utc}

    def bump(self, counter: Dict[Any, int], key: Any, n: int = 1) -> None:
        """Increment counter[key] (counters are shared across worker threads)."""
        with self._mu:
            counter[key] = int(counter.get(key, 0) or 0) + int(n)

    def incr(self, attr: str, n: float = 1) -> None:
        """Increment a scalar counter such as rest_calls_total (thread-safe)."""
        with self._mu:
            setattr(self, attr, getattr(self, attr) + n)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rest": {
                "total": int(self.rest_calls_total),
                "by_label": dict(sorted(self.rest_calls_by_label.items(), key=lambda kv: (-kv[1], kv[0]))),
                "success_total": int(self.rest_success_total),
                "errors_total": int(self.rest_errors_total),
                "errors_by_status": dict(self.rest_errors_by_status),
                "last_error": dict(self.rest_last_error),
                "time_total_s": round(float(self.rest_time_total_s), 3),
                "etag_304_total": int(self.etag_304_total),
            },
            "retry_after": {
                "sleeps_total": int(self.retry_after_sleeps_total),
                "sleep_s_total": float(self.retry_after_sleep_s_total),
            },
            "cache": {
                "hits": dict(self.cache_hits),
                "misses": dict(self.cache_misses),
                "writes": dict(self.cache_writes),
                "background_refresh_total": int(self.background_refresh_total),
                "background_refresh_errors_total": int(self.background_refresh_errors_total),
            },
            "core_rate_limit": dict(self.core_rate_limit) if self.core_rate_limit else None,
        }


# Global instance - all code writes to this
GITHUB_API_STATS = _GitHubAPIStats()


# ======================================================================================
# Endpoint routes
# ======================================================================================
# Endpoint name -> REST path template. Template fields are taken from the call
# parameters; the remaining parameters are sent as the query string.

ENDPOINT_ROUTES: Dict[str, str] = {
    "repos.getForOrg": "/orgs/{org}/repos",
    "orgs.getTeams": "/orgs/{org}/teams",
    "orgs.getMembers": "/orgs/{org}/members",
    "repos.getTeams": "/repos/{owner}/{repo}/teams",
    "repos.getCollaborators": "/repos/{owner}/{repo}/collaborators",
    "repos.getBranches": "/repos/{owner}/{repo}/branches",
    "orgs.getTeamMembers": "/orgs/{org}/teams/{team_slug}/members",
    "orgs.getTeamRepos": "/orgs/{org}/teams/{team_slug}/repos",
}

DEFAULT_PER_PAGE = 100


def _route_fields(route: str) -> List[str]:
    return [name for (_, name, _, _) in string.Formatter().parse(route) if name]


def _token_hash(token: str) -> str:
    return hashlib.sha256(str(token or "").encode("utf-8")).hexdigest()[:16]


def parse_retry_after(value: Optional[str], *, now: Optional[float] = None) -> Optional[float]:
    """Parse a Retry-After header: delta-seconds or an HTTP date. None when absent/invalid."""
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    try:
        return max(0.0, float(s))
    except ValueError:
        pass
    try:
        when = email.utils.parsedate_to_datetime(s)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now_f = time.time() if now is None else float(now)
    return max(0.0, when.timestamp() - now_f)


class GitHubAPIClient:
    """GitHub REST binding for paginated collections, one token per call.

    Features:
    - Endpoint-name routing (ENDPOINT_ROUTES) with Link-header pagination
    - Automatic ETag conditional requests backed by a page cache
    - Per-page Cost (REST calls, billable tokens, 304 hits, remaining quota)
    - Typed errors (common_github/exceptions.py)

    The client holds no token: organizations use different owner tokens, so the
    token is an argument of every call.
    """

    def __init__(
        self,
        *,
        base_url: str = "https://api.github.com",
        page_cache: Optional[PageETagCache] = None,
        per_page: int = DEFAULT_PER_PAGE,
        timeout: int = 10,
        debug_rest: bool = False,
    ):
        """Initialize the binding.

        Args:
            base_url: API root (GitHub Enterprise Server: https://HOST/api/v3).
            page_cache: Page/ETag cache; None disables conditional requests.
            per_page: Page size sent with the first request of each collection.
            timeout: Per-request timeout in seconds.
        """
        self.base_url = str(base_url).rstrip("/")
        self.headers = {"Accept": "application/vnd.github+json"}
        self.page_cache = page_cache
        self.per_page = int(per_page)
        self.timeout = int(timeout)
        self.logger = logging.getLogger(self.__class__.__name__)
        self._debug_rest = bool(debug_rest)
        self._cached_rate_limit_info: Optional[Dict[str, Any]] = None

    # ----------------------------
    # Collection endpoint protocol
    # ----------------------------

    def call(self, token: str, endpoint_name: str, parameters: Mapping[str, Any]) -> Page:
        """Fetch the first page of a collection."""
        url, query = self._build_request(endpoint_name, parameters)
        return self._fetch_page(token, url, params=query, label=self._rest_label_for_url(url))

    def get_next_page(self, token: str, page: Page) -> Page:
        """Fetch the page after `page` (its Link rel="next" URL already carries the query)."""
        if not page.next_url:
            raise GitHubRequestError(status_code=0, endpoint="", message="No next page to fetch")
        return self._fetch_page(token, page.next_url, params=None, label=self._rest_label_for_url(page.next_url))

    def has_next_page(self, page: Optional[Page]) -> bool:
        return bool(page is not None and page.next_url)

    # ----------------------------
    # Internals
    # ----------------------------

    def _build_request(self, endpoint_name: str, parameters: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
        """Resolve an endpoint name + parameters into (url, query params)."""
        route = ENDPOINT_ROUTES.get(endpoint_name)
        if route is None:
            raise UnknownEndpointError(endpoint_name)
        params = dict(parameters or {})
        path_values: Dict[str, str] = {}
        for name in _route_fields(route):
            value = params.pop(name, None)
            if value is None or str(value) == "":
                raise GitHubRequestError(
                    status_code=0,
                    endpoint=endpoint_name,
                    message=f"{endpoint_name} requires parameter {name!r}",
                )
            path_values[name] = urllib.parse.quote(str(value), safe="")
        params.setdefault("per_page", self.per_page)
        query = {k: params[k] for k in sorted(params) if params[k] is not None}
        return f"{self.base_url}{route.format(**path_values)}", query

    def _rest_label_for_url(self, url: str) -> str:
        """Coarse label for a request URL (keeps org/repo names out of stats keys)."""
        try:
            path = urllib.parse.urlparse(str(url or "")).path or ""
        except ValueError:
            path = ""
        base_path = urllib.parse.urlparse(self.base_url).path or ""
        if base_path and path.startswith(base_path):
            path = path[len(base_path):]
        parts = [p for p in path.split("/") if p]
        if len(parts) >= 4 and parts[0] == "orgs" and parts[2] == "teams":
            return f"orgs_teams_{parts[-1]}" if len(parts) >= 5 else "orgs_teams"
        if len(parts) >= 3 and parts[0] == "orgs":
            return f"orgs_{parts[2]}"
        if len(parts) >= 4 and parts[0] == "repos":
            return f"repos_{parts[3]}"
        return "/".join(parts[:3]) if parts else "unknown"

    def _page_cache_key(self, token: str, url: str, params: Optional[Mapping[str, Any]]) -> str:
        url_full = str(url or "")
        if params:
            q = urllib.parse.urlencode(list(params.items()), doseq=True)
            if q:
                sep = "&" if ("?" in url_full) else "?"
                url_full = f"{url_full}{sep}{q}"
        return f"{_token_hash(token)}:{url_full}"

    def _fetch_page(self, token: str, url: str, *, params: Optional[Dict[str, Any]], label: str) -> Page:
        cache_key = self._page_cache_key(token, url, params)
        cached = self.page_cache.get(cache_key) if self.page_cache is not None else None
        etag = cached.get("etag") if cached else None

        resp = self._rest_get(url, token=token, params=params, etag=etag, label=label)
        code = int(resp.status_code or 0)
        remaining = self._remaining_from_headers(resp)

        if code == NOT_MODIFIED:
            if not cached:
                raise GitHubRequestError(status_code=code, endpoint=label, message=f"304 Not Modified without a cached page for {url}")
            data = cached.get("data")
            next_url = cached.get("next_url")
            etag_out = resp.headers.get("ETag") or cached.get("etag")
        elif code >= 400:
            self._raise_for_status(resp, label)
        else:
            data = resp.json() if resp.content else None
            next_url = (resp.links.get("next") or {}).get("url")
            etag_out = resp.headers.get("ETag")
            if etag_out and self.page_cache is not None:
                self.page_cache.put(cache_key, etag=etag_out, data=data, next_url=next_url)

        meta = PageMeta(
            etag=etag_out,
            status_actual=code,
            retry_after=parse_retry_after(resp.headers.get("Retry-After")),
            last_modified=resp.headers.get("Last-Modified"),
        )
        return Page(data=data, meta=meta, cost=Cost.for_response(status_code=code, remaining=remaining), next_url=next_url)

    def _rest_get(
        self,
        url: str,
        *,
        token: str,
        params: Optional[Dict[str, Any]] = None,
        etag: Optional[str] = None,
        label: str = "unknown",
    ) -> requests.Response:
        """requests.get wrapper that increments per-run counters and sends If-None-Match.

        Returns the response for any status; callers decide what an error is.
        """
        GITHUB_API_STATS.incr("rest_calls_total")
        GITHUB_API_STATS.bump(GITHUB_API_STATS.rest_calls_by_label, label)
        if self._debug_rest:
            self.logger.debug("GH REST GET [%s] %s params=%s etag=%s", label, url, params, etag)

        headers = dict(self.headers)
        if token:
            headers["Authorization"] = f"token {token}"
        if etag:
            headers["If-None-Match"] = etag

        t0_req = time.monotonic()
        resp = requests.get(url, headers=headers, params=params, timeout=self.timeout)
        GITHUB_API_STATS.incr("rest_time_total_s", max(0.0, time.monotonic() - t0_req))

        code = int(resp.status_code or 0)
        if code == NOT_MODIFIED:
            GITHUB_API_STATS.incr("etag_304_total")
            GITHUB_API_STATS.bump(GITHUB_API_STATS.etag_304_by_label, label)
            GITHUB_API_STATS.incr("rest_success_total")
        elif code and code < 400:
            GITHUB_API_STATS.incr("rest_success_total")
        else:
            GITHUB_API_STATS.incr("rest_errors_total")
            GITHUB_API_STATS.bump(GITHUB_API_STATS.rest_errors_by_status, code)
            GITHUB_API_STATS.rest_last_error = {
                "status": code,
                "url": str(getattr(resp, "url", "") or url),
                "body": (resp.text or "")[:300],
                "label": label,
            }

        if self._debug_rest:
            self.logger.debug("GH REST RESP [%s] status=%s remaining=%s", label, code, resp.headers.get("X-RateLimit-Remaining"))

        self._capture_rate_limit(resp)
        return resp

    def _remaining_from_headers(self, resp: requests.Response) -> Optional[int]:
        try:
            hdr = resp.headers.get("X-RateLimit-Remaining")
            return int(hdr) if hdr is not None else None
        except (ValueError, TypeError):
            return None

    def _capture_rate_limit(self, resp: requests.Response) -> None:
        """Remember the latest X-RateLimit-* snapshot (for stats output)."""
        try:
            remaining_hdr = resp.headers.get("X-RateLimit-Remaining")
            limit_hdr = resp.headers.get("X-RateLimit-Limit")
            reset_hdr = resp.headers.get("X-RateLimit-Reset")
            if remaining_hdr is None or limit_hdr is None:
                return
            reset_epoch = int(reset_hdr) if reset_hdr is not None else None
            info = {
                "remaining": int(remaining_hdr),
                "limit": int(limit_hdr),
                "reset_epoch": reset_epoch,
                "reset_utc": (
                    datetime.fromtimestamp(reset_epoch, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S %Z")
                    if reset_epoch is not None
                    else "unknown"
                ),
            }
        except (ValueError, TypeError):  # int() on invalid header values
            return
        self._cached_rate_limit_info = info
        GITHUB_API_STATS.core_rate_limit = info

    def get_cached_rate_limit_info(self) -> Optional[Dict[str, Any]]:
        """Rate limit info from the most recent response headers (no API call)."""
        return dict(self._cached_rate_limit_info) if self._cached_rate_limit_info else None

    def _raise_for_status(self, resp: requests.Response, label: str) -> None:
        code = int(resp.status_code or 0)
        body = ""
        try:
            body = (resp.text or "")[:300]
        except (ValueError, TypeError):
            body = ""
        message = f"GitHub API {label} failed with HTTP {code}: {body}"
        retry_after = parse_retry_after(resp.headers.get("Retry-After"))

        exc: GitHubAPIError
        if code == 401:
            exc = GitHubAuthError(status_code=code, endpoint=label, message=message)
        elif code == 429 or (code == 403 and (retry_after is not None or resp.headers.get("X-RateLimit-Remaining") == "0")):
            exc = GitHubRateLimitError(status_code=code, endpoint=label, message=message, retry_after=retry_after)
        elif code == 403:
            exc = GitHubForbiddenError(status_code=code, endpoint=label, message=message)
        elif code == 404:
            exc = GitHubNotFoundError(status_code=code, endpoint=label, message=message)
        else:
            exc = GitHubRequestError(status_code=code, endpoint=label, message=message)
        _logger.debug("Raising %s for %s (HTTP %d)", type(exc).__name__, label, code)
        raise exc
