"""
Pytest tests for the GitHub REST binding (GitHubAPIClient).

requests.get is patched; no network access.

Run from the repository root:
    pytest common_github/test_client.py -v
"""

import sys
import threading
from pathlib import Path
from unittest import mock

import pytest
from requests.structures import CaseInsensitiveDict

# Set up path for imports
parent_dir = Path(__file__).parent.parent
if str(parent_dir) not in sys.path:
    sys.path.insert(0, str(parent_dir))

from cache.cache_pages import PageETagCache
from common_github import GITHUB_API_STATS, GitHubAPIClient, parse_retry_after
from common_github.collection_methods import fetch_filtered_collection
from common_github.exceptions import (
    GitHubAuthError,
    GitHubForbiddenError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubRequestError,
    UnknownEndpointError,
)


def _resp(status=200, body=None, *, headers=None, next_url=None):
    r = mock.Mock()
    r.status_code = status
    r.headers = CaseInsensitiveDict(headers or {})
    r.json.return_value = body
    r.content = b"x" if body is not None else b""
    r.text = "" if body is None else str(body)
    r.links = {"next": {"url": next_url, "rel": "next"}} if next_url else {}
    r.url = "https://api.github.com/test"
    return r


# ============================================================================
# Requests and pagination
# ============================================================================

def test_call_builds_route_query_and_auth_header():
    client = GitHubAPIClient()
    with mock.patch("common_github.requests.get", return_value=_resp(200, [{"id": 1}], headers={"ETag": '"a"'})) as get:
        page = client.call("tok", "repos.getCollaborators", {"owner": "Contoso", "repo": "my repo", "affiliation": "direct"})

    url = get.call_args.args[0]
    kwargs = get.call_args.kwargs
    assert url == "https://api.github.com/repos/Contoso/my%20repo/collaborators"
    assert kwargs["params"] == {"affiliation": "direct", "per_page": 100}
    assert kwargs["headers"]["Authorization"] == "token tok"
    assert "If-None-Match" not in kwargs["headers"]
    assert page.data == [{"id": 1}]
    assert page.meta.etag == '"a"'
    assert page.meta.status_actual == 200
    assert GITHUB_API_STATS.rest_calls_by_label == {"repos_collaborators": 1}


def test_missing_path_parameter_and_unknown_endpoint_raise_before_any_request():
    client = GitHubAPIClient()
    with mock.patch("common_github.requests.get") as get:
        with pytest.raises(GitHubRequestError, match="team_slug"):
            client.call("tok", "orgs.getTeamMembers", {"org": "contoso"})
        with pytest.raises(UnknownEndpointError):
            client.call("tok", "orgs.getHooks", {"org": "contoso"})
    get.assert_not_called()


def test_link_header_drives_pagination_through_the_fetcher():
    client = GitHubAPIClient()
    responses = [
        _resp(200, [{"id": 1, "login": "a", "url": "u"}], headers={"ETag": '"p1"'}, next_url="https://api.github.com/orgs/contoso/members?page=2"),
        _resp(200, [{"id": 2, "login": "b", "url": "u"}], headers={"ETag": '"p2"', "X-RateLimit-Remaining": "4321"}),
    ]
    with mock.patch("common_github.requests.get", side_effect=responses) as get:
        result = fetch_filtered_collection(client, "tok", "orgs.getMembers", {"org": "contoso"}, ("id", "login"))

    assert get.call_count == 2
    assert get.call_args_list[1].args[0] == "https://api.github.com/orgs/contoso/members?page=2"
    assert get.call_args_list[1].kwargs["params"] is None
    assert [dict(e) for e in result] == [{"id": 1, "login": "a"}, {"id": 2, "login": "b"}]
    assert result.meta.pages == ('"p1"', '"p2"')
    assert result.cost.remaining_api_tokens == 4321


def test_retry_after_and_last_modified_are_reported_in_page_meta():
    client = GitHubAPIClient()
    headers = {"ETag": '"a"', "Retry-After": "2", "Last-Modified": "Tue, 01 Oct 2024 10:00:00 GMT"}
    with mock.patch("common_github.requests.get", return_value=_resp(200, [], headers=headers)):
        page = client.call("tok", "orgs.getTeams", {"org": "contoso"})

    assert page.meta.retry_after == 2.0
    assert page.meta.last_modified == "Tue, 01 Oct 2024 10:00:00 GMT"


# ============================================================================
# ETag conditional requests
# ============================================================================

def test_not_modified_serves_cached_page_and_costs_no_quota():
    client = GitHubAPIClient(page_cache=PageETagCache(cache_file=None))
    first = _resp(200, [{"id": 1}], headers={"ETag": '"v1"'}, next_url="https://api.github.com/orgs/contoso/teams?page=2")
    second = _resp(304, None, headers={"ETag": '"v1"'})

    with mock.patch("common_github.requests.get", side_effect=[first, second]) as get:
        fresh = client.call("tok", "orgs.getTeams", {"org": "contoso"})
        cached = client.call("tok", "orgs.getTeams", {"org": "contoso"})

    assert get.call_args_list[1].kwargs["headers"]["If-None-Match"] == '"v1"'
    assert cached.data == fresh.data == [{"id": 1}]
    assert cached.next_url == fresh.next_url
    assert cached.meta.status_actual == 304
    assert cached.cost.used_api_tokens == 0
    assert cached.cost.cache_hits == 1
    assert GITHUB_API_STATS.etag_304_total == 1


def test_page_cache_is_per_token():
    client = GitHubAPIClient(page_cache=PageETagCache(cache_file=None))
    with mock.patch("common_github.requests.get", side_effect=[_resp(200, [], headers={"ETag": '"v1"'}), _resp(200, [], headers={"ETag": '"v2"'})]) as get:
        client.call("tok-a", "orgs.getTeams", {"org": "contoso"})
        client.call("tok-b", "orgs.getTeams", {"org": "contoso"})

    assert "If-None-Match" not in get.call_args_list[1].kwargs["headers"]


def test_not_modified_without_cached_page_is_an_error():
    client = GitHubAPIClient(page_cache=PageETagCache(cache_file=None))
    with mock.patch("common_github.requests.get", return_value=_resp(304, None)):
        with pytest.raises(GitHubRequestError):
            client.call("tok", "orgs.getTeams", {"org": "contoso"})


# ============================================================================
# Errors
# ============================================================================

@pytest.mark.parametrize("status,headers,exc_type", [
    (401, {}, GitHubAuthError),
    (403, {}, GitHubForbiddenError),
    (403, {"X-RateLimit-Remaining": "0"}, GitHubRateLimitError),
    (429, {"Retry-After": "30"}, GitHubRateLimitError),
    (404, {}, GitHubNotFoundError),
    (500, {}, GitHubRequestError),
])
def test_error_statuses_map_to_typed_exceptions(status, headers, exc_type):
    client = GitHubAPIClient()
    with mock.patch("common_github.requests.get", return_value=_resp(status, {"message": "x"}, headers=headers)):
        with pytest.raises(exc_type) as excinfo:
            client.call("tok", "orgs.getMembers", {"org": "contoso"})

    assert excinfo.value.status_code == status
    assert GITHUB_API_STATS.rest_errors_by_status == {status: 1}


def test_rate_limit_error_carries_retry_after():
    client = GitHubAPIClient()
    with mock.patch("common_github.requests.get", return_value=_resp(429, {"message": "slow down"}, headers={"Retry-After": "30"})):
        with pytest.raises(GitHubRateLimitError) as excinfo:
            client.call("tok", "orgs.getMembers", {"org": "contoso"})
    assert excinfo.value.retry_after == 30.0


def test_rate_limit_headers_are_captured():
    client = GitHubAPIClient()
    headers = {"ETag": '"a"', "X-RateLimit-Remaining": "10", "X-RateLimit-Limit": "5000", "X-RateLimit-Reset": "1700000000"}
    with mock.patch("common_github.requests.get", return_value=_resp(200, [], headers=headers)):
        client.call("tok", "orgs.getMembers", {"org": "contoso"})

    info = client.get_cached_rate_limit_info()
    assert info["remaining"] == 10
    assert info["limit"] == 5000
    assert GITHUB_API_STATS.core_rate_limit["reset_epoch"] == 1700000000


# ============================================================================
# parse_retry_after()
# ============================================================================

def test_parse_retry_after_seconds_and_http_date():
    assert parse_retry_after("2") == 2.0
    assert parse_retry_after(None) is None
    assert parse_retry_after("soon") is None
    # 2023-11-14 22:13:20 GMT == epoch 1700000000
    assert parse_retry_after("Tue, 14 Nov 2023 22:13:30 GMT", now=1700000000) == 10.0
    assert parse_retry_after("Tue, 14 Nov 2023 22:13:10 GMT", now=1700000000) == 0.0


# ============================================================================
# API statistics
# ============================================================================

def test_stats_counters_are_not_lost_across_threads():
    def worker():
        for _ in range(1000):
            GITHUB_API_STATS.incr("rest_calls_total")
            GITHUB_API_STATS.incr("rest_time_total_s", 0.5)
            GITHUB_API_STATS.bump(GITHUB_API_STATS.rest_calls_by_label, "orgs_members")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert GITHUB_API_STATS.rest_calls_total == 8000
    assert GITHUB_API_STATS.rest_time_total_s == 4000.0
    assert GITHUB_API_STATS.rest_calls_by_label == {"orgs_members": 8000}
