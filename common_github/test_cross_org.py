"""
Pytest tests for the cross-organization fan-out and consolidation.

Run from the repository root:
    pytest common_github/test_cross_org.py -v
"""

import sys
import threading
import time
from pathlib import Path

import pytest

# Set up path for imports
parent_dir = Path(__file__).parent.parent
if str(parent_dir) not in sys.path:
    sys.path.insert(0, str(parent_dir))

from common_github.collection_types import CacheOptions, CollectionMetadata, CrossOrganizationResult
from common_github.cost import Cost
from common_github.cross_org import (
    consolidate,
    fan_out,
    fan_out_nested,
    run_bounded,
    translate_organization_names_from_lowercase,
)
from common_github.exceptions import ConsolidationError, GitHubForbiddenError
from conftest import InFlightCounter, make_result

TOKENS = {"alpha": "tok-a", "beta": "tok-b"}


# ============================================================================
# fan_out()
# ============================================================================

def test_fan_out_calls_each_org_with_its_token_and_org_parameter():
    seen = []

    def op(token, params, cache_options):
        seen.append((token, dict(params), cache_options))
        return make_result([{"id": 1, "org": params["org"]}], etag=f'"{params["org"]}"')

    result = fan_out(TOKENS, op, {"type": "all"}, {"maxAgeSeconds": 7200, "individualMaxAgeSeconds": 60}, 2)

    assert sorted((t, p["org"], p["type"]) for t, p, _ in seen) == [("tok-a", "alpha", "all"), ("tok-b", "beta", "all")]
    assert all(o == CacheOptions(max_age_seconds=60) for _, _, o in seen)
    assert list(result.orgs) == ["alpha", "beta"]
    assert result.meta.pages == ('"alpha"', '"beta"')
    assert result.cost.rest_api_calls == 2


def test_fan_out_keeps_configuration_order_regardless_of_completion():
    def op(token, params, cache_options):
        if params["org"] == "alpha":
            time.sleep(0.05)
        return make_result([{"id": params["org"]}])

    result = fan_out(TOKENS, op, None, None, 2)

    assert list(result.orgs) == ["alpha", "beta"]


def test_fan_out_failure_returns_no_data():
    """beta fails after alpha succeeded -> the error, no partial result."""
    def op(token, params, cache_options):
        if params["org"] == "beta":
            raise GitHubForbiddenError(status_code=403, endpoint="orgs_members", message="nope")
        return make_result([{"id": 1}])

    with pytest.raises(GitHubForbiddenError):
        fan_out(TOKENS, op, None, None, 5)


def test_fan_out_never_exceeds_parallel_limit():
    """6 orgs with limit 3 -> never more than 3 fetches in flight."""
    counter = InFlightCounter()
    orgs = {f"org{i}": f"tok{i}" for i in range(6)}

    def op(token, params, cache_options):
        with counter:
            time.sleep(0.05)
        return make_result([{"id": params["org"]}])

    result = fan_out(orgs, op, None, None, 3)

    assert counter.total == 6
    assert counter.max_seen <= 3
    assert len(result.orgs) == 6


@pytest.mark.parametrize("org_count,parallel_calls,failing_index", [
    (6, 2, 1),
    (6, 3, 0),
    (5, 1, 0),
    (8, 4, 2),
])
def test_fan_out_starts_no_queued_call_after_first_error(org_count, parallel_calls, failing_index):
    """Once one org has failed, no queued org call starts."""
    orgs = {f"org{i}": f"tok{i}" for i in range(org_count)}
    failing = f"org{failing_index}"
    failed = threading.Event()
    started_after_error = []
    lock = threading.Lock()

    def op(token, params, cache_options):
        if failed.is_set():
            with lock:
                started_after_error.append(params["org"])
        if params["org"] == failing:
            # Let the calls already in flight start first
            time.sleep(0.01)
            failed.set()
            raise GitHubForbiddenError(status_code=403, endpoint="orgs_members", message="nope")
        time.sleep(0.05)
        return make_result([{"id": params["org"]}])

    with pytest.raises(GitHubForbiddenError):
        fan_out(orgs, op, None, None, parallel_calls)

    assert failed.is_set()
    assert started_after_error == []


def test_run_bounded_skips_queued_calls_after_first_error():
    started = []
    lock = threading.Lock()

    def make(i):
        def fn():
            with lock:
                started.append(i)
            if i == 0:
                raise ValueError("first call failed")
            return i
        return fn

    with pytest.raises(ValueError):
        run_bounded([(i, make(i)) for i in range(6)], 1)

    assert started == [0]


# ============================================================================
# fan_out_nested()
# ============================================================================

def test_fan_out_nested_attaches_children_per_parent():
    child_params = []

    def teams(token, params, cache_options):
        return make_result([{"id": 1, "slug": f"{params['org']}-core"}, {"id": 2, "slug": None}], etag='"teams"')

    def members(token, params, cache_options):
        child_params.append((token, dict(params)))
        return make_result([{"id": 100, "login": "octo"}], etag='"members"')

    def slug_params(org_name, team):
        return {"org": org_name, "team_slug": team["slug"]} if team.get("slug") else None

    result = fan_out_nested(TOKENS, teams, members, slug_params, "members", None, None, 2)

    assert sorted(p["team_slug"] for _, p in child_params) == ["alpha-core", "beta-core"]
    assert ("tok-a", {"org": "alpha", "team_slug": "alpha-core"}) in child_params
    alpha = result.orgs["alpha"]
    assert alpha[0]["members"] == [{"id": 100, "login": "octo"}]
    # Entities without an identifier get an empty child list
    assert alpha[1]["members"] == []
    assert result.cost.rest_api_calls == 4
    assert result.meta.pages == ('"teams"', '"teams"', '"members"', '"members"')


# ============================================================================
# consolidate()
# ============================================================================

def _cross(orgs):
    return CrossOrganizationResult(orgs=orgs, meta=CollectionMetadata(pages=('"p"',), dirty=True), cost=Cost(rest_api_calls=2))


def test_consolidate_groups_same_key_across_orgs():
    """Consolidating "42" from alpha and beta -> one entry with both."""
    a42 = {"id": "42", "login": "octo"}
    b42 = {"id": "42", "login": "octo"}
    result = consolidate(_cross({"alpha": [a42], "beta": [b42, {"id": "7"}]}))

    assert len(result) == 2
    assert result["42"] == {"id": "42", "orgs": {"alpha": a42, "beta": b42}}
    assert list(result["7"]["orgs"]) == ["beta"]
    assert result.meta.pages == ('"p"',)
    assert result.cost.rest_api_calls == 2


def test_consolidate_missing_key_fails_without_partial_result():
    with pytest.raises(ConsolidationError, match="Entity missing property id during consolidation processing"):
        consolidate(_cross({"alpha": [{"id": 1}], "beta": [{"login": "no-id"}]}))


def test_consolidate_uses_custom_key_and_translation():
    result = consolidate(
        _cross({"contoso": [{"login": "octo"}]}),
        key_field="login",
        translate=lambda m: translate_organization_names_from_lowercase(["Contoso"], m),
    )

    assert result["octo"]["orgs"] == {"Contoso": {"login": "octo"}}
    assert result.key_field == "login"


# ============================================================================
# translate_organization_names_from_lowercase()
# ============================================================================

def test_translate_restores_configured_case_without_mutating_input():
    lower = {"contoso": 1, "labs": 2, "other": 3}

    out = translate_organization_names_from_lowercase(["Contoso", "labs", "Missing"], lower)

    assert out == {"Contoso": 1, "labs": 2, "other": 3}
    assert lower == {"contoso": 1, "labs": 2, "other": 3}
