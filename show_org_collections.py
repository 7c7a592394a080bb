#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Show cached GitHub collections across the configured organizations.

Examples:
    show_org_collections.py --kind repos
    show_org_collections.py --kind members --org Contoso --max-age 0 --json
    show_org_collections.py --kind teams -v

Without --org, teams and members are consolidated by id across organizations
and repositories are listed for all organizations. The REST statistics and the
collection cost are printed at the end.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from common import ConfigError, load_config
from common_github import GITHUB_API_STATS
from common_github.collection_types import ConsolidatedResult
from common_github.exceptions import ConsolidationError, GitHubAPIError, InvalidPagesError
from operations import create_operations


def _rows(result: Any) -> List[Dict[str, Any]]:
    if isinstance(result, ConsolidatedResult):
        return [dict(v) for v in result.values()]
    return [dict(v) for v in result]


def _label(kind: str, row: Dict[str, Any]) -> str:
    if kind == "members":
        name = row.get("login") or ""
    else:
        name = row.get("full_name") or row.get("slug") or row.get("name") or ""
    if not name and isinstance(row.get("orgs"), dict):
        first = next(iter(row["orgs"].values()), {}) or {}
        name = first.get("login") or first.get("slug") or first.get("name") or ""
    orgs = row.get("orgs")
    suffix = f"  [{', '.join(orgs)}]" if isinstance(orgs, dict) else ""
    return f"{row.get('id', '')}\t{name}{suffix}"


def fetch(ops, kind: str, org: Optional[str], max_age: Optional[int]) -> Any:
    options = {"max_age_seconds": max_age} if max_age is not None else None
    if kind == "teams":
        return ops.get_teams(org, options)
    if kind == "members":
        return ops.get_members(org, options)
    if org:
        return ops.get_organization(org).get_repositories(options)
    return ops.get_repos()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description='Show cached GitHub collections across configured organizations'
    )
    parser.add_argument(
        '--config',
        type=Path,
        default=None,
        help='Configuration YAML (default: $ORGS_UTILS_CONFIG or ~/.config/orgs-utils/config.yaml)'
    )
    parser.add_argument(
        '--org',
        default=None,
        help='Only this organization (default: all configured organizations)'
    )
    parser.add_argument(
        '--kind',
        choices=['repos', 'teams', 'members'],
        default='repos',
        help='Collection to show (default: repos)'
    )
    parser.add_argument(
        '--max-age',
        type=int,
        default=None,
        help='Staleness budget in seconds (0 always refetches; default: per-collection defaults)'
    )
    parser.add_argument(
        '--api-url',
        default='https://api.github.com',
        help='GitHub API root (default: https://api.github.com)'
    )
    parser.add_argument(
        '--no-persist',
        action='store_true',
        help='Keep caches in memory only'
    )
    parser.add_argument(
        '--json',
        action='store_true',
        help='Print the result as JSON'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args(argv)

    # Setup logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logging.error(f"{e}")
        return 2
    if not config.organizations:
        logging.error("No organizations configured.")
        return 2

    ops = create_operations(config, base_url=args.api_url, persistent=not args.no_persist)
    try:
        result = fetch(ops, args.kind, args.org, args.max_age)
    except ConfigError as e:
        logging.error(f"{e}")
        return 2
    except (GitHubAPIError, InvalidPagesError, ConsolidationError, requests.RequestException) as e:
        logging.error(f"Fetching {args.kind} failed: {e}")
        return 1
    finally:
        ops.collections.executor.shutdown(wait=True)

    rows = _rows(result)
    if args.json:
        print(json.dumps({
            "kind": args.kind,
            "count": len(rows),
            "items": rows,
            "meta": result.meta.to_dict(),
            "cost": result.cost.to_dict(),
        }, indent=2, sort_keys=True, default=str))
    else:
        for row in rows:
            print(_label(args.kind, row))
        print(f"{len(rows)} {args.kind}")

    logging.info(f"Cost: {json.dumps(result.cost.to_dict(), sort_keys=True)} dirty={result.meta.dirty}")
    logging.debug(f"GitHub API stats: {json.dumps(GITHUB_API_STATS.to_dict(), sort_keys=True)}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
