"""
Pytest tests for the disk-backed caches (BaseDiskCache and its subclasses).

Run from the repository root:
    pytest cache/test_cache_base.py -v
"""

import json
import sys
from pathlib import Path

# Set up path for imports
parent_dir = Path(__file__).parent.parent
if str(parent_dir) not in sys.path:
    sys.path.insert(0, str(parent_dir))

from cache.cache_collections import CollectionResultCache
from cache.cache_pages import PageETagCache


def _value(n):
    return {"value": [{"id": n}], "meta": {"pages": ['"e"'], "dirty": True}, "cost": {"rest_api_calls": 1}}


def test_put_persists_and_new_instance_reads_it(tmp_path):
    cache_file = tmp_path / "collections.json"
    CollectionResultCache(cache_file=cache_file).put("k1", _value(1), ts=100.0)

    entry = CollectionResultCache(cache_file=cache_file).get_entry("k1")

    assert entry["value"] == [{"id": 1}]
    assert entry["ts"] == 100.0
    on_disk = json.loads(cache_file.read_text())
    assert set(on_disk) == {"version", "items"}


def test_writers_merge_instead_of_overwriting(tmp_path):
    cache_file = tmp_path / "collections.json"
    a = CollectionResultCache(cache_file=cache_file)
    b = CollectionResultCache(cache_file=cache_file)
    a.get_entry("warm-up")
    b.get_entry("warm-up")

    a.put("k1", _value(1))
    b.put("k2", _value(2))

    c = CollectionResultCache(cache_file=cache_file)
    assert c.get_entry("k1") is not None
    assert c.get_entry("k2") is not None


def test_schema_mismatch_and_corrupt_files_start_empty(tmp_path):
    old = tmp_path / "old.json"
    old.write_text(json.dumps({"version": "1", "items": {"k1": {"ts": 1}}}))
    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{not json")

    assert CollectionResultCache(cache_file=old).get_entry("k1") is None
    assert CollectionResultCache(cache_file=corrupt).get_entry("k1") is None


def test_classification_version_is_part_of_the_schema(tmp_path):
    cache_file = tmp_path / "collections.json"
    CollectionResultCache(cache_file=cache_file, classification_version=1).put("k1", _value(1))

    assert CollectionResultCache(cache_file=cache_file, classification_version=2).get_entry("k1") is None


def test_memory_only_cache_never_writes(tmp_path):
    cache = CollectionResultCache(cache_file=None)
    cache.put("k1", _value(1))
    cache.flush()

    assert cache.get_entry("k1")["value"] == [{"id": 1}]
    assert list(tmp_path.iterdir()) == []


def test_is_fresh_uses_the_callers_budget():
    entry = {"ts": 1000.0}
    assert CollectionResultCache.is_fresh(entry, max_age_s=60, now=1059.0)
    assert not CollectionResultCache.is_fresh(entry, max_age_s=60, now=1061.0)
    assert not CollectionResultCache.is_fresh(entry, max_age_s=0, now=1000.0)
    assert not CollectionResultCache.is_fresh({}, max_age_s=60, now=1000.0)


def test_page_cache_requires_an_etag(tmp_path):
    cache = PageETagCache(cache_file=tmp_path / "pages.json")
    cache.put("k1", etag=' "abc" ', data=[1, 2], next_url=None)
    cache.put("k2", etag="", data=[3], next_url=None)

    assert cache.get_etag("k1") == '"abc"'
    assert cache.get("k1")["data"] == [1, 2]
    assert cache.get("k2") is None
    assert PageETagCache(cache_file=tmp_path / "pages.json").get_etag("k1") == '"abc"'
