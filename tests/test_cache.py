import os

import pytest

from perseus.cache import Cache, ContentCache
from perseus.content import ContentFile


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_insert_beyond_capacity_evicts_least_recently_used():
    cache = Cache(max_size=3, ttl=0)
    for key in ("a", "b", "c"):
        cache.set(key, key.upper())

    cache.set("d", "D")

    assert cache.keys() == ["b", "c", "d"]
    assert cache.get("a") is None
    assert cache.size() == 3


def test_get_moves_key_to_most_recently_used():
    cache = Cache(max_size=3, ttl=0)
    for key in ("a", "b", "c"):
        cache.set(key, key.upper())

    assert cache.get("a") == "A"
    cache.set("d", "D")

    assert not cache.has("b")
    assert cache.has("a")
    assert cache.keys() == ["c", "a", "d"]


def test_updating_existing_key_at_capacity_keeps_other_entries():
    cache = Cache(max_size=2, ttl=0)
    cache.set("a", 1)
    cache.set("b", 2)

    cache.set("a", 3)

    assert cache.keys() == ["b", "a"]
    assert cache.get("a") == 3


def test_capacity_is_at_least_one():
    cache = Cache(max_size=0)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.keys() == ["b"]


@pytest.mark.parametrize("ttl", [0.5, 5, 3600])
def test_entry_expires_after_ttl(ttl):
    clock = FakeClock()
    cache = Cache(ttl=ttl, clock=clock)
    cache.set("k", "v")

    clock.now += ttl
    assert cache.get("k") == "v"

    clock.now += 0.001
    assert cache.get("k") is None
    assert not cache.has("k")


@pytest.mark.parametrize("ttl", [0, -1])
def test_non_positive_ttl_disables_expiry(ttl):
    clock = FakeClock()
    cache = Cache(ttl=ttl, clock=clock)
    cache.set("k", "v")
    clock.now += 10**9
    assert cache.get("k") == "v"


def test_explicit_modified_time_is_used_for_expiry():
    clock = FakeClock()
    cache = Cache(ttl=10, clock=clock)
    cache.set("k", "v", modified_time=clock.now - 11)
    assert cache.get("k") is None


def test_is_fresh_tracks_source_modification(tmp_path):
    source = tmp_path / "page.md"
    source.write_text("x", encoding="utf-8")
    os.utime(source, (1_000_000, 1_000_000))
    cache = Cache(ttl=0)
    cache.set("k", "v", modified_time=1_000_001)

    assert cache.is_fresh("k", source)

    os.utime(source, (1_000_005, 1_000_005))
    assert not cache.is_fresh("k", source)
    assert not cache.has("k")


def test_is_fresh_missing_source_drops_entry(tmp_path):
    cache = Cache(ttl=0)
    cache.set("k", "v")
    assert not cache.is_fresh("k", tmp_path / "missing.md")
    assert "k" not in cache


def test_is_fresh_false_for_unknown_or_expired_key(tmp_path):
    source = tmp_path / "page.md"
    source.write_text("x", encoding="utf-8")
    clock = FakeClock(source.stat().st_mtime + 1)
    cache = Cache(ttl=5, clock=clock)

    assert not cache.is_fresh("nope", source)

    cache.set("k", "v")
    clock.now += 6
    assert not cache.is_fresh("k", source)
    assert len(cache) == 0


def test_remove_and_clear():
    cache = Cache()
    cache.set("a", 1)
    cache.set("b", 2)
    cache.remove("a")
    cache.remove("missing")
    assert cache.keys() == ["b"]
    cache.clear()
    assert cache.size() == 0


def test_content_cache_helpers(tmp_path):
    path = tmp_path / "pages" / "index.md"
    content_file = ContentFile(path=path, route="/", raw_body="")
    cache = ContentCache()

    assert ContentCache.key_for(path) == f"content:{path}"

    cache.set_content(path, content_file)
    assert cache.has_content(path)
    assert cache.get_content(path) is content_file

    cache.remove_content(path)
    assert not cache.has_content(path)
