"""Tests for the payload LRU cache."""

import pytest

from mergemock.builder import PayloadCache


def test_put_and_get():
    cache = PayloadCache(2)
    assert cache.put(b"a", 1) is False
    assert cache.get(b"a") == (1, True)
    assert cache.get(b"missing") == (None, False)
    assert b"a" in cache
    assert len(cache) == 1


def test_evicts_least_recently_used():
    cache = PayloadCache(3)
    for key in (b"a", b"b", b"c"):
        cache.put(key, key)
    cache.get(b"a")
    assert cache.put(b"d", b"d") is True
    assert cache.keys() == [b"c", b"a", b"d"]
    assert cache.get(b"b") == (None, False)


def test_put_existing_key_refreshes_without_eviction():
    cache = PayloadCache(2)
    cache.put(b"a", 1)
    cache.put(b"b", 2)
    assert cache.put(b"a", 3) is False
    assert cache.keys() == [b"b", b"a"]
    assert cache.get(b"a") == (3, True)


def test_capacity_bound_holds():
    cache = PayloadCache(10)
    for i in range(25):
        cache.put(i, i)
        assert len(cache) <= 10
    assert cache.keys() == list(range(15, 25))


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        PayloadCache(0)
