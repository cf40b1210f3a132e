"""
Catalog TTL cache with an injected clock, plus the effective-rate lookups
that read through it.
"""

import pytest

from stockledger.cache import CatalogCache, get_cache
from stockledger.services import catalog_service


class FakeClock:
    def __init__(self):
        self.now = 1000

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_entries_expire_after_ttl(clock):
    cache = CatalogCache(default_ttl=10, clock=clock)
    cache.set("rate:1", 15000)

    clock.now += 9
    assert cache.get("rate:1") == 15000
    clock.now += 1
    assert cache.get("rate:1") is None

    # Expired entries linger until purged
    assert len(cache) == 1
    assert cache.purge_expired() == 1
    assert len(cache) == 0


def test_ttl_is_per_key(clock):
    cache = CatalogCache(default_ttl=10, clock=clock)
    cache.set("rate:short", 1, ttl=2)
    cache.set("rate:long", 2, ttl=60)

    clock.now += 5
    assert cache.get("rate:short") is None
    assert cache.get("rate:long") == 2


def test_get_or_set_calls_factory_once(clock):
    cache = CatalogCache(default_ttl=10, clock=clock)
    calls = []

    def load():
        calls.append(1)
        return {"color_name": "Ivory"}

    assert cache.get_or_set("color:1", load) == {"color_name": "Ivory"}
    assert cache.get_or_set("color:1", load) == {"color_name": "Ivory"}
    assert len(calls) == 1

    clock.now += 11
    cache.get_or_set("color:1", load)
    assert len(calls) == 2


def test_cached_none_is_a_hit(clock):
    cache = CatalogCache(clock=clock)
    calls = []
    cache.get_or_set("missing", lambda: calls.append(1))
    cache.get_or_set("missing", lambda: calls.append(1))
    assert calls == [1]


def test_invalidate_prefix_and_purge(clock):
    cache = CatalogCache(default_ttl=10, clock=clock)
    cache.set("rate:a", 1)
    cache.set("rate:b", 2)
    cache.set("color:a", 3, ttl=100)

    cache.invalidate_prefix("rate:")
    assert cache.get("rate:a") is None
    assert cache.get("color:a") == 3

    cache.set("rate:c", 4)
    clock.now += 50
    assert cache.purge_expired() == 1
    assert len(cache) == 1


def test_app_cache_uses_configured_ttl(app):
    assert get_cache().default_ttl == app.config["CATALOG_CACHE_TTL_SECONDS"]


def test_effective_rate_follows_override_changes(color, second_color):
    assert catalog_service.get_effective_rate_cents(color.id) == 15000
    assert catalog_service.get_effective_rate_cents(second_color.id) == 16000

    catalog_service.set_rate_override(color.id, 17500)
    assert catalog_service.get_effective_rate_cents(color.id) == 17500

    catalog_service.update_variant_rate(color.variant_id, 14000)
    assert catalog_service.get_effective_rate_cents(second_color.id) == 16000

    catalog_service.set_rate_override(color.id, None)
    assert catalog_service.get_effective_rate_cents(color.id) == 14000
    assert len(get_cache()) == 2
