# Overview: App-owned TTL cache for catalog reads (effective rates, color lookups).

"""
Catalog Cache

WHY: Effective rates are read on every sale line but change rarely. They are
cached per app instance (app.extensions) rather than in a module global, so
each app and each test gets its own cache.

DESIGN PRINCIPLES:
- Storage and expiry are cachetools.TLRUCache; every key carries its own TTL
- The clock is injectable so expiry is testable without sleeping
- cachetools caches are not thread-safe, every access goes through one lock
- Writers invalidate by exact key or by key prefix
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Hashable

from cachetools import TLRUCache
from flask import Flask, current_app


_MISSING = object()


def _expires_at(key, entry, now):
    # entry is (value, ttl)
    return now + entry[1]


class CatalogCache:
    def __init__(self, default_ttl: float = 60.0, maxsize: int = 1024,
                 clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._entries = TLRUCache(maxsize=maxsize, ttu=_expires_at, timer=clock)
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key, _MISSING)
        if entry is _MISSING:
            return default
        return entry[0]

    def set(self, key: Hashable, value: Any, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = (value, ttl)

    def get_or_set(self, key: Hashable, factory: Callable[[], Any], ttl: float | None = None) -> Any:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            value = factory()
            self.set(key, value, ttl)
        return value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [k for k in self._entries if isinstance(k, str) and k.startswith(prefix)]:
                self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Drop expired entries now instead of on the next write; returns how many went."""
        with self._lock:
            before = len(self._entries)
            self._entries.expire()
            return before - len(self._entries)

    def __len__(self) -> int:
        # Counts stored entries, including expired ones not purged yet
        with self._lock:
            return len(self._entries)


def init_cache(app: Flask) -> CatalogCache:
    cache = CatalogCache(
        default_ttl=app.config.get("CATALOG_CACHE_TTL_SECONDS", 60.0),
        maxsize=app.config.get("CATALOG_CACHE_MAXSIZE", 1024),
    )
    app.extensions["stockledger_cache"] = cache
    return cache


def get_cache() -> CatalogCache:
    return current_app.extensions["stockledger_cache"]
