"""In-memory TTL cache with positive and negative entries.

Design decisions
────────────────
• **Positive entries** hold a successful payload; **negative entries** hold
  the error of a recent upstream failure.  A negative hit comes back as a
  :class:`NegativeHit` so it can never be confused with a payload, even a
  falsy one (``[]``, ``0``, ``None``).
• **Lazy + periodic expiry**: an expired entry is evicted when a lookup
  finds it, and :meth:`TTLCache.cleanup` sweeps keys that are never read
  again.  The sweep is driven by a background task in ``server.py``.
• **One instance per dataset** (see :class:`CacheNamespaces`), each with a
  TTL tier chosen by how fast the data changes.
• No locking: every caller runs on the same event loop and no method
  awaits, so each call is atomic with respect to other requests.
• Purely ephemeral: data is lost on process restart.

Usage
─────
>>> cache = TTLCache(default_ttl=300)
>>> cache.set("client_phone:11988887777", {"id": 1})
>>> cache.get("client_phone:11988887777")
{'id': 1}
>>> cache.set_negative("api:GET:/pets/9", "API Error 404: not found")
>>> cache.get("api:GET:/pets/9")
NegativeHit(error='API Error 404: not found', cached=True, kind=None, status_code=None)
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from vetcare_mcp import config

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class NegativeHit:
    """Returned by :meth:`TTLCache.get` for a cached failure."""

    error: str
    cached: bool = True
    kind: str | None = None
    status_code: int | None = None


@dataclass
class CacheEntry:
    """A single cached resolution, either a payload or an error."""

    key: str
    created_at: float
    expires_at: float
    negative: bool = False
    value: Any = None
    error: str | None = None
    kind: str | None = None
    status_code: int | None = None
    hits: int = 0

    def __post_init__(self) -> None:
        if self.negative and self.error is None:
            raise ValueError("negative cache entries require an error")
        if not self.negative and self.error is not None:
            raise ValueError("positive cache entries cannot carry an error")

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class TTLCache:
    """Keyed store of positive and negative entries with hit/miss accounting."""

    def __init__(
        self,
        default_ttl: float = config.CACHE_TTL_MEDIUM,
        *,
        negative_ttl: float = config.CACHE_TTL_NEGATIVE,
        enabled: bool = config.CACHE_ENABLED,
        negative_enabled: bool = config.NEGATIVE_CACHE_ENABLED,
        clock: Clock = time.monotonic,
        name: str = "default",
    ) -> None:
        self.name = name
        self.default_ttl = default_ttl
        self.negative_ttl = negative_ttl
        self.enabled = enabled
        self.negative_enabled = negative_enabled
        self._clock = clock
        self._store: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._negative_hits = 0

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> Any | NegativeHit | None:
        """Return the payload, a :class:`NegativeHit`, or ``None`` on miss/expiry."""
        if not self.enabled:
            return None

        entry = self._store.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.expired(self._clock()):
            del self._store[key]
            self._misses += 1
            logger.debug("Cache[%s]: expired %s", self.name, key)
            return None

        if entry.negative:
            self._negative_hits += 1
            return NegativeHit(
                error=entry.error, kind=entry.kind, status_code=entry.status_code,
            )

        entry.hits += 1
        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a positive entry.  No-op when the cache is disabled."""
        if not self.enabled:
            return
        ttl = self.default_ttl if ttl is None else ttl
        now = self._clock()
        self._store[key] = CacheEntry(
            key=key, value=value, created_at=now, expires_at=now + ttl,
        )
        logger.debug("Cache[%s]: set %s (ttl %.0fs)", self.name, key, ttl)

    def set_negative(
        self,
        key: str,
        error: str,
        ttl: float | None = None,
        *,
        kind: str | None = None,
        status_code: int | None = None,
    ) -> None:
        """Store a negative entry recording a known-failed resolution.

        *kind* names the failure class so a replay can raise the same one.
        """
        if not self.enabled or not self.negative_enabled:
            return
        ttl = self.negative_ttl if ttl is None else ttl
        now = self._clock()
        self._store[key] = CacheEntry(
            key=key, negative=True, error=error, kind=kind, status_code=status_code,
            created_at=now, expires_at=now + ttl,
        )
        logger.debug("Cache[%s]: set negative %s (%s)", self.name, key, error)

    def delete(self, key: str) -> bool:
        """Remove a single key.  Returns ``True`` if the key existed."""
        if self._store.pop(key, None) is not None:
            logger.debug("Cache[%s]: deleted %s", self.name, key)
            return True
        return False

    def delete_prefix(self, prefix: str) -> int:
        """Remove every key that starts with *prefix*.  Returns count removed."""
        return self.delete_pattern(lambda key: key.startswith(prefix))

    def delete_pattern(self, matcher: re.Pattern[str] | Callable[[str], bool]) -> int:
        """Remove every key accepted by *matcher* (compiled regex or predicate)."""
        if isinstance(matcher, re.Pattern):
            pattern = matcher
            matcher = lambda key: pattern.search(key) is not None  # noqa: E731
        keys = [k for k in self._store if matcher(k)]
        for key in keys:
            del self._store[key]
        if keys:
            logger.debug("Cache[%s]: deleted %d keys by pattern", self.name, len(keys))
        return len(keys)

    def cleanup(self) -> int:
        """Sweep every expired entry.  Returns count removed."""
        now = self._clock()
        expired = [k for k, entry in self._store.items() if entry.expired(now)]
        for key in expired:
            del self._store[key]
        if expired:
            logger.debug("Cache[%s]: cleanup removed %d expired entries", self.name, len(expired))
        return len(expired)

    def clear(self) -> None:
        """Drop all entries and reset the counters."""
        self._store.clear()
        self._hits = self._misses = self._negative_hits = 0

    # ── Introspection ────────────────────────────────────────────────

    @property
    def entry_count(self) -> int:
        return len(self._store)

    def has(self, key: str) -> bool:
        """Check if a key is present without touching counters or expiry."""
        return key in self._store

    def stats(self) -> dict[str, Any]:
        lookups = self._hits + self._misses
        hit_rate = round(self._hits / lookups * 100, 2) if lookups else 0.0
        return {
            "enabled": self.enabled,
            "size": len(self._store),
            "hits": self._hits,
            "misses": self._misses,
            "negative_hits": self._negative_hits,
            "hit_rate": hit_rate,
        }


# ── Namespaces ──────────────────────────────────────────────────────

_TTL_TIERS = {
    "clients": "medium",
    "pets": "medium",
    "appointments": "short",
    "services": "long",
    "vets": "long",
    "vaccines": "long",
    "products": "medium",
    "finance": "short",
    "dashboard": "short",
    "upstream": "negative",
}


@dataclass
class CacheNamespaces:
    """One :class:`TTLCache` per logical dataset, keyed by namespace name.

    ``upstream`` only ever holds negative entries written by the VetCare
    client; every other namespace holds shaped tool results.
    """

    caches: dict[str, TTLCache] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        *,
        short_ttl: float = config.CACHE_TTL_SHORT,
        medium_ttl: float = config.CACHE_TTL_MEDIUM,
        long_ttl: float = config.CACHE_TTL_LONG,
        negative_ttl: float = config.CACHE_TTL_NEGATIVE,
        enabled: bool = config.CACHE_ENABLED,
        negative_enabled: bool = config.NEGATIVE_CACHE_ENABLED,
        clock: Clock = time.monotonic,
    ) -> CacheNamespaces:
        tiers = {
            "short": short_ttl,
            "medium": medium_ttl,
            "long": long_ttl,
            "negative": negative_ttl,
        }
        return cls({
            name: TTLCache(
                tiers[tier],
                negative_ttl=negative_ttl,
                enabled=enabled,
                negative_enabled=negative_enabled,
                clock=clock,
                name=name,
            )
            for name, tier in _TTL_TIERS.items()
        })

    def __getitem__(self, name: str) -> TTLCache:
        return self.caches[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self.caches)

    def cleanup_all(self) -> int:
        removed = sum(cache.cleanup() for cache in self.caches.values())
        if removed:
            logger.info("Cache sweep removed %d expired entries", removed)
        return removed

    def stats(self) -> dict[str, dict[str, Any]]:
        return {name: cache.stats() for name, cache in self.caches.items()}
