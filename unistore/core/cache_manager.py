"""
Metadata cache for avoiding redundant backend round-trips.

A lookaside, TTL-bounded, in-memory cache keyed by normalized path. Entries
are superseded or dropped on writes, never patched. The cache is not a
consistency boundary: misses and expired entries always fall through to the
driver.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from ..storage.cloud_storage import DirectoryEntry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """Cached metadata for one path; ``metadata is None`` records a known-absent path."""

    path: str
    metadata: Optional[DirectoryEntry]
    expires_at: float

    @property
    def exists(self) -> bool:
        return self.metadata is not None


class CacheManager:
    """Manages cached path metadata with a short TTL."""

    def __init__(self, ttl_seconds: float = 5.0, max_entries: int = 10_000):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.entries: Dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0
        # Paths with a backend lookup in flight: lookup count and invalidation generation.
        self._inflight: Dict[str, int] = {}
        self._generations: Dict[str, int] = {}

    def get(self, path: str) -> Optional[CacheEntry]:
        """Get the cache entry for a path if present and not expired."""
        entry = self.entries.get(path)
        if entry is None:
            self.misses += 1
            return None

        if time.monotonic() >= entry.expires_at:
            self.entries.pop(path, None)
            self.misses += 1
            return None

        self.hits += 1
        logger.debug("Metadata cache hit", path=path)
        return entry

    def set(self, path: str, metadata: Optional[DirectoryEntry], generation: Optional[int] = None) -> CacheEntry:
        """
        Store metadata for a path, replacing any previous entry.

        Args:
            path: Normalized path
            metadata: Entry to cache, or None for a known-absent path
            generation: Token from ``begin_lookup``; when the path was
                invalidated since, the result is returned but not stored

        Returns:
            The cache entry built from ``metadata``
        """
        entry = CacheEntry(path=path, metadata=metadata, expires_at=time.monotonic() + self.ttl_seconds)
        if generation is not None and self._generations.get(path, 0) != generation:
            logger.debug("Discarding metadata fetched before an invalidation", path=path)
            return entry
        self.entries[path] = entry
        self._cleanup_if_needed()
        return entry

    def begin_lookup(self, path: str) -> int:
        """Register a backend lookup for ``path`` and return its generation token."""
        self._inflight[path] = self._inflight.get(path, 0) + 1
        return self._generations.setdefault(path, 0)

    def end_lookup(self, path: str) -> None:
        """Release a lookup registered with ``begin_lookup``."""
        remaining = self._inflight.get(path, 0) - 1
        if remaining > 0:
            self._inflight[path] = remaining
        else:
            self._inflight.pop(path, None)
            self._generations.pop(path, None)

    def invalidate(self, *paths: str) -> None:
        """Drop cached entries for the given paths."""
        for path in paths:
            self.entries.pop(path, None)
            self._bump(path)

    def invalidate_prefix(self, path: str) -> None:
        """Drop the entry for ``path`` and for everything below it."""
        prefix = path + "/" if path else ""
        stale = [key for key in self.entries if key == path or key.startswith(prefix)]
        for key in stale:
            self.entries.pop(key, None)
        for key in [k for k in self._inflight if k == path or k.startswith(prefix)]:
            self._bump(key)
        if stale:
            logger.debug("Invalidated cached subtree", path=path, entries=len(stale))

    def _bump(self, path: str) -> None:
        if path in self._inflight:
            self._generations[path] = self._generations.get(path, 0) + 1

    def _cleanup_if_needed(self) -> None:
        """Evict expired entries, then the soonest-expiring ones, when over capacity."""
        if len(self.entries) <= self.max_entries:
            return

        now = time.monotonic()
        for key in [k for k, e in self.entries.items() if e.expires_at <= now]:
            del self.entries[key]

        if len(self.entries) > self.max_entries:
            by_expiry = sorted(self.entries.items(), key=lambda item: item[1].expires_at)
            target = int(self.max_entries * 0.8)  # Leave some headroom
            for key, _ in by_expiry[: len(self.entries) - target]:
                del self.entries[key]

        logger.info("Metadata cache cleanup completed", entries=len(self.entries))

    def clear_all(self) -> None:
        """Clear all cached metadata."""
        self.entries.clear()
        for path in list(self._inflight):
            self._bump(path)
        logger.info("All cached metadata cleared")

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        lookups = self.hits + self.misses
        return {
            "total_entries": len(self.entries),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
            "hit_ratio": round(self.hits / lookups, 3) if lookups else 0.0,
        }
