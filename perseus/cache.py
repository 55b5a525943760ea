"""In-memory caching for processed content.

Provides a small keyed store with least-recently-used capacity eviction and
time-to-live expiry, plus a content-specific subclass that also validates
entries against the modification time of their source file.

Key classes:
- Cache: Generic LRU + TTL cache.
- ContentCache: Cache of ContentFile objects keyed by source path.

Expiry is checked lazily on read; there is no background sweep.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Generic, TypeVar

import structlog

if TYPE_CHECKING:
    from .content import ContentFile

log = structlog.get_logger()

T = TypeVar("T")

DEFAULT_MAX_SIZE = 100
DEFAULT_TTL = 60.0


@dataclass
class CacheEntry(Generic[T]):
    """A cached value and the time it was stored.

    Attributes:
        data: The cached value.
        modified_time: Epoch seconds when the value was produced.
    """

    data: T
    modified_time: float


class Cache(Generic[T]):
    """Keyed store with LRU eviction and TTL expiry.

    The ordered mapping doubles as the access list: the least recently used
    key is always first and the most recently used key is last.

    Attributes:
        max_size: Maximum number of entries held at once.
        ttl: Seconds after which an entry expires. ``<= 0`` disables expiry.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            max_size: Capacity; values below 1 are treated as 1.
            ttl: Time-to-live in seconds.
            clock: Source of the current time in epoch seconds.
        """
        self.max_size = max(1, int(max_size))
        self.ttl = ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()

    def get(self, key: str) -> T | None:
        """Return the cached value for ``key``, or None on a miss.

        A hit marks the key as most recently used. An expired entry is
        removed and reported as a miss.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry):
            self.remove(key)
            return None
        self._entries.move_to_end(key)
        return entry.data

    def set(self, key: str, data: T, modified_time: float | None = None) -> None:
        """Store ``data`` under ``key``.

        If the cache is full, the single least recently used entry is evicted
        before the new one is inserted.

        Args:
            key: Cache key.
            data: Value to cache.
            modified_time: Epoch seconds to record; defaults to now.
        """
        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            log.debug("cache_evicted", key=evicted)
        stamp = self._clock() if modified_time is None else modified_time
        self._entries[key] = CacheEntry(data=data, modified_time=stamp)

    def is_fresh(self, key: str, source_path: Path) -> bool:
        """Check that ``key`` is cached, unexpired and newer than its source file.

        Any failure (missing entry, expiry, missing file, unreadable mtime or a
        source modified after the entry was stored) returns False, and a stale
        entry is dropped as a side effect.

        Args:
            key: Cache key.
            source_path: File whose modification time backs the entry.

        Returns:
            True if the cached value can be served as-is.
        """
        entry = self._entries.get(key)
        if entry is None:
            return False
        if self._is_expired(entry):
            self.remove(key)
            return False
        try:
            source_mtime = Path(source_path).stat().st_mtime
        except OSError:
            self.remove(key)
            return False
        if source_mtime > entry.modified_time:
            self.remove(key)
            return False
        self._entries.move_to_end(key)
        return True

    def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def has(self, key: str) -> bool:
        """Return True if ``key`` is stored, without touching recency or expiry."""
        return key in self._entries

    def size(self) -> int:
        return len(self._entries)

    def keys(self) -> list[str]:
        """Return keys from least to most recently used."""
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def _is_expired(self, entry: CacheEntry[T]) -> bool:
        if self.ttl <= 0:
            return False
        return self._clock() - entry.modified_time > self.ttl


class ContentCache(Cache["ContentFile"]):
    """Cache of processed content files keyed by their source path."""

    @staticmethod
    def key_for(path: Path | str) -> str:
        """Create a cache key from a file path.

        Args:
            path: Path to the content file.

        Returns:
            Cache key string.
        """
        return f"content:{Path(path)}"

    def is_content_fresh(self, path: Path) -> bool:
        return self.is_fresh(self.key_for(path), path)

    def get_content(self, path: Path) -> ContentFile | None:
        return self.get(self.key_for(path))

    def set_content(
        self, path: Path, content: ContentFile, modified_time: float | None = None
    ) -> None:
        self.set(self.key_for(path), content, modified_time)

    def remove_content(self, path: Path) -> None:
        self.remove(self.key_for(path))

    def has_content(self, path: Path) -> bool:
        return self.has(self.key_for(path))
