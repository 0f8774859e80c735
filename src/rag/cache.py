from __future__ import annotations

"""Embedding cache with lazy TTL expiry and optional SQL backing."""

import fnmatch
import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600.0
INGESTION_TTL_SECONDS = 7 * 24 * 3600.0
DEFAULT_MAX_ENTRIES = 1000


class EmbeddingCacheError(RuntimeError):
    """Raised when the durable cache backing fails."""
    pass


def cache_key(text: str) -> str:
    """Stable key for a piece of text: sha256 of the trimmed text, case kept."""
    return hashlib.sha256(text.strip().encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    key: str
    embedding: list[float]
    timestamp: float
    ttl: float
    metadata: dict[str, Any] | None = None

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    hit_rate: float
    entries: int
    oldest_entry: float | None
    newest_entry: float | None


class SQLEmbeddingCacheStore:
    """Persist cache entries in the ``embedding_cache`` SQL table."""
    def __init__(self, connection_uri: str) -> None:
        """Connect and ensure the cache table exists."""
        try:
            from sqlalchemy import Column, Float, MetaData, String, Table, Text, create_engine
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise EmbeddingCacheError(
                "sqlalchemy is required to use the durable embedding cache"
            ) from exc

        self._engine = create_engine(connection_uri)
        self._metadata = MetaData()
        self._table = Table(
            "embedding_cache",
            self._metadata,
            Column("key", String(128), primary_key=True),
            Column("embedding", Text, nullable=False),
            Column("timestamp", Float, nullable=False),
            Column("ttl", Float, nullable=False),
            Column("metadata", Text, nullable=True),
        )
        self._metadata.create_all(self._engine)

    def load(self, key: str) -> CacheEntry | None:
        """Return the stored entry for ``key`` regardless of expiry."""
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    self._table.select().where(self._table.c.key == key)
                ).mappings().first()
        except Exception as exc:
            raise EmbeddingCacheError(str(exc)) from exc
        if row is None:
            return None
        return CacheEntry(
            key=row["key"],
            embedding=[float(value) for value in json.loads(row["embedding"])],
            timestamp=float(row["timestamp"]),
            ttl=float(row["ttl"]),
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
        )

    def save(self, entry: CacheEntry) -> None:
        """Insert or replace an entry."""
        payload = {
            "key": entry.key,
            "embedding": json.dumps(entry.embedding),
            "timestamp": entry.timestamp,
            "ttl": entry.ttl,
            "metadata": json.dumps(entry.metadata, default=str) if entry.metadata else None,
        }
        try:
            with self._engine.begin() as conn:
                conn.execute(self._table.delete().where(self._table.c.key == entry.key))
                conn.execute(self._table.insert().values(**payload))
        except Exception as exc:
            raise EmbeddingCacheError(str(exc)) from exc

    def delete(self, key: str) -> None:
        try:
            with self._engine.begin() as conn:
                conn.execute(self._table.delete().where(self._table.c.key == key))
        except Exception as exc:
            raise EmbeddingCacheError(str(exc)) from exc

    def clear(self) -> None:
        try:
            with self._engine.begin() as conn:
                conn.execute(self._table.delete())
        except Exception as exc:
            raise EmbeddingCacheError(str(exc)) from exc


@dataclass
class EmbeddingCache:
    """In-memory embedding cache keyed by content hash.

    Expired entries are treated as missing and removed when read. Once the
    number of entries exceeds ``max_entries`` every expired entry is purged in
    one pass; live entries are never evicted, so the bound is a leak guard
    rather than an LRU limit.

    All map access goes through a lock, so concurrent requests for the same
    text are safe. Concurrent writes of the same key keep the last value.

    When ``backing`` is set, writes are mirrored to it and in-memory misses
    consult it. Backing failures are logged and otherwise ignored.
    """
    ttl: float = DEFAULT_TTL_SECONDS
    max_entries: int = DEFAULT_MAX_ENTRIES
    dimension: int | None = None
    backing: SQLEmbeddingCacheStore | None = None
    clock: Callable[[], float] = time.time
    _entries: dict[str, CacheEntry] = field(default_factory=dict, init=False, repr=False)
    _hits: int = field(default=0, init=False, repr=False)
    _misses: int = field(default=0, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.ttl <= 0:
            raise ValueError("Cache TTL must be positive")

    def get(self, key: str) -> list[float] | None:
        """Return the cached vector for ``key`` or None when missing or expired."""
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not entry.is_expired(now):
                self._hits += 1
                return list(entry.embedding)
            if entry is not None:
                del self._entries[key]
        restored = self._restore(key, now)
        with self._lock:
            if restored is None:
                self._misses += 1
                return None
            self._hits += 1
            self._entries[key] = restored
            return list(restored.embedding)

    def set(
        self,
        key: str,
        embedding: list[float],
        ttl: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Store a vector under ``key`` with an optional per-entry TTL."""
        if not key or not key.strip():
            raise ValueError("Cache key cannot be empty")
        if self.dimension is not None and len(embedding) != self.dimension:
            raise ValueError(
                f"Cached embedding must have {self.dimension} dimensions, got {len(embedding)}"
            )
        entry = CacheEntry(
            key=key,
            embedding=list(embedding),
            timestamp=self.clock(),
            ttl=self.ttl if ttl is None else ttl,
            metadata=metadata,
        )
        with self._lock:
            self._entries[key] = entry
            if len(self._entries) > self.max_entries:
                self._purge_expired_locked(entry.timestamp)
        if self.backing is not None:
            try:
                self.backing.save(entry)
            except EmbeddingCacheError as exc:
                logger.warning("embedding_cache_sync_failed", extra={"detail": str(exc)})

    def purge_expired(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        with self._lock:
            return self._purge_expired_locked(self.clock())

    def invalidate(self, pattern: str) -> int:
        """Remove the entry named ``pattern`` or every key matching it as a glob."""
        with self._lock:
            if pattern in self._entries:
                keys = [pattern]
            else:
                keys = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
            for key in keys:
                del self._entries[key]
        if self.backing is not None:
            for key in keys or [pattern]:
                try:
                    self.backing.delete(key)
                except EmbeddingCacheError as exc:
                    logger.warning("embedding_cache_delete_failed", extra={"detail": str(exc)})
        return len(keys)

    def clear(self) -> None:
        """Drop all entries and reset statistics."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
        if self.backing is not None:
            try:
                self.backing.clear()
            except EmbeddingCacheError as exc:
                logger.warning("embedding_cache_clear_failed", extra={"detail": str(exc)})

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            timestamps = [entry.timestamp for entry in self._entries.values()]
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                hit_rate=self._hits / total if total else 0.0,
                entries=len(self._entries),
                oldest_entry=min(timestamps) if timestamps else None,
                newest_entry=max(timestamps) if timestamps else None,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _purge_expired_locked(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("embedding_cache_purged", extra={"purged": len(expired)})
        return len(expired)

    def _restore(self, key: str, now: float) -> CacheEntry | None:
        if self.backing is None:
            return None
        try:
            entry = self.backing.load(key)
            if entry is None:
                return None
            if entry.is_expired(now):
                self.backing.delete(key)
                return None
        except EmbeddingCacheError as exc:
            logger.warning("embedding_cache_restore_failed", extra={"detail": str(exc)})
            return None
        return entry
