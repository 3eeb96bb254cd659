"""Content-addressed embedding cache with single-flight provider calls."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import sqlite3
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from activity_summarizer.models.provider import (
    EmbeddingProvider,
    EmbeddingProviderError,
    MalformedEmbeddingError,
)

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_STORE_COLUMNS = {"cache_key", "model", "dimensions", "vector", "created_at"}
_SECONDS_PER_DAY = 86_400


class EmbeddingCacheStoreError(RuntimeError):
    """Raised when the on-disk embedding cache cannot be opened or used."""


def normalize_text(text: str) -> str:
    """Trim and collapse whitespace runs; case is preserved."""

    return _WHITESPACE_RE.sub(" ", text).strip()


def cache_key(text: str) -> str:
    """Return the content address for a message text."""

    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def _freeze_vector(values: Any) -> np.ndarray:
    vector = np.array(values, dtype=np.float32)
    vector.setflags(write=False)
    return vector


@dataclass(frozen=True, eq=False)
class EmbeddingCacheEntry:
    """One cached embedding. Entries are immutable once created."""

    key: str
    model: str
    vector: np.ndarray
    created_at: float

    @property
    def dimensions(self) -> int:
        return int(self.vector.shape[0])


class EmbeddingCacheStore:
    """SQLite table of embeddings keyed by normalized-text hash and model.

    One connection is shared across threads and serialized by a lock, so the
    async cache can run lookups and inserts in worker threads.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
        except (OSError, sqlite3.Error) as exc:
            raise EmbeddingCacheStoreError(
                f"Unable to open embedding cache at {self._path}: {exc}"
            ) from exc
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        try:
            self._init_schema()
        except EmbeddingCacheStoreError:
            self._conn.close()
            raise

    @property
    def path(self) -> Path:
        return self._path

    def _init_schema(self) -> None:
        try:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS embedding_cache (
                    cache_key TEXT NOT NULL,
                    model TEXT NOT NULL,
                    dimensions INTEGER NOT NULL,
                    vector BLOB NOT NULL,
                    created_at REAL NOT NULL,
                    PRIMARY KEY (cache_key, model)
                )
            """)
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_embedding_cache_created "
                "ON embedding_cache(created_at)"
            )
            self._conn.commit()
            columns = {
                row["name"] for row in self._conn.execute("PRAGMA table_info(embedding_cache)")
            }
        except sqlite3.DatabaseError as exc:
            raise EmbeddingCacheStoreError(
                f"Embedding cache at {self._path} is not a usable database: {exc}"
            ) from exc

        if not _STORE_COLUMNS <= columns:
            raise EmbeddingCacheStoreError(
                f"Embedding cache at {self._path} has an incompatible schema: "
                f"missing columns {sorted(_STORE_COLUMNS - columns)}."
            )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> EmbeddingCacheStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _write(self, sql: str, params: tuple = ()) -> None:
        with self._lock:
            self._conn.execute(sql, params)
            self._conn.commit()

    def get(self, key: str, model: str, *, dimensions: int) -> EmbeddingCacheEntry | None:
        """Return the stored entry, or None when absent or stored at another dimension."""

        rows = self._fetchall(
            """
            SELECT cache_key, model, dimensions, vector, created_at
            FROM embedding_cache
            WHERE cache_key = ? AND model = ? AND dimensions = ?
            """,
            (key, model, dimensions),
        )
        if not rows:
            return None

        row = rows[0]
        blob = row["vector"]
        if len(blob) != dimensions * 4:
            logger.warning("Ignoring truncated cache row for key %s", key[:12])
            return None
        return EmbeddingCacheEntry(
            key=row["cache_key"],
            model=row["model"],
            vector=_freeze_vector(np.frombuffer(blob, dtype="<f4")),
            created_at=float(row["created_at"]),
        )

    def put(self, entry: EmbeddingCacheEntry) -> None:
        """Insert an entry; an existing row for the same key and model is kept."""

        self._write(
            """
            INSERT OR IGNORE INTO embedding_cache
                (cache_key, model, dimensions, vector, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                entry.key,
                entry.model,
                entry.dimensions,
                entry.vector.astype("<f4").tobytes(),
                entry.created_at,
            ),
        )

    def count(self, *, older_than: float | None = None) -> int:
        if older_than is None:
            rows = self._fetchall("SELECT COUNT(*) FROM embedding_cache")
        else:
            rows = self._fetchall(
                "SELECT COUNT(*) FROM embedding_cache WHERE created_at < ?",
                (older_than,),
            )
        return int(rows[0][0])

    def stats(self) -> dict[str, Any]:
        """Summarize stored entries per model."""

        rows = self._fetchall("""
            SELECT model, dimensions, COUNT(*) AS entries,
                   MIN(created_at) AS oldest, MAX(created_at) AS newest
            FROM embedding_cache
            GROUP BY model, dimensions
            ORDER BY model, dimensions
        """)
        size = self._path.stat().st_size if self._path.exists() else 0
        return {
            "path": str(self._path),
            "entry_count": sum(int(row["entries"]) for row in rows),
            "size_bytes": size,
            "models": [dict(row) for row in rows],
        }

    def prune(self, *, max_age_days: float, now: float | None = None, dry_run: bool = False) -> int:
        """Delete entries older than `max_age_days`; return how many match."""

        if max_age_days < 0:
            raise ValueError(f"max_age_days must be >= 0, got {max_age_days}.")
        cutoff = (time.time() if now is None else now) - max_age_days * _SECONDS_PER_DAY
        with self._lock:
            matched = self.count(older_than=cutoff)
            if not dry_run and matched:
                self._write("DELETE FROM embedding_cache WHERE created_at < ?", (cutoff,))
        return matched

    def clear(self) -> int:
        """Delete all entries and return how many were removed."""

        with self._lock:
            removed = self.count()
            self._write("DELETE FROM embedding_cache")
        return removed


@dataclass
class CacheCounters:
    """Lookup counters for one cache instance."""

    hits: int = 0
    misses: int = 0
    coalesced: int = 0
    provider_calls: int = 0
    failures: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "coalesced": self.coalesced,
            "provider_calls": self.provider_calls,
            "failures": self.failures,
        }


@dataclass
class _Flight:
    task: asyncio.Task[np.ndarray]
    waiters: int = 0


@dataclass
class EmbeddingCache:
    """Map message text to embedding vectors, calling the provider at most once per key.

    Lookups go memory -> persistent store -> provider. Concurrent misses for
    the same key share one provider task. Failed, timed-out, or cancelled
    provider calls leave no entry behind, so a later call retries.
    """

    provider: EmbeddingProvider
    dimensions: int
    store: EmbeddingCacheStore | None = None
    timeout_seconds: float | None = None
    max_concurrency: int = 8
    clock: Callable[[], float] = time.time
    counters: CacheCounters = field(default_factory=CacheCounters)
    _memory: dict[str, np.ndarray] = field(default_factory=dict, init=False, repr=False)
    _inflight: dict[str, _Flight] = field(default_factory=dict, init=False, repr=False)
    _semaphore: asyncio.Semaphore | None = field(default=None, init=False, repr=False)
    _semaphore_loop: asyncio.AbstractEventLoop | None = field(
        default=None, init=False, repr=False
    )

    def __post_init__(self) -> None:
        if self.dimensions <= 0:
            raise ValueError(f"dimensions must be positive, got {self.dimensions}.")
        if self.max_concurrency <= 0:
            raise ValueError(f"max_concurrency must be positive, got {self.max_concurrency}.")

    @property
    def model(self) -> str:
        return str(getattr(self.provider, "model", "") or "default")

    def __len__(self) -> int:
        return len(self._memory)

    def _provider_slots(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
            self._semaphore_loop = loop
        return self._semaphore

    async def _lookup(self, key: str) -> np.ndarray | None:
        vector = self._memory.get(key)
        if vector is not None or self.store is None:
            return vector
        entry = await asyncio.to_thread(
            self.store.get, key, self.model, dimensions=self.dimensions
        )
        if entry is None:
            # A flight for this key may have finished while the store was read.
            return self._memory.get(key)
        self._memory[key] = entry.vector
        return entry.vector

    async def get_or_compute(self, text: str) -> np.ndarray:
        """Return the embedding for `text`, computing it on a miss."""

        normalized = normalize_text(text)
        if not normalized:
            raise ValueError("Cannot embed blank text.")
        key = hashlib.sha256(normalized.encode("utf-8")).hexdigest()

        cached = await self._lookup(key)
        if cached is not None:
            self.counters.hits += 1
            return cached

        flight = self._inflight.get(key)
        if flight is None:
            flight = _Flight(task=asyncio.create_task(self._compute(key, normalized)))
            self._inflight[key] = flight
            self.counters.misses += 1
        else:
            self.counters.coalesced += 1

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                # Last waiter gave up: abort the call and let the next lookup start fresh.
                if self._inflight.get(key) is flight:
                    del self._inflight[key]
                flight.task.cancel()

    async def _compute(self, key: str, text: str) -> np.ndarray:
        task = asyncio.current_task()
        try:
            async with self._provider_slots():
                self.counters.provider_calls += 1
                raw = await self._call_provider(text)
            vector = self._validate(raw)
            entry = EmbeddingCacheEntry(
                key=key,
                model=self.model,
                vector=vector,
                created_at=float(self.clock()),
            )
            if self.store is not None:
                await asyncio.to_thread(self.store.put, entry)
            self._memory[key] = entry.vector
            return entry.vector
        except EmbeddingProviderError:
            self.counters.failures += 1
            raise
        finally:
            flight = self._inflight.get(key)
            if flight is not None and flight.task is task:
                del self._inflight[key]

    async def _call_provider(self, text: str) -> Any:
        call = asyncio.to_thread(self.provider.embed, text)
        try:
            if self.timeout_seconds is None:
                return await call
            return await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except TimeoutError as exc:
            raise EmbeddingProviderError(
                f"Embedding provider timed out after {self.timeout_seconds}s."
            ) from exc
        except EmbeddingProviderError:
            raise
        except Exception as exc:
            raise EmbeddingProviderError(
                f"Embedding provider failed: {type(exc).__name__}: {exc}"
            ) from exc

    def _validate(self, raw: Any) -> np.ndarray:
        try:
            vector = np.asarray(raw, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise MalformedEmbeddingError(
                f"Embedding provider returned a non-numeric vector: {exc}"
            ) from exc
        if vector.ndim != 1 or vector.shape[0] != self.dimensions:
            raise MalformedEmbeddingError(
                f"Expected embedding of dimension {self.dimensions}, "
                f"got shape {tuple(vector.shape)}."
            )
        if not np.all(np.isfinite(vector)):
            raise MalformedEmbeddingError("Embedding vector contains non-finite values.")
        return _freeze_vector(vector)
