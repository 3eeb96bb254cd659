"""Tests for the embedding cache and its on-disk store."""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path

import numpy as np
import pytest

from activity_summarizer.models import EmbeddingProviderError, MalformedEmbeddingError
from activity_summarizer.segmentation import (
    EmbeddingCache,
    EmbeddingCacheEntry,
    EmbeddingCacheStore,
    EmbeddingCacheStoreError,
    cache_key,
    normalize_text,
)


class _FakeProvider:
    def __init__(self, model: str = "fake-embed", dimensions: int = 3):
        self.model = model
        self.dimensions = dimensions
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def embed(self, text: str) -> list[float]:
        with self._lock:
            self.calls.append(text)
        vector = [float(len(text)), float(sum(map(ord, text)) % 97), 1.0]
        return (vector * self.dimensions)[: self.dimensions]


class _FlakyProvider(_FakeProvider):
    """Fails the first N calls, then behaves like _FakeProvider."""

    def __init__(self, fail_times: int):
        super().__init__()
        self._fail_times = fail_times

    def embed(self, text: str) -> list[float]:
        with self._lock:
            self.calls.append(text)
            attempt = len(self.calls)
        if attempt <= self._fail_times:
            raise ConnectionError("Simulated provider outage")
        return [1.0, 2.0, 3.0]


class _GatedProvider(_FakeProvider):
    """Blocks the first call until the gate opens."""

    def __init__(self):
        super().__init__()
        self.gate = threading.Event()

    def embed(self, text: str) -> list[float]:
        with self._lock:
            self.calls.append(text)
            first = len(self.calls) == 1
        if first:
            self.gate.wait(timeout=5)
        return [0.5, 0.5, 0.5]


class _SlowProvider(_FakeProvider):
    def embed(self, text: str) -> list[float]:
        with self._lock:
            self.calls.append(text)
        time.sleep(0.3)
        return [1.0, 1.0, 1.0]


class _WrongShapeProvider(_FakeProvider):
    def embed(self, text: str) -> list[float]:
        with self._lock:
            self.calls.append(text)
        return [1.0, 2.0]


class _NaNProvider(_FakeProvider):
    def embed(self, text: str) -> list[float]:
        return [1.0, float("nan"), 0.0]


class _ExplodingProvider(_FakeProvider):
    def embed(self, text: str) -> list[float]:
        raise AssertionError("provider should not be called on a warm cache")


class TestKeys:
    def test_normalize_collapses_whitespace_and_preserves_case(self):
        assert normalize_text("  Hello \n\t world  ") == "Hello world"
        assert normalize_text("Hello") != normalize_text("hello")

    def test_cache_key_is_stable_for_equivalent_text(self):
        assert cache_key("deploy  the build") == cache_key(" deploy the build\n")
        assert cache_key("deploy") != cache_key("Deploy")
        assert len(cache_key("deploy")) == 64


class TestEmbeddingCache:
    def test_miss_then_hit(self):
        provider = _FakeProvider()
        cache = EmbeddingCache(provider=provider, dimensions=3)

        async def scenario():
            first = await cache.get_or_compute("standup notes")
            second = await cache.get_or_compute("standup   notes ")
            return first, second

        first, second = asyncio.run(scenario())
        assert np.array_equal(first, second)
        assert provider.calls == ["standup notes"]
        assert cache.counters.to_dict() == {
            "hits": 1,
            "misses": 1,
            "coalesced": 0,
            "provider_calls": 1,
            "failures": 0,
        }
        assert len(cache) == 1

    def test_vectors_are_float32_and_read_only(self):
        cache = EmbeddingCache(provider=_FakeProvider(), dimensions=3)
        vector = asyncio.run(cache.get_or_compute("hello"))
        assert vector.dtype == np.float32
        assert vector.flags.writeable is False
        with pytest.raises(ValueError):
            vector[0] = 42.0

    def test_concurrent_misses_share_one_provider_call(self):
        provider = _FakeProvider()
        cache = EmbeddingCache(provider=provider, dimensions=3)

        async def scenario():
            return await asyncio.gather(*(cache.get_or_compute("same text") for _ in range(20)))

        vectors = asyncio.run(scenario())
        assert len(provider.calls) == 1
        assert all(np.array_equal(vectors[0], vector) for vector in vectors)
        assert cache.counters.misses == 1
        assert cache.counters.coalesced == 19
        assert cache.counters.provider_calls == 1

    def test_distinct_keys_are_computed_independently(self):
        provider = _FakeProvider()
        cache = EmbeddingCache(provider=provider, dimensions=3, max_concurrency=2)

        async def scenario():
            return await asyncio.gather(
                *(cache.get_or_compute(f"message {index}") for index in range(6))
            )

        asyncio.run(scenario())
        assert sorted(provider.calls) == sorted(f"message {index}" for index in range(6))
        assert len(cache) == 6

    def test_blank_text_is_rejected(self):
        cache = EmbeddingCache(provider=_FakeProvider(), dimensions=3)
        with pytest.raises(ValueError, match="blank"):
            asyncio.run(cache.get_or_compute("  \n "))

    def test_invalid_construction(self):
        with pytest.raises(ValueError, match="dimensions"):
            EmbeddingCache(provider=_FakeProvider(), dimensions=0)
        with pytest.raises(ValueError, match="max_concurrency"):
            EmbeddingCache(provider=_FakeProvider(), dimensions=3, max_concurrency=0)

    def test_failures_are_not_cached(self):
        provider = _FlakyProvider(fail_times=1)
        cache = EmbeddingCache(provider=provider, dimensions=3)

        with pytest.raises(EmbeddingProviderError, match="ConnectionError"):
            asyncio.run(cache.get_or_compute("retry me"))
        assert len(cache) == 0
        assert cache.counters.failures == 1

        vector = asyncio.run(cache.get_or_compute("retry me"))
        assert vector.tolist() == [1.0, 2.0, 3.0]
        assert len(provider.calls) == 2

    def test_coalesced_waiters_all_see_the_failure(self):
        provider = _FlakyProvider(fail_times=1)
        cache = EmbeddingCache(provider=provider, dimensions=3)

        async def scenario():
            return await asyncio.gather(
                *(cache.get_or_compute("shared") for _ in range(5)),
                return_exceptions=True,
            )

        results = asyncio.run(scenario())
        assert all(isinstance(result, EmbeddingProviderError) for result in results)
        assert len(provider.calls) == 1
        assert cache.counters.failures == 1

    def test_wrong_dimension_is_a_contract_violation(self):
        provider = _WrongShapeProvider()
        cache = EmbeddingCache(provider=provider, dimensions=3)
        with pytest.raises(MalformedEmbeddingError, match="dimension 3"):
            asyncio.run(cache.get_or_compute("short vector"))
        assert len(cache) == 0

    def test_non_finite_vector_is_rejected(self):
        cache = EmbeddingCache(provider=_NaNProvider(), dimensions=3)
        with pytest.raises(MalformedEmbeddingError, match="non-finite"):
            asyncio.run(cache.get_or_compute("nan please"))

    def test_timeout_raises_provider_error_and_leaves_no_entry(self):
        provider = _SlowProvider()
        cache = EmbeddingCache(provider=provider, dimensions=3, timeout_seconds=0.05)
        with pytest.raises(EmbeddingProviderError, match="timed out"):
            asyncio.run(cache.get_or_compute("slow"))
        assert len(cache) == 0
        assert cache.counters.failures == 1

    def test_cancelled_waiter_does_not_poison_the_key(self):
        provider = _GatedProvider()
        cache = EmbeddingCache(provider=provider, dimensions=3)

        async def scenario():
            waiter = asyncio.create_task(cache.get_or_compute("cancel me"))
            await asyncio.sleep(0.05)
            waiter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiter
            provider.gate.set()
            return await cache.get_or_compute("cancel me")

        vector = asyncio.run(scenario())
        assert vector.tolist() == [0.5, 0.5, 0.5]
        assert len(provider.calls) == 2
        assert len(cache) == 1

    def test_model_name_falls_back_to_default(self):
        provider = _FakeProvider(model="")
        cache = EmbeddingCache(provider=provider, dimensions=3)
        assert cache.model == "default"


class TestEmbeddingCacheStore:
    def test_warm_store_serves_vectors_without_provider(self, tmp_path: Path):
        db_path = tmp_path / "cache" / "embeddings.db"
        with EmbeddingCacheStore(db_path) as store:
            cold = EmbeddingCache(provider=_FakeProvider(), dimensions=3, store=store)
            cold_vector = asyncio.run(cold.get_or_compute("persist me"))

        with EmbeddingCacheStore(db_path) as store:
            warm = EmbeddingCache(provider=_ExplodingProvider(), dimensions=3, store=store)
            warm_vector = asyncio.run(warm.get_or_compute("persist   me"))

        assert np.array_equal(cold_vector, warm_vector)
        assert warm_vector.dtype == np.float32
        assert warm.counters.hits == 1

    def test_concurrent_misses_with_store_share_one_provider_call(self, tmp_path: Path):
        provider = _FakeProvider()
        with EmbeddingCacheStore(tmp_path / "embeddings.db") as store:
            cache = EmbeddingCache(provider=provider, dimensions=3, store=store)

            async def scenario():
                return await asyncio.gather(
                    *(cache.get_or_compute("same text") for _ in range(10))
                )

            asyncio.run(scenario())
            assert store.count() == 1

        assert len(provider.calls) == 1
        assert cache.counters.misses + cache.counters.coalesced + cache.counters.hits == 10

    def test_store_is_usable_from_worker_threads(self, tmp_path: Path):
        with EmbeddingCacheStore(tmp_path / "embeddings.db") as store:
            entries = [
                EmbeddingCacheEntry(
                    key=cache_key(f"text {index}"),
                    model="m",
                    vector=np.array([float(index), 1.0], dtype=np.float32),
                    created_at=1.0,
                )
                for index in range(8)
            ]

            async def scenario():
                await asyncio.gather(*(asyncio.to_thread(store.put, entry) for entry in entries))
                return await asyncio.gather(
                    *(
                        asyncio.to_thread(store.get, entry.key, "m", dimensions=2)
                        for entry in entries
                    )
                )

            fetched = asyncio.run(scenario())

        assert [entry.vector.tolist() for entry in fetched] == [
            [float(index), 1.0] for index in range(8)
        ]

    def test_entries_are_namespaced_by_model_and_dimension(self, tmp_path: Path):
        with EmbeddingCacheStore(tmp_path / "embeddings.db") as store:
            entry = EmbeddingCacheEntry(
                key=cache_key("hello"),
                model="model-a",
                vector=np.array([1.0, 2.0, 3.0], dtype=np.float32),
                created_at=1000.0,
            )
            store.put(entry)

            assert store.get(entry.key, "model-a", dimensions=3) is not None
            assert store.get(entry.key, "model-b", dimensions=3) is None
            assert store.get(entry.key, "model-a", dimensions=4) is None

    def test_put_keeps_first_entry(self, tmp_path: Path):
        with EmbeddingCacheStore(tmp_path / "embeddings.db") as store:
            key = cache_key("hello")
            store.put(EmbeddingCacheEntry(key, "m", np.array([1.0, 1.0], dtype=np.float32), 1.0))
            store.put(EmbeddingCacheEntry(key, "m", np.array([9.0, 9.0], dtype=np.float32), 2.0))
            stored = store.get(key, "m", dimensions=2)

        assert stored is not None
        assert stored.vector.tolist() == [1.0, 1.0]
        assert stored.created_at == 1.0

    def test_prune_and_clear(self, tmp_path: Path):
        now = 10 * 86_400.0
        with EmbeddingCacheStore(tmp_path / "embeddings.db") as store:
            for index, created_at in enumerate([0.0, 86_400.0, 9 * 86_400.0]):
                store.put(
                    EmbeddingCacheEntry(
                        key=cache_key(f"text {index}"),
                        model="m",
                        vector=np.array([float(index)], dtype=np.float32),
                        created_at=created_at,
                    )
                )

            assert store.prune(max_age_days=5, now=now, dry_run=True) == 2
            assert store.count() == 3
            assert store.prune(max_age_days=5, now=now) == 2
            assert store.count() == 1

            stats = store.stats()
            assert stats["entry_count"] == 1
            assert stats["models"][0]["model"] == "m"

            assert store.clear() == 1
            assert store.count() == 0

            with pytest.raises(ValueError, match="max_age_days"):
                store.prune(max_age_days=-1)

    def test_rejects_non_database_file(self, tmp_path: Path):
        bogus = tmp_path / "embeddings.db"
        bogus.write_text("this is not sqlite" * 100, encoding="utf-8")
        with pytest.raises(EmbeddingCacheStoreError, match="not a usable database"):
            EmbeddingCacheStore(bogus)
