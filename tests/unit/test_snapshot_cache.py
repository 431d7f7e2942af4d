"""Compute-if-stale memoization."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from skillify.gamification.snapshot_cache import Cached, as_utc, compute_if_stale, is_stale

T0 = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
TTL = timedelta(hours=1)


class FakeStore:
    def __init__(self, cached: Cached | None = None):
        self.cached = cached
        self.computes = 0
        self.seen_previous: list[object] = []

    async def load(self):
        return self.cached

    async def compute(self, previous):
        self.computes += 1
        self.seen_previous.append(previous)
        return f"value-{self.computes}"

    async def store(self, value, computed_at):
        self.cached = Cached(value=value, computed_at=computed_at)

    async def run(self, now):
        return await compute_if_stale(self.load, self.compute, self.store, TTL, now=now)


class TestAsUtc:
    def test_naive_is_taken_as_utc(self):
        assert as_utc(datetime(2025, 1, 1, 8)) == datetime(2025, 1, 1, 8, tzinfo=timezone.utc)

    def test_aware_is_converted(self):
        plus_two = timezone(timedelta(hours=2))
        assert as_utc(datetime(2025, 1, 1, 10, tzinfo=plus_two)) == datetime(2025, 1, 1, 8, tzinfo=timezone.utc)


class TestIsStale:
    def test_fresh_within_ttl(self):
        assert not is_stale(T0, TTL, T0 + timedelta(minutes=59))

    def test_stale_at_ttl(self):
        assert is_stale(T0, TTL, T0 + TTL)

    def test_naive_and_aware_compare(self):
        assert not is_stale(T0.replace(tzinfo=None), TTL, T0 + timedelta(minutes=5))


class TestComputeIfStale:
    @pytest.mark.asyncio
    async def test_computes_when_nothing_stored(self):
        store = FakeStore()
        result = await store.run(T0)
        assert result.value == "value-1"
        assert result.computed_at == T0
        assert result.refreshed is True
        assert store.seen_previous == [None]

    @pytest.mark.asyncio
    async def test_fresh_value_is_returned_unchanged(self):
        store = FakeStore()
        await store.run(T0)
        again = await store.run(T0 + timedelta(minutes=30))
        assert again.value == "value-1"
        assert again.computed_at == T0
        assert again.refreshed is False
        assert store.computes == 1

    @pytest.mark.asyncio
    async def test_stale_value_is_recomputed_with_previous(self):
        store = FakeStore()
        await store.run(T0)
        later = T0 + timedelta(hours=2)
        result = await store.run(later)
        assert result.value == "value-2"
        assert result.computed_at == later
        assert store.seen_previous == [None, "value-1"]
