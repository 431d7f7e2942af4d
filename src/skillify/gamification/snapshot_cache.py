"""Compute-if-stale memoization over a persisted value."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Generic, TypeVar

V = TypeVar("V")


@dataclass
class Cached(Generic[V]):
    value: V
    computed_at: datetime
    refreshed: bool = False


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive timestamps (SQLite drops tzinfo on the way back)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_stale(computed_at: datetime, ttl: timedelta, now: datetime) -> bool:
    return as_utc(now) - as_utc(computed_at) >= ttl


async def compute_if_stale(
    load: Callable[[], Awaitable[Cached[V] | None]],
    compute: Callable[[V | None], Awaitable[V]],
    store: Callable[[V, datetime], Awaitable[None]],
    ttl: timedelta,
    now: datetime | None = None,
) -> Cached[V]:
    """Return the stored value while it is fresh, otherwise recompute and store it.

    ``compute`` receives the previous value (or None) so a recomputation can
    diff against what it replaces.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    cached = await load()
    if cached is not None and not is_stale(cached.computed_at, ttl, now):
        return cached

    value = await compute(cached.value if cached is not None else None)
    await store(value, now)
    return Cached(value=value, computed_at=now, refreshed=True)
