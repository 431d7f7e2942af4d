"""Streak tracking with daily-login awards and milestone badges."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select, text

from conftest import make_user
from skillify.db.models import AchievementLog, UserBadge
from skillify.config import get_settings
from skillify.errors import ConcurrencyConflict, NotFound
from skillify.gamification import streaks
from skillify.gamification.ledger import get_points_state
from skillify.gamification.streaks import touch

DAY1 = datetime(2025, 6, 2, 9, 0, tzinfo=timezone.utc)


def day(n: int, hour: int = 9) -> datetime:
    return DAY1.replace(hour=hour) + timedelta(days=n - 1)


async def _daily_logins(db, user_id):
    result = await db.execute(
        select(AchievementLog).where(
            AchievementLog.user_id == user_id,
            AchievementLog.achievement_type == "daily_login",
        )
    )
    return list(result.scalars())


class TestTouch:
    @pytest.mark.asyncio
    async def test_first_activity(self, db_session):
        user = await make_user(db_session)
        result = await touch(db_session, None, user.id, now=day(1))

        assert (result.current, result.longest) == (1, 1)
        assert result.last_active == date(2025, 6, 2)
        assert result.points_awarded == 5
        assert result.changed is True

    @pytest.mark.asyncio
    async def test_consecutive_days_extend(self, db_session):
        user = await make_user(db_session)
        for n in (1, 2, 3):
            result = await touch(db_session, None, user.id, now=day(n))

        assert (result.current, result.longest) == (3, 3)
        assert await get_points_state(db_session, user.id) == (15, 1)

    @pytest.mark.asyncio
    async def test_gap_resets_current_keeps_longest(self, db_session):
        user = await make_user(db_session)
        await touch(db_session, None, user.id, now=day(1))
        await touch(db_session, None, user.id, now=day(2))
        result = await touch(db_session, None, user.id, now=day(4))

        assert (result.current, result.longest) == (1, 2)

    @pytest.mark.asyncio
    async def test_day_one_then_day_four(self, db_session):
        user = await make_user(db_session)
        await touch(db_session, None, user.id, now=day(1))
        result = await touch(db_session, None, user.id, now=day(4))
        assert (result.current, result.longest) == (1, 1)

    @pytest.mark.asyncio
    async def test_same_day_counts_once(self, db_session):
        user = await make_user(db_session)
        await touch(db_session, None, user.id, now=day(1, hour=8))
        again = await touch(db_session, None, user.id, now=day(1, hour=23))

        assert again.changed is False
        assert again.points_awarded == 0
        assert (again.current, again.longest) == (1, 1)
        assert len(await _daily_logins(db_session, user.id)) == 1

    @pytest.mark.asyncio
    async def test_clock_behind_changes_nothing(self, db_session):
        user = await make_user(db_session)
        await touch(db_session, None, user.id, now=day(5))
        result = await touch(db_session, None, user.id, now=day(4))

        assert result.changed is False
        assert result.last_active == day(5).date()

    @pytest.mark.asyncio
    async def test_week_streak_earns_week_warrior(self, db_session):
        user = await make_user(db_session)
        for n in range(1, 7):
            result = await touch(db_session, None, user.id, now=day(n))
            assert result.milestone_badges == []

        seventh = await touch(db_session, None, user.id, now=day(7))
        assert seventh.current == 7
        assert seventh.milestone_badges == ["week_warrior"]
        assert seventh.points_awarded == 55
        assert await get_points_state(db_session, user.id) == (85, 1)

    @pytest.mark.asyncio
    async def test_milestone_badge_is_once_ever(self, db_session):
        user = await make_user(db_session)
        for n in range(1, 8):
            await touch(db_session, None, user.id, now=day(n))
        # Break the streak, then build a second week
        for n in range(10, 17):
            result = await touch(db_session, None, user.id, now=day(n))

        assert result.current == 7
        assert result.milestone_badges == []
        badges = (await db_session.execute(select(UserBadge).where(UserBadge.user_id == user.id))).scalars().all()
        assert [b.slug for b in badges] == ["week_warrior"]

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session):
        with pytest.raises(NotFound):
            await touch(db_session, None, 999, now=day(1))


def race_user_writes(monkeypatch, times: int) -> list[int]:
    """Bump users.version_id right after each of the first ``times`` loads."""
    real_load = streaks._load_user
    loads: list[int] = []

    async def racing_load(db, user_id):
        user = await real_load(db, user_id)
        loads.append(user_id)
        if len(loads) <= times:
            await db.execute(
                text("UPDATE users SET version_id = version_id + 1 WHERE id = :id"), {"id": user_id}
            )
        return user

    monkeypatch.setattr(streaks, "_load_user", racing_load)
    return loads


class TestConcurrentUpdates:
    @pytest.mark.asyncio
    async def test_lost_race_is_retried(self, db_session, monkeypatch):
        user = await make_user(db_session)
        await touch(db_session, None, user.id, now=day(1))
        loads = race_user_writes(monkeypatch, times=1)

        result = await touch(db_session, None, user.id, now=day(2))

        assert len(loads) == 2
        assert (result.current, result.longest) == (2, 2)
        assert result.points_awarded == 5
        assert len(await _daily_logins(db_session, user.id)) == 2
        assert await get_points_state(db_session, user.id) == (10, 1)

    @pytest.mark.asyncio
    async def test_exhausted_retries_conflict(self, db_session, monkeypatch):
        monkeypatch.setenv("SKILLIFY_MAX_UPDATE_RETRIES", "1")
        get_settings.cache_clear()
        user = await make_user(db_session)
        race_user_writes(monkeypatch, times=1)

        with pytest.raises(ConcurrencyConflict):
            await touch(db_session, None, user.id, now=day(1))

        assert await _daily_logins(db_session, user.id) == []
        assert await get_points_state(db_session, user.id) == (0, 1)
