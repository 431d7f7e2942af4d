"""Daily learning streak tracking with milestone rewards."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from skillify.config import get_settings
from skillify.db.models import User
from skillify.errors import ConcurrencyConflict, NotFound
from skillify.gamification.catalog import BADGES_BY_SLUG, STREAK_BADGE_MAP, badge_points
from skillify.gamification.ledger import award, award_badge

logger = logging.getLogger(__name__)


@dataclass
class StreakResult:
    current: int
    longest: int
    last_active: date | None
    milestone_badges: list[str] = field(default_factory=list)
    points_awarded: int = 0
    changed: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def to_day(dt: datetime) -> date:
    """Truncate a timestamp to its UTC calendar day. Naive timestamps are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).date()


def next_streak_state(
    current: int, longest: int, last_active: date | None, today: date
) -> tuple[int, int, int | None]:
    """Compute (current, longest, day_diff) after activity on ``today``.

    day_diff is None for a first-ever activity and 0 when nothing changes.
    """
    if last_active is None:
        return 1, max(longest, 1), None

    diff = (today - last_active).days
    if diff <= 0:
        # Already counted today, or a clock running behind the stored day
        return current, longest, 0
    if diff == 1:
        current += 1
        return current, max(current, longest), 1
    return 1, longest, diff


async def _load_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        msg = f"User {user_id} not found"
        raise NotFound(msg)
    return user


async def touch(
    db: AsyncSession,
    redis: object,
    user_id: int,
    now: datetime | None = None,
) -> StreakResult:
    """Record a qualifying activity for the user's streak.

    1. Diff today against the last active day and write the new streak state
       (optimistic concurrency on users.version_id, retried on conflict)
    2. On a day transition, award the daily-login points once per day
    3. At 7 and 30 consecutive days, award the milestone badge (once ever)
    """
    if now is None:
        now = datetime.now(timezone.utc)
    today = to_day(now)
    settings = get_settings()

    for attempt in range(1, settings.max_update_retries + 1):
        user = await _load_user(db, user_id)
        current, longest, diff = next_streak_state(
            user.streak_current, user.streak_longest, user.streak_last_active, today
        )
        if diff == 0:
            return StreakResult(current=current, longest=longest, last_active=user.streak_last_active)

        try:
            async with db.begin_nested():
                user.streak_current = current
                user.streak_longest = longest
                user.streak_last_active = today
        except StaleDataError:
            logger.info("Streak update for user %d lost a race (attempt %d), retrying", user_id, attempt)
            continue
        break
    else:
        msg = f"Could not update streak for user {user_id} after {settings.max_update_retries} attempts"
        raise ConcurrencyConflict(msg)

    result = StreakResult(current=current, longest=longest, last_active=today, changed=True)

    daily = await award(
        db,
        redis,
        user_id,
        "daily_login",
        source_id=today.isoformat(),
        entity_type="streak",
        description="Logged in today to maintain your streak",
        idempotency_key=f"daily_login:{user_id}:{today.isoformat()}",
    )
    result.points_awarded += daily.points_awarded

    badge_slug = STREAK_BADGE_MAP.get(current)
    if badge_slug is not None and await award_badge(db, redis, user_id, badge_slug):
        result.milestone_badges.append(badge_slug)
        result.points_awarded += badge_points(BADGES_BY_SLUG[badge_slug], settings)

    return result
