"""Gamification ledger: point awards, badges and level-up detection.

This is the only module that writes ``users.points`` and ``users.level``.
Points move through a single ``UPDATE ... RETURNING`` so concurrent awards
for the same user never lose an increment.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from sqlalchemy import Select, case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from skillify.db.models import AchievementLog, User, UserBadge
from skillify.errors import InvalidInput, NotFound
from skillify.events import publish_event
from skillify.gamification.catalog import BADGES_BY_SLUG, action_title, badge_points, default_amount
from skillify.gamification.levels import POINTS_PER_LEVEL, level_for_points

logger = logging.getLogger(__name__)


@dataclass
class AwardResult:
    points_awarded: int = 0
    new_total: int = 0
    new_level: int = 1
    new_badges: list[str] = field(default_factory=list)
    duplicate: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    def merge(self, other: AwardResult) -> AwardResult:
        """Fold a later award into this one; totals come from the later write."""
        if other.duplicate:
            return self
        self.points_awarded += other.points_awarded
        self.new_total = other.new_total
        self.new_level = other.new_level
        self.new_badges.extend(other.new_badges)
        self.duplicate = False
        return self


def points_state_query(user_id: int, *, for_update: bool = False) -> Select:
    stmt = select(User.points, User.level).where(User.id == user_id)
    return stmt.with_for_update() if for_update else stmt


async def get_points_state(db: AsyncSession, user_id: int, *, for_update: bool = False) -> tuple[int, int]:
    """Return (points, level) straight from the database.

    With ``for_update`` the row stays locked until the transaction ends, so
    no other award lands between this read and a following write.
    """
    result = await db.execute(points_state_query(user_id, for_update=for_update))
    row = result.one_or_none()
    if row is None:
        msg = f"User {user_id} not found"
        raise NotFound(msg)
    return row.points, row.level


async def _claim_key(db: AsyncSession, entry: AchievementLog) -> bool:
    """Insert the achievement row under a savepoint. False if its idempotency key is taken."""
    if entry.idempotency_key is not None:
        existing = await db.execute(
            select(AchievementLog.id).where(AchievementLog.idempotency_key == entry.idempotency_key)
        )
        if existing.scalar_one_or_none() is not None:
            return False
    try:
        async with db.begin_nested():
            db.add(entry)
    except IntegrityError:
        return False  # Race: another writer claimed the key first
    return True


async def _increment(db: AsyncSession, user_id: int, delta: int) -> tuple[int, int]:
    """Atomically add ``delta`` (clamped at zero) and recompute level in one statement."""
    new_points = case((User.points + delta < 0, 0), else_=User.points + delta)
    stmt = (
        update(User)
        .where(User.id == user_id)
        .values(points=new_points, level=new_points // POINTS_PER_LEVEL + 1)
        .returning(User.points, User.level)
        .execution_options(synchronize_session="fetch")
    )
    row = (await db.execute(stmt)).one_or_none()
    if row is None:
        msg = f"User {user_id} not found"
        raise NotFound(msg)
    return row.points, row.level


async def _record_level_up(
    db: AsyncSession, redis: object, user_id: int, old_level: int, new_level: int
) -> None:
    db.add(
        AchievementLog(
            user_id=user_id,
            achievement_type="level_up",
            title=f"Level {new_level} reached",
            description=f"You've reached level {new_level}!",
            points_earned=0,
        )
    )
    await db.flush()
    await publish_event(
        redis,
        "pubsub:level_up",
        {"user_id": user_id, "old_level": old_level, "new_level": new_level},
    )


async def award(
    db: AsyncSession,
    redis: object,
    user_id: int,
    action: str,
    amount: int | None = None,
    *,
    source_id: str | None = None,
    entity_type: str | None = None,
    title: str | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> AwardResult:
    """Award points for a qualifying action.

    1. Append an achievement record (idempotency key claimed here)
    2. Increment points and recompute level atomically
    3. If the level went up, append a level_up achievement and publish it

    A duplicate idempotency key is a no-op that reports the current totals.
    """
    if amount is None:
        amount = default_amount(action)
    if amount < 0:
        msg = "Awards cannot be negative; use adjust_points for administrative corrections"
        raise InvalidInput(msg)

    entry = AchievementLog(
        user_id=user_id,
        achievement_type=action,
        title=title or action_title(action),
        description=description,
        points_earned=amount,
        related_entity_id=source_id,
        entity_type=entity_type,
        idempotency_key=idempotency_key,
    )
    if not await _claim_key(db, entry):
        points, level = await get_points_state(db, user_id)
        return AwardResult(new_total=points, new_level=level, duplicate=True)

    points, level = await _increment(db, user_id, amount)
    old_level = level_for_points(points - amount)
    if level > old_level:
        await _record_level_up(db, redis, user_id, old_level, level)

    logger.info("Awarded %d points to user %d for %s (total %d)", amount, user_id, action, points)
    return AwardResult(points_awarded=amount, new_total=points, new_level=level)


async def adjust_points(
    db: AsyncSession,
    redis: object,
    user_id: int,
    delta: int,
    reason: str,
    admin_id: int | None = None,
) -> AwardResult:
    """Administrative correction. The only path allowed to lower points (floored at 0)."""
    db.add(
        AchievementLog(
            user_id=user_id,
            achievement_type="admin_adjustment",
            title=action_title("admin_adjustment"),
            description=reason,
            points_earned=delta,
            related_entity_id=str(admin_id) if admin_id is not None else None,
            entity_type="admin" if admin_id is not None else None,
        )
    )
    old_points, old_level = await get_points_state(db, user_id, for_update=True)
    points, level = await _increment(db, user_id, delta)
    if level > old_level:
        await _record_level_up(db, redis, user_id, old_level, level)

    logger.warning("Admin adjusted user %d points by %d: %s", user_id, delta, reason)
    return AwardResult(points_awarded=points - old_points, new_total=points, new_level=level)


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


async def has_badge(db: AsyncSession, user_id: int, badge_name: str) -> bool:
    """Check if user already holds a badge with this name."""
    result = await db.execute(
        select(UserBadge.id).where(UserBadge.user_id == user_id, UserBadge.name == badge_name)
    )
    return result.scalar_one_or_none() is not None


async def award_badge(db: AsyncSession, redis: object, user_id: int, badge_slug: str) -> bool:
    """Award a catalog badge to a user.

    Returns True if awarded, False if already held or unknown. The badge's
    points are granted through ``award`` with a per-badge idempotency key,
    so a duplicate attempt grants nothing and logs nothing.
    """
    badge = BADGES_BY_SLUG.get(badge_slug)
    if badge is None:
        logger.warning("Badge not found: %s", badge_slug)
        return False

    if await has_badge(db, user_id, badge["name"]):
        return False

    try:
        async with db.begin_nested():
            db.add(
                UserBadge(
                    user_id=user_id,
                    slug=badge["slug"],
                    name=badge["name"],
                    description=badge["description"],
                    category=badge["category"],
                )
            )
    except IntegrityError:
        return False  # Race condition: badge already awarded

    points = badge_points(badge)
    await award(
        db,
        redis,
        user_id,
        "badge_earned",
        points,
        source_id=badge["slug"],
        entity_type="badge",
        title=f"{badge['name']} badge earned",
        description=badge["description"],
        idempotency_key=f"badge:{badge['slug']}:{user_id}",
    )

    await publish_event(
        redis,
        "pubsub:badge_earned",
        {
            "user_id": user_id,
            "badge_slug": badge["slug"],
            "badge_name": badge["name"],
            "points": points,
        },
    )
    return True
