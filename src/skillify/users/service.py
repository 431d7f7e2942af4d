"""User lookups and the engagement profile summary."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from skillify.db.models import AchievementLog, Certificate, User, UserBadge, UserSkill
from skillify.errors import NotFound
from skillify.gamification.levels import compute_level
from skillify.gamification.triggers import VERIFIED_STATUSES

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_engagement_profile(db: AsyncSession, user_id: int, recent: int = 10) -> dict[str, Any]:
    """Points, level progress, streak, badges and recent achievements for one user."""
    user = await get_user_by_id(db, user_id)
    if user is None:
        msg = f"User {user_id} not found"
        raise NotFound(msg)

    badges = (
        await db.execute(
            select(UserBadge).where(UserBadge.user_id == user_id).order_by(UserBadge.earned_at, UserBadge.id)
        )
    ).scalars().all()

    achievements = (
        await db.execute(
            select(AchievementLog)
            .where(AchievementLog.user_id == user_id)
            .order_by(AchievementLog.earned_at.desc(), AchievementLog.id.desc())
            .limit(recent)
        )
    ).scalars().all()

    certificate_count = (
        await db.execute(select(func.count(Certificate.id)).where(Certificate.user_id == user_id))
    ).scalar_one()
    verified_count = (
        await db.execute(
            select(func.count(Certificate.id)).where(
                Certificate.user_id == user_id,
                Certificate.verification_status.in_(VERIFIED_STATUSES),
            )
        )
    ).scalar_one()
    skill_count = (
        await db.execute(select(func.count(UserSkill.id)).where(UserSkill.user_id == user_id))
    ).scalar_one()

    return {
        "user_id": user.id,
        "name": user.name,
        "points": user.points,
        **compute_level(user.points),
        "streak": {
            "current": user.streak_current,
            "longest": user.streak_longest,
            "last_active": user.streak_last_active,
        },
        "badges": [
            {
                "slug": b.slug,
                "name": b.name,
                "description": b.description,
                "category": b.category,
                "earned_at": b.earned_at,
            }
            for b in badges
        ],
        "recent_achievements": [
            {
                "type": a.achievement_type,
                "title": a.title,
                "description": a.description,
                "points_earned": a.points_earned,
                "earned_at": a.earned_at,
            }
            for a in achievements
        ],
        "certificate_count": certificate_count,
        "verified_certificate_count": verified_count,
        "skill_count": skill_count,
    }
