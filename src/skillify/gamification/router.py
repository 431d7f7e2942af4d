"""Gamification API endpoints: profile, streak, leaderboard, admin points."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from skillify.auth.dependencies import get_current_user, require_admin
from skillify.database import get_session
from skillify.db.models import User
from skillify.dependencies import get_event_redis
from skillify.gamification.catalog import BADGE_CATALOG, badge_points
from skillify.gamification.leaderboard import MAX_PAGE_SIZE, get_leaderboard
from skillify.gamification.ledger import adjust_points
from skillify.gamification.schemas import (
    AdminPointsRequest,
    AllBadgesResponse,
    AwardResponse,
    BadgeDefinitionResponse,
    LeaderboardResponse,
    ProfileResponse,
    StreakTouchResponse,
)
from skillify.gamification.streaks import touch
from skillify.users.service import get_engagement_profile

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


@router.get("/gamification/badges", response_model=AllBadgesResponse)
async def list_badges():
    """All badges a learner can earn."""
    return AllBadgesResponse(
        badges=[
            BadgeDefinitionResponse(
                slug=b["slug"],
                name=b["name"],
                description=b["description"],
                category=b["category"],
                points=badge_points(b),
            )
            for b in BADGE_CATALOG
        ]
    )


@router.get("/gamification/profile", response_model=ProfileResponse)
async def get_profile(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Current user's points, level progress, streak and badges."""
    return ProfileResponse(**await get_engagement_profile(db, user.id))


@router.post("/gamification/streak", response_model=StreakTouchResponse)
async def record_activity(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_event_redis),
):
    """Count today's activity toward the learning streak."""
    result = await touch(db, redis, user.id)
    await db.commit()
    return StreakTouchResponse(
        current=result.current,
        longest=result.longest,
        last_active=result.last_active,
        milestone_badges=result.milestone_badges,
        points_awarded=result.points_awarded,
    )


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(
    metric: str = Query("points"),
    period: str = Query("alltime"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Ranked leaderboard for a metric and period, plus the caller's rank."""
    data = await get_leaderboard(db, metric, period, page=page, limit=limit, user_id=user.id)
    await db.commit()
    return LeaderboardResponse(**data)


@router.post("/admin/points", response_model=AwardResponse)
async def admin_adjust_points(
    body: AdminPointsRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_event_redis),
):
    """Administrative point correction. May lower points (never below zero)."""
    result = await adjust_points(db, redis, body.user_id, body.delta, body.reason, admin_id=admin.id)
    await db.commit()
    return AwardResponse(**result.to_dict())
