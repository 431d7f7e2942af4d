"""Leaderboard ranking engine.

Rankings are cached per (metric, period) in ``leaderboard_snapshots`` and
rebuilt from primary user data once the snapshot is older than the
staleness window. The snapshot is never the source of truth.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import Select, and_, func, literal, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from skillify.config import get_settings
from skillify.db.models import AchievementLog, Certificate, LeaderboardSnapshot, User, UserSkill
from skillify.errors import InvalidInput
from skillify.gamification.snapshot_cache import Cached, as_utc, compute_if_stale

logger = logging.getLogger(__name__)

METRICS = ("points", "certificates", "skills", "streak")
PERIODS = ("weekly", "monthly", "alltime")
MAX_PAGE_SIZE = 100


def get_period_start(period: str, now: datetime) -> datetime | None:
    """Start of the period containing ``now``: ISO Monday or first of month, 00:00 UTC."""
    now = as_utc(now)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "weekly":
        return midnight - timedelta(days=midnight.weekday())
    if period == "monthly":
        return midnight.replace(day=1)
    if period == "alltime":
        return None
    msg = f"Unknown period: {period}"
    raise InvalidInput(msg)


def _validate(metric: str, period: str) -> None:
    if metric not in METRICS:
        msg = f"Unknown metric '{metric}'. Expected one of: {', '.join(METRICS)}"
        raise InvalidInput(msg)
    if period not in PERIODS:
        msg = f"Unknown period '{period}'. Expected one of: {', '.join(PERIODS)}"
        raise InvalidInput(msg)


def build_score_query(metric: str, since: datetime | None) -> Select:
    """Select (user_id, name, score) for every user under the given metric."""
    if metric == "points":
        if since is None:
            score = User.points
            return select(User.id.label("user_id"), User.name, score.label("score"))
        score = func.coalesce(func.sum(AchievementLog.points_earned), 0)
        return (
            select(User.id.label("user_id"), User.name, score.label("score"))
            .outerjoin(
                AchievementLog,
                and_(AchievementLog.user_id == User.id, AchievementLog.earned_at >= since),
            )
            .group_by(User.id, User.name)
        )

    if metric == "certificates":
        cond = Certificate.user_id == User.id
        if since is not None:
            cond = and_(cond, Certificate.created_at >= since)
        return (
            select(User.id.label("user_id"), User.name, func.count(Certificate.id).label("score"))
            .outerjoin(Certificate, cond)
            .group_by(User.id, User.name)
        )

    if metric == "skills":
        cond = UserSkill.user_id == User.id
        if since is not None:
            cond = and_(cond, UserSkill.created_at >= since)
        return (
            select(User.id.label("user_id"), User.name, func.count(UserSkill.id).label("score"))
            .outerjoin(UserSkill, cond)
            .group_by(User.id, User.name)
        )

    if metric == "streak":
        return select(User.id.label("user_id"), User.name, User.streak_longest.label("score"))

    msg = f"Unknown metric: {metric}"
    raise InvalidInput(msg)


async def compute_rankings(
    db: AsyncSession,
    metric: str,
    period: str,
    previous: list[dict] | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """Rank the top N users by metric, highest first.

    Ties are broken by user id ascending. ``rank_change`` is the previous
    rank minus the new rank (positive = moved up), 0 for newcomers.
    """
    settings = get_settings()
    if now is None:
        now = datetime.now(timezone.utc)
    sq = build_score_query(metric, get_period_start(period, now)).subquery()
    result = await db.execute(
        select(sq.c.user_id, sq.c.name, sq.c.score)
        .order_by(sq.c.score.desc(), sq.c.user_id.asc())
        .limit(settings.leaderboard_top_n)
    )

    prev_ranks = {entry["user_id"]: entry["rank"] for entry in previous or []}
    rankings = []
    for position, row in enumerate(result):
        rank = position + 1
        prev_rank = prev_ranks.get(row.user_id)
        rankings.append(
            {
                "user_id": row.user_id,
                "name": row.name,
                "score": int(row.score or 0),
                "rank": rank,
                "rank_change": prev_rank - rank if prev_rank is not None else 0,
            }
        )
    return rankings


async def compute_user_rank(
    db: AsyncSession, metric: str, period: str, user_id: int, now: datetime | None = None
) -> int | None:
    """Rank on demand: users with a strictly greater metric, plus one."""
    if now is None:
        now = datetime.now(timezone.utc)
    sq = build_score_query(metric, get_period_start(period, now)).subquery()
    own = (await db.execute(select(sq.c.score).where(sq.c.user_id == user_id))).one_or_none()
    if own is None:
        return None
    ahead = await db.execute(
        select(func.count(literal(1))).select_from(sq).where(sq.c.score > own.score)
    )
    return ahead.scalar_one() + 1


# ---------------------------------------------------------------------------
# Snapshot persistence
# ---------------------------------------------------------------------------


async def _get_snapshot(db: AsyncSession, metric: str, period: str) -> LeaderboardSnapshot | None:
    result = await db.execute(
        select(LeaderboardSnapshot).where(
            LeaderboardSnapshot.metric == metric,
            LeaderboardSnapshot.period == period,
        )
    )
    return result.scalar_one_or_none()


async def _save_snapshot(
    db: AsyncSession, metric: str, period: str, rankings: list[dict], computed_at: datetime
) -> None:
    snapshot = await _get_snapshot(db, metric, period)
    if snapshot is None:
        try:
            async with db.begin_nested():
                db.add(
                    LeaderboardSnapshot(
                        metric=metric, period=period, rankings=rankings, last_updated=computed_at
                    )
                )
            return
        except IntegrityError:
            # Another request created it first; overwrite with ours
            snapshot = await _get_snapshot(db, metric, period)
            if snapshot is None:
                raise
    snapshot.rankings = rankings
    snapshot.last_updated = computed_at
    await db.flush()


async def get_snapshot(
    db: AsyncSession, metric: str, period: str, now: datetime | None = None
) -> Cached[list[dict]]:
    """Return the (metric, period) rankings, recomputing when the snapshot is stale."""
    _validate(metric, period)
    settings = get_settings()

    async def load() -> Cached[list[dict]] | None:
        snapshot = await _get_snapshot(db, metric, period)
        if snapshot is None:
            return None
        return Cached(value=snapshot.rankings, computed_at=as_utc(snapshot.last_updated))

    async def compute(previous: list[dict] | None) -> list[dict]:
        logger.info("Recomputing %s/%s leaderboard", metric, period)
        return await compute_rankings(db, metric, period, previous=previous, now=now)

    async def store(rankings: list[dict], computed_at: datetime) -> None:
        await _save_snapshot(db, metric, period, rankings, computed_at)

    return await compute_if_stale(
        load,
        compute,
        store,
        ttl=timedelta(seconds=settings.leaderboard_staleness_seconds),
        now=now,
    )


async def get_leaderboard(
    db: AsyncSession,
    metric: str = "points",
    period: str = "alltime",
    page: int = 1,
    limit: int = 20,
    user_id: int | None = None,
    now: datetime | None = None,
) -> dict:
    """Paginated leaderboard page plus the caller's own rank."""
    _validate(metric, period)
    if page < 1:
        msg = "page must be >= 1"
        raise InvalidInput(msg)
    if not 1 <= limit <= MAX_PAGE_SIZE:
        msg = f"limit must be between 1 and {MAX_PAGE_SIZE}"
        raise InvalidInput(msg)

    cached = await get_snapshot(db, metric, period, now=now)
    rankings = cached.value
    start = (page - 1) * limit

    user_rank = None
    if user_id is not None:
        user_rank = next((e["rank"] for e in rankings if e["user_id"] == user_id), None)
        if user_rank is None:
            user_rank = await compute_user_rank(db, metric, period, user_id, now=now)

    return {
        "metric": metric,
        "period": period,
        "rankings": rankings[start : start + limit],
        "user_rank": user_rank,
        "last_updated": as_utc(cached.computed_at),
        "total": len(rankings),
        "page": page,
        "limit": limit,
    }
