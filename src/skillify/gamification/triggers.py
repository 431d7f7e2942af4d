"""Collection badge triggers: certificate, skill and verification counts."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from skillify.db.models import Certificate, UserSkill
from skillify.gamification.catalog import BADGE_CATALOG
from skillify.gamification.ledger import award_badge

logger = logging.getLogger(__name__)

VERIFIED_STATUSES = ("verified", "auto_verified")


class TriggerEngine:
    """Evaluates count-based badge triggers for one user."""

    def __init__(self, db: AsyncSession, redis: object) -> None:
        self.db = db
        self.redis = redis

    async def _count(self, trigger_type: str, user_id: int) -> int:
        if trigger_type == "certificate_count":
            stmt = select(func.count(Certificate.id)).where(Certificate.user_id == user_id)
        elif trigger_type == "verified_count":
            stmt = select(func.count(Certificate.id)).where(
                Certificate.user_id == user_id,
                Certificate.verification_status.in_(VERIFIED_STATUSES),
            )
        elif trigger_type == "skill_count":
            stmt = select(func.count(UserSkill.id)).where(UserSkill.user_id == user_id)
        else:
            msg = f"Unknown trigger type: {trigger_type}"
            raise ValueError(msg)
        return (await self.db.execute(stmt)).scalar_one()

    async def evaluate(self, user_id: int, trigger_types: tuple[str, ...] | None = None) -> list[str]:
        """Award every collection badge whose threshold the user has reached.

        Returns list of badge slugs newly awarded (may be empty).
        """
        awarded: list[str] = []
        counts: dict[str, int] = {}
        for badge in BADGE_CATALOG:
            trigger_type = badge["trigger_type"]
            if trigger_type == "streak":
                continue
            if trigger_types is not None and trigger_type not in trigger_types:
                continue
            if trigger_type not in counts:
                counts[trigger_type] = await self._count(trigger_type, user_id)
            if counts[trigger_type] >= badge["trigger_config"]["threshold"]:
                if await award_badge(self.db, self.redis, user_id, badge["slug"]):
                    awarded.append(badge["slug"])
        if awarded:
            logger.info("User %d earned collection badges: %s", user_id, ", ".join(awarded))
        return awarded
