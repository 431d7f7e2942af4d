"""ORM models for certificates, verification history and user engagement."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from skillify.db.base import Base, BigIntPK, JSONType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Learner account with its denormalized engagement state.

    ``points``, ``level`` and the ``streak_*`` columns are written only by the
    gamification ledger and the streak tracker.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, unique=True)
    profile_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    # --- Engagement ---
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    streak_current: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    streak_longest: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    streak_last_active: Mapped[date | None] = mapped_column(Date, nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}  # noqa: RUF012


class UserBadge(Base):
    """Badges earned by users. UNIQUE(user_id, name) keeps awards idempotent."""

    __tablename__ = "user_badges"
    __table_args__ = (UniqueConstraint("user_id", "name", name="user_badges_user_id_name_key"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    slug: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="achievements")
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class AchievementLog(Base):
    """Append-only log of every point-bearing or milestone event."""

    __tablename__ = "achievement_log"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    achievement_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    related_entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(256), unique=True, nullable=True)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


# ---------------------------------------------------------------------------
# Skills & certificates
# ---------------------------------------------------------------------------


certificate_skills = Table(
    "certificate_skills",
    Base.metadata,
    Column("certificate_id", BigIntPK, ForeignKey("certificates.id", ondelete="CASCADE"), primary_key=True),
    Column("skill_id", BigIntPK, ForeignKey("skills.id", ondelete="CASCADE"), primary_key=True),
)


class Skill(Base):
    """System-wide skill catalog. Names are unique case-insensitively."""

    __tablename__ = "skills"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    name_normalized: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="Other")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")


class Certificate(Base):
    """A claimed credential backed by evidence or a credential URL."""

    __tablename__ = "certificates"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    issuer: Mapped[str] = mapped_column(String(256), nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    credential_id: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    credential_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    evidence_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_type: Mapped[str] = mapped_column(String(8), nullable=False, default="none")
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    verification_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", index=True)
    verification_score: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    verification_details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    extracted_text: Mapped[str] = mapped_column(Text, nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}  # noqa: RUF012

    skills: Mapped[list[Skill]] = relationship("Skill", secondary=certificate_skills, lazy="selectin")


class UserSkill(Base):
    """Per-user skill tally in [0, 100] and the certificates supporting it."""

    __tablename__ = "user_skills"
    __table_args__ = (UniqueConstraint("user_id", "skill_id", name="user_skills_user_id_skill_id_key"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    skill_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("skills.id", ondelete="CASCADE"), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    certificate_ids: Mapped[list[int]] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    skill: Mapped[Skill] = relationship("Skill", lazy="joined")


class VerificationResult(Base):
    """One verification attempt. Rows are inserted, never updated."""

    __tablename__ = "verification_results"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    certificate_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("certificates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    ocr_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    decision: Mapped[str] = mapped_column(String(16), nullable=False)
    issuer_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edits_detected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    issues: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    verified_by: Mapped[str] = mapped_column(String(64), nullable=False, default="ocr+oracle")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


@event.listens_for(VerificationResult, "before_update")
def _refuse_history_update(_mapper, _connection, target: VerificationResult) -> None:  # type: ignore[no-untyped-def]
    msg = f"verification_results row {target.id} is immutable"
    raise RuntimeError(msg)


# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------


class LeaderboardSnapshot(Base):
    """Cached ranking for one (metric, period). Always rebuildable from users."""

    __tablename__ = "leaderboard_snapshots"
    __table_args__ = (UniqueConstraint("metric", "period", name="leaderboard_snapshots_metric_period_key"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    metric: Mapped[str] = mapped_column(String(16), nullable=False)
    period: Mapped[str] = mapped_column(String(16), nullable=False)
    rankings: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
