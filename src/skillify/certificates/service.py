"""Certificate business logic: submission, skill bookkeeping, deletion."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from skillify.config import get_settings
from skillify.db.models import Certificate, Skill, User, UserSkill, VerificationResult
from skillify.errors import Forbidden, InvalidInput, NotFound
from skillify.gamification.ledger import AwardResult, award, get_points_state
from skillify.gamification.triggers import TriggerEngine

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

FILE_TYPES = ("image", "pdf", "url", "none")


def normalize_skill_name(name: str) -> str:
    return " ".join(name.split()).lower()


def infer_file_type(evidence_url: str, credential_url: str = "") -> str:
    """Guess the evidence kind from its reference."""
    if evidence_url:
        lowered = evidence_url.lower().split("?")[0]
        if lowered.endswith(".pdf") or "/raw/" in lowered:
            return "pdf"
        return "image"
    if credential_url:
        return "url"
    return "none"


async def load_certificate(
    db: AsyncSession,
    certificate_id: int,
    user_id: int | None = None,
    *,
    is_admin: bool = False,
    refresh: bool = False,
) -> Certificate:
    """
    Fetch a certificate and enforce ownership.

    Raises:
        NotFound: No certificate with this id.
        Forbidden: ``user_id`` is given, does not own it, and is not an admin.
    """
    stmt = select(Certificate).where(Certificate.id == certificate_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    certificate = (await db.execute(stmt)).scalar_one_or_none()
    if certificate is None:
        msg = f"Certificate {certificate_id} not found"
        raise NotFound(msg)
    if user_id is not None and certificate.user_id != user_id and not is_admin:
        msg = "You do not own this certificate"
        raise Forbidden(msg)
    return certificate


# ---------------------------------------------------------------------------
# Skills
# ---------------------------------------------------------------------------


async def get_or_create_skills(db: AsyncSession, names: list[str]) -> list[Skill]:
    """Resolve skill names to Skill rows, creating missing ones. Case-insensitive, order kept."""
    wanted: dict[str, str] = {}
    for name in names:
        cleaned = " ".join(name.split())
        if not cleaned:
            continue
        wanted.setdefault(normalize_skill_name(cleaned), cleaned)
    if not wanted:
        return []

    result = await db.execute(select(Skill).where(Skill.name_normalized.in_(list(wanted))))
    found = {s.name_normalized: s for s in result.scalars()}

    for normalized, display in wanted.items():
        if normalized in found:
            continue
        skill = Skill(name=display, name_normalized=normalized)
        try:
            async with db.begin_nested():
                db.add(skill)
        except IntegrityError:
            # Created concurrently by another request
            existing = await db.execute(select(Skill).where(Skill.name_normalized == normalized))
            skill = existing.scalar_one()
        found[normalized] = skill

    return [found[n] for n in wanted]


async def _attach_user_skill(
    db: AsyncSession, redis: object, user_id: int, skill: Skill, certificate_id: int
) -> AwardResult | None:
    """Count one more supporting certificate for (user, skill). Awards skill_added on first sight."""
    step = get_settings().user_skill_points_per_certificate
    result = await db.execute(
        select(UserSkill).where(UserSkill.user_id == user_id, UserSkill.skill_id == skill.id)
    )
    user_skill = result.scalar_one_or_none()

    if user_skill is not None:
        if certificate_id not in user_skill.certificate_ids:
            user_skill.certificate_ids = [*user_skill.certificate_ids, certificate_id]
            user_skill.points = min(100, user_skill.points + step)
            user_skill.updated_at = datetime.now(timezone.utc)
        return None

    db.add(
        UserSkill(
            user_id=user_id,
            skill_id=skill.id,
            points=min(100, step),
            certificate_ids=[certificate_id],
        )
    )
    await db.flush()
    return await award(
        db,
        redis,
        user_id,
        "skill_added",
        source_id=str(skill.id),
        entity_type="skill",
        description=f"Added skill: {skill.name}",
        idempotency_key=f"skill_added:{user_id}:{skill.id}",
    )


async def _detach_user_skill(db: AsyncSession, user_id: int, skill_id: int, certificate_id: int) -> None:
    """Drop one supporting certificate. The row goes away with its last certificate."""
    step = get_settings().user_skill_points_per_certificate
    result = await db.execute(
        select(UserSkill).where(UserSkill.user_id == user_id, UserSkill.skill_id == skill_id)
    )
    user_skill = result.scalar_one_or_none()
    if user_skill is None or certificate_id not in user_skill.certificate_ids:
        return

    remaining = [cid for cid in user_skill.certificate_ids if cid != certificate_id]
    if not remaining:
        await db.delete(user_skill)
    else:
        user_skill.certificate_ids = remaining
        user_skill.points = max(0, user_skill.points - step)
        user_skill.updated_at = datetime.now(timezone.utc)
    await db.flush()


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


async def create_certificate(
    db: AsyncSession,
    redis: object,
    user_id: int,
    *,
    title: str,
    issuer: str,
    issue_date: date | None,
    expiry_date: date | None = None,
    credential_id: str = "",
    credential_url: str = "",
    evidence_url: str = "",
    file_type: str | None = None,
    is_public: bool = True,
    skills: list[str] | None = None,
) -> tuple[Certificate, AwardResult]:
    """
    Register a certificate in ``pending`` state and apply its engagement rewards.

    Raises:
        InvalidInput: Missing title/issuer/issue date, or neither evidence nor credential URL.
    """
    title = (title or "").strip()
    issuer = (issuer or "").strip()
    if not title or not issuer or issue_date is None:
        msg = "Please provide all required fields: title, issuer, and issue_date"
        raise InvalidInput(msg)
    if not evidence_url and not credential_url:
        msg = "A certificate needs an evidence file or a credential URL"
        raise InvalidInput(msg)
    if expiry_date is not None and expiry_date < issue_date:
        msg = "expiry_date cannot be before issue_date"
        raise InvalidInput(msg)
    if file_type is None:
        file_type = infer_file_type(evidence_url, credential_url)
    elif file_type not in FILE_TYPES:
        msg = f"file_type must be one of: {', '.join(FILE_TYPES)}"
        raise InvalidInput(msg)

    if await db.get(User, user_id) is None:
        msg = f"User {user_id} not found"
        raise NotFound(msg)

    skill_rows = await get_or_create_skills(db, skills or [])
    certificate = Certificate(
        user_id=user_id,
        title=title,
        issuer=issuer,
        issue_date=issue_date,
        expiry_date=expiry_date,
        credential_id=credential_id or "",
        credential_url=credential_url or "",
        evidence_url=evidence_url or "",
        file_type=file_type,
        is_public=is_public,
        verification_status="pending",
        verification_score=0,
        verification_details={
            "ai_confidence": 0,
            "issuer_verified": False,
            "edits_detected": False,
            "detected_issues": [],
            "last_verified_at": None,
        },
        skills=skill_rows,
    )
    db.add(certificate)
    await db.flush()

    result = await award(
        db,
        redis,
        user_id,
        "certificate_created",
        source_id=str(certificate.id),
        entity_type="certificate",
        description=f"Added certificate: {title}",
        idempotency_key=f"certificate_created:{certificate.id}",
    )
    for skill in skill_rows:
        skill_award = await _attach_user_skill(db, redis, user_id, skill, certificate.id)
        if skill_award is not None:
            result.merge(skill_award)

    result.new_badges.extend(
        await TriggerEngine(db, redis).evaluate(user_id, ("certificate_count", "skill_count"))
    )
    logger.info("certificate_created", certificate_id=certificate.id, user_id=user_id, skills=len(skill_rows))
    return certificate, result


async def update_certificate_skills(
    db: AsyncSession,
    redis: object,
    certificate_id: int,
    user_id: int,
    skills: list[str],
) -> tuple[Certificate, AwardResult]:
    """Replace the certificate's skill set, moving UserSkill tallies up or down."""
    certificate = await load_certificate(db, certificate_id, user_id)
    owner_id = certificate.user_id
    new_skills = await get_or_create_skills(db, skills)

    old_ids = {s.id for s in certificate.skills}
    new_ids = {s.id for s in new_skills}

    result = AwardResult()
    for skill in new_skills:
        if skill.id not in old_ids:
            skill_award = await _attach_user_skill(db, redis, owner_id, skill, certificate.id)
            if skill_award is not None:
                result.merge(skill_award)
    for skill_id in old_ids - new_ids:
        await _detach_user_skill(db, owner_id, skill_id, certificate.id)

    certificate.skills = new_skills
    await db.flush()

    result.new_badges.extend(await TriggerEngine(db, redis).evaluate(owner_id, ("skill_count",)))
    if result.points_awarded == 0:
        result.new_total, result.new_level = await get_points_state(db, owner_id)
    return certificate, result


async def delete_certificate(db: AsyncSession, certificate_id: int, user_id: int, *, is_admin: bool = False) -> None:
    """Delete a certificate and release its UserSkill support. Awarded points are kept."""
    certificate = await load_certificate(db, certificate_id, user_id, is_admin=is_admin)
    for skill in certificate.skills:
        await _detach_user_skill(db, certificate.user_id, skill.id, certificate.id)
    await db.delete(certificate)
    await db.flush()
    logger.info("certificate_deleted", certificate_id=certificate_id, user_id=user_id)


async def list_verification_history(
    db: AsyncSession, certificate_id: int, user_id: int, *, is_admin: bool = False
) -> list[VerificationResult]:
    """Verification attempts for a certificate, oldest first."""
    await load_certificate(db, certificate_id, user_id, is_admin=is_admin)
    result = await db.execute(
        select(VerificationResult)
        .where(VerificationResult.certificate_id == certificate_id)
        .order_by(VerificationResult.created_at, VerificationResult.id)
    )
    return list(result.scalars().all())


async def list_user_skills(db: AsyncSession, user_id: int) -> list[UserSkill]:
    result = await db.execute(
        select(UserSkill).where(UserSkill.user_id == user_id).order_by(UserSkill.points.desc(), UserSkill.id)
    )
    return list(result.scalars().unique().all())
