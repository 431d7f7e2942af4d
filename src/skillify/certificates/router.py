"""Certificate API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from skillify.auth.dependencies import get_current_user, require_admin
from skillify.certificates.schemas import (
    CertificateCreateRequest,
    CertificateResponse,
    CertificateWithAwardResponse,
    EvidenceCheckRequest,
    EvidenceCheckResponse,
    EvidenceReplaceRequest,
    HistoryEntry,
    HistoryResponse,
    ReviewRequest,
    SkillResponse,
    SkillsUpdateRequest,
    VerificationOutcomeResponse,
)
from skillify.certificates.service import (
    create_certificate,
    delete_certificate,
    list_verification_history,
    update_certificate_skills,
)
from skillify.database import get_session
from skillify.db.models import Certificate, User
from skillify.dependencies import get_event_redis, get_orchestrator
from skillify.gamification.ledger import AwardResult
from skillify.gamification.schemas import AwardResponse
from skillify.verification.orchestrator import VerificationOrchestrator, VerificationOutcome
from skillify.verification.providers import ClaimedMetadata

router = APIRouter(prefix="/api/v1", tags=["Certificates"])


def _certificate_response(cert: Certificate) -> CertificateResponse:
    return CertificateResponse(
        id=cert.id,
        user_id=cert.user_id,
        title=cert.title,
        issuer=cert.issuer,
        issue_date=cert.issue_date,
        expiry_date=cert.expiry_date,
        credential_id=cert.credential_id,
        credential_url=cert.credential_url,
        evidence_url=cert.evidence_url,
        file_type=cert.file_type,
        is_public=cert.is_public,
        verification_status=cert.verification_status,
        verification_score=cert.verification_score,
        verification_details=cert.verification_details or {},
        skills=[SkillResponse(id=s.id, name=s.name, category=s.category) for s in cert.skills],
        created_at=cert.created_at,
    )


def _award_response(result: AwardResult) -> AwardResponse:
    return AwardResponse(**result.to_dict())


def _outcome_response(outcome: VerificationOutcome) -> VerificationOutcomeResponse:
    return VerificationOutcomeResponse(
        certificate_id=outcome.certificate_id,
        status=outcome.status,
        previous_status=outcome.previous_status,
        score=outcome.score,
        issuer_verified=outcome.issuer_verified,
        edits_detected=outcome.edits_detected,
        issues=outcome.issues,
        history_id=outcome.history_id,
        award=_award_response(outcome.award) if outcome.award is not None else None,
    )


@router.post("/certificates", response_model=CertificateWithAwardResponse, status_code=201)
async def submit_certificate(
    body: CertificateCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_event_redis),
):
    """Register a certificate in pending state and award creation points."""
    cert, result = await create_certificate(
        db,
        redis,
        user.id,
        title=body.title,
        issuer=body.issuer,
        issue_date=body.issue_date,
        expiry_date=body.expiry_date,
        credential_id=body.credential_id,
        credential_url=body.credential_url,
        evidence_url=body.evidence_url,
        file_type=body.file_type,
        is_public=body.is_public,
        skills=body.skills,
    )
    await db.commit()
    return CertificateWithAwardResponse(certificate=_certificate_response(cert), gamification=_award_response(result))


@router.post("/certificates/verify", response_model=EvidenceCheckResponse)
async def check_evidence(
    body: EvidenceCheckRequest,
    _user: User = Depends(get_current_user),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Score evidence against claimed metadata. Nothing is stored."""
    claimed = ClaimedMetadata(
        title=body.claimed.title,
        issuer=body.claimed.issuer,
        issue_date=body.claimed.issue_date,
        credential_id=body.claimed.credential_id,
        credential_url=body.claimed.credential_url,
    )
    result = await orchestrator.check_evidence(body.evidence_url, claimed)
    return EvidenceCheckResponse(**result.to_dict())


@router.post("/certificates/{certificate_id}/verify", response_model=VerificationOutcomeResponse)
async def verify_certificate(
    certificate_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Run automatic verification for a stored certificate."""
    outcome = await orchestrator.verify_certificate(certificate_id, user.id, is_admin=user.is_admin)
    await db.commit()
    return _outcome_response(outcome)


@router.put("/certificates/{certificate_id}/evidence", response_model=VerificationOutcomeResponse)
async def replace_evidence(
    certificate_id: int,
    body: EvidenceReplaceRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Replace the evidence; the certificate returns to pending, then re-verifies."""
    outcome = await orchestrator.replace_evidence(
        certificate_id,
        user.id,
        evidence_url=body.evidence_url,
        credential_url=body.credential_url,
        file_type=body.file_type,
        reverify=body.reverify,
    )
    await db.commit()
    return _outcome_response(outcome)


@router.put("/certificates/{certificate_id}/skills", response_model=CertificateWithAwardResponse)
async def replace_skills(
    certificate_id: int,
    body: SkillsUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_event_redis),
):
    """Replace the skills attached to a certificate."""
    cert, result = await update_certificate_skills(db, redis, certificate_id, user.id, body.skills)
    await db.commit()
    return CertificateWithAwardResponse(certificate=_certificate_response(cert), gamification=_award_response(result))


@router.delete("/certificates/{certificate_id}", status_code=204)
async def remove_certificate(
    certificate_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Delete a certificate and release its skill support."""
    await delete_certificate(db, certificate_id, user.id, is_admin=user.is_admin)
    await db.commit()
    return Response(status_code=204)


@router.get("/certificates/{certificate_id}/history", response_model=HistoryResponse)
async def get_history(
    certificate_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Verification attempts for a certificate, oldest first."""
    rows = await list_verification_history(db, certificate_id, user.id, is_admin=user.is_admin)
    return HistoryResponse(
        certificate_id=certificate_id,
        entries=[
            HistoryEntry(
                id=r.id,
                decision=r.decision,
                confidence_score=r.confidence_score,
                issuer_verified=r.issuer_verified,
                edits_detected=r.edits_detected,
                issues=r.issues or [],
                notes=r.notes,
                verified_by=r.verified_by,
                created_at=r.created_at,
            )
            for r in rows
        ],
    )


@router.post("/certificates/{certificate_id}/review", response_model=VerificationOutcomeResponse)
async def review_certificate(
    certificate_id: int,
    body: ReviewRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Record an administrator's final decision on a certificate."""
    outcome = await orchestrator.review_certificate(certificate_id, admin.id, body.decision, body.notes)
    await db.commit()
    return _outcome_response(outcome)
