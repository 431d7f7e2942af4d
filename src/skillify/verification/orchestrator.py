"""Verification orchestrator.

Drives a certificate through extraction, scoring, persistence and history:

    pending -> {auto_verified | flagged | rejected | verified}

``verified`` and ``rejected`` are terminal until the evidence changes, which
puts the certificate back to ``pending`` before any new decision is stored.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.orm.exc import StaleDataError

from skillify.certificates.service import infer_file_type, load_certificate
from skillify.config import Settings, get_settings
from skillify.db.models import Certificate, User, VerificationResult
from skillify.errors import ConcurrencyConflict, EvidenceUnreadable, InvalidInput, OracleUnavailable
from skillify.events import publish_event
from skillify.gamification.ledger import AwardResult, award
from skillify.gamification.triggers import VERIFIED_STATUSES, TriggerEngine
from skillify.verification.providers import BaseTextExtractor, ClaimedMetadata
from skillify.verification.scorer import ConfidenceScorer, ScoreResult, call_with_retry

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

TERMINAL_STATUSES = ("verified", "rejected")
REVIEW_DECISIONS = ("verified", "rejected")
ORACLE_UNAVAILABLE_ISSUE = "Automatic verification unavailable; queued for manual review"


@dataclass
class VerificationOutcome:
    certificate_id: int
    status: str
    previous_status: str
    score: float
    issuer_verified: bool = False
    edits_detected: bool = False
    issues: list[str] = field(default_factory=list)
    history_id: int | None = None
    award: AwardResult | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["award"] = self.award.to_dict() if self.award is not None else None
        return data


def claimed_from_certificate(certificate: Certificate, holder_name: str = "") -> ClaimedMetadata:
    return ClaimedMetadata(
        title=certificate.title,
        issuer=certificate.issuer,
        issue_date=certificate.issue_date,
        credential_id=certificate.credential_id,
        credential_url=certificate.credential_url,
        holder_name=holder_name,
    )


def _details(result: ScoreResult, verified_at: datetime) -> dict:
    return {
        "ai_confidence": result.score,
        "issuer_verified": result.issuer_verified,
        "edits_detected": result.edits_detected,
        "detected_issues": list(result.issues),
        "last_verified_at": verified_at.isoformat(),
    }


class VerificationOrchestrator:
    """Runs verification for stored certificates and one-off evidence checks."""

    def __init__(
        self,
        db: AsyncSession,
        redis: object,
        extractor: BaseTextExtractor,
        scorer: ConfidenceScorer,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.redis = redis
        self.extractor = extractor
        self.scorer = scorer
        self.settings = settings or get_settings()

    # -- external calls --

    async def _extract(self, evidence_url: str) -> str:
        try:
            text = await call_with_retry(
                "extractor",
                lambda: self.extractor.extract(evidence_url),
                attempts=self.settings.oracle_max_attempts,
                timeout=self.settings.provider_timeout_seconds,
            )
        except Exception as exc:
            msg = "Could not extract text from the evidence. Please provide a clearer file."
            raise EvidenceUnreadable(msg) from exc
        if not text or not text.strip():
            msg = "No readable text found in the evidence. Please provide a clearer file."
            raise EvidenceUnreadable(msg)
        return text

    async def _score(self, text: str, claimed: ClaimedMetadata, evidence_url: str) -> tuple[ScoreResult, str]:
        """Score, routing an unavailable oracle to manual review instead of failing."""
        try:
            return await self.scorer.score(text, claimed, evidence_url), "ocr+oracle"
        except OracleUnavailable:
            logger.warning("oracle_unavailable_routed_to_review", evidence_url=evidence_url, exc_info=True)
            return ScoreResult(score=0.0, decision="pending", issues=[ORACLE_UNAVAILABLE_ISSUE]), "ocr"

    # -- persistence --

    async def _write(
        self,
        certificate_id: int,
        apply: Callable[[Certificate], VerificationResult],
        *,
        superseded: Callable[[Certificate], bool] | None = None,
    ) -> tuple[Certificate, str, VerificationResult | None]:
        """
        Apply a status change and its history row under optimistic concurrency.

        Returns (certificate, previous status, history row). The history row is
        None when ``superseded`` says the freshly loaded row moved on while we
        were scoring: that result is stale and the newer state wins.
        """
        for attempt in range(1, self.settings.max_update_retries + 1):
            certificate = await load_certificate(self.db, certificate_id, refresh=True)
            previous_status = certificate.verification_status
            if superseded is not None and superseded(certificate):
                logger.info(
                    "verification_superseded", certificate_id=certificate_id, status=previous_status
                )
                return certificate, previous_status, None
            try:
                async with self.db.begin_nested():
                    history = apply(certificate)
                    self.db.add(history)
            except StaleDataError:
                logger.info("certificate_write_conflict", certificate_id=certificate_id, attempt=attempt)
                continue
            return certificate, previous_status, history

        msg = f"Could not update certificate {certificate_id} after {self.settings.max_update_retries} attempts"
        raise ConcurrencyConflict(msg)

    async def _reward_if_verified(self, certificate: Certificate, previous_status: str) -> AwardResult | None:
        """Award certificate_verified on entry into a verified-class state. Once per certificate."""
        if previous_status in VERIFIED_STATUSES or certificate.verification_status not in VERIFIED_STATUSES:
            return None

        result = await award(
            self.db,
            self.redis,
            certificate.user_id,
            "certificate_verified",
            source_id=str(certificate.id),
            entity_type="certificate",
            description=f"Certificate verified: {certificate.title}",
            idempotency_key=f"certificate_verified:{certificate.id}",
        )
        result.new_badges.extend(
            await TriggerEngine(self.db, self.redis).evaluate(certificate.user_id, ("verified_count",))
        )
        await publish_event(
            self.redis,
            "pubsub:certificate_verified",
            {
                "user_id": certificate.user_id,
                "certificate_id": certificate.id,
                "status": certificate.verification_status,
                "score": certificate.verification_score,
            },
        )
        return result

    # -- operations --

    async def check_evidence(self, evidence_url: str, claimed: ClaimedMetadata) -> ScoreResult:
        """Score evidence against claimed metadata without touching any stored certificate."""
        if not evidence_url:
            msg = "evidence_url is required"
            raise InvalidInput(msg)
        text = await self._extract(evidence_url)
        result, _verified_by = await self._score(text, claimed, evidence_url)
        return result

    async def verify_certificate(
        self, certificate_id: int, user_id: int, *, is_admin: bool = False
    ) -> VerificationOutcome:
        """
        Run automatic verification for a stored certificate.

        Raises:
            NotFound / Forbidden: Ownership check failed.
            InvalidInput: No evidence, or the certificate already has a final review.
            EvidenceUnreadable: Extraction produced no text. Nothing is persisted.
        """
        certificate = await load_certificate(self.db, certificate_id, user_id, is_admin=is_admin)
        evidence_url = certificate.evidence_url or certificate.credential_url
        if not evidence_url:
            msg = "Certificate has neither evidence nor a credential URL"
            raise InvalidInput(msg)
        if certificate.verification_status in TERMINAL_STATUSES:
            msg = (
                f"Certificate is already {certificate.verification_status}; "
                "replace the evidence to verify it again"
            )
            raise InvalidInput(msg)

        owner = await self.db.get(User, certificate.user_id)
        claimed = claimed_from_certificate(certificate, owner.name if owner else "")
        expected_evidence = (certificate.evidence_url, certificate.credential_url)

        def superseded(cert: Certificate) -> bool:
            # New evidence, or an administrator decided while we were scoring
            return (
                cert.evidence_url,
                cert.credential_url,
            ) != expected_evidence or cert.verification_status in TERMINAL_STATUSES

        text = await self._extract(evidence_url)
        result, verified_by = await self._score(text, claimed, evidence_url)
        now = datetime.now(timezone.utc)

        def apply(cert: Certificate) -> VerificationResult:
            cert.verification_status = result.decision
            cert.verification_score = result.score
            cert.verification_details = _details(result, now)
            cert.extracted_text = text
            return VerificationResult(
                certificate_id=cert.id,
                user_id=cert.user_id,
                ocr_text=text,
                confidence_score=result.score,
                decision=result.decision,
                issuer_verified=result.issuer_verified,
                edits_detected=result.edits_detected,
                issues=list(result.issues),
                notes="; ".join(result.issues),
                verified_by=verified_by,
            )

        certificate, previous_status, history = await self._write(
            certificate_id, apply, superseded=superseded
        )
        if history is None:
            return VerificationOutcome(
                certificate_id=certificate.id,
                status=certificate.verification_status,
                previous_status=previous_status,
                score=certificate.verification_score,
            )

        reward = await self._reward_if_verified(certificate, previous_status)
        logger.info(
            "certificate_verified",
            certificate_id=certificate.id,
            previous_status=previous_status,
            status=certificate.verification_status,
            score=result.score,
        )
        return VerificationOutcome(
            certificate_id=certificate.id,
            status=certificate.verification_status,
            previous_status=previous_status,
            score=result.score,
            issuer_verified=result.issuer_verified,
            edits_detected=result.edits_detected,
            issues=list(result.issues),
            history_id=history.id,
            award=reward,
        )

    async def replace_evidence(
        self,
        certificate_id: int,
        user_id: int,
        *,
        evidence_url: str = "",
        credential_url: str | None = None,
        file_type: str | None = None,
        reverify: bool = True,
    ) -> VerificationOutcome:
        """
        Swap the certificate's evidence and reset it to ``pending``.

        The reset is persisted (with its own history row) before any
        re-verification runs, so no decision ever refers to old evidence.
        """
        certificate = await load_certificate(self.db, certificate_id, user_id)
        new_credential_url = certificate.credential_url if credential_url is None else credential_url
        if not evidence_url and not new_credential_url:
            msg = "A certificate needs an evidence file or a credential URL"
            raise InvalidInput(msg)
        new_file_type = file_type or infer_file_type(evidence_url, new_credential_url)

        def apply(cert: Certificate) -> VerificationResult:
            cert.evidence_url = evidence_url
            cert.credential_url = new_credential_url
            cert.file_type = new_file_type
            cert.verification_status = "pending"
            cert.verification_score = 0
            cert.verification_details = {
                "ai_confidence": 0,
                "issuer_verified": False,
                "edits_detected": False,
                "detected_issues": [],
                "last_verified_at": None,
            }
            cert.extracted_text = ""
            return VerificationResult(
                certificate_id=cert.id,
                user_id=cert.user_id,
                decision="pending",
                notes="Evidence replaced; verification reset",
                verified_by="system",
            )

        certificate, previous_status, history = await self._write(certificate_id, apply)
        logger.info("certificate_evidence_replaced", certificate_id=certificate_id, previous_status=previous_status)

        if reverify:
            try:
                outcome = await self.verify_certificate(certificate_id, user_id)
            except EvidenceUnreadable:
                logger.info("reverification_skipped_unreadable", certificate_id=certificate_id)
            else:
                outcome.previous_status = previous_status
                return outcome

        return VerificationOutcome(
            certificate_id=certificate.id,
            status=certificate.verification_status,
            previous_status=previous_status,
            score=certificate.verification_score,
            history_id=history.id if history is not None else None,
        )

    async def review_certificate(
        self, certificate_id: int, admin_id: int, decision: str, notes: str = ""
    ) -> VerificationOutcome:
        """Record an administrator's final decision."""
        if decision not in REVIEW_DECISIONS:
            msg = f"decision must be one of: {', '.join(REVIEW_DECISIONS)}"
            raise InvalidInput(msg)
        await load_certificate(self.db, certificate_id)
        now = datetime.now(timezone.utc)

        def apply(cert: Certificate) -> VerificationResult:
            details = dict(cert.verification_details or {})
            details["last_verified_at"] = now.isoformat()
            details["review_notes"] = notes
            cert.verification_status = decision
            cert.verification_details = details
            return VerificationResult(
                certificate_id=cert.id,
                user_id=cert.user_id,
                ocr_text=cert.extracted_text,
                confidence_score=cert.verification_score,
                decision=decision,
                issuer_verified=bool(details.get("issuer_verified", False)),
                edits_detected=bool(details.get("edits_detected", False)),
                issues=list(details.get("detected_issues") or []),
                notes=notes,
                verified_by=f"admin:{admin_id}",
            )

        certificate, previous_status, history = await self._write(certificate_id, apply)
        reward = await self._reward_if_verified(certificate, previous_status)
        logger.info(
            "certificate_reviewed",
            certificate_id=certificate_id,
            admin_id=admin_id,
            previous_status=previous_status,
            decision=decision,
        )
        return VerificationOutcome(
            certificate_id=certificate.id,
            status=certificate.verification_status,
            previous_status=previous_status,
            score=certificate.verification_score,
            issuer_verified=bool(certificate.verification_details.get("issuer_verified", False)),
            edits_detected=bool(certificate.verification_details.get("edits_detected", False)),
            issues=list(certificate.verification_details.get("detected_issues") or []),
            history_id=history.id if history is not None else None,
            award=reward,
        )
