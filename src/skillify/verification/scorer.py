"""Confidence scoring.

``compose_score`` is a pure function of the oracle assessment and the issuer
lookup. ``ConfidenceScorer`` makes the external calls and hands their
results to it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from typing import TypeVar

import structlog

from skillify.config import Settings, get_settings
from skillify.errors import OracleUnavailable
from skillify.verification.providers import (
    BaseIssuerRegistry,
    BaseScoringOracle,
    ClaimedMetadata,
    IssuerLookup,
    OracleAssessment,
)

logger = structlog.get_logger()

T = TypeVar("T")

DECISIONS = ("pending", "auto_verified", "flagged", "verified", "rejected")

INTEGRITY_ISSUE = "Image integrity analysis indicates potential tampering"
ISSUER_FAILED_ISSUE = "Certificate verification failed against issuer database"
ISSUER_UNAVAILABLE_ISSUE = "Issuer database lookup unavailable; not performed"


@dataclass
class ScoreResult:
    score: float
    decision: str
    issuer_verified: bool = False
    edits_detected: bool = False
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def compose_score(
    assessment: OracleAssessment,
    issuer: IssuerLookup | None = None,
    settings: Settings | None = None,
) -> ScoreResult:
    """Fold the oracle confidence, image integrity and issuer check into one decision.

    Edits detected always yields ``flagged``. Otherwise an issuer escalation
    wins, then the auto-verify threshold, then ``pending``.
    """
    settings = settings or get_settings()
    score = float(min(100, max(0, assessment.confidence)))
    edits_detected = assessment.edits_detected
    issues = list(assessment.issues)

    integrity = assessment.image_integrity
    if integrity is not None:
        weight = settings.image_integrity_weight
        score = float(round(score * (1 - weight) + integrity * weight))
        if integrity < 70:
            issues.append(INTEGRITY_ISSUE)
        if integrity < 60:
            edits_detected = True

    escalation = None
    issuer_verified = False
    if issuer is not None and issuer.checked:
        if issuer.verified:
            issuer_verified = True
            score = min(100.0, score + settings.issuer_verified_bonus)
            if score >= settings.issuer_verified_threshold:
                escalation = "verified"
        else:
            score = max(0.0, score - settings.issuer_failed_penalty)
            issues.append(ISSUER_FAILED_ISSUE)
            if score <= settings.issuer_failed_threshold:
                escalation = "rejected"

    if edits_detected:
        decision = "flagged"
    elif escalation is not None:
        decision = escalation
    elif score > settings.auto_verify_threshold:
        decision = "auto_verified"
    else:
        decision = "pending"

    return ScoreResult(
        score=score,
        decision=decision,
        issuer_verified=issuer_verified,
        edits_detected=edits_detected,
        issues=issues,
    )


async def call_with_retry(
    name: str,
    call: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    timeout: float,
) -> T:
    """Run a provider call with a per-attempt timeout, re-raising the last failure."""
    attempts = max(attempts, 1)
    attempt = 0
    while True:
        attempt += 1
        try:
            return await asyncio.wait_for(call(), timeout=timeout)
        except Exception as exc:
            logger.warning("provider_call_failed", provider=name, attempt=attempt, error=repr(exc))
            if attempt >= attempts:
                raise


class ConfidenceScorer:
    """Runs the oracle and issuer lookup, then composes the score."""

    def __init__(
        self,
        oracle: BaseScoringOracle,
        issuer_registry: BaseIssuerRegistry | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.oracle = oracle
        self.issuer_registry = issuer_registry
        self.settings = settings or get_settings()

    async def _assess(self, text: str, claimed: ClaimedMetadata, evidence_url: str) -> OracleAssessment:
        try:
            return await call_with_retry(
                "oracle",
                lambda: self.oracle.assess(text, claimed, evidence_url),
                attempts=self.settings.oracle_max_attempts,
                timeout=self.settings.provider_timeout_seconds,
            )
        except Exception as exc:
            msg = f"Scoring oracle failed: {exc!r}"
            raise OracleUnavailable(msg) from exc

    async def _lookup(self, claimed: ClaimedMetadata) -> tuple[IssuerLookup | None, list[str]]:
        if self.issuer_registry is None:
            return None, []
        registry = self.issuer_registry
        try:
            lookup = await call_with_retry(
                "issuer_registry",
                lambda: registry.lookup(claimed),
                attempts=self.settings.oracle_max_attempts,
                timeout=self.settings.provider_timeout_seconds,
            )
        except Exception:
            logger.warning("issuer_lookup_unavailable", issuer=claimed.issuer, exc_info=True)
            return None, [ISSUER_UNAVAILABLE_ISSUE]
        return lookup, []

    async def score(self, text: str, claimed: ClaimedMetadata, evidence_url: str = "") -> ScoreResult:
        """Score extracted text. Raises OracleUnavailable when the oracle cannot answer."""
        assessment = await self._assess(text, claimed, evidence_url)
        lookup, extra_issues = await self._lookup(claimed)
        result = compose_score(assessment, lookup, self.settings)
        result.issues.extend(extra_issues)
        logger.info(
            "certificate_scored",
            score=result.score,
            decision=result.decision,
            issuer_checked=bool(lookup and lookup.checked),
        )
        return result
