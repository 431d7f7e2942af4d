"""Confidence scoring: decision buckets, issuer escalation, provider failures."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from skillify.config import Settings
from skillify.errors import OracleUnavailable
from skillify.verification.providers import ClaimedMetadata, IssuerLookup, OracleAssessment
from skillify.verification.scorer import (
    INTEGRITY_ISSUE,
    ISSUER_FAILED_ISSUE,
    ISSUER_UNAVAILABLE_ISSUE,
    ConfidenceScorer,
    call_with_retry,
    compose_score,
)

VERIFIED = IssuerLookup(checked=True, verified=True, message="ok")
FAILED = IssuerLookup(checked=True, verified=False, message="mismatch")
UNCHECKED = IssuerLookup(checked=False, verified=False, message="No verification API available for this issuer")


class TestDecisionBuckets:
    @pytest.mark.parametrize("confidence", [86, 90, 99.5, 100])
    def test_above_threshold_without_edits_auto_verifies(self, confidence):
        result = compose_score(OracleAssessment(confidence=confidence))
        assert result.decision == "auto_verified"

    def test_exactly_threshold_stays_pending(self):
        assert compose_score(OracleAssessment(confidence=85)).decision == "pending"

    def test_low_score_is_pending_without_issuer_check(self):
        assert compose_score(OracleAssessment(confidence=10)).decision == "pending"

    @pytest.mark.parametrize("confidence", [0, 30, 60, 85, 86, 100])
    def test_edits_detected_always_flagged(self, confidence):
        result = compose_score(OracleAssessment(confidence=confidence, edits_detected=True))
        assert result.decision == "flagged"
        assert result.edits_detected is True

    def test_edits_override_issuer_escalation(self):
        result = compose_score(OracleAssessment(confidence=90, edits_detected=True), VERIFIED)
        assert result.decision == "flagged"
        assert result.issuer_verified is True

    def test_confidence_is_clamped(self):
        assert compose_score(OracleAssessment(confidence=140)).score == 100
        assert compose_score(OracleAssessment(confidence=-5)).score == 0

    def test_oracle_issues_are_kept(self):
        result = compose_score(OracleAssessment(confidence=50, issues=["Issue date not found in document"]))
        assert result.issues == ["Issue date not found in document"]


class TestIssuerEscalation:
    def test_verified_issuer_bumps_and_escalates(self):
        result = compose_score(OracleAssessment(confidence=70), VERIFIED)
        assert result.score == 85
        assert result.decision == "verified"
        assert result.issuer_verified is True

    def test_verified_issuer_below_escalation_threshold(self):
        result = compose_score(OracleAssessment(confidence=50), VERIFIED)
        assert result.score == 65
        assert result.decision == "pending"

    def test_verified_issuer_bump_is_capped(self):
        result = compose_score(OracleAssessment(confidence=95), VERIFIED)
        assert result.score == 100

    @pytest.mark.parametrize("confidence", range(0, 101, 5))
    def test_verified_issuer_never_rejects(self, confidence):
        result = compose_score(OracleAssessment(confidence=confidence), VERIFIED)
        assert result.decision != "rejected"
        assert result.score <= 100

    def test_failed_issuer_penalizes_and_rejects(self):
        result = compose_score(OracleAssessment(confidence=60), FAILED)
        assert result.score == 40
        assert result.decision == "rejected"
        assert ISSUER_FAILED_ISSUE in result.issues

    def test_failed_issuer_above_rejection_threshold(self):
        result = compose_score(OracleAssessment(confidence=70), FAILED)
        assert result.score == 50
        assert result.decision == "pending"

    def test_failed_issuer_penalty_floors_at_zero(self):
        result = compose_score(OracleAssessment(confidence=10), FAILED)
        assert result.score == 0
        assert result.decision == "rejected"

    def test_unchecked_lookup_changes_nothing(self):
        result = compose_score(OracleAssessment(confidence=90), UNCHECKED)
        assert result.score == 90
        assert result.decision == "auto_verified"
        assert result.issuer_verified is False

    def test_thresholds_come_from_settings(self):
        settings = Settings(auto_verify_threshold=95)
        assert compose_score(OracleAssessment(confidence=90), settings=settings).decision == "pending"


class TestImageIntegrity:
    def test_clean_image_blends_in(self):
        result = compose_score(OracleAssessment(confidence=90, image_integrity=100))
        assert result.score == 93
        assert result.decision == "auto_verified"
        assert result.issues == []

    def test_suspicious_image_adds_issue(self):
        result = compose_score(OracleAssessment(confidence=90, image_integrity=66))
        assert INTEGRITY_ISSUE in result.issues
        assert result.edits_detected is False

    def test_tampered_image_marks_edits(self):
        result = compose_score(OracleAssessment(confidence=80, image_integrity=50))
        assert result.edits_detected is True
        assert result.decision == "flagged"


class TestCallWithRetry:
    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        call = AsyncMock(side_effect=[RuntimeError("boom"), "text"])
        result = await call_with_retry("extractor", call, attempts=3, timeout=1.0)
        assert result == "text"
        assert call.await_count == 2

    @pytest.mark.asyncio
    async def test_reraises_after_last_attempt(self):
        call = AsyncMock(side_effect=RuntimeError("down"))
        with pytest.raises(RuntimeError, match="down"):
            await call_with_retry("oracle", call, attempts=2, timeout=1.0)
        assert call.await_count == 2

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self):
        async def slow():
            await asyncio.sleep(1)
            return "late"

        with pytest.raises(asyncio.TimeoutError):
            await call_with_retry("oracle", slow, attempts=1, timeout=0.01)


class TestConfidenceScorer:
    @pytest.mark.asyncio
    async def test_scores_with_oracle_and_issuer(self):
        oracle = AsyncMock()
        oracle.assess.return_value = OracleAssessment(confidence=70)
        registry = AsyncMock()
        registry.lookup.return_value = VERIFIED

        scorer = ConfidenceScorer(oracle, registry, Settings())
        result = await scorer.score("text", ClaimedMetadata(title="ML", issuer="Coursera"))

        assert result.decision == "verified"
        assert result.score == 85
        oracle.assess.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_oracle_failure_raises_unavailable(self):
        oracle = AsyncMock()
        oracle.assess.side_effect = ConnectionError("refused")

        scorer = ConfidenceScorer(oracle, None, Settings(oracle_max_attempts=2))
        with pytest.raises(OracleUnavailable):
            await scorer.score("text", ClaimedMetadata())
        assert oracle.assess.await_count == 2

    @pytest.mark.asyncio
    async def test_oracle_timeout_raises_unavailable(self):
        class SlowOracle:
            async def assess(self, text, claimed, evidence_url=""):
                await asyncio.sleep(1)

        scorer = ConfidenceScorer(SlowOracle(), None, Settings(provider_timeout_seconds=0.01, oracle_max_attempts=1))
        with pytest.raises(OracleUnavailable):
            await scorer.score("text", ClaimedMetadata())

    @pytest.mark.asyncio
    async def test_issuer_failure_degrades_to_not_performed(self):
        oracle = AsyncMock()
        oracle.assess.return_value = OracleAssessment(confidence=90)
        registry = AsyncMock()
        registry.lookup.side_effect = TimeoutError()

        scorer = ConfidenceScorer(oracle, registry, Settings())
        result = await scorer.score("text", ClaimedMetadata(issuer="Coursera"))

        assert result.decision == "auto_verified"
        assert result.score == 90
        assert ISSUER_UNAVAILABLE_ISSUE in result.issues
