"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Depends
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from skillify.database import get_session
from skillify.redis_client import get_redis
from skillify.verification.orchestrator import VerificationOrchestrator
from skillify.verification.providers import (
    BaseTextExtractor,
    get_issuer_registry,
    get_scoring_oracle,
    get_text_extractor,
)
from skillify.verification.scorer import ConfidenceScorer


def get_event_redis() -> Redis | None:
    """Redis client for event fan-out, or None while publishing is disabled."""
    return get_redis()


def get_extractor() -> BaseTextExtractor:
    return get_text_extractor()


def get_confidence_scorer() -> ConfidenceScorer:
    return ConfidenceScorer(get_scoring_oracle(), get_issuer_registry())


def get_orchestrator(
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_event_redis),
    extractor: BaseTextExtractor = Depends(get_extractor),
    scorer: ConfidenceScorer = Depends(get_confidence_scorer),
) -> VerificationOrchestrator:
    return VerificationOrchestrator(db, redis, extractor, scorer)
