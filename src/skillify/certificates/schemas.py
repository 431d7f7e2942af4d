"""Request/response models for certificate endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from skillify.gamification.schemas import AwardResponse


class SkillResponse(BaseModel):
    id: int
    name: str
    category: str


class CertificateCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=256)
    issuer: str = Field(min_length=1, max_length=256)
    issue_date: date
    expiry_date: date | None = None
    credential_id: str = ""
    credential_url: str = ""
    evidence_url: str = ""
    file_type: Literal["image", "pdf", "url", "none"] | None = None
    is_public: bool = True
    skills: list[str] = []


class CertificateResponse(BaseModel):
    id: int
    user_id: int
    title: str
    issuer: str
    issue_date: date
    expiry_date: date | None = None
    credential_id: str
    credential_url: str
    evidence_url: str
    file_type: str
    is_public: bool
    verification_status: str
    verification_score: float
    verification_details: dict
    skills: list[SkillResponse]
    created_at: datetime


class CertificateWithAwardResponse(BaseModel):
    certificate: CertificateResponse
    gamification: AwardResponse


# --- Verification ---


class ClaimedMetadataRequest(BaseModel):
    title: str = ""
    issuer: str = ""
    issue_date: date | None = None
    credential_id: str = ""
    credential_url: str = ""


class EvidenceCheckRequest(BaseModel):
    evidence_url: str = Field(min_length=1)
    claimed: ClaimedMetadataRequest = ClaimedMetadataRequest()


class EvidenceCheckResponse(BaseModel):
    decision: str
    score: float
    issuer_verified: bool
    edits_detected: bool
    issues: list[str]


class VerificationOutcomeResponse(BaseModel):
    certificate_id: int
    status: str
    previous_status: str
    score: float
    issuer_verified: bool = False
    edits_detected: bool = False
    issues: list[str] = []
    history_id: int | None = None
    award: AwardResponse | None = None


class EvidenceReplaceRequest(BaseModel):
    evidence_url: str = ""
    credential_url: str | None = None
    file_type: Literal["image", "pdf", "url", "none"] | None = None
    reverify: bool = True


class SkillsUpdateRequest(BaseModel):
    skills: list[str]


class ReviewRequest(BaseModel):
    decision: Literal["verified", "rejected"]
    notes: str = ""


class HistoryEntry(BaseModel):
    id: int
    decision: str
    confidence_score: float
    issuer_verified: bool
    edits_detected: bool
    issues: list[str]
    notes: str
    verified_by: str
    created_at: datetime


class HistoryResponse(BaseModel):
    certificate_id: int
    entries: list[HistoryEntry]
