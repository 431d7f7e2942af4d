"""
Verification providers with a swappable backend.

Text extraction, the scoring oracle and the issuer registry are external
collaborators. Each has an HTTP implementation plus a deterministic local
one, selected via configuration.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date

import httpx
import structlog

from skillify.config import Settings, get_settings

logger = structlog.get_logger()


@dataclass
class ClaimedMetadata:
    """What the learner says the certificate is."""

    title: str = ""
    issuer: str = ""
    issue_date: date | None = None
    credential_id: str = ""
    credential_url: str = ""
    holder_name: str = ""

    def to_payload(self) -> dict:
        return {
            "title": self.title,
            "issuer": self.issuer,
            "issue_date": self.issue_date.isoformat() if self.issue_date else None,
            "credential_id": self.credential_id,
            "credential_url": self.credential_url,
            "holder_name": self.holder_name,
        }


@dataclass
class OracleAssessment:
    confidence: float
    edits_detected: bool = False
    issues: list[str] = field(default_factory=list)
    image_integrity: float | None = None


@dataclass
class IssuerLookup:
    checked: bool
    verified: bool
    message: str = ""


# ---------------------------------------------------------------------------
# Text extraction
# ---------------------------------------------------------------------------


class BaseTextExtractor(ABC):
    """Turns an evidence reference into plain text."""

    @abstractmethod
    async def extract(self, evidence_url: str) -> str:
        """Return the extracted text. Empty string means nothing usable was found."""
        ...


class HttpTextExtractor(BaseTextExtractor):
    """Delegate OCR to an external extraction service."""

    def __init__(self, url: str, timeout: float = 15.0) -> None:
        self.url = url
        self.timeout = timeout

    async def extract(self, evidence_url: str) -> str:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.url,
                json={"evidence_url": evidence_url},
                timeout=self.timeout,
            )
            response.raise_for_status()
            text = response.json().get("text") or ""
        logger.info("text_extracted", evidence_url=evidence_url, chars=len(text))
        return text


# ---------------------------------------------------------------------------
# Scoring oracle
# ---------------------------------------------------------------------------


class BaseScoringOracle(ABC):
    """Scores extracted text against the claimed metadata."""

    @abstractmethod
    async def assess(self, text: str, claimed: ClaimedMetadata, evidence_url: str = "") -> OracleAssessment:
        ...


class HttpScoringOracle(BaseScoringOracle):
    """Call a remote model service that answers with a confidence and findings."""

    def __init__(self, url: str, timeout: float = 15.0) -> None:
        self.url = url
        self.timeout = timeout

    async def assess(self, text: str, claimed: ClaimedMetadata, evidence_url: str = "") -> OracleAssessment:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.url,
                json={"text": text, "claimed": claimed.to_payload(), "evidence_url": evidence_url},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        integrity = data.get("image_integrity")
        return OracleAssessment(
            confidence=float(data["confidence"]),
            edits_detected=bool(data.get("edits_detected", False)),
            issues=list(data.get("issues") or []),
            image_integrity=float(integrity) if integrity is not None else None,
        )


_CERTIFICATE_WORDS = re.compile(r"certificate|certification|diploma|degree|awarded|completed", re.IGNORECASE)
_ACHIEVEMENT_WORDS = re.compile(r"congratulations|successfully|completed|achievement", re.IGNORECASE)
_TEMPLATE_WORDS = re.compile(r"template|sample|example", re.IGNORECASE)


def date_variants(d: date) -> list[str]:
    """Common renderings of a date on a printed certificate."""
    return [
        d.isoformat(),
        f"{d.month}/{d.day}/{d.year}",
        d.strftime("%m/%d/%Y"),
        d.strftime("%d/%m/%Y"),
        f"{d.strftime('%B')} {d.day}, {d.year}",
        f"{d.day} {d.strftime('%B')} {d.year}",
    ]


class HeuristicScoringOracle(BaseScoringOracle):
    """Deterministic text-matching scorer.

    Weights each claimed field by how strongly it identifies a credential,
    then nudges the result by how certificate-like the text reads.
    """

    async def assess(self, text: str, claimed: ClaimedMetadata, evidence_url: str = "") -> OracleAssessment:
        return self.score(text, claimed)

    def score(self, text: str, claimed: ClaimedMetadata) -> OracleAssessment:
        haystack = text.lower()
        issues: list[str] = []
        earned = 0.0
        total = 0.0
        matches = 0

        def check(value: str, weight: float, found: bool, issue: str) -> None:
            nonlocal earned, total, matches
            if not value:
                return
            total += weight
            if found:
                earned += weight
                matches += 1
            else:
                issues.append(issue)

        has_id = bool(claimed.credential_id)
        check(claimed.title, 20, claimed.title.lower() in haystack, "Certificate title not found in document")
        check(claimed.issuer, 25, claimed.issuer.lower() in haystack, "Issuing organization not found in document")
        if claimed.issue_date is not None:
            total += 15
            if any(v.lower() in haystack for v in date_variants(claimed.issue_date)):
                earned += 15
                matches += 1
            else:
                issues.append("Issue date not found in document")
        check(claimed.credential_id, 30, claimed.credential_id in text, "Credential ID not found in document")
        if claimed.credential_url:
            domain = re.sub(r"^https?://", "", claimed.credential_url).split("/")[0].lower()
            check(
                claimed.credential_url,
                15 if has_id else 20,
                domain in haystack or claimed.credential_url.lower() in haystack,
                "Credential URL or domain not found in document",
            )
        check(
            claimed.holder_name,
            10 if has_id else 15,
            claimed.holder_name.lower() in haystack,
            "Recipient name not found in document",
        )

        confidence = round(earned / total * 100) if total else 0

        if len(text) < 100:
            issues.append("Extracted text is suspiciously short for a legitimate certificate")
        if not _CERTIFICATE_WORDS.search(text):
            issues.append("Text lacks common certificate terminology")
        if _TEMPLATE_WORDS.search(text):
            issues.append("Certificate contains terms like 'template', 'sample', or 'example'")

        if len(text) > 200 and _CERTIFICATE_WORDS.search(text) and _ACHIEVEMENT_WORDS.search(text):
            confidence += 10
        if matches >= 4:
            confidence += 15
        elif matches <= 1:
            confidence -= 20
        if len(issues) >= 3:
            confidence -= 25
        elif not issues:
            confidence += 10

        return OracleAssessment(confidence=float(min(100, max(0, confidence))), issues=issues)


# ---------------------------------------------------------------------------
# Issuer registry
# ---------------------------------------------------------------------------


class BaseIssuerRegistry(ABC):
    """Cross-checks a credential with the issuing organization."""

    @abstractmethod
    async def lookup(self, claimed: ClaimedMetadata) -> IssuerLookup:
        ...


KNOWN_ISSUERS: dict[str, str] = {
    "Coursera": "https://www.coursera.org",
    "Udemy": "https://www.udemy.com",
    "edX": "https://www.edx.org",
    "LinkedIn Learning": "https://www.linkedin.com/learning",
    "Microsoft": "https://learn.microsoft.com",
    "Google": "https://developers.google.com",
}

_CREDENTIAL_ID_RE = re.compile(r"^[a-zA-Z0-9-]+$")


class KnownIssuerRegistry(BaseIssuerRegistry):
    """Validate credential id and URL shape for issuers with a known verification site."""

    def __init__(self, issuers: dict[str, str] | None = None) -> None:
        self.issuers = issuers if issuers is not None else KNOWN_ISSUERS

    async def lookup(self, claimed: ClaimedMetadata) -> IssuerLookup:
        if claimed.issuer not in self.issuers:
            return IssuerLookup(checked=False, verified=False, message="No verification API available for this issuer")

        url = claimed.credential_url
        url_valid = bool(url) and (
            claimed.issuer.lower().replace(" ", "") in url.lower()
            or any(url.startswith(site) for site in self.issuers.values())
        )
        holder_valid = not claimed.holder_name or len(claimed.holder_name) > 3

        if claimed.credential_id:
            id_valid = len(claimed.credential_id) > 8 and bool(_CREDENTIAL_ID_RE.match(claimed.credential_id))
            verified = id_valid and url_valid and holder_valid
        else:
            verified = url_valid and holder_valid

        if verified:
            message = "Certificate validated with issuer database"
        elif claimed.credential_id:
            message = "Certificate failed validation with issuer database"
        else:
            message = "Credential URL does not match the issuer"
        return IssuerLookup(checked=True, verified=verified, message=message)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def get_text_extractor(settings: Settings | None = None) -> BaseTextExtractor:
    """Create the text extractor based on configuration."""
    settings = settings or get_settings()
    if settings.extractor_provider.lower() == "http":
        return HttpTextExtractor(settings.extractor_url, timeout=settings.provider_timeout_seconds)
    msg = f"Unknown extractor provider: {settings.extractor_provider}"
    raise ValueError(msg)


def get_scoring_oracle(settings: Settings | None = None) -> BaseScoringOracle:
    """Create the scoring oracle based on configuration."""
    settings = settings or get_settings()
    provider_name = settings.oracle_provider.lower()
    if provider_name == "http":
        return HttpScoringOracle(settings.oracle_url, timeout=settings.provider_timeout_seconds)
    if provider_name == "heuristic":
        return HeuristicScoringOracle()
    msg = f"Unknown oracle provider: {settings.oracle_provider}"
    raise ValueError(msg)


def get_issuer_registry(settings: Settings | None = None) -> BaseIssuerRegistry | None:
    """Create the issuer registry, or None when lookups are disabled."""
    settings = settings or get_settings()
    if not settings.issuer_lookup_enabled:
        return None
    return KnownIssuerRegistry()
