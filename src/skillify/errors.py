"""Error taxonomy for the verification and engagement core.

Every error carries the HTTP status the API layer should answer with, so
services can raise them without knowing about FastAPI.
"""

from __future__ import annotations


class SkillifyError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidInput(SkillifyError):
    """Missing or malformed evidence/metadata. Raised before any external call."""

    status_code = 400
    code = "invalid_input"


class Forbidden(SkillifyError):
    """The caller does not own the resource."""

    status_code = 403
    code = "forbidden"


class NotFound(SkillifyError):
    """The referenced certificate or user does not exist."""

    status_code = 404
    code = "not_found"


class ConcurrencyConflict(SkillifyError):
    """A read-modify-write kept losing to concurrent writers after all retries."""

    status_code = 409
    code = "concurrency_conflict"


class EvidenceUnreadable(SkillifyError):
    """Text extraction produced nothing usable. Certificate state is unchanged."""

    status_code = 422
    code = "evidence_unreadable"


class OracleUnavailable(SkillifyError):
    """The scoring oracle or issuer database failed or timed out."""

    status_code = 503
    code = "oracle_unavailable"
