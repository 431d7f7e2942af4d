"""
Bearer token verification.

Tokens are issued by the Skillify auth service and signed with a shared
HS256 secret. This core only verifies them; ``create_access_token`` exists
for operational tooling and tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from skillify.config import get_settings

REQUIRED_CLAIMS = ["exp", "iss", "sub", "type"]


def create_access_token(user_id: int, *, is_admin: bool = False) -> str:
    settings = get_settings()
    issued_at = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "type": "access",
        "admin": is_admin,
        "iss": settings.jwt_issuer,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=settings.jwt_access_token_expire_minutes),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str, expected_type: str = "access") -> dict[str, Any]:
    """
    Decode a token and check its type and subject.

    Raises:
        jwt.InvalidTokenError: Bad signature, expired, foreign issuer,
            missing claims, wrong token type, or a non-numeric subject.
    """
    settings = get_settings()
    try:
        claims: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            options={"require": REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    token_type = claims["type"]
    if token_type != expected_type:
        msg = f"Expected a token of type '{expected_type}', got '{token_type}'"
        raise jwt.InvalidTokenError(msg)
    if not str(claims["sub"]).isdigit():
        msg = "Token subject is not a user id"
        raise jwt.InvalidTokenError(msg)
    return claims
