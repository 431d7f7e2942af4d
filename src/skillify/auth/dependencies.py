"""Request authentication: bearer token to User row."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from skillify.auth.jwt import verify_token
from skillify.database import get_session
from skillify.db.models import User
from skillify.users.service import get_user_by_id

_bearer = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """The authenticated learner. 401 for a bad token or a user that no longer exists."""
    try:
        claims = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as exc:
        raise _unauthorized(str(exc)) from exc

    user = await get_user_by_id(db, int(claims["sub"]))
    if user is None:
        raise _unauthorized("User not found")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Admin rights come from the users table, never from token claims."""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Administrator access required")
    return user
