"""
Bearer credential verification (HTTP and WebSocket handshakes).

Token issuance belongs to the auth service; ``create_access_token`` is kept
here so operators and tests can mint tokens with the shared secret.

    Missing credential          → AuthError 401
    Invalid / expired signature → AuthError 403
    Valid token, unknown user   → AuthError 401
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt  # PyJWT
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.config import settings
from backend.app.core.errors import AuthError
from backend.app.users.models import UserIdentity
from backend.app.users.store import UserStore

logger = logging.getLogger(__name__)


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user_id,
        "iat": now,
        "exp": now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: Optional[str]) -> Dict[str, Any]:
    """Decode and validate a bearer token, returning its claims."""
    if not token:
        raise AuthError("No token provided", status_code=401)
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired", status_code=403)
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token", status_code=403)
    if not claims.get("userId"):
        raise AuthError("Invalid token", status_code=403)
    return claims


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Pull the token out of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


async def resolve_identity(session: AsyncSession, token: Optional[str]) -> UserIdentity:
    claims = verify_access_token(token)
    user = await UserStore(session).get_active(claims["userId"])
    if user is None:
        raise AuthError("Invalid token or user not found", status_code=401)
    return user


def make_identity_resolver(session_factory: async_sessionmaker[AsyncSession]):
    """Build the ``authenticate(token)`` callable used by the realtime hub."""

    async def authenticate(token: Optional[str]) -> UserIdentity:
        async with session_factory() as session:
            return await resolve_identity(session, token)

    return authenticate
