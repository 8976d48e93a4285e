"""Bearer JWT verification for API routes."""
from __future__ import annotations

from typing import Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from luminaire.config import Settings, get_settings

log = structlog.get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": "JWT verification failed", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def user_id_from_claims(claims: dict) -> Optional[str]:
    """Tokens carry the user either as ``{"user": {"id": ...}}`` or in ``sub``."""
    user = claims.get("user")
    if isinstance(user, dict) and user.get("id"):
        return str(user["id"])
    sub = claims.get("sub")
    return str(sub) if sub else None


async def current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> str:
    if credentials is None:
        raise _unauthorized("No Authorization was found in request.headers")
    try:
        claims = jwt.decode(
            credentials.credentials,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.PyJWTError as exc:
        log.warning("jwt_rejected", error=str(exc))
        raise _unauthorized(str(exc))

    user_id = user_id_from_claims(claims)
    if not user_id:
        raise _unauthorized("Token has no user")
    return user_id
