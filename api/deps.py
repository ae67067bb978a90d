"""
Identity collaborator: turns the bearer token into an Actor.

Tokens are issued elsewhere; here they are only verified (JWT_SECRET /
JWT_ALGORITHM) and the subject is looked up in `users`.
"""
from __future__ import annotations

import os
import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from common.logging_config import get_logger
from common.models import Actor
from db.session import Session
from db import repository as repo

_log = get_logger("auth")

bearer_scheme = HTTPBearer(auto_error=False)


def _jwt_settings() -> tuple[str, str]:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Authentication is not configured")
    return secret, os.getenv("JWT_ALGORITHM", "HS256")


async def get_current_actor(
    creds: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> Actor:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if creds is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    secret, algorithm = _jwt_settings()
    try:
        payload = jwt.decode(creds.credentials, secret, algorithms=[algorithm])
        subject = payload.get("sub") or payload.get("id")
        if subject is None:
            raise credentials_exception
        user_id = uuid.UUID(str(subject))
    except (JWTError, ValueError) as e:
        _log.info("Rejected token: %s", e)
        raise credentials_exception

    async with Session() as db:
        user = await repo.get_user(db, user_id)
    if user is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "User not found")
    if not user.is_active:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Account has been deactivated")
    return Actor(user_id=user.id, role=user.role)
