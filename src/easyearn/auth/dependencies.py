"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from easyearn.auth.jwt import verify_token
from easyearn.database import get_session
from easyearn.db.models import User, UserStatus

_bearer = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Verify the bearer token and load the user.

    Muted users pass; individual actions decide what a muted account may do.
    Raises 401 for bad tokens or unknown users and 403 for terminated accounts.
    """
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    user = await db.get(User, str(payload["sub"]))
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if user.status == UserStatus.TERMINATED.value:
        raise HTTPException(status_code=403, detail="Account is terminated")
    return user


async def get_current_admin(
    user: User = Depends(get_current_user),
) -> User:
    """Same as get_current_user but requires the ADMIN role."""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
