"""Bearer-token identity for the web API.

Tokens are issued by the surrounding auth subsystem; this module only
verifies them and loads the user named in `sub`. Tournament roles are
checked by the services, not here.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select

import config
from puckdrop.models import User, async_session_factory

http_bearer = HTTPBearer(auto_error=False)


def create_access_token(username: str, expires_in: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_in or timedelta(days=config.JWT_EXPIRE_DAYS))
    payload = {"sub": username, "exp": expire}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None


async def get_user_by_username(username: str) -> Optional[User]:
    async with async_session_factory() as session:
        result = await session.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    x_auth_token: Optional[str] = Header(None, alias="X-Auth-Token"),
) -> Optional[User]:
    """Return current user from JWT, or None. Accepts Authorization: Bearer or X-Auth-Token."""
    token = None
    if credentials and credentials.credentials:
        token = credentials.credentials
    elif x_auth_token:
        token = x_auth_token
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    username = payload.get("sub")
    if not username:
        return None
    return await get_user_by_username(username)


async def require_user(
    user: Optional[User] = Depends(get_current_user),
) -> User:
    """Require authenticated user. Raises 401 if not logged in."""
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
