from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Cookie, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import AUTH_COOKIE, JWT_ALGO, JWT_SECRET, TOKEN_TTL_DAYS
from errors import AuthenticationError, AuthorizationError
from schemas import Identity

security = HTTPBearer(auto_error=False)


def create_token(identity: Identity) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=TOKEN_TTL_DAYS)
    to_encode = {**identity.model_dump(), "exp": exp}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> Identity:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")
    if not payload.get("id"):
        raise AuthenticationError("Invalid token payload")
    return Identity(
        id=payload["id"],
        name=payload.get("name", ""),
        email=payload.get("email", ""),
        is_admin=bool(payload.get("is_admin", False)),
    )


def ensure_admin(identity: Optional[Identity]) -> Identity:
    if identity is None:
        raise AuthorizationError("Sign in required")
    if not identity.is_admin:
        raise AuthorizationError("Admin only")
    return identity


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth_token: Optional[str] = Cookie(None, alias=AUTH_COOKIE),
) -> Optional[Identity]:
    token = credentials.credentials if credentials else auth_token
    if not token:
        return None
    return decode_token(token)


async def get_session_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth_token: Optional[str] = Cookie(None, alias=AUTH_COOKIE),
) -> Optional[Identity]:
    """Like get_optional_user, but a stale or forged token reads as signed out."""
    try:
        return await get_optional_user(credentials, auth_token)
    except AuthenticationError:
        return None


async def get_current_user(user: Optional[Identity] = Depends(get_optional_user)) -> Identity:
    if user is None:
        raise AuthenticationError("Unauthorized")
    return user


async def get_admin_user(user: Identity = Depends(get_current_user)) -> Identity:
    return ensure_admin(user)
