"""
Session credentials and the auth gate.

Passwords are hashed with bcrypt. Sessions are HS256 JWTs carried in an
http-only cookie; verification checks signature and expiry only, there is no
server-side revocation.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, HTTPException, Request, Response

from crowdspark.config import Settings, get_settings
from crowdspark.types import Role

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "token"
JWT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class Identity:
    """Verified caller attached to a request by the auth gate."""

    id: str
    username: str
    role: Role


def hash_password(password: str, rounds: int = 10) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        logger.warning("Password verification failed on malformed hash")
        return False


def issue_token(
    *, user_id: str, username: str, role: Role, secret: str, expires_in: int
) -> str:
    now = int(time.time())
    payload = {
        "id": user_id,
        "username": username,
        "role": Role(role).value,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str, secret: str) -> Optional[Identity]:
    """Return the identity in a valid token, or None if it is bad or expired."""
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp"]},
        )
        return Identity(
            id=str(payload["id"]),
            username=str(payload["username"]),
            role=Role(payload["role"]),
        )
    except (jwt.PyJWTError, KeyError, ValueError):
        return None


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        max_age=settings.jwt_expires_in,
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        TOKEN_COOKIE,
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
    )


def identity_from_cookies(cookies: dict, settings: Settings) -> Optional[Identity]:
    token = cookies.get(TOKEN_COOKIE)
    if not token:
        return None
    return decode_token(token, settings.jwt_secret)


def get_current_identity(
    request: Request, settings: Settings = Depends(get_settings)
) -> Identity:
    token = request.cookies.get(TOKEN_COOKIE)
    if not token:
        raise HTTPException(status_code=401, detail="Access denied. No token provided.")
    identity = decode_token(token, settings.jwt_secret)
    if identity is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return identity


def require_roles(*roles: Role, detail: str = "Forbidden"):
    """Dependency factory rejecting callers whose role is not in `roles`."""

    def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in roles:
            raise HTTPException(status_code=403, detail=detail)
        return identity

    return dependency


require_admin = require_roles(Role.ADMIN)
