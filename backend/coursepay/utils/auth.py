"""
Caller Identity - Bearer token verification for FastAPI routes.

Tokens are HS256 JWTs issued by the identity provider. ``sub`` is the user id;
``role`` == "admin" unlocks the admin routes. Identity is resolved once per
request and passed explicitly into every core call.
"""
from typing import Optional

import jwt
from fastapi import Depends, Header
from pydantic import BaseModel

from coursepay.config import Settings, get_settings
from coursepay.exceptions import AuthError

ADMIN_ROLE = "admin"


class CurrentUser(BaseModel):
    id: str
    email: Optional[str] = None
    role: str = "authenticated"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def decode_token(token: str, settings: Settings) -> CurrentUser:
    """Verify a bearer token and return the identity it carries.

    Raises:
        AuthError: If the token is malformed, expired, wrongly signed or has no subject.
    """
    if not settings.AUTH_JWT_SECRET:
        raise AuthError("Authentication is not configured")

    audience = settings.AUTH_JWT_AUDIENCE or None
    try:
        claims = jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=[settings.AUTH_JWT_ALGORITHM],
            audience=audience,
            options={"verify_aud": audience is not None, "require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Token has expired")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token")

    return CurrentUser(
        id=str(claims["sub"]),
        email=claims.get("email"),
        role=claims.get("role") or "authenticated",
    )


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Authorization header must be 'Bearer <token>'")
    return token.strip()


def get_current_user(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> CurrentUser:
    """FastAPI dependency: the authenticated caller, or 401."""
    token = _bearer_token(authorization)
    if token is None:
        raise AuthError("No authorization header")
    return decode_token(token, settings)


def get_optional_user(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> Optional[CurrentUser]:
    """FastAPI dependency: the caller if a token was sent, else None. A bad token is still a 401."""
    token = _bearer_token(authorization)
    if token is None:
        return None
    return decode_token(token, settings)


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """FastAPI dependency: the caller, who must carry the admin role."""
    if not user.is_admin:
        raise AuthError("Admin role required", status_code=403)
    return user
