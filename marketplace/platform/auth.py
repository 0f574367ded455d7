"""
Bearer-token authentication.

Identity is owned by the external auth provider; the API only verifies the
HS256 JWT it issues. Claims used: sub (user id), roles, email, name.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Iterable, Optional

import jwt
from fastapi import Depends, Request

from marketplace.entitlements.errors import NotAuthenticatedError
from marketplace.platform.errors import PermissionDeniedError, ServiceUnavailableError

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller."""

    user_id: str
    roles: FrozenSet[str] = field(default_factory=frozenset)
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


def create_access_token(
    secret: str,
    user_id: str,
    roles: Iterable[str] = (),
    email: Optional[str] = None,
    name: Optional[str] = None,
    expires_in: timedelta = timedelta(hours=1),
    algorithm: str = "HS256",
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "roles": sorted(set(roles)),
        "iat": int(now.timestamp()),
        "exp": int((now + expires_in).timestamp()),
    }
    if email:
        payload["email"] = email
    if name:
        payload["name"] = name
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_access_token(token: str, secret: str, algorithm: str = "HS256") -> CurrentUser:
    """
    Raises:
        NotAuthenticatedError: token missing, expired or invalid
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.ExpiredSignatureError:
        raise NotAuthenticatedError()
    except jwt.InvalidTokenError as e:
        logger.info("Rejected access token", extra={"error": str(e)})
        raise NotAuthenticatedError()

    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise NotAuthenticatedError()
    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return CurrentUser(
        user_id=user_id,
        roles=frozenset(str(r) for r in roles),
        email=payload.get("email"),
        name=payload.get("name"),
    )


def _jwt_settings(request: Request):
    settings = getattr(request.app.state, "settings", None)
    if settings is None or not settings.jwt_secret:
        raise ServiceUnavailableError("Authentication is not configured")
    return settings


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_optional_user(request: Request) -> Optional[CurrentUser]:
    """Caller if a valid token was sent, else None (anonymous page views)."""
    token = _bearer_token(request)
    if token is None:
        return None
    settings = _jwt_settings(request)
    try:
        return decode_access_token(token, settings.jwt_secret, settings.jwt_algorithm)
    except NotAuthenticatedError:
        return None


def require_user(request: Request) -> CurrentUser:
    token = _bearer_token(request)
    if token is None:
        raise NotAuthenticatedError(intent=request.url.path)
    settings = _jwt_settings(request)
    try:
        return decode_access_token(token, settings.jwt_secret, settings.jwt_algorithm)
    except NotAuthenticatedError:
        raise NotAuthenticatedError(intent=request.url.path)


def require_admin(user: CurrentUser = Depends(require_user)) -> CurrentUser:
    if not user.is_admin:
        logger.warning("Admin route denied", extra={"user_id": user.user_id})
        raise PermissionDeniedError("Admin access required")
    return user
