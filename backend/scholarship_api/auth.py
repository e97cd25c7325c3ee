"""Authentication helpers and FastAPI security dependencies.

This module decodes JWT bearer tokens into an `Identity` (account id plus
roles) and provides `require_roles`, a dependency factory the routes use
to restrict endpoints to officers, interviewers or students. Account
management lives in the identity subsystem; this service only verifies
the tokens it issues.

Token verification raises HTTPExceptions on failure so it can be used
directly inside route dependencies.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Iterable

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings

bearer_scheme = HTTPBearer()

ROLE_STUDENT = "student"
ROLE_OFFICER = "scholarship_officer"
ROLE_ADMIN = "admin"
ROLE_INTERVIEWER = "interviewer"

STAFF_ROLES = frozenset({ROLE_OFFICER, ROLE_ADMIN, ROLE_INTERVIEWER})


@dataclass(frozen=True)
class Identity:
    user_id: str
    roles: FrozenSet[str]

    @property
    def is_staff(self) -> bool:
        return bool(self.roles & STAFF_ROLES)


def create_access_token(user_id: str, roles: Iterable[str], expires_in: timedelta = None) -> str:
    """Issue a signed token carrying `user_id` and `roles` claims."""
    expires_in = expires_in or timedelta(hours=settings.JWT_EXPIRE_HOURS)
    payload = {
        "user_id": user_id,
        "roles": sorted(set(roles)),
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="invalid token")


def get_current_identity(credentials: HTTPAuthorizationCredentials = Security(bearer_scheme)) -> Identity:
    payload = decode_token(credentials.credentials)
    user_id = payload.get("user_id")
    roles = payload.get("roles") or []
    if not user_id or not isinstance(roles, list):
        raise HTTPException(status_code=401, detail="invalid token payload")
    return Identity(user_id=str(user_id), roles=frozenset(str(r) for r in roles))


def require_roles(*allowed: str):
    """Dependency factory: the caller must hold at least one of `allowed`."""
    allowed_set = frozenset(allowed)

    def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if not identity.roles & allowed_set:
            raise HTTPException(status_code=403, detail="insufficient role")
        return identity

    return dependency
