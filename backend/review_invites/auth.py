from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.review_invites.settings import Settings

security = HTTPBearer(auto_error=False)

READ_ROLES = ("admin", "support")


@dataclass(frozen=True)
class Operator:
    subject: str
    roles: frozenset[str]

    def has_any(self, roles: set[str]) -> bool:
        return not roles or not self.roles.isdisjoint(roles)


LOCAL_OPERATOR = Operator(subject="local-operator", roles=frozenset(READ_ROLES))


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def decode_operator(token: str, settings: Settings) -> Operator:
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise _unauthorized("auth token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise _unauthorized("invalid auth token") from exc

    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise _unauthorized("token missing subject")
    roles = claims.get("roles", [])
    if not isinstance(roles, list):
        raise _unauthorized("token roles must be a list")
    return Operator(
        subject=subject.strip(),
        roles=frozenset(str(role).strip() for role in roles if str(role).strip()),
    )


def current_operator(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Operator:
    settings: Settings = request.app.state.settings
    if not settings.auth_enabled:
        return LOCAL_OPERATOR
    if not credentials or credentials.scheme.lower() != "bearer":
        raise _unauthorized("missing bearer token")
    return decode_operator(credentials.credentials, settings)


def require_roles(*required_roles: str) -> Callable[[Operator], Operator]:
    required = {role.strip() for role in required_roles if role.strip()}

    def dependency(operator: Operator = Depends(current_operator)) -> Operator:
        if not operator.has_any(required):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"insufficient role. required any of: {sorted(required)}",
            )
        return operator

    return dependency
