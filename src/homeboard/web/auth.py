"""Bearer-token authentication and admin impersonation for API routes.

Tokens are HS256 JWTs whose ``sub`` is a profile id. They are normally
issued by the identity provider; ``create_access_token`` exists for the CLI
and tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Annotated, Any

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from homeboard.config import Settings
from homeboard.errors import ImpersonationError
from homeboard.logging import get_logger
from homeboard.models import ImpersonationSession, Profile
from homeboard.web.deps import get_settings, get_storage, impersonation_service

logger = get_logger(__name__)

IMPERSONATION_HEADER = "X-Impersonation-Token"

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """Who is calling and, when impersonating, who they are acting as."""

    user: Profile
    real_user: Profile
    session: ImpersonationSession | None = None

    @property
    def impersonator_id(self) -> str | None:
        return self.real_user.id if self.session is not None else None


def create_access_token(
    user_id: str, settings: Settings, *, expires_delta: timedelta | None = None
) -> str:
    """Sign a token for ``user_id``."""
    now = datetime.now(UTC)
    expires = now + (expires_delta or timedelta(minutes=settings.access_token_minutes))
    payload = {"sub": user_id, "iat": now, "exp": expires}
    return jwt.encode(
        payload, settings.jwt_secret.get_secret_value(), algorithm=settings.jwt_algorithm
    )


def decode_access_token(token: str, settings: Settings) -> dict[str, Any]:
    """Verify a token and return its claims.

    Raises:
        HTTPException: 401 for an expired, malformed or unsigned token.
    """
    secret = settings.jwt_secret.get_secret_value()
    if not secret:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Authentication not configured")
    try:
        claims: dict[str, Any] = jwt.decode(
            token, secret, algorithms=[settings.jwt_algorithm], options={"require": ["sub"]}
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Token expired") from None
    except jwt.InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from None
    return claims


async def _load_caller(request: Request, token: str) -> Profile:
    claims = decode_access_token(token, get_settings(request))
    profile = await get_storage(request).accounts.get_profile(str(claims["sub"]))
    if profile is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    if profile.is_banned:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail="Account is banned")
    return profile


async def _build_context(request: Request, caller: Profile) -> AuthContext:
    token = request.headers.get(IMPERSONATION_HEADER)
    if not token or not caller.is_admin:
        return AuthContext(user=caller, real_user=caller)
    try:
        session, target = await impersonation_service(request).resolve(caller, token)
    except ImpersonationError as e:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail=e.message) from None
    context = AuthContext(user=target, real_user=caller, session=session)
    logger.debug(
        "impersonated_request",
        path=request.url.path,
        impersonator_id=context.impersonator_id,
        user_id=target.id,
    )
    return context


async def get_auth_context(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
) -> AuthContext:
    if credentials is None:
        raise HTTPException(
            status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    caller = await _load_caller(request, credentials.credentials)
    return await _build_context(request, caller)


async def get_current_user(
    context: Annotated[AuthContext, Depends(get_auth_context)],
) -> Profile:
    """The effective user (the impersonated profile while impersonating)."""
    return context.user


async def get_optional_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
) -> Profile | None:
    """Like ``get_current_user`` but anonymous requests yield ``None``."""
    if credentials is None:
        return None
    caller = await _load_caller(request, credentials.credentials)
    return (await _build_context(request, caller)).user


async def require_admin(
    context: Annotated[AuthContext, Depends(get_auth_context)],
) -> Profile:
    """The real caller, who must be an admin (impersonation does not grant it)."""
    if not context.real_user.is_admin:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return context.real_user


CurrentUser = Annotated[Profile, Depends(get_current_user)]
OptionalUser = Annotated[Profile | None, Depends(get_optional_user)]
AdminUser = Annotated[Profile, Depends(require_admin)]
