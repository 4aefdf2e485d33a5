"""
Bearer authentication for provider and resource APIs.
Two verification strategies, tried in a fixed order chosen per route:
  SESSION - first-party session JWT (HS256, "id" claim) identifying the resource owner
  OAUTH2  - opaque access token issued by this provider
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Annotated

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from oidc_provider import config
from oidc_provider.deps import get_token_service, get_user_directory
from oidc_provider.errors import AccessDenied, InsufficientScope, InvalidToken, LoginRequired
from oidc_provider.tokens import TokenService
from oidc_provider.users import UserDirectory, UserProfile

logger = logging.getLogger(__name__)


class AuthType(str, Enum):
    SESSION = "session"
    OAUTH2 = "oauth2"


@dataclass(frozen=True)
class Principal:
    auth_type: AuthType
    user: UserProfile
    client_id: str | None = None
    scopes: tuple[str, ...] = ()
    token_id: int | None = None


def _verify_session(token: str, users: UserDirectory, tokens: TokenService) -> Principal | None:
    if not config.SESSION_JWT_SECRET:
        return None
    try:
        payload = jwt.decode(token, config.SESSION_JWT_SECRET, algorithms=config.SESSION_JWT_ALGORITHMS)
    except jwt.InvalidTokenError:
        return None
    try:
        user_id = int(payload.get("id"))
    except (TypeError, ValueError):
        return None
    user = users.find_user_by_id(user_id)
    if user is None or not user.is_active:
        return None
    return Principal(auth_type=AuthType.SESSION, user=user)


def _verify_oauth2(token: str, users: UserDirectory, tokens: TokenService) -> Principal | None:
    info = tokens.verify_access_token(token)
    if info is None:
        return None
    user = users.find_user_by_id(info.user_id)
    if user is None or not user.is_active:
        return None
    return Principal(
        auth_type=AuthType.OAUTH2,
        user=user,
        client_id=info.client_id,
        scopes=tuple(info.scopes),
        token_id=info.token_id,
    )


_VERIFIERS: dict[AuthType, Callable[[str, UserDirectory, TokenService], Principal | None]] = {
    AuthType.SESSION: _verify_session,
    AuthType.OAUTH2: _verify_oauth2,
}


def authenticate(
    token: str | None,
    strategies: tuple[AuthType, ...],
    users: UserDirectory,
    tokens: TokenService,
) -> Principal | None:
    """Try each strategy in order; first match wins."""
    if not token:
        return None
    for strategy in strategies:
        principal = _VERIFIERS[strategy](token, users, tokens)
        if principal is not None:
            return principal
    logger.debug("Bearer token rejected by %s", ", ".join(s.value for s in strategies))
    return None


security = HTTPBearer(auto_error=False)


def get_bearer_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> str | None:
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    return credentials.credentials


def _principal_dependency(*strategies: AuthType):
    def _resolve(
        token: Annotated[str | None, Depends(get_bearer_token)],
        users: Annotated[UserDirectory, Depends(get_user_directory)],
        tokens: Annotated[TokenService, Depends(get_token_service)],
    ) -> Principal | None:
        return authenticate(token, strategies, users, tokens)

    return _resolve


_optional_session = _principal_dependency(AuthType.SESSION)
_optional_oauth2 = _principal_dependency(AuthType.OAUTH2)
_optional_any = _principal_dependency(AuthType.SESSION, AuthType.OAUTH2)


def optional_session_user(
    principal: Annotated[Principal | None, Depends(_optional_session)],
) -> UserProfile | None:
    """Resource owner from the session token, or None (e.g. /authorize redirects to login)."""
    return principal.user if principal else None


def require_session_user(
    principal: Annotated[Principal | None, Depends(_optional_session)],
) -> UserProfile:
    if principal is None:
        raise LoginRequired("User not authenticated")
    return principal.user


def require_admin(user: Annotated[UserProfile, Depends(require_session_user)]) -> UserProfile:
    if not user.is_admin:
        raise AccessDenied("Administrator role required")
    return user


def require_oauth2_principal(
    principal: Annotated[Principal | None, Depends(_optional_oauth2)],
) -> Principal:
    if principal is None:
        raise InvalidToken("Invalid or expired access token")
    return principal


def require_principal(
    principal: Annotated[Principal | None, Depends(_optional_any)],
) -> Principal:
    """Session first, then OAuth2 access token."""
    if principal is None:
        raise InvalidToken("Invalid or expired token")
    return principal


def require_scopes(*required: str):
    """Dependency factory: OAuth2 principals must hold every scope; session principals are first-party."""

    def _check(principal: Annotated[Principal, Depends(require_principal)]) -> Principal:
        if principal.auth_type is AuthType.OAUTH2:
            missing = [s for s in required if s not in principal.scopes]
            if missing:
                raise InsufficientScope(f"Required scopes: {', '.join(required)}")
        return principal

    return _check
