"""
Token endpoint (POST /oauth/token): authorization_code and refresh_token grants.
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from oidc_provider import config
from oidc_provider.audit import AuditEvent, Outcome, get_client_ip, log_audit
from oidc_provider.client_auth import require_client_auth
from oidc_provider.clients import ClientRegistry
from oidc_provider.codes import AuthorizationCodeManager
from oidc_provider.database import get_db
from oidc_provider.deps import (
    get_client_registry,
    get_code_manager,
    get_id_token_issuer,
    get_token_service,
    get_user_directory,
)
from oidc_provider.errors import InvalidGrant, InvalidRequest, OAuth2Error, SlowDown, UnsupportedGrantType
from oidc_provider.id_tokens import IDTokenIssuer
from oidc_provider.issuer import resolve_issuer
from oidc_provider.models import Client
from oidc_provider.rate_limit import token_limiter
from oidc_provider.tokens import TokenService
from oidc_provider.users import UserDirectory, UserProfile

logger = logging.getLogger(__name__)
router = APIRouter()

GRANT_TYPES = ("authorization_code", "refresh_token")


def _token_response(body: dict) -> JSONResponse:
    # RFC 6749 §5.1
    return JSONResponse(body, headers={"Cache-Control": "no-store", "Pragma": "no-cache"})


def _active_user(users: UserDirectory, user_id: int) -> UserProfile:
    user = users.find_user_by_id(user_id)
    if user is None or not user.is_active:
        raise InvalidGrant("Resource owner is not active")
    return user


@router.post("/oauth/token")
def token(
    request: Request,
    registry: Annotated[ClientRegistry, Depends(get_client_registry)],
    codes: Annotated[AuthorizationCodeManager, Depends(get_code_manager)],
    tokens: Annotated[TokenService, Depends(get_token_service)],
    users: Annotated[UserDirectory, Depends(get_user_directory)],
    id_tokens: Annotated[IDTokenIssuer, Depends(get_id_token_issuer)],
    grant_type: str | None = Form(None),
    code: str | None = Form(None),
    redirect_uri: str | None = Form(None),
    code_verifier: str | None = Form(None),
    refresh_token: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    db: Session = Depends(get_db),
):
    """
    authorization_code: exchange a code for access_token, refresh_token and (openid scope) id_token.
    refresh_token: exchange a refresh token for a new access token with the original scopes.
    """
    ip = get_client_ip(request)
    retry_after = token_limiter.hit(ip or "unknown", config.RATE_LIMIT_TOKEN_PER_MINUTE)
    if retry_after is not None:
        raise SlowDown(retry_after)

    if grant_type not in GRANT_TYPES:
        raise UnsupportedGrantType("Only authorization_code and refresh_token are supported")

    client = require_client_auth(registry, request, client_id, client_secret)
    event = AuditEvent.TOKEN_ISSUED if grant_type == "authorization_code" else AuditEvent.TOKEN_REFRESHED
    try:
        if grant_type == "authorization_code":
            body, user_id = _grant_authorization_code(
                request, client, code, redirect_uri, code_verifier, codes, tokens, users, id_tokens
            )
        else:
            body, user_id = _grant_refresh_token(request, client, refresh_token, tokens, users, id_tokens)
    except OAuth2Error:
        log_audit(db, event, client_id=client.client_id, ip=ip, outcome=Outcome.FAIL)
        raise
    log_audit(db, event, client_id=client.client_id, user_id=user_id, ip=ip)
    return _token_response(body)


def _grant_authorization_code(
    request: Request,
    client: Client,
    code: str | None,
    redirect_uri: str | None,
    code_verifier: str | None,
    codes: AuthorizationCodeManager,
    tokens: TokenService,
    users: UserDirectory,
    id_tokens: IDTokenIssuer,
) -> tuple[dict, int]:
    if not code or not redirect_uri:
        raise InvalidRequest("code and redirect_uri are required for authorization_code grant")

    auth_code = codes.verify_and_consume(code, client, redirect_uri, code_verifier)
    user = _active_user(users, auth_code.user_id)
    scopes = auth_code.scopes

    # Sign first so a key failure leaves no live tokens behind
    id_token = None
    if "openid" in scopes:
        id_token = id_tokens.issue(user, client.client_id, resolve_issuer(request), auth_code.nonce)

    access = tokens.issue_access_token(client, user.id, scopes)
    body = {
        "access_token": access.access_token,
        "token_type": access.token_type,
        "expires_in": access.expires_in,
        "scope": access.scope,
    }
    # The access token is already committed and usable on its own. If the refresh token write fails
    # the response omits refresh_token instead of failing the whole exchange.
    try:
        body["refresh_token"] = tokens.issue_refresh_token(access.token_id, client, user.id, scopes)
    except SQLAlchemyError:
        tokens.db.rollback()
        logger.warning(
            "Refresh token not persisted for access token id=%s; returning access token only",
            access.token_id,
            exc_info=True,
        )
    if id_token:
        body["id_token"] = id_token
    return body, user.id


def _grant_refresh_token(
    request: Request,
    client: Client,
    refresh_token: str | None,
    tokens: TokenService,
    users: UserDirectory,
    id_tokens: IDTokenIssuer,
) -> tuple[dict, int]:
    if not refresh_token:
        raise InvalidRequest("refresh_token is required")

    # Every check that can fail, signing included, runs before anything is written
    grant = tokens.verify_refresh_grant(refresh_token, client)
    user = _active_user(users, grant.user_id)
    id_token = None
    if "openid" in grant.scopes:
        # No nonce on refresh-issued ID tokens
        id_token = id_tokens.issue(user, client.client_id, resolve_issuer(request))

    result = tokens.refresh(refresh_token, client)
    access = result.access
    body = {
        "access_token": access.access_token,
        "token_type": access.token_type,
        "expires_in": access.expires_in,
        "scope": access.scope,
    }
    if result.refresh_token:
        body["refresh_token"] = result.refresh_token
    if id_token:
        body["id_token"] = id_token
    logger.info("refresh_token grant: new access token for client_id=%s sub=%s", client.client_id, user.id)
    return body, user.id
