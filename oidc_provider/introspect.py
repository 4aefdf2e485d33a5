"""
Token introspection endpoint (POST /oauth/introspect). RFC 7662.
The caller must authenticate as a registered client and only learns about tokens issued to it.
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Form, Request

from oidc_provider.client_auth import require_client_auth
from oidc_provider.clients import ClientRegistry
from oidc_provider.deps import get_client_registry, get_token_service
from oidc_provider.errors import InvalidRequest
from oidc_provider.tokens import TokenInfo, TokenService

logger = logging.getLogger(__name__)
router = APIRouter()


def _lookup(tokens: TokenService, token: str, hint: str) -> TokenInfo | None:
    if hint == "refresh_token":
        return tokens.verify_refresh_token(token) or tokens.verify_access_token(token)
    return tokens.verify_access_token(token) or tokens.verify_refresh_token(token)


@router.post("/oauth/introspect")
def introspect(
    request: Request,
    registry: Annotated[ClientRegistry, Depends(get_client_registry)],
    tokens: Annotated[TokenService, Depends(get_token_service)],
    token: str | None = Form(None),
    token_type_hint: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
):
    """
    Return whether the token is active and, if so, what it grants.
    Unknown, expired, revoked or foreign tokens all read {"active": false}.
    """
    client = require_client_auth(registry, request, client_id, client_secret)
    if not token or not token.strip():
        raise InvalidRequest("token is required")

    info = _lookup(tokens, token.strip(), (token_type_hint or "").strip().lower())
    if info is None or info.client_id != client.client_id:
        logger.debug("Introspection by %s: inactive token", client.client_id)
        return {"active": False}

    return {
        "active": True,
        "scope": " ".join(info.scopes),
        "client_id": info.client_id,
        "sub": str(info.user_id),
        "exp": int(info.expires_at.timestamp()),
        "token_type": info.token_type,
    }
