"""
Token revocation endpoint (POST /oauth/revoke). RFC 7009.
The caller authenticates as a client and may only revoke tokens issued to it. Unknown tokens and
tokens of other clients still get 200 so callers learn nothing.
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Form, Request
from sqlalchemy.orm import Session

from oidc_provider.audit import AuditEvent, get_client_ip, log_audit
from oidc_provider.client_auth import require_client_auth
from oidc_provider.clients import ClientRegistry
from oidc_provider.database import get_db
from oidc_provider.deps import get_client_registry, get_token_service
from oidc_provider.errors import InvalidRequest
from oidc_provider.tokens import TokenService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/oauth/revoke")
def revoke(
    request: Request,
    registry: Annotated[ClientRegistry, Depends(get_client_registry)],
    tokens: Annotated[TokenService, Depends(get_token_service)],
    token: str | None = Form(None),
    token_type_hint: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    db: Session = Depends(get_db),
):
    """
    Revoke an access token (cascading to its refresh tokens) or a refresh token (and its current access token).
    token_type_hint is accepted but not needed: both kinds are looked up by digest.
    """
    client = require_client_auth(registry, request, client_id, client_secret)
    if not token or not token.strip():
        raise InvalidRequest("token is required")

    if tokens.revoke(token.strip(), client):
        log_audit(db, AuditEvent.TOKEN_REVOKED, client_id=client.client_id, ip=get_client_ip(request))
    else:
        logger.debug(
            "Nothing revoked for client_id=%s: unknown, foreign or already revoked token (hint=%s)",
            client.client_id,
            token_type_hint,
        )
    return {"success": True}
