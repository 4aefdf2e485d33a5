"""
Authorization endpoint.
GET /oauth/authorize: validate the request, send anonymous users to login, ask for consent or issue a code.
POST /oauth/authorize: the resource owner approves or denies the consent prompt.
Responses are JSON for the first-party frontend, which performs the browser redirect itself.
"""
import logging
from typing import Annotated
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from oidc_provider import config
from oidc_provider.audit import AuditEvent, get_client_ip, log_audit
from oidc_provider.bearer import optional_session_user, require_session_user
from oidc_provider.clients import ClientRegistry
from oidc_provider.codes import AuthorizationCodeManager
from oidc_provider.consent import ConsentStore
from oidc_provider.database import get_db
from oidc_provider.deps import get_client_registry, get_code_manager, get_consent_store
from oidc_provider.errors import InvalidClient, InvalidRequest, InvalidScope
from oidc_provider.models import Client
from oidc_provider.users import UserProfile

logger = logging.getLogger(__name__)
router = APIRouter()


def with_query(uri: str, params: dict[str, str | None]) -> str:
    """Append params to uri, keeping any query it already has."""
    parts = urlsplit(uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v is not None)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def parse_scopes(scope: str | list[str] | None) -> list[str]:
    """Requested scopes in request order; nothing requested means the default set."""
    if isinstance(scope, list):
        raw = [s for item in scope for s in (item or "").split()]
    else:
        raw = (scope or "").split()
    scopes: list[str] = []
    for s in raw:
        if s not in scopes:
            scopes.append(s)
    return scopes or list(config.DEFAULT_SCOPES)


def _validate_authorization_request(
    registry: ClientRegistry,
    client_id: str | None,
    redirect_uri: str | None,
    scope: str | list[str] | None,
    code_challenge: str | None,
    code_challenge_method: str | None,
) -> tuple[Client, list[str]]:
    if not client_id or not redirect_uri:
        raise InvalidRequest("client_id and redirect_uri are required")
    client = registry.get_by_client_id(client_id)
    if client is None:
        raise InvalidClient("Client not found", status_code=400, headers={})
    if not registry.validate_redirect_uri(client, redirect_uri):
        raise InvalidRequest("Invalid redirect_uri")
    scopes = parse_scopes(scope)
    if not registry.validate_scopes(client, scopes):
        raise InvalidScope("Invalid scope requested")
    if code_challenge_method and code_challenge_method not in config.PKCE_METHODS:
        raise InvalidRequest("code_challenge_method must be plain or S256")
    if code_challenge_method and not code_challenge:
        raise InvalidRequest("code_challenge_method given without code_challenge")
    return client, scopes


def _issue_code_redirect(
    request: Request,
    db: Session,
    codes: AuthorizationCodeManager,
    client: Client,
    user: UserProfile,
    redirect_uri: str,
    scopes: list[str],
    state: str | None,
    code_challenge: str | None,
    code_challenge_method: str | None,
    nonce: str | None,
) -> dict:
    code = codes.issue(
        client,
        user.id,
        redirect_uri,
        scopes,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
        nonce=nonce,
    )
    log_audit(db, AuditEvent.CODE_ISSUED, client_id=client.client_id, user_id=user.id, ip=get_client_ip(request))
    return {"redirect_url": with_query(redirect_uri, {"code": code, "state": state})}


@router.get("/oauth/authorize")
def authorize_get(
    request: Request,
    user: Annotated[UserProfile | None, Depends(optional_session_user)],
    registry: Annotated[ClientRegistry, Depends(get_client_registry)],
    consents: Annotated[ConsentStore, Depends(get_consent_store)],
    codes: Annotated[AuthorizationCodeManager, Depends(get_code_manager)],
    response_type: str | None = None,
    client_id: str | None = None,
    redirect_uri: str | None = None,
    scope: str | None = None,
    state: str | None = None,
    code_challenge: str | None = None,
    code_challenge_method: str | None = None,
    nonce: str | None = None,
    db: Session = Depends(get_db),
):
    """
    OAuth2 authorization endpoint. Validates response_type=code, client, exact redirect_uri, scopes
    and PKCE method. Returns the consent prompt data, or {redirect_url} carrying code and state.
    """
    if response_type != "code":
        raise InvalidRequest('response_type must be "code"')
    client, scopes = _validate_authorization_request(
        registry, client_id, redirect_uri, scope, code_challenge, code_challenge_method
    )

    if user is None:
        return_url = request.url.path
        if request.url.query:
            return_url = f"{return_url}?{request.url.query}"
        logger.debug("Unauthenticated /authorize for client=%s; redirecting to login", client.client_id)
        return RedirectResponse(url=f"{config.LOGIN_URL}?{urlencode({'return_url': return_url})}", status_code=302)

    if consents.needs_consent(user.id, client, scopes):
        return {
            "needs_consent": True,
            "client": {
                "name": client.name,
                "description": client.description,
                "logo_url": client.logo_url,
                "website_url": client.website_url,
            },
            "scopes": scopes,
            "state": state,
            "redirect_uri": redirect_uri,
        }

    return _issue_code_redirect(
        request, db, codes, client, user, redirect_uri, scopes, state,
        code_challenge, code_challenge_method, nonce,
    )


class AuthorizeDecision(BaseModel):
    client_id: str
    redirect_uri: str
    scope: str | list[str] | None = None
    state: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None
    nonce: str | None = None
    approved: bool = False


@router.post("/oauth/authorize")
def authorize_post(
    request: Request,
    decision: AuthorizeDecision,
    user: Annotated[UserProfile, Depends(require_session_user)],
    registry: Annotated[ClientRegistry, Depends(get_client_registry)],
    consents: Annotated[ConsentStore, Depends(get_consent_store)],
    codes: Annotated[AuthorizationCodeManager, Depends(get_code_manager)],
    db: Session = Depends(get_db),
):
    """
    Consent decision. The client and redirect_uri are validated before either outcome, so a denial
    never redirects anywhere unregistered. Approval stores the consent (replacing earlier grants) and issues a code.
    """
    client, scopes = _validate_authorization_request(
        registry,
        decision.client_id,
        decision.redirect_uri,
        decision.scope,
        decision.code_challenge,
        decision.code_challenge_method,
    )

    if not decision.approved:
        log_audit(db, AuditEvent.CONSENT_DENY, client_id=client.client_id, user_id=user.id, ip=get_client_ip(request))
        redirect_url = with_query(
            decision.redirect_uri,
            {"error": "access_denied", "error_description": "User denied authorization", "state": decision.state},
        )
        return {"redirect_url": redirect_url}

    consents.upsert(user.id, client, scopes)
    log_audit(db, AuditEvent.CONSENT_ALLOW, client_id=client.client_id, user_id=user.id, ip=get_client_ip(request))
    return _issue_code_redirect(
        request, db, codes, client, user, decision.redirect_uri, scopes, decision.state,
        decision.code_challenge, decision.code_challenge_method, decision.nonce,
    )
