"""
Client management and consent self-service for signed-in users.
/api/oauth/clients: developers register, list and delete their OAuth clients (admins see all).
/api/oauth/authorized-clients: end users list and revoke the clients they have consented to.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from oidc_provider.audit import AuditEvent, get_client_ip, log_audit
from oidc_provider.bearer import require_session_user
from oidc_provider.clients import ClientRegistry, ClientSpec
from oidc_provider.config import DEFAULT_SCOPES
from oidc_provider.consent import ConsentStore
from oidc_provider.database import get_db
from oidc_provider.deps import get_client_registry, get_consent_store
from oidc_provider.errors import NotFound
from oidc_provider.models import as_utc
from oidc_provider.users import UserProfile

router = APIRouter(prefix="/api/oauth")


class ClientCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    description: str | None = None
    redirect_uris: list[str] = Field(default_factory=list, alias="redirectUris")
    allowed_scopes: list[str] | None = Field(default=None, alias="allowedScopes")
    logo_url: str | None = Field(default=None, alias="logoUrl")
    website_url: str | None = Field(default=None, alias="websiteUrl")
    is_trusted: bool = Field(default=False, alias="isTrusted")


@router.get("/clients")
def list_clients(
    user: Annotated[UserProfile, Depends(require_session_user)],
    registry: Annotated[ClientRegistry, Depends(get_client_registry)],
):
    """Admins see every client; everyone else only the clients they own."""
    owner_id = None if user.is_admin else user.id
    return {"clients": [c.public_dict() for c in registry.list_clients(owner_id)]}


@router.post("/clients", status_code=201)
def create_client(
    request: Request,
    body: ClientCreate,
    user: Annotated[UserProfile, Depends(require_session_user)],
    registry: Annotated[ClientRegistry, Depends(get_client_registry)],
    db: Session = Depends(get_db),
):
    """Register a client. The plaintext client_secret is in this response only."""
    spec = ClientSpec(
        name=body.name or "",
        redirect_uris=body.redirect_uris,
        description=body.description,
        allowed_scopes=body.allowed_scopes or list(DEFAULT_SCOPES),
        logo_url=body.logo_url,
        website_url=body.website_url,
        is_trusted=body.is_trusted,
    )
    client, secret = registry.register(spec, user)
    log_audit(
        db, AuditEvent.CLIENT_REGISTERED, client_id=client.client_id, user_id=user.id, ip=get_client_ip(request)
    )
    return JSONResponse(
        status_code=201,
        content={
            "client": {**client.public_dict(), "client_secret": secret},
            "message": "OAuth client created successfully. Save the client_secret - it will not be shown again.",
        },
        headers={"Cache-Control": "no-store"},
    )


@router.delete("/clients/{client_id}")
def delete_client(
    request: Request,
    client_id: str,
    user: Annotated[UserProfile, Depends(require_session_user)],
    registry: Annotated[ClientRegistry, Depends(get_client_registry)],
    db: Session = Depends(get_db),
):
    # Someone else's client reads as missing
    if not registry.delete(client_id, user):
        raise NotFound("OAuth client not found")
    log_audit(db, AuditEvent.CLIENT_DELETED, client_id=client_id, user_id=user.id, ip=get_client_ip(request))
    return {"message": "OAuth client deleted successfully"}


@router.get("/authorized-clients")
def list_authorized_clients(
    user: Annotated[UserProfile, Depends(require_session_user)],
    consents: Annotated[ConsentStore, Depends(get_consent_store)],
):
    """Clients this user has granted access to, most recently authorized first."""
    out = []
    for consent in consents.list_for_user(user.id):
        c = consent.client
        updated = as_utc(consent.updated_at)
        out.append(
            {
                "client_id": c.client_id,
                "name": c.name,
                "description": c.description,
                "logo_url": c.logo_url,
                "website_url": c.website_url,
                "scopes": consent.scopes,
                "authorized_at": updated.isoformat() if updated else None,
            }
        )
    return {"clients": out}


@router.delete("/authorized-clients/{client_id}")
def revoke_authorized_client(
    request: Request,
    client_id: str,
    user: Annotated[UserProfile, Depends(require_session_user)],
    registry: Annotated[ClientRegistry, Depends(get_client_registry)],
    consents: Annotated[ConsentStore, Depends(get_consent_store)],
    db: Session = Depends(get_db),
):
    """Forget this user's consent for the client; the next authorization prompts again."""
    client = registry.get_by_client_id(client_id)
    if client is None or not consents.revoke(user.id, client):
        raise NotFound("Authorization not found")
    log_audit(db, AuditEvent.CONSENT_REVOKED, client_id=client_id, user_id=user.id, ip=get_client_ip(request))
    return {"message": "Authorization revoked successfully"}
