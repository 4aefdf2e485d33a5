"""
Client registry: registration, lookup, credential verification and request validation for OAuth clients.
"""
import json
import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from oidc_provider.codec import generate_token, hash_secret, verify_secret
from oidc_provider.config import DEFAULT_SCOPES
from oidc_provider.errors import AccessDenied, InvalidRequest
from oidc_provider.models import Client
from oidc_provider.users import UserProfile

logger = logging.getLogger(__name__)

_REGISTER_ATTEMPTS = 3


@dataclass
class ClientSpec:
    name: str
    redirect_uris: list[str]
    description: str | None = None
    allowed_scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    logo_url: str | None = None
    website_url: str | None = None
    is_trusted: bool = False


def _dedupe(values: list[str]) -> list[str]:
    out: list[str] = []
    for v in values:
        v = (v or "").strip()
        if v and v not in out:
            out.append(v)
    return out


class ClientRegistry:
    def __init__(self, db: Session):
        self.db = db

    def register(self, spec: ClientSpec, owner: UserProfile) -> tuple[Client, str]:
        """
        Persist a new client. Returns (client, plaintext_secret); the secret is not retrievable afterwards.
        Only admins may register trusted clients.
        """
        if not spec.name or not spec.name.strip():
            raise InvalidRequest("name is required")
        redirect_uris = _dedupe(spec.redirect_uris or [])
        if not redirect_uris:
            raise InvalidRequest("at least one redirect URI is required")
        if spec.is_trusted and not owner.is_admin:
            raise AccessDenied("Only administrators can create trusted clients")
        allowed_scopes = _dedupe(spec.allowed_scopes or []) or list(DEFAULT_SCOPES)

        client_secret = generate_token(32)
        secret_hash = hash_secret(client_secret)
        for attempt in range(_REGISTER_ATTEMPTS):
            client = Client(
                client_id=generate_token(16),
                client_secret_hash=secret_hash,
                name=spec.name.strip(),
                description=spec.description,
                redirect_uris=json.dumps(redirect_uris),
                allowed_scopes=json.dumps(allowed_scopes),
                logo_url=spec.logo_url,
                website_url=spec.website_url,
                is_trusted=bool(spec.is_trusted),
                owner_user_id=owner.id,
            )
            self.db.add(client)
            try:
                self.db.commit()
            except IntegrityError:
                # client_id collision; draw a new one
                self.db.rollback()
                logger.warning("client_id collision on registration attempt %s", attempt + 1)
                continue
            self.db.refresh(client)
            logger.info("Registered client %s (owner=%s trusted=%s)", client.client_id, owner.id, client.is_trusted)
            return client, client_secret
        raise RuntimeError("could not allocate a unique client_id")

    def get_by_client_id(self, client_id: str | None) -> Client | None:
        if not client_id:
            return None
        return self.db.execute(select(Client).where(Client.client_id == client_id)).scalar_one_or_none()

    def verify_credentials(self, client_id: str | None, client_secret: str | None) -> Client | None:
        client = self.get_by_client_id(client_id)
        if client is None or not client_secret:
            return None
        if not verify_secret(client_secret, client.client_secret_hash):
            return None
        return client

    @staticmethod
    def validate_redirect_uri(client: Client, uri: str | None) -> bool:
        """Exact string match only; no prefix or wildcard matching."""
        return bool(uri) and client.redirect_uri_allowed(uri)

    @staticmethod
    def validate_scopes(client: Client, requested: list[str] | None) -> bool:
        """Empty request means the default scope set and is always accepted."""
        if not requested:
            return True
        allowed = set(client.get_allowed_scopes_list())
        return all(s in allowed for s in requested)

    def list_clients(self, owner_id: int | None = None) -> list[Client]:
        """All clients when owner_id is None, otherwise the ones owned by that user. Newest first."""
        stmt = select(Client).order_by(Client.created_at.desc(), Client.id.desc())
        if owner_id is not None:
            stmt = stmt.where(Client.owner_user_id == owner_id)
        return list(self.db.execute(stmt).scalars())

    def delete(self, client_id: str, requester: UserProfile) -> bool:
        """
        Delete a client with its codes, tokens and consents. Admins may delete any client, others only their own.
        Returns False if not found or not permitted.
        """
        client = self.get_by_client_id(client_id)
        if client is None:
            return False
        if not requester.is_admin and client.owner_user_id != requester.id:
            return False
        self.db.delete(client)
        self.db.commit()
        logger.info("Deleted client %s (by user %s)", client_id, requester.id)
        return True
