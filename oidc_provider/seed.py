"""
Seed a development user and OAuth client from environment. No hardcoded credentials.
Optional: OAUTH_SEED_USER (+ OAUTH_SEED_USER_EMAIL, OAUTH_SEED_USER_ROLE),
OAUTH_SEED_CLIENT_ID + OAUTH_SEED_CLIENT_SECRET + OAUTH_SEED_REDIRECT_URIS (comma-separated)
(+ OAUTH_SEED_CLIENT_NAME, OAUTH_SEED_CLIENT_TRUSTED).
"""
import json
import logging
import os

from sqlalchemy import select
from sqlalchemy.orm import Session

from oidc_provider.codec import hash_secret
from oidc_provider.config import DEFAULT_SCOPES
from oidc_provider.models import Client, User

logger = logging.getLogger(__name__)


def seed_from_env(db: Session) -> None:
    """Create one user and/or one client from env if set and not already present."""
    owner_id = None
    username = os.environ.get("OAUTH_SEED_USER", "").strip()
    if username:
        user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
        if user is None:
            user = User(
                username=username,
                email=os.environ.get("OAUTH_SEED_USER_EMAIL") or None,
                role=os.environ.get("OAUTH_SEED_USER_ROLE", "user"),
                is_verified=True,
            )
            db.add(user)
            db.commit()
            logger.info("Seeded user: %s", username)
        else:
            logger.debug("User already exists: %s", username)
        owner_id = user.id

    client_id = os.environ.get("OAUTH_SEED_CLIENT_ID", "").strip()
    client_secret = os.environ.get("OAUTH_SEED_CLIENT_SECRET", "")
    uris = [u.strip() for u in os.environ.get("OAUTH_SEED_REDIRECT_URIS", "").split(",") if u.strip()]
    if not (client_id and client_secret and uris):
        return
    if db.execute(select(Client).where(Client.client_id == client_id)).scalar_one_or_none() is not None:
        logger.debug("Client already exists: %s", client_id)
        return
    trusted = os.environ.get("OAUTH_SEED_CLIENT_TRUSTED", "").strip().lower() in ("1", "true", "yes", "on")
    db.add(
        Client(
            client_id=client_id,
            client_secret_hash=hash_secret(client_secret),
            name=os.environ.get("OAUTH_SEED_CLIENT_NAME") or client_id,
            redirect_uris=json.dumps(uris),
            allowed_scopes=json.dumps(list(DEFAULT_SCOPES)),
            is_trusted=trusted,
            owner_user_id=owner_id,
        )
    )
    db.commit()
    logger.info("Seeded client: %s (trusted=%s)", client_id, trusted)
