"""
OIDC ID tokens, signed RS256 with the current key (kid in the header).
"""
import logging
from collections.abc import Callable
from datetime import datetime, timezone

import jwt

from oidc_provider import config
from oidc_provider.errors import ServerError
from oidc_provider.keys import SigningKeyUnavailable, get_signing_key
from oidc_provider.users import UserProfile

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IDTokenIssuer:
    def __init__(self, clock: Callable[[], datetime] = _utc_now):
        self.clock = clock

    def build_claims(self, user: UserProfile, client_id: str, issuer: str, nonce: str | None = None) -> dict:
        iat = int(self.clock().timestamp())
        claims = {
            "iss": issuer,
            "sub": str(user.id),
            "aud": client_id,
            "iat": iat,
            "exp": iat + int(config.ID_TOKEN_TTL.total_seconds()),
            "email": user.email,
            "email_verified": bool(user.is_verified),
            "name": user.full_name or user.username,
            "preferred_username": user.username,
        }
        if nonce:
            claims["nonce"] = nonce
        return claims

    def issue(self, user: UserProfile, client_id: str, issuer: str, nonce: str | None = None) -> str:
        """Sign the ID token. Missing key material fails the request; there is no unsigned fallback."""
        claims = self.build_claims(user, client_id, issuer, nonce)
        try:
            private_key, kid = get_signing_key()
        except SigningKeyUnavailable as e:
            logger.error("Cannot sign ID token: %s", e)
            raise ServerError("Signing key unavailable") from e
        token = jwt.encode(
            claims,
            private_key,
            algorithm=config.ID_TOKEN_ALG,
            headers={"kid": kid, "typ": "JWT"},
        )
        logger.debug("Issued ID token for client=%s sub=%s", client_id, user.id)
        return token
