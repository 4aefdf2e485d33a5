"""
Authorization codes: issued after approval, exchanged exactly once at the token endpoint.
States: issued -> consumed, or issued -> expired (by clock, evaluated at read time).
"""
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from oidc_provider.codec import generate_token, pkce_verify
from oidc_provider.config import CODE_TTL
from oidc_provider.errors import InvalidGrant, InvalidRequest, PkceMismatch, PkceRequired, RedirectMismatch
from oidc_provider.models import AuthorizationCode, Client, as_utc

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuthorizationCodeManager:
    def __init__(self, db: Session, clock: Callable[[], datetime] = _utc_now):
        self.db = db
        self.clock = clock

    def issue(
        self,
        client: Client,
        user_id: int,
        redirect_uri: str,
        scopes: list[str],
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
        nonce: str | None = None,
    ) -> str:
        """Persist a new code and return it. A challenge without a method is treated as 'plain'."""
        if code_challenge:
            code_challenge_method = code_challenge_method or "plain"
            if code_challenge_method not in ("plain", "S256"):
                raise InvalidRequest("code_challenge_method must be plain or S256")
        else:
            code_challenge_method = None
        now = self.clock()
        code = generate_token(32)
        self.db.add(
            AuthorizationCode(
                code=code,
                client_id=client.id,
                user_id=user_id,
                redirect_uri=redirect_uri,
                scope=" ".join(scopes),
                code_challenge=code_challenge or None,
                code_challenge_method=code_challenge_method,
                nonce=nonce or None,
                created_at=now,
                expires_at=now + CODE_TTL,
            )
        )
        self.db.commit()
        logger.debug("Issued authorization code for client=%s user=%s", client.client_id, user_id)
        return code

    def verify_and_consume(
        self,
        code: str,
        client: Client,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> AuthorizationCode:
        """
        Validate the code against the exchanging client and mark it used. The used_at write is a conditional
        update on "still unused and unexpired", so concurrent exchanges of the same code cannot both succeed.
        """
        now = self.clock()
        auth_code = self.db.execute(
            select(AuthorizationCode).where(
                AuthorizationCode.code == code, AuthorizationCode.client_id == client.id
            )
        ).scalar_one_or_none()
        if auth_code is None:
            raise InvalidGrant("Invalid authorization code")
        if auth_code.used_at is not None:
            raise InvalidGrant("Authorization code already used")
        if as_utc(auth_code.expires_at) <= now:
            raise InvalidGrant("Authorization code expired")
        if auth_code.redirect_uri != redirect_uri:
            raise RedirectMismatch("redirect_uri mismatch")
        if auth_code.code_challenge:
            if not code_verifier:
                raise PkceRequired("code_verifier required")
            if not pkce_verify(code_verifier, auth_code.code_challenge, auth_code.code_challenge_method or "plain"):
                raise PkceMismatch("Invalid code_verifier")

        result = self.db.execute(
            update(AuthorizationCode)
            .where(
                AuthorizationCode.id == auth_code.id,
                AuthorizationCode.used_at.is_(None),
                AuthorizationCode.expires_at > now,
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            logger.warning("Concurrent reuse of authorization code for client=%s", client.client_id)
            raise InvalidGrant("Authorization code already used")
        self.db.commit()
        self.db.refresh(auth_code)
        return auth_code
