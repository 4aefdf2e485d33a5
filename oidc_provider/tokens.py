"""
Opaque bearer tokens. Access and refresh tokens are random hex strings handed to the client once;
only their keyed digest is stored, indexed for direct lookup.
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from oidc_provider import config
from oidc_provider.codec import generate_token, token_digest
from oidc_provider.errors import InvalidGrant
from oidc_provider.models import AccessToken, Client, RefreshToken, as_utc

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class IssuedAccessToken:
    access_token: str
    token_id: int
    expires_in: int
    scopes: list[str]
    token_type: str = "Bearer"

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)


@dataclass(frozen=True)
class TokenInfo:
    """What a verified token grants."""
    token_id: int
    user_id: int
    client_id: str
    scopes: list[str]
    expires_at: datetime
    token_type: str = "access_token"


@dataclass(frozen=True)
class RefreshResult:
    access: IssuedAccessToken
    user_id: int
    # Only set when refresh tokens rotate
    refresh_token: str | None = None


class TokenService:
    def __init__(self, db: Session, clock: Callable[[], datetime] = _utc_now):
        self.db = db
        self.clock = clock

    def _add_access_row(self, client: Client, user_id: int, scopes: list[str], now: datetime) -> IssuedAccessToken:
        # Flushed, not committed: the caller owns the transaction
        token = generate_token(32)
        row = AccessToken(
            token_hash=token_digest(token),
            client_id=client.id,
            user_id=user_id,
            scope=" ".join(scopes),
            created_at=now,
            expires_at=now + config.ACCESS_TOKEN_TTL,
        )
        self.db.add(row)
        self.db.flush()
        return IssuedAccessToken(
            access_token=token,
            token_id=row.id,
            expires_in=int(config.ACCESS_TOKEN_TTL.total_seconds()),
            scopes=list(scopes),
        )

    def _add_refresh_row(
        self, access_token_id: int, client: Client, user_id: int, scopes: list[str], now: datetime
    ) -> tuple[str, RefreshToken]:
        token = generate_token(32)
        row = RefreshToken(
            token_hash=token_digest(token),
            access_token_id=access_token_id,
            client_id=client.id,
            user_id=user_id,
            scope=" ".join(scopes),
            created_at=now,
            expires_at=now + config.REFRESH_TOKEN_TTL,
        )
        self.db.add(row)
        self.db.flush()
        return token, row

    def issue_access_token(self, client: Client, user_id: int, scopes: list[str]) -> IssuedAccessToken:
        access = self._add_access_row(client, user_id, scopes, self.clock())
        self.db.commit()
        logger.info("Issued access token id=%s client=%s user=%s", access.token_id, client.client_id, user_id)
        return access

    def issue_refresh_token(self, access_token_id: int, client: Client, user_id: int, scopes: list[str]) -> str:
        token, row = self._add_refresh_row(access_token_id, client, user_id, scopes, self.clock())
        self.db.commit()
        logger.info("Issued refresh token id=%s client=%s user=%s", row.id, client.client_id, user_id)
        return token

    def _find_access_row(self, token: str) -> AccessToken | None:
        return self.db.execute(
            select(AccessToken).where(AccessToken.token_hash == token_digest(token))
        ).scalar_one_or_none()

    def _find_refresh_row(self, token: str) -> RefreshToken | None:
        return self.db.execute(
            select(RefreshToken).where(RefreshToken.token_hash == token_digest(token))
        ).scalar_one_or_none()

    def verify_access_token(self, token: str | None) -> TokenInfo | None:
        """Not revoked, not expired, digest matches. None otherwise."""
        if not token:
            return None
        row = self._find_access_row(token)
        if row is None or row.revoked_at is not None:
            return None
        if as_utc(row.expires_at) <= self.clock():
            return None
        return TokenInfo(
            token_id=row.id,
            user_id=row.user_id,
            client_id=row.client.client_id,
            scopes=row.scopes,
            expires_at=as_utc(row.expires_at),
        )

    def verify_refresh_token(self, token: str | None) -> TokenInfo | None:
        if not token:
            return None
        row = self._find_refresh_row(token)
        if row is None or row.revoked_at is not None:
            return None
        if as_utc(row.expires_at) <= self.clock():
            return None
        return TokenInfo(
            token_id=row.id,
            user_id=row.user_id,
            client_id=row.client.client_id,
            scopes=row.scopes,
            expires_at=as_utc(row.expires_at),
            token_type="refresh_token",
        )

    def _live_refresh_row(self, refresh_token: str | None, client: Client, now: datetime) -> RefreshToken:
        row = self._find_refresh_row(refresh_token) if refresh_token else None
        if (
            row is None
            or row.client_id != client.id
            or row.revoked_at is not None
            or as_utc(row.expires_at) <= now
        ):
            raise InvalidGrant("Invalid refresh token")
        return row

    def verify_refresh_grant(self, refresh_token: str | None, client: Client) -> TokenInfo:
        """Read-only check that refresh_token is live and bound to client. Raises InvalidGrant otherwise."""
        row = self._live_refresh_row(refresh_token, client, self.clock())
        return TokenInfo(
            token_id=row.id,
            user_id=row.user_id,
            client_id=client.client_id,
            scopes=row.scopes,
            expires_at=as_utc(row.expires_at),
            token_type="refresh_token",
        )

    def refresh(self, refresh_token: str, client: Client) -> RefreshResult:
        """
        Exchange a live refresh token bound to client for a new access token with the same scopes.
        By default the refresh record is re-pointed at the new access token and stays usable;
        with ROTATE_REFRESH_TOKENS the old refresh token and its access token are revoked and a new one issued.
        All writes land in one commit.
        """
        now = self.clock()
        row = self._live_refresh_row(refresh_token, client, now)
        scopes = row.scopes
        user_id = row.user_id
        access = self._add_access_row(client, user_id, scopes, now)

        if not config.ROTATE_REFRESH_TOKENS:
            row.access_token_id = access.token_id
            self.db.commit()
            logger.info("Refreshed access token via refresh token id=%s", row.id)
            return RefreshResult(access=access, user_id=user_id)

        # Conditional so two concurrent rotations of the same token cannot both win
        result = self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == row.id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise InvalidGrant("Invalid refresh token")
        if row.access_token_id is not None:
            self._revoke_access_ids([row.access_token_id], now)
        new_refresh, new_row = self._add_refresh_row(access.token_id, client, user_id, scopes, now)
        self.db.commit()
        logger.info("Rotated refresh token id=%s to id=%s", row.id, new_row.id)
        return RefreshResult(access=access, user_id=user_id, refresh_token=new_refresh)

    def _revoke_access_ids(self, ids: list[int], now: datetime) -> None:
        self.db.execute(
            update(AccessToken)
            .where(AccessToken.id.in_(ids), AccessToken.revoked_at.is_(None))
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )

    def revoke(self, token: str, client: Client | None = None) -> bool:
        """
        Revoke an access token (and every refresh token pointing at it), or else a refresh token
        (and the access token it currently points at). Returns whether anything was revoked.
        With client given, tokens issued to any other client are left alone.
        """
        now = self.clock()
        access = self._find_access_row(token)
        if access is not None and client is not None and access.client_id != client.id:
            return False
        if access is not None and access.revoked_at is None:
            access.revoked_at = now
            self.db.execute(
                update(RefreshToken)
                .where(RefreshToken.access_token_id == access.id, RefreshToken.revoked_at.is_(None))
                .values(revoked_at=now)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            logger.info("Revoked access token id=%s and its refresh tokens", access.id)
            return True

        refresh = self._find_refresh_row(token)
        if refresh is not None and client is not None and refresh.client_id != client.id:
            return False
        if refresh is not None and refresh.revoked_at is None:
            refresh.revoked_at = now
            if refresh.access_token_id is not None:
                self._revoke_access_ids([refresh.access_token_id], now)
            self.db.commit()
            logger.info("Revoked refresh token id=%s", refresh.id)
            return True
        return False
