"""
Housekeeping: delete rows that can never be used again. Expiry is enforced at read time,
so this only keeps the tables small.
"""
import logging
from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.orm import Session

from oidc_provider.models import AccessToken, AuthorizationCode, RefreshToken

logger = logging.getLogger(__name__)


def cleanup_expired(db: Session, now: datetime) -> dict[str, int]:
    """
    Delete expired authorization codes and expired, unrevoked access and refresh tokens.
    Revoked rows are kept. Returns the number of rows deleted per table.
    """
    # Refresh tokens first; their access_token_id is nulled by the FK anyway
    refresh = db.execute(
        delete(RefreshToken).where(RefreshToken.expires_at <= now, RefreshToken.revoked_at.is_(None))
    )
    access = db.execute(
        delete(AccessToken).where(AccessToken.expires_at <= now, AccessToken.revoked_at.is_(None))
    )
    codes = db.execute(delete(AuthorizationCode).where(AuthorizationCode.expires_at <= now))
    db.commit()
    counts = {
        "authorization_codes": codes.rowcount,
        "access_tokens": access.rowcount,
        "refresh_tokens": refresh.rowcount,
    }
    logger.info(
        "Cleanup removed %s codes, %s access tokens, %s refresh tokens",
        counts["authorization_codes"],
        counts["access_tokens"],
        counts["refresh_tokens"],
    )
    return counts
