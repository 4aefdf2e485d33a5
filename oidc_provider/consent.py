"""
Per-user, per-client scope grants. Re-consent replaces the stored scope set.
"""
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from oidc_provider import config
from oidc_provider.models import Client, UserConsent

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConsentStore:
    def __init__(self, db: Session, clock: Callable[[], datetime] = _utc_now):
        self.db = db
        self.clock = clock

    def get(self, user_id: int, client: Client) -> UserConsent | None:
        return self.db.execute(
            select(UserConsent).where(UserConsent.user_id == user_id, UserConsent.client_id == client.id)
        ).scalar_one_or_none()

    def upsert(self, user_id: int, client: Client, scopes: list[str]) -> UserConsent:
        """Insert or, on (user_id, client_id) conflict, replace the scope set."""
        now = self.clock()
        values = {
            "user_id": user_id,
            "client_id": client.id,
            "scope": " ".join(scopes),
            "created_at": now,
            "updated_at": now,
        }
        dialect = self.db.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = insert(UserConsent).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[UserConsent.user_id, UserConsent.client_id],
                set_={"scope": stmt.excluded.scope, "updated_at": stmt.excluded.updated_at},
            )
            self.db.execute(stmt)
        else:
            self._locked_upsert(values)
        self.db.commit()
        consent = self.get(user_id, client)
        # The row may already be in the identity map with stale values
        self.db.refresh(consent)
        logger.info("Stored consent user=%s client=%s scopes=%s", user_id, client.client_id, values["scope"])
        return consent

    def _locked_upsert(self, values: dict) -> None:
        """Select-then-write under a row lock, for dialects without ON CONFLICT."""
        existing = self.db.execute(
            select(UserConsent)
            .where(UserConsent.user_id == values["user_id"], UserConsent.client_id == values["client_id"])
            .with_for_update()
        ).scalar_one_or_none()
        if existing is None:
            self.db.add(UserConsent(**values))
        else:
            existing.scope = values["scope"]
            existing.updated_at = values["updated_at"]
        self.db.flush()

    def revoke(self, user_id: int, client: Client) -> bool:
        result = self.db.execute(
            delete(UserConsent).where(UserConsent.user_id == user_id, UserConsent.client_id == client.id)
        )
        self.db.commit()
        return result.rowcount > 0

    def list_for_user(self, user_id: int) -> list[UserConsent]:
        """Consents of a user, most recently updated first."""
        return list(
            self.db.execute(
                select(UserConsent)
                .where(UserConsent.user_id == user_id)
                .order_by(UserConsent.updated_at.desc(), UserConsent.id.desc())
            ).scalars()
        )

    def needs_consent(self, user_id: int, client: Client, scopes: list[str]) -> bool:
        """
        Trusted clients never prompt. Otherwise a stored consent skips the prompt when it covers the
        requested scopes, or (CONSENT_REQUIRE_SUPERSET off) whenever one exists at all.
        """
        if client.is_trusted:
            return False
        consent = self.get(user_id, client)
        if consent is None:
            return True
        if not config.CONSENT_REQUIRE_SUPERSET:
            return False
        return not set(scopes).issubset(consent.scopes)
