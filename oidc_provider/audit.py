"""
Audit trail of security-relevant events. Records who, which client, from where and the outcome;
never tokens, codes, secrets or request bodies.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from oidc_provider.bearer import require_admin
from oidc_provider.database import get_db
from oidc_provider.models import AuditLog, as_utc
from oidc_provider.users import UserProfile


class AuditEvent(str, Enum):
    CODE_ISSUED = "code_issued"
    CONSENT_ALLOW = "consent_allow"
    CONSENT_DENY = "consent_deny"
    CONSENT_REVOKED = "consent_revoked"
    TOKEN_ISSUED = "token_issued"
    TOKEN_REFRESHED = "token_refreshed"
    TOKEN_REVOKED = "token_revoked"
    CLIENT_REGISTERED = "client_registered"
    CLIENT_DELETED = "client_deleted"


class Outcome(str, Enum):
    SUCCESS = "success"
    FAIL = "fail"


def get_client_ip(request: Request | None) -> str | None:
    """Peer address as seen by the server. Forwarded headers are not trusted here."""
    if request is None or request.client is None:
        return None
    return request.client.host


def log_audit(
    db: Session,
    event: AuditEvent,
    *,
    client_id: str | None = None,
    user_id: int | None = None,
    ip: str | None = None,
    outcome: Outcome = Outcome.SUCCESS,
) -> None:
    db.add(
        AuditLog(
            event_type=AuditEvent(event).value,
            client_id=client_id,
            user_id=user_id,
            ip=ip,
            outcome=Outcome(outcome).value,
        )
    )
    db.commit()


def _event_dict(row: AuditLog) -> dict:
    created = as_utc(row.created_at)
    return {
        "created_at": created.isoformat() if created else None,
        "event_type": row.event_type,
        "client_id": row.client_id,
        "user_id": row.user_id,
        "ip": row.ip,
        "outcome": row.outcome,
    }


router = APIRouter()


@router.get("/api/oauth/audit")
def list_audit_events(
    admin: Annotated[UserProfile, Depends(require_admin)],
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    event_type: AuditEvent | None = None,
    outcome: Outcome | None = None,
    client_id: str | None = None,
    since: datetime | None = None,
    db: Session = Depends(get_db),
):
    """Recent audit events, most recent first. Admin only."""
    stmt = select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
    if event_type is not None:
        stmt = stmt.where(AuditLog.event_type == event_type.value)
    if outcome is not None:
        stmt = stmt.where(AuditLog.outcome == outcome.value)
    if client_id:
        stmt = stmt.where(AuditLog.client_id == client_id)
    if since is not None:
        stmt = stmt.where(AuditLog.created_at >= since)
    return {"events": [_event_dict(row) for row in db.execute(stmt).scalars()]}
