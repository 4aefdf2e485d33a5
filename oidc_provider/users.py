"""
Resource-owner lookup. The account system owns users; the provider only reads a profile projection.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy.orm import Session

from oidc_provider.models import User, as_utc


@dataclass(frozen=True)
class UserProfile:
    id: int
    email: str | None
    username: str
    full_name: str | None
    role: str
    is_active: bool
    is_verified: bool = False
    updated_at: datetime | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class UserDirectory(Protocol):
    def find_user_by_id(self, user_id: int) -> UserProfile | None: ...


class SqlUserDirectory:
    """UserDirectory over the shared users table."""

    def __init__(self, db: Session):
        self.db = db

    def find_user_by_id(self, user_id: int) -> UserProfile | None:
        user = self.db.get(User, user_id)
        if user is None:
            return None
        return UserProfile(
            id=user.id,
            email=user.email,
            username=user.username,
            full_name=user.full_name,
            role=user.role,
            is_active=user.is_active,
            is_verified=user.is_verified,
            updated_at=as_utc(user.updated_at),
        )
