"""
Pytest configuration for oidc_provider. In-memory SQLite, throwaway key files and cheap bcrypt,
all set before the package is imported because config is read at import time.
"""
import json
import os
import tempfile
import time

_KEY_DIR = tempfile.mkdtemp(prefix="oidc-provider-tests-")

# In-memory SQLite; database.py uses StaticPool so all connections share the same DB
os.environ["AUTH_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["OAUTH_SIGNING_KEY_PATH"] = os.path.join(_KEY_DIR, "signing_key.pem")
os.environ["OAUTH_TOKEN_LOOKUP_KEY_PATH"] = os.path.join(_KEY_DIR, "token_lookup.key")
os.environ["OAUTH_BCRYPT_ROUNDS"] = "4"
os.environ["OAUTH_SESSION_JWT_SECRET"] = "test-session-secret-0123456789abcdef0123456789"
os.environ.pop("OAUTH_ISSUER", None)
os.environ.pop("OAUTH_SIGNING_KEY_PREVIOUS_PATH", None)
for _name in [n for n in os.environ if n.startswith("OAUTH_SEED_")]:
    del os.environ[_name]

import jwt  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from oidc_provider import config  # noqa: E402
from oidc_provider.codec import generate_token, hash_secret  # noqa: E402
from oidc_provider.database import SessionLocal, engine  # noqa: E402
from oidc_provider.main import app  # noqa: E402
from oidc_provider.models import Base, Client, User  # noqa: E402
from oidc_provider.rate_limit import token_limiter  # noqa: E402
from oidc_provider.users import SqlUserDirectory  # noqa: E402

REDIRECT_URI = "https://app.example/cb"


@pytest.fixture(autouse=True)
def fresh_db():
    """Every test starts from empty tables and an empty rate limiter."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    token_limiter.reset()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user(db):
    def _make(
        username: str = "alice",
        email: str | None = "alice@example.com",
        full_name: str | None = "Alice Example",
        role: str = "user",
        is_active: bool = True,
        is_verified: bool = True,
    ) -> User:
        user = User(
            username=username,
            email=email,
            full_name=full_name,
            role=role,
            is_active=is_active,
            is_verified=is_verified,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_client(db):
    """Registered client row plus its plaintext secret."""

    def _make(
        redirect_uris: list[str] | None = None,
        allowed_scopes: list[str] | None = None,
        is_trusted: bool = False,
        owner: User | None = None,
        name: str = "Test App",
    ) -> tuple[Client, str]:
        secret = generate_token(32)
        c = Client(
            client_id=generate_token(16),
            client_secret_hash=hash_secret(secret),
            name=name,
            description="An app used in tests",
            redirect_uris=json.dumps(redirect_uris or [REDIRECT_URI]),
            allowed_scopes=json.dumps(allowed_scopes or list(config.DEFAULT_SCOPES)),
            logo_url="https://app.example/logo.png",
            website_url="https://app.example",
            is_trusted=is_trusted,
            owner_user_id=owner.id if owner else None,
        )
        db.add(c)
        db.commit()
        db.refresh(c)
        return c, secret

    return _make


@pytest.fixture
def profile_of(db):
    """UserProfile for a User row, as the bearer layer would resolve it."""
    directory = SqlUserDirectory(db)

    def _profile(user: User):
        return directory.find_user_by_id(user.id)

    return _profile


def session_token(user_id: int, secret: str | None = None, expires_in: int = 3600) -> str:
    """First-party session JWT carrying the user id."""
    now = int(time.time())
    payload = {"id": user_id, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, secret or config.SESSION_JWT_SECRET, algorithm="HS256")


@pytest.fixture
def make_session_token():
    return session_token


@pytest.fixture
def session_headers():
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {session_token(user.id)}"}

    return _headers
