"""
Tests for POST /oauth/token: authorization_code and refresh_token grants, client authentication,
PKCE, ID tokens, rate limiting and partial-failure behaviour.
"""
from urllib.parse import parse_qs, urlsplit

import jwt
import pytest
from sqlalchemy.exc import SQLAlchemyError

from oidc_provider import config, id_tokens
from oidc_provider.codec import pkce_challenge
from oidc_provider.keys import SigningKeyUnavailable, get_public_key_for_kid
from oidc_provider.models import AccessToken, AuditLog, RefreshToken, User
from oidc_provider.tokens import TokenService

REDIRECT_URI = "https://app.example/cb"
VERIFIER = "v" * 50


def _get_code(client, headers, client_id: str, scope: str = "openid profile", **extra) -> str:
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": REDIRECT_URI,
        "scope": scope,
        "state": "st",
        **extra,
    }
    r = client.get("/oauth/authorize", params=params, headers=headers)
    assert r.status_code == 200
    data = r.json()
    if data.get("needs_consent"):
        body = {k: v for k, v in params.items() if k != "response_type"}
        r = client.post("/oauth/authorize", json={**body, "approved": True}, headers=headers)
        assert r.status_code == 200
        data = r.json()
    return parse_qs(urlsplit(data["redirect_url"]).query)["code"][0]


def _exchange(client, client_id: str, secret: str, code: str, **extra):
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": REDIRECT_URI,
        "client_id": client_id,
        "client_secret": secret,
    }
    data.update(extra)
    return client.post("/oauth/token", data=data)


@pytest.fixture
def app_client(make_user, make_client):
    """A signed-in user and an untrusted client, as plain values."""
    user = make_user()
    c, secret = make_client()
    return user.id, c.client_id, secret


def test_code_exchange_returns_tokens_and_id_token(client, app_client, make_session_token):
    user_id, client_id, secret = app_client
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    code = _get_code(client, headers, client_id, nonce="nonce-123")

    r = _exchange(client, client_id, secret, code)
    assert r.status_code == 200
    assert r.headers["cache-control"] == "no-store"
    data = r.json()
    assert data["token_type"] == "Bearer"
    assert data["expires_in"] == 3600
    assert data["scope"] == "openid profile"
    assert len(data["access_token"]) == 64
    assert len(data["refresh_token"]) == 64

    header = jwt.get_unverified_header(data["id_token"])
    assert header["alg"] == "RS256"
    claims = jwt.decode(
        data["id_token"],
        get_public_key_for_kid(header["kid"]),
        algorithms=["RS256"],
        audience=client_id,
    )
    assert claims["iss"] == "https://testserver"
    assert claims["sub"] == str(user_id)
    assert claims["nonce"] == "nonce-123"
    assert claims["preferred_username"] == "alice"
    assert claims["name"] == "Alice Example"
    assert claims["email"] == "alice@example.com"
    assert claims["exp"] - claims["iat"] == 3600


def test_no_id_token_without_openid_scope(client, app_client, make_session_token):
    user_id, client_id, secret = app_client
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    code = _get_code(client, headers, client_id, scope="profile email")
    data = _exchange(client, client_id, secret, code).json()
    assert data["scope"] == "profile email"
    assert "id_token" not in data


def test_client_secret_basic(client, app_client, make_session_token):
    user_id, client_id, secret = app_client
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    code = _get_code(client, headers, client_id)
    r = client.post(
        "/oauth/token",
        data={"grant_type": "authorization_code", "code": code, "redirect_uri": REDIRECT_URI},
        auth=(client_id, secret),
    )
    assert r.status_code == 200
    assert "access_token" in r.json()


def test_wrong_client_secret(client, app_client, make_session_token):
    user_id, client_id, _ = app_client
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    code = _get_code(client, headers, client_id)
    r = _exchange(client, client_id, "wrong", code)
    assert r.status_code == 401
    assert r.json()["error"] == "invalid_client"
    assert r.headers["www-authenticate"] == "Basic"


def test_missing_client_credentials(client):
    r = client.post("/oauth/token", data={"grant_type": "authorization_code", "code": "x"})
    assert r.status_code == 401
    assert r.json()["error"] == "invalid_client"


def test_unsupported_grant_type(client, app_client):
    _, client_id, secret = app_client
    r = client.post("/oauth/token", data={"grant_type": "password", "client_id": client_id, "client_secret": secret})
    assert r.status_code == 400
    assert r.json()["error"] == "unsupported_grant_type"


def test_code_cannot_be_reused(client, app_client, make_session_token):
    user_id, client_id, secret = app_client
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    code = _get_code(client, headers, client_id)
    assert _exchange(client, client_id, secret, code).status_code == 200
    r = _exchange(client, client_id, secret, code)
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_grant"


def test_redirect_uri_mismatch(client, app_client, make_session_token):
    user_id, client_id, secret = app_client
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    code = _get_code(client, headers, client_id)
    r = _exchange(client, client_id, secret, code, redirect_uri="https://app.example/other")
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_grant"


def test_code_of_other_client_rejected(client, app_client, make_client, make_session_token):
    user_id, client_id, _ = app_client
    other, other_secret = make_client(name="Other")
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    code = _get_code(client, headers, client_id)
    r = _exchange(client, other.client_id, other_secret, code)
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_grant"


def test_pkce_s256(client, app_client, make_session_token):
    user_id, client_id, secret = app_client
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    challenge = pkce_challenge(VERIFIER, "S256")
    code = _get_code(client, headers, client_id, code_challenge=challenge, code_challenge_method="S256")
    assert _exchange(client, client_id, secret, code, code_verifier="w" * 50).json()["error"] == "invalid_grant"

    code = _get_code(client, headers, client_id, code_challenge=challenge, code_challenge_method="S256")
    assert _exchange(client, client_id, secret, code).json()["error"] == "invalid_grant"

    code = _get_code(client, headers, client_id, code_challenge=challenge, code_challenge_method="S256")
    r = _exchange(client, client_id, secret, code, code_verifier=VERIFIER)
    assert r.status_code == 200


def test_inactive_user_cannot_exchange(client, db, app_client, make_session_token):
    user_id, client_id, secret = app_client
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    code = _get_code(client, headers, client_id)
    user = db.get(User, user_id)
    user.is_active = False
    db.commit()
    r = _exchange(client, client_id, secret, code)
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_grant"


def test_refresh_grant_keeps_scopes(client, app_client, make_session_token):
    user_id, client_id, secret = app_client
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    code = _get_code(client, headers, client_id, scope="openid email")
    first = _exchange(client, client_id, secret, code).json()

    r = client.post(
        "/oauth/token",
        data={
            "grant_type": "refresh_token",
            "refresh_token": first["refresh_token"],
            "client_id": client_id,
            "client_secret": secret,
        },
    )
    assert r.status_code == 200
    data = r.json()
    assert data["scope"] == "openid email"
    assert data["access_token"] != first["access_token"]
    assert "refresh_token" not in data
    claims = jwt.decode(data["id_token"], options={"verify_signature": False})
    assert "nonce" not in claims
    assert claims["aud"] == client_id


def test_refresh_grant_rotates_when_enabled(client, app_client, make_session_token, monkeypatch):
    monkeypatch.setattr(config, "ROTATE_REFRESH_TOKENS", True)
    user_id, client_id, secret = app_client
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    code = _get_code(client, headers, client_id)
    first = _exchange(client, client_id, secret, code).json()
    form = {"grant_type": "refresh_token", "client_id": client_id, "client_secret": secret}

    second = client.post("/oauth/token", data={**form, "refresh_token": first["refresh_token"]}).json()
    assert second["refresh_token"] != first["refresh_token"]
    r = client.post("/oauth/token", data={**form, "refresh_token": first["refresh_token"]})
    assert r.json()["error"] == "invalid_grant"
    assert client.get("/oauth/userinfo", headers={"Authorization": f"Bearer {first['access_token']}"}).status_code == 401


def test_refresh_token_bound_to_client(client, app_client, make_client, make_session_token):
    user_id, client_id, secret = app_client
    other, other_secret = make_client(name="Other")
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    code = _get_code(client, headers, client_id)
    refresh = _exchange(client, client_id, secret, code).json()["refresh_token"]
    r = client.post(
        "/oauth/token",
        data={
            "grant_type": "refresh_token",
            "refresh_token": refresh,
            "client_id": other.client_id,
            "client_secret": other_secret,
        },
    )
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_grant"


def test_refresh_token_write_failure_still_returns_access_token(
    client, app_client, make_session_token, monkeypatch
):
    user_id, client_id, secret = app_client
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    code = _get_code(client, headers, client_id)

    def _fail(self, *args, **kwargs):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(TokenService, "issue_refresh_token", _fail)
    r = _exchange(client, client_id, secret, code)
    assert r.status_code == 200
    data = r.json()
    assert "refresh_token" not in data
    userinfo = client.get("/oauth/userinfo", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert userinfo.status_code == 200


def test_signing_failure_issues_nothing(client, db, app_client, make_session_token, monkeypatch):
    user_id, client_id, secret = app_client
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    code = _get_code(client, headers, client_id)

    def _no_key():
        raise SigningKeyUnavailable("gone")

    monkeypatch.setattr(id_tokens, "get_signing_key", _no_key)
    r = _exchange(client, client_id, secret, code)
    assert r.status_code == 500
    assert r.json()["error"] == "server_error"
    assert db.query(AccessToken).count() == 0


def test_refresh_signing_failure_keeps_refresh_token_usable(
    client, db, app_client, make_session_token, monkeypatch
):
    monkeypatch.setattr(config, "ROTATE_REFRESH_TOKENS", True)
    user_id, client_id, secret = app_client
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    code = _get_code(client, headers, client_id)
    first = _exchange(client, client_id, secret, code).json()
    form = {
        "grant_type": "refresh_token",
        "refresh_token": first["refresh_token"],
        "client_id": client_id,
        "client_secret": secret,
    }

    def _no_key():
        raise SigningKeyUnavailable("gone")

    with monkeypatch.context() as m:
        m.setattr(id_tokens, "get_signing_key", _no_key)
        r = client.post("/oauth/token", data=form)
    assert r.status_code == 500
    assert r.json()["error"] == "server_error"
    assert db.query(AccessToken).count() == 1
    assert db.query(RefreshToken).filter(RefreshToken.revoked_at.is_(None)).count() == 1

    r = client.post("/oauth/token", data=form)
    assert r.status_code == 200
    assert r.json()["refresh_token"] != first["refresh_token"]


def test_refresh_for_inactive_user_writes_nothing(client, db, app_client, make_session_token):
    user_id, client_id, secret = app_client
    headers = {"Authorization": f"Bearer {make_session_token(user_id)}"}
    code = _get_code(client, headers, client_id)
    first = _exchange(client, client_id, secret, code).json()
    db.get(User, user_id).is_active = False
    db.commit()

    r = client.post(
        "/oauth/token",
        data={
            "grant_type": "refresh_token",
            "refresh_token": first["refresh_token"],
            "client_id": client_id,
            "client_secret": secret,
        },
    )
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_grant"
    assert db.query(AccessToken).count() == 1


def test_rate_limit(client, app_client, monkeypatch):
    monkeypatch.setattr(config, "RATE_LIMIT_TOKEN_PER_MINUTE", 2)
    _, client_id, secret = app_client
    form = {"grant_type": "password", "client_id": client_id, "client_secret": secret}
    assert client.post("/oauth/token", data=form).status_code == 400
    assert client.post("/oauth/token", data=form).status_code == 400
    r = client.post("/oauth/token", data=form)
    assert r.status_code == 429
    assert r.json()["error"] == "slow_down"
    assert int(r.headers["retry-after"]) >= 1


def test_failed_exchange_is_audited(client, db, app_client):
    _, client_id, secret = app_client
    _exchange(client, client_id, secret, "bogus-code")
    row = db.query(AuditLog).filter(AuditLog.event_type == "token_issued").one()
    assert row.outcome == "fail"
    assert row.client_id == client_id
