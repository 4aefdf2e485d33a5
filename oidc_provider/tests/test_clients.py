"""
Tests for ClientRegistry: registration rules, credentials, redirect URI and scope validation, deletion.
"""
import pytest

from oidc_provider.clients import ClientRegistry, ClientSpec
from oidc_provider.codec import verify_secret
from oidc_provider.errors import AccessDenied, InvalidRequest
from oidc_provider.models import Client

REDIRECT_URI = "https://app.example/cb"


def test_register_returns_secret_once_and_stores_hash(db, make_user, profile_of):
    owner = profile_of(make_user())
    registry = ClientRegistry(db)
    client, secret = registry.register(ClientSpec(name="My App", redirect_uris=[REDIRECT_URI]), owner)

    assert len(client.client_id) == 32
    assert len(secret) == 64
    assert client.client_secret_hash != secret
    assert verify_secret(secret, client.client_secret_hash)
    assert client.owner_user_id == owner.id
    assert client.get_allowed_scopes_list() == ["openid", "profile", "email"]
    assert "client_secret_hash" not in client.public_dict()


def test_register_requires_name_and_redirect_uri(db, make_user, profile_of):
    owner = profile_of(make_user())
    registry = ClientRegistry(db)
    with pytest.raises(InvalidRequest):
        registry.register(ClientSpec(name="  ", redirect_uris=[REDIRECT_URI]), owner)
    with pytest.raises(InvalidRequest):
        registry.register(ClientSpec(name="App", redirect_uris=[]), owner)


def test_only_admins_register_trusted_clients(db, make_user, profile_of):
    registry = ClientRegistry(db)
    user = profile_of(make_user())
    admin = profile_of(make_user(username="root", role="admin"))
    with pytest.raises(AccessDenied):
        registry.register(ClientSpec(name="App", redirect_uris=[REDIRECT_URI], is_trusted=True), user)
    client, _ = registry.register(ClientSpec(name="App", redirect_uris=[REDIRECT_URI], is_trusted=True), admin)
    assert client.is_trusted


def test_verify_credentials(db, make_client):
    c, secret = make_client()
    registry = ClientRegistry(db)
    assert registry.verify_credentials(c.client_id, secret).id == c.id
    assert registry.verify_credentials(c.client_id, "wrong") is None
    assert registry.verify_credentials(c.client_id, None) is None
    assert registry.verify_credentials("unknown", secret) is None


def test_redirect_uri_exact_match_only(make_client):
    c, _ = make_client()
    assert ClientRegistry.validate_redirect_uri(c, REDIRECT_URI)
    assert not ClientRegistry.validate_redirect_uri(c, REDIRECT_URI + "/")
    assert not ClientRegistry.validate_redirect_uri(c, REDIRECT_URI + "?x=1")
    assert not ClientRegistry.validate_redirect_uri(c, "https://app.example/")
    assert not ClientRegistry.validate_redirect_uri(c, None)


def test_validate_scopes(make_client):
    c, _ = make_client(allowed_scopes=["openid", "profile"])
    assert ClientRegistry.validate_scopes(c, ["openid"])
    assert ClientRegistry.validate_scopes(c, ["openid", "profile"])
    assert ClientRegistry.validate_scopes(c, [])
    assert not ClientRegistry.validate_scopes(c, ["openid", "email"])


def test_list_clients_by_owner(db, make_user, make_client):
    alice = make_user()
    bob = make_user(username="bob")
    a1, _ = make_client(owner=alice, name="A1")
    make_client(owner=bob, name="B1")
    a2, _ = make_client(owner=alice, name="A2")

    registry = ClientRegistry(db)
    assert [c.name for c in registry.list_clients(alice.id)] == ["A2", "A1"]
    assert len(registry.list_clients()) == 3


def test_delete_only_own_clients_unless_admin(db, make_user, make_client, profile_of):
    alice = make_user()
    bob = make_user(username="bob")
    admin = make_user(username="root", role="admin")
    c1, _ = make_client(owner=alice)
    c2, _ = make_client(owner=alice)
    c1_id, c2_id = c1.client_id, c2.client_id

    registry = ClientRegistry(db)
    assert not registry.delete(c1_id, profile_of(bob))
    assert registry.delete(c1_id, profile_of(alice))
    assert registry.delete(c2_id, profile_of(admin))
    assert not registry.delete("missing", profile_of(admin))
    assert db.query(Client).count() == 0
