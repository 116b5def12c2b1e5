"""
Keycloak identity store: claims as user attributes, error mapping, timeouts.

HTTP is faked by monkeypatching `requests.request` inside the adapter module.
"""
from __future__ import annotations

import pytest
import requests

from backend.identity_access import admin_client
from backend.identity_access.admin_client import KeycloakIdentityStore
from backend.identity_access.domain import Claims, InternalError, NotFound, TransientError
from backend.identity_access.oidc import OIDCConfig

CFG = OIDCConfig(base_url="http://kc:8080", realm="brainplus", client_id="brainplus-mobile")
USER_URL = "http://kc:8080/admin/realms/brainplus/users/u1"


class _Resp:
    def __init__(self, status_code: int, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        return self._body


class _FakeKeycloak:
    def __init__(self, users: dict):
        self.users = users
        self.calls: list[tuple[str, str, dict]] = []

    def __call__(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if url.endswith("/protocol/openid-connect/token"):
            return _Resp(200, {"access_token": "admin-token"})
        uid = url.rsplit("/", 1)[-1]
        if method == "GET":
            if uid not in self.users:
                return _Resp(404)
            return _Resp(200, dict(self.users[uid]))
        if method == "PUT":
            if uid not in self.users:
                return _Resp(404)
            self.users[uid] = kwargs["json"]
            return _Resp(204)
        if method == "DELETE":
            if self.users.pop(uid, None) is None:
                return _Resp(404)
            return _Resp(204)
        raise AssertionError(f"unexpected call {method} {url}")


@pytest.fixture
def store(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("KC_ADMIN_CLIENT_SECRET", "s3cret")
    return KeycloakIdentityStore(CFG, timeout=2.5)


def test_get_claims_reads_list_attributes(monkeypatch, store):
    fake = _FakeKeycloak({"u1": {"id": "u1", "attributes": {"role": ["student"], "verified": ["false"]}}})
    monkeypatch.setattr(admin_client.requests, "request", fake)

    assert store.get_claims("u1") == Claims(role="student", verified=False)
    # client credentials grant + bounded timeout on every call
    token_call = fake.calls[0]
    assert token_call[2]["data"]["grant_type"] == "client_credentials"
    assert all(call[2]["timeout"] == 2.5 for call in fake.calls)


def test_user_without_attributes_has_empty_claims(monkeypatch, store):
    fake = _FakeKeycloak({"u1": {"id": "u1"}})
    monkeypatch.setattr(admin_client.requests, "request", fake)
    assert store.get_claims("u1") == Claims()


def test_set_claims_merges_into_existing_attributes(monkeypatch, store):
    fake = _FakeKeycloak({"u1": {"id": "u1", "email": "a@x", "attributes": {"locale": ["en"]}}})
    monkeypatch.setattr(admin_client.requests, "request", fake)

    store.set_claims("u1", Claims(role="teacher", verified=True))

    attrs = fake.users["u1"]["attributes"]
    assert attrs == {"locale": ["en"], "role": ["teacher"], "verified": ["true"]}
    assert fake.users["u1"]["email"] == "a@x"
    put = [c for c in fake.calls if c[0] == "PUT"][0]
    assert put[1] == USER_URL
    assert put[2]["headers"]["Authorization"] == "Bearer admin-token"


def test_unknown_user_is_not_found(monkeypatch, store):
    monkeypatch.setattr(admin_client.requests, "request", _FakeKeycloak({}))
    with pytest.raises(NotFound):
        store.get_claims("u1")
    with pytest.raises(NotFound):
        store.set_claims("u1", Claims(role="student"))
    with pytest.raises(NotFound):
        store.delete_identity("u1")


def test_delete_identity(monkeypatch, store):
    fake = _FakeKeycloak({"u1": {"id": "u1"}})
    monkeypatch.setattr(admin_client.requests, "request", fake)
    store.delete_identity("u1")
    assert "u1" not in fake.users


@pytest.mark.parametrize("exc", [requests.Timeout("slow"), requests.ConnectionError("down")])
def test_network_failures_are_transient(monkeypatch, store, exc):
    def boom(method, url, **kwargs):
        raise exc

    monkeypatch.setattr(admin_client.requests, "request", boom)
    with pytest.raises(TransientError) as info:
        store.get_claims("u1")
    assert info.value.retryable is True


def test_server_errors_are_transient(monkeypatch, store):
    monkeypatch.setattr(admin_client.requests, "request", lambda method, url, **kw: _Resp(503))
    with pytest.raises(TransientError):
        store.get_claims("u1")


def test_rejected_admin_token_is_internal(monkeypatch, store):
    monkeypatch.setattr(admin_client.requests, "request", lambda method, url, **kw: _Resp(401, {}))
    with pytest.raises(InternalError):
        store.get_claims("u1")


def test_password_grant_refused_in_prod(monkeypatch):
    monkeypatch.delenv("KC_ADMIN_CLIENT_SECRET", raising=False)
    monkeypatch.setenv("KC_ADMIN_USERNAME", "admin")
    monkeypatch.setenv("KC_ADMIN_PASSWORD", "admin")
    monkeypatch.setenv("BRAINPLUS_ENV", "prod")
    store = KeycloakIdentityStore(CFG)

    def never(method, url, **kwargs):
        raise AssertionError("no HTTP call expected")

    monkeypatch.setattr(admin_client.requests, "request", never)
    with pytest.raises(InternalError):
        store.get_claims("u1")


def test_password_grant_allowed_in_dev(monkeypatch):
    monkeypatch.delenv("KC_ADMIN_CLIENT_SECRET", raising=False)
    monkeypatch.setenv("KC_ADMIN_USERNAME", "admin")
    monkeypatch.setenv("KC_ADMIN_PASSWORD", "admin")
    fake = _FakeKeycloak({"u1": {"id": "u1", "attributes": {"role": "admin", "verified": "true"}}})
    monkeypatch.setattr(admin_client.requests, "request", fake)

    store = KeycloakIdentityStore(CFG)
    assert store.get_claims("u1").is_admin
    assert fake.calls[0][2]["data"]["grant_type"] == "password"


def test_timeout_default_from_env(monkeypatch):
    monkeypatch.setenv("KC_HTTP_TIMEOUT_SECONDS", "4")
    assert KeycloakIdentityStore(CFG).timeout == 4.0
    monkeypatch.setenv("KC_HTTP_TIMEOUT_SECONDS", "nope")
    assert KeycloakIdentityStore(CFG).timeout == 10.0
