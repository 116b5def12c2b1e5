"""
Authorization gate: resolve (read path used by the role router).

Why: `resolve` decides which surface the app shows. It must never authorize a
principal whose claims and profile disagree, and it must not raise when a
store is unavailable.
"""
from __future__ import annotations

import pytest

from backend.identity_access.domain import Claims, GateState, InternalError, Principal, Resolution, TransientError
from backend.identity_access.gate import AuthorizationGate
from backend.identity_access.stores import InMemoryIdentityStore, InMemoryProfileStore

ADMIN = Principal(id="admin-1", claims=Claims(role="admin", verified=True))


def _gate():
    identity = InMemoryIdentityStore()
    profiles = InMemoryProfileStore()
    identity.add_identity(ADMIN.id, ADMIN.claims)
    return AuthorizationGate(identity, profiles), identity, profiles


def test_unknown_principal_is_unregistered():
    gate, _, _ = _gate()
    assert gate.resolve("ghost") == Resolution(GateState.UNREGISTERED)


@pytest.mark.parametrize("pid", ["", None, 3])
def test_invalid_principal_id_is_unregistered(pid):
    gate, _, _ = _gate()
    assert gate.resolve(pid).state is GateState.UNREGISTERED


def test_signed_in_without_registration_is_unregistered():
    gate, identity, _ = _gate()
    identity.add_identity("u1")
    assert gate.resolve("u1").state is GateState.UNREGISTERED


def test_admin_claims_short_circuit_without_profile():
    gate, _, _ = _gate()
    res = gate.resolve(ADMIN.id)
    assert res.state is GateState.AUTHORIZED
    assert res.role == "admin"
    assert res.to_dict() == {"state": "AUTHORIZED", "role": "admin"}


def test_full_lifecycle_states():
    gate, identity, _ = _gate()
    identity.add_identity("u1")
    gate.register(Principal(id="u1"), "student", {"name": "Asha"})
    assert gate.resolve("u1").state is GateState.PENDING_APPROVAL

    gate.approve(ADMIN, "u1")
    assert gate.resolve("u1") == Resolution(GateState.AUTHORIZED, "student")

    gate.revoke(ADMIN, "u1")
    assert gate.resolve("u1").state is GateState.UNREGISTERED


def test_verified_profile_with_unverified_claims_is_pending(caplog: pytest.LogCaptureFixture):
    gate, identity, profiles = _gate()
    identity.add_identity("u1", Claims(role="student", verified=False))
    profiles.put_profile("u1", {"name": "Asha", "role": "student", "verified": True})

    caplog.set_level("WARNING", logger="brainplus.identity_access.gate")
    assert gate.resolve("u1").state is GateState.PENDING_APPROVAL
    assert any("claims_mismatch" in r.getMessage() for r in caplog.records)


def test_role_mismatch_between_claims_and_profile_is_pending():
    gate, identity, profiles = _gate()
    identity.add_identity("u1", Claims(role="teacher", verified=True))
    profiles.put_profile("u1", {"name": "Asha", "role": "student", "verified": True})
    assert gate.resolve("u1").state is GateState.PENDING_APPROVAL


def test_verified_claims_with_unverified_profile_is_pending():
    gate, identity, profiles = _gate()
    identity.add_identity("u1", Claims(role="student", verified=True))
    profiles.put_profile("u1", {"name": "Asha", "role": "student", "verified": False})
    assert gate.resolve("u1").state is GateState.PENDING_APPROVAL


def test_transient_profile_failure_is_unresolved():
    class _DownProfiles(InMemoryProfileStore):
        def get_profile(self, profile_id):
            raise TransientError("profile_store_unavailable")

    identity = InMemoryIdentityStore()
    identity.add_identity("u1", Claims(role="student", verified=True))
    gate = AuthorizationGate(identity, _DownProfiles())

    res = gate.resolve("u1")
    assert res.state is GateState.UNRESOLVED
    assert not res.is_authorized


@pytest.mark.parametrize("exc", [TransientError("down"), InternalError("boom"), RuntimeError("boom")])
def test_identity_failures_are_unresolved(exc):
    class _DownIdentity(InMemoryIdentityStore):
        def get_claims(self, principal_id):
            raise exc

    gate = AuthorizationGate(_DownIdentity(), InMemoryProfileStore())
    assert gate.resolve("u1").state is GateState.UNRESOLVED
