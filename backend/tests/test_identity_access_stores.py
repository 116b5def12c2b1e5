"""In-memory identity/profile stores honour the store port contract."""
from __future__ import annotations

import pytest

from backend.identity_access.domain import AlreadyExists, Claims, NotFound, Profile
from backend.identity_access.stores import InMemoryIdentityStore, InMemoryProfileStore


def test_identity_store_not_found_for_unknown_ids():
    store = InMemoryIdentityStore()
    with pytest.raises(NotFound):
        store.get_claims("ghost")
    with pytest.raises(NotFound):
        store.set_claims("ghost", Claims(role="student"))
    with pytest.raises(NotFound):
        store.delete_identity("ghost")


def test_identity_store_replaces_claims():
    store = InMemoryIdentityStore()
    store.add_identity("u1")
    store.set_claims("u1", Claims(role="teacher", verified=True))
    assert store.get_claims("u1") == Claims(role="teacher", verified=True)


def test_profile_store_hands_out_copies():
    store = InMemoryProfileStore()
    store.put_profile("u1", {"name": "Asha", "role": "student", "verified": False, "tags": ["a"]})

    prof = store.get_profile("u1")
    prof.fields["tags"].append("b")

    assert store.get_profile("u1").get("tags") == ["a"]


def test_profile_store_create_refuses_existing_ids():
    store = InMemoryProfileStore()
    store.create_profile("u1", {"name": "Asha", "role": "student", "verified": False})

    with pytest.raises(AlreadyExists):
        store.create_profile("u1", {"name": "Ravi", "role": "teacher", "verified": False})
    assert store.get_profile("u1").role == "student"


def test_profile_store_update_merges_and_requires_existing():
    store = InMemoryProfileStore()
    store.put_profile("u1", {"name": "Asha", "role": "student", "verified": False, "standard": "7"})

    updated = store.update_profile("u1", {"verified": True})
    assert updated.verified is True
    assert updated.get("standard") == "7"

    with pytest.raises(NotFound):
        store.update_profile("ghost", {"verified": True})
    with pytest.raises(NotFound):
        store.delete_profile("ghost")


def test_query_filters_role_verified_and_extra_fields():
    store = InMemoryProfileStore()
    store.put_profile("t1", {"name": "A", "role": "teacher", "verified": True, "salaryType": "Fixed"})
    store.put_profile("t2", {"name": "B", "role": "teacher", "verified": True, "salaryType": "Hourly"})
    store.put_profile("t3", {"name": "C", "role": "teacher", "verified": False, "salaryType": "Fixed"})
    store.put_profile("s1", {"name": "D", "role": "student", "verified": True})

    fixed = store.query_by_role_and_flags("teacher", True, {"salaryType": "Fixed"})
    assert [p.id for p in fixed] == ["t1"]
    assert [p.id for p in store.query_by_role_and_flags("teacher", True)] == ["t1", "t2"]
    assert [p.id for p in store.query_by_role_and_flags("student", False)] == []


def test_profile_document_roundtrip_splits_reserved_fields():
    prof = Profile.from_document("u1", {"name": "Asha", "role": "Student", "verified": "true", "phone": "+91"})
    assert prof.role == "student"
    assert prof.verified is True
    assert prof.fields == {"phone": "+91"}
    assert prof.to_document()["role"] == "student"


@pytest.mark.parametrize(
    "raw,expected",
    [
        ({"role": ["teacher"], "verified": ["true"]}, Claims(role="teacher", verified=True)),
        ({"role": "admin", "verified": True}, Claims(role="admin", verified=True)),
        ({"role": [], "verified": "false"}, Claims(role=None, verified=False)),
        ({}, Claims()),
        (None, Claims()),
    ],
)
def test_claims_from_mapping_normalises_provider_values(raw, expected):
    assert Claims.from_mapping(raw) == expected
