"""
In-memory stores for development: IdentityStore and ProfileStore.

Why: Run the gate, the API and the ledger job without Keycloak or Postgres
(local development, unit tests). For production, use the Keycloak adapter in
`admin_client` and the Postgres store in `stores_db`.

Both stores hand out copies so callers cannot mutate stored state in place.
"""
from __future__ import annotations

from copy import deepcopy
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional

from .domain import AlreadyExists, Claims, NotFound, Profile


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class InMemoryIdentityStore:
    def __init__(self) -> None:
        self._claims: Dict[str, Claims] = {}
        self._lock = Lock()

    def add_identity(self, principal_id: str, claims: Claims | None = None) -> None:
        """Simulate the identity provider creating a principal on first sign-in."""
        with self._lock:
            self._claims.setdefault(principal_id, claims or Claims())

    def has_identity(self, principal_id: str) -> bool:
        with self._lock:
            return principal_id in self._claims

    def get_claims(self, principal_id: str) -> Claims:
        with self._lock:
            claims = self._claims.get(principal_id)
        if claims is None:
            raise NotFound("identity_not_found")
        return claims

    def set_claims(self, principal_id: str, claims: Claims) -> None:
        with self._lock:
            if principal_id not in self._claims:
                raise NotFound("identity_not_found")
            self._claims[principal_id] = claims

    def delete_identity(self, principal_id: str) -> None:
        with self._lock:
            if self._claims.pop(principal_id, None) is None:
                raise NotFound("identity_not_found")


class InMemoryProfileStore:
    def __init__(self) -> None:
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._lock = Lock()

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        with self._lock:
            doc = self._docs.get(profile_id)
            return Profile.from_document(profile_id, deepcopy(doc)) if doc is not None else None

    def put_profile(self, profile_id: str, fields: Mapping[str, Any]) -> Profile:
        doc = deepcopy(dict(fields))
        doc.setdefault("createdAt", _now())
        with self._lock:
            self._docs[profile_id] = doc
            return Profile.from_document(profile_id, deepcopy(doc))

    def create_profile(self, profile_id: str, fields: Mapping[str, Any]) -> Profile:
        doc = deepcopy(dict(fields))
        doc.setdefault("createdAt", _now())
        with self._lock:
            if profile_id in self._docs:
                raise AlreadyExists("profile_exists")
            self._docs[profile_id] = doc
            return Profile.from_document(profile_id, deepcopy(doc))

    def update_profile(self, profile_id: str, partial: Mapping[str, Any]) -> Profile:
        with self._lock:
            doc = self._docs.get(profile_id)
            if doc is None:
                raise NotFound("profile_not_found")
            doc.update(deepcopy(dict(partial)))
            return Profile.from_document(profile_id, deepcopy(doc))

    def delete_profile(self, profile_id: str) -> None:
        with self._lock:
            if self._docs.pop(profile_id, None) is None:
                raise NotFound("profile_not_found")

    def query_by_role_and_flags(
        self,
        role: str,
        verified: bool,
        extra_filters: Mapping[str, Any] | None = None,
    ) -> List[Profile]:
        filters = dict(extra_filters or {})
        out: List[Profile] = []
        with self._lock:
            for pid in sorted(self._docs):
                doc = self._docs[pid]
                if doc.get("role") != role or bool(doc.get("verified")) is not verified:
                    continue
                if any(doc.get(key) != value for key, value in filters.items()):
                    continue
                out.append(Profile.from_document(pid, deepcopy(doc)))
        return out


__all__ = ["InMemoryIdentityStore", "InMemoryProfileStore"]
