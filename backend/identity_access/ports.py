"""
Store ports used by the authorization gate.

Keep these small and framework-agnostic so tests can supply simple fakes.

Contract for every implementation:
    - Absent ids raise `NotFound` (except `get_profile`, which returns None).
    - Timeouts, connection errors and server-side failures raise `TransientError`.
    - Every remote call is bounded by a timeout chosen by the adapter.
"""
from __future__ import annotations

from typing import Any, List, Mapping, Optional, Protocol

from .domain import Claims, Profile


class IdentityStoreProtocol(Protocol):
    """Identity provider operations (claims and identity lifecycle).

    Permissions:
        Implementations act with administrative credentials; only the gate
        and operator tools may hold them.
    """

    def get_claims(self, principal_id: str) -> Claims: ...

    def set_claims(self, principal_id: str, claims: Claims) -> None: ...

    def delete_identity(self, principal_id: str) -> None: ...


class ProfileStoreProtocol(Protocol):
    """Document store holding one profile per principal."""

    def get_profile(self, profile_id: str) -> Optional[Profile]: ...

    def put_profile(self, profile_id: str, fields: Mapping[str, Any]) -> Profile: ...

    def create_profile(self, profile_id: str, fields: Mapping[str, Any]) -> Profile:
        """Insert a new profile; `AlreadyExists` when the id is taken."""
        ...

    def update_profile(self, profile_id: str, partial: Mapping[str, Any]) -> Profile: ...

    def delete_profile(self, profile_id: str) -> None: ...

    def query_by_role_and_flags(
        self,
        role: str,
        verified: bool,
        extra_filters: Mapping[str, Any] | None = None,
    ) -> List[Profile]: ...


class AccountLedgerPurgeProtocol(Protocol):
    """Cascade hook used when an identity is revoked."""

    def delete_entries_for_account(self, account_id: str) -> int: ...


__all__ = ["IdentityStoreProtocol", "ProfileStoreProtocol", "AccountLedgerPurgeProtocol"]
