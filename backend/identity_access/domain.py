"""
Identity domain: roles, claims, profiles, gate states and the error taxonomy.

Why:
- Centralize allowed roles to avoid drift between tools, gate and web layer.
- Keep terms aligned with the glossary (Principal, Claims, Profile, Gate).
- Give every adapter one set of exceptions so the web layer can map them to
  status codes without knowing which store failed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"student", "teacher", "admin"})
# Admin is granted only by an operator tool, never by self-registration.
SELF_REGISTRATION_ROLES = frozenset({"student", "teacher"})

# Profile keys owned by the gate; callers cannot set them through registration.
RESERVED_PROFILE_FIELDS = frozenset({"id", "role", "verified", "createdAt"})


def _as_bool(value: object) -> bool:
    # Identity providers hand attributes back as strings or 1-element lists.
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return False


def _as_role(value: object) -> Optional[str]:
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if not isinstance(value, str):
        return None
    role = value.strip().lower()
    return role or None


@dataclass(frozen=True)
class Claims:
    """Signed attestation attached to a principal."""

    role: Optional[str] = None
    verified: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "Claims":
        data = data or {}
        return cls(role=_as_role(data.get("role")), verified=_as_bool(data.get("verified")))

    def to_mapping(self) -> Dict[str, Any]:
        return {"role": self.role, "verified": self.verified}

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class Principal:
    """Authenticated identity issued by the identity provider (pre-authorization)."""

    id: str
    phone: str = ""
    email: str = ""
    claims: Claims = field(default_factory=Claims)


@dataclass
class Profile:
    id: str
    name: str
    role: str
    verified: bool = False
    created_at: Optional[datetime] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

    @classmethod
    def from_document(cls, profile_id: str, doc: Mapping[str, Any]) -> "Profile":
        """Split a stored document into typed columns and role-specific fields."""
        extra = {k: v for k, v in doc.items() if k not in RESERVED_PROFILE_FIELDS and k != "name"}
        created = doc.get("createdAt")
        return cls(
            id=profile_id,
            name=str(doc.get("name") or ""),
            role=_as_role(doc.get("role")) or "",
            verified=_as_bool(doc.get("verified")),
            created_at=created if isinstance(created, datetime) else None,
            fields=extra,
        )

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = dict(self.fields)
        doc.update({"name": self.name, "role": self.role, "verified": self.verified, "createdAt": self.created_at})
        return doc


class GateState(str, Enum):
    UNREGISTERED = "UNREGISTERED"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    AUTHORIZED = "AUTHORIZED"
    REVOKED = "REVOKED"
    # Transient read failure; routed exactly like UNREGISTERED.
    UNRESOLVED = "UNRESOLVED"


@dataclass(frozen=True)
class Resolution:
    state: GateState
    role: Optional[str] = None

    @property
    def is_authorized(self) -> bool:
        return self.state is GateState.AUTHORIZED

    def to_dict(self) -> Dict[str, Any]:
        return {"state": self.state.value, "role": self.role}


# ------------------------------ Errors --------------------------------------


class IdentityAccessError(Exception):
    """Base class for gate and store failures.

    `code` is a stable identifier surfaced verbatim to API callers.
    """

    code = "internal"
    retryable = False

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.code)
        self.detail = detail or self.code


class Unauthenticated(IdentityAccessError):
    code = "unauthenticated"


class PermissionDenied(IdentityAccessError):
    code = "permission_denied"


class InvalidArgument(IdentityAccessError):
    code = "invalid_argument"


class AlreadyExists(IdentityAccessError):
    code = "already_exists"


class NotFound(IdentityAccessError):
    code = "not_found"


class TransientError(IdentityAccessError):
    """Store or network failure; safe to retry."""

    code = "transient"
    retryable = True


class InternalError(IdentityAccessError):
    code = "internal"


__all__ = [
    "ALLOWED_ROLES",
    "SELF_REGISTRATION_ROLES",
    "RESERVED_PROFILE_FIELDS",
    "Claims",
    "Principal",
    "Profile",
    "GateState",
    "Resolution",
    "IdentityAccessError",
    "Unauthenticated",
    "PermissionDenied",
    "InvalidArgument",
    "AlreadyExists",
    "NotFound",
    "TransientError",
    "InternalError",
]
