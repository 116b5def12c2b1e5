"""
Authorization gate: how an authenticated principal becomes an authorized role-holder.

Why:
    Student and teacher accounts must pass a human approval step before any
    role-specific surface is shown. Claims (token-embedded, fast) and the
    profile document (human-reviewable) both carry the decision; the gate is
    the only writer of `role`/`verified` and keeps them consistent.

States:
    UNREGISTERED -> PENDING_APPROVAL -> AUTHORIZED, with REVOKED as terminal
    side state (identity and profile deleted). UNRESOLVED is returned by
    `resolve` when a store read fails and routes like UNREGISTERED.

Failure semantics:
    Mutating operations surface store failures instead of retrying. Partial
    success (claims written, profile write failed) is logged at ERROR with
    principal, operation and stage so operators can reconcile.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Mapping, Optional

from .domain import (
    RESERVED_PROFILE_FIELDS,
    SELF_REGISTRATION_ROLES,
    AlreadyExists,
    Claims,
    GateState,
    IdentityAccessError,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    Principal,
    Resolution,
    TransientError,
    Unauthenticated,
)
from .ports import AccountLedgerPurgeProtocol, IdentityStoreProtocol, ProfileStoreProtocol

logger = logging.getLogger("brainplus.identity_access.gate")


@dataclass(frozen=True)
class RevokeResult:
    target_id: str
    # "rejected" when the target was still pending, "terminated" otherwise.
    outcome: str
    purged_entries: int = 0
    state: GateState = GateState.REVOKED


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _require_admin(caller: Optional[Principal]) -> Principal:
    if caller is None or not caller.id:
        raise Unauthenticated("login_required")
    if not caller.claims.is_admin:
        raise PermissionDenied("admin_only")
    return caller


def _validate_target(target_id: object) -> str:
    if not isinstance(target_id, str) or not target_id.strip():
        raise InvalidArgument("invalid_target_id")
    return target_id.strip()


def _normalize_profile_fields(profile_fields: Mapping[str, Any] | None) -> dict:
    if profile_fields is None:
        raise InvalidArgument("missing_profile_fields")
    if not isinstance(profile_fields, Mapping):
        raise InvalidArgument("invalid_profile_fields")
    reserved = RESERVED_PROFILE_FIELDS.intersection(profile_fields.keys())
    if reserved:
        raise InvalidArgument(f"reserved_field:{sorted(reserved)[0]}")
    name = profile_fields.get("name")
    if not isinstance(name, str) or not name.strip():
        raise InvalidArgument("invalid_name")
    fields = dict(profile_fields)
    fields["name"] = name.strip()
    return fields


class AuthorizationGate:
    """Register / approve / revoke / resolve principals.

    Parameters
    ----------
    identity:
        Identity store adapter (claims and identity deletion).
    profiles:
        Profile store adapter.
    ledger:
        Optional cascade target; when set, `revoke` purges the target's ledger
        entries after the identity and profile are gone.
    clock:
        Injectable time source for deterministic tests.
    """

    def __init__(
        self,
        identity: IdentityStoreProtocol,
        profiles: ProfileStoreProtocol,
        *,
        ledger: AccountLedgerPurgeProtocol | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._identity = identity
        self._profiles = profiles
        self._ledger = ledger
        self._clock = clock or _utcnow

    # ------------------------------------------------------------------ register

    def register(
        self,
        principal: Optional[Principal],
        requested_role: object,
        profile_fields: Mapping[str, Any] | None,
    ) -> GateState:
        """Self-register as student or teacher; the result is always PENDING_APPROVAL.

        Behavior:
            - `Unauthenticated` without a principal.
            - `InvalidArgument` for roles outside {student, teacher} (admin
              cannot self-assign) or malformed profile fields.
            - `AlreadyExists` when the principal already carries a role claim.
              Exception: same role, unverified and no profile yet means an
              earlier attempt stopped after the claims write; the profile write
              is completed instead.
            - Claims are written first; the profile only after claims succeeded.
            - The profile write is create-only. Of two overlapping registrations
              exactly one succeeds; the other gets `AlreadyExists` and the claims
              are realigned with the profile that won.
        """
        if principal is None or not principal.id:
            raise Unauthenticated("login_required")
        if not isinstance(requested_role, str) or requested_role not in SELF_REGISTRATION_ROLES:
            raise InvalidArgument("role_must_be_student_or_teacher")
        role = requested_role
        fields = _normalize_profile_fields(profile_fields)

        current = self._identity.get_claims(principal.id)
        resuming = False
        if current.role:
            if current.role != role or current.verified or self._profiles.get_profile(principal.id) is not None:
                raise AlreadyExists("already_registered")
            resuming = True
            logger.warning(
                "gate.register.resume principal=%s role=%s stage=profile_write",
                principal.id,
                role,
            )
        else:
            self._identity.set_claims(principal.id, Claims(role=role, verified=False))

        document = dict(fields)
        document.update(
            {
                "phone": principal.phone or "",
                "role": role,
                "verified": False,
                "createdAt": self._clock(),
            }
        )
        if principal.email and "email" not in document:
            document["email"] = principal.email
        try:
            self._profiles.create_profile(principal.id, document)
        except AlreadyExists:
            if not resuming:
                self._realign_claims_with_profile(principal.id)
            logger.warning("gate.register.conflict principal=%s role=%s", principal.id, role)
            raise AlreadyExists("already_registered")
        except IdentityAccessError as exc:
            logger.error(
                "gate.partial_failure principal=%s operation=register stage=profile_write claims_written=%s error=%s",
                principal.id,
                not resuming,
                exc.code,
            )
            raise

        # A concurrent registration may have overwritten the claims before our profile won.
        current = self._identity.get_claims(principal.id)
        if current.role != role:
            logger.warning(
                "gate.register.claims_overwritten principal=%s claims_role=%s profile_role=%s",
                principal.id,
                current.role,
                role,
            )
            self._identity.set_claims(principal.id, Claims(role=role, verified=False))
        logger.info("gate.register principal=%s role=%s state=PENDING_APPROVAL", principal.id, role)
        return GateState.PENDING_APPROVAL

    def _realign_claims_with_profile(self, principal_id: str) -> None:
        """Point the claims back at the profile that won a concurrent registration."""
        existing = self._profiles.get_profile(principal_id)
        if existing is None or not existing.role:
            return
        claims = self._identity.get_claims(principal_id)
        if claims.role != existing.role or claims.verified != existing.verified:
            self._identity.set_claims(principal_id, Claims(role=existing.role, verified=existing.verified))

    # ------------------------------------------------------------------- approve

    def approve(self, caller: Optional[Principal], target_id: object) -> Resolution:
        """Mark a pending principal as verified (admin only, idempotent).

        Behavior:
            - Role is preserved from the target's claims, falling back to the
              profile role when the claims lost it.
            - A target without profile is `NotFound`; claims are not touched.
            - The profile role is aligned with the claims role when they differ.
            - Already verified claims and profile with the same role: no writes,
              success.
        """
        admin = _require_admin(caller)
        target = _validate_target(target_id)

        profile = self._profiles.get_profile(target)
        if profile is None:
            raise NotFound("profile_not_found")
        claims = self._identity.get_claims(target)
        role = claims.role or profile.role
        if not role:
            raise NotFound("target_not_registered")

        if claims.verified and claims.role == role and profile.verified and profile.role == role:
            logger.info("gate.approve.noop admin=%s target=%s", admin.id, target)
            return Resolution(GateState.AUTHORIZED, role)

        if not (claims.verified and claims.role == role):
            self._identity.set_claims(target, Claims(role=role, verified=True))
        partial: dict = {}
        if not profile.verified:
            partial["verified"] = True
        if profile.role != role:
            logger.warning(
                "gate.approve.role_realigned target=%s profile_role=%s claims_role=%s",
                target,
                profile.role,
                role,
            )
            partial["role"] = role
        if partial:
            try:
                self._profiles.update_profile(target, partial)
            except IdentityAccessError as exc:
                logger.error(
                    "gate.partial_failure principal=%s operation=approve stage=profile_update claims_written=True error=%s",
                    target,
                    exc.code,
                )
                raise
        logger.info("gate.approve admin=%s target=%s role=%s state=AUTHORIZED", admin.id, target, role)
        return Resolution(GateState.AUTHORIZED, role)

    # -------------------------------------------------------------------- revoke

    def revoke(self, caller: Optional[Principal], target_id: object) -> RevokeResult:
        """Delete the target's identity and profile (admin only, irreversible).

        Behavior:
            - Identity first so the target cannot sign in anymore, then profile.
            - An identity that is already gone is tolerated while a profile
              remains (finishes an earlier partial revoke). Both missing is
              `NotFound`.
            - Outcome is "rejected" for pending targets, "terminated" for
              verified ones.
        """
        admin = _require_admin(caller)
        target = _validate_target(target_id)

        profile = self._profiles.get_profile(target)
        outcome = "terminated" if profile is not None and profile.verified else "rejected"

        identity_gone = False
        try:
            self._identity.delete_identity(target)
        except NotFound:
            if profile is None:
                raise
            identity_gone = True
            logger.warning("gate.revoke.identity_missing admin=%s target=%s", admin.id, target)

        if profile is not None:
            try:
                self._profiles.delete_profile(target)
            except NotFound:
                pass
            except IdentityAccessError as exc:
                logger.error(
                    "gate.partial_failure principal=%s operation=revoke stage=profile_delete identity_deleted=%s error=%s",
                    target,
                    not identity_gone,
                    exc.code,
                )
                raise

        purged = 0
        if self._ledger is not None:
            try:
                purged = self._ledger.delete_entries_for_account(target)
            except IdentityAccessError as exc:
                logger.error(
                    "gate.partial_failure principal=%s operation=revoke stage=ledger_purge error=%s",
                    target,
                    exc.code,
                )
                raise
        logger.info(
            "gate.revoke admin=%s target=%s outcome=%s purged_entries=%s",
            admin.id,
            target,
            outcome,
            purged,
        )
        return RevokeResult(target_id=target, outcome=outcome, purged_entries=purged)

    # ------------------------------------------------------------------- resolve

    def resolve(self, principal_id: object) -> Resolution:
        """Decide which surface a principal may see (read path, never raises).

        Admin claims are authoritative and skip the profile lookup. Everyone
        else needs a verified profile and verified claims with the same role;
        any disagreement resolves to PENDING_APPROVAL.
        """
        if not isinstance(principal_id, str) or not principal_id:
            return Resolution(GateState.UNREGISTERED)
        try:
            claims = self._identity.get_claims(principal_id)
            if claims.is_admin:
                return Resolution(GateState.AUTHORIZED, "admin")
            profile = self._profiles.get_profile(principal_id)
        except NotFound:
            return Resolution(GateState.UNREGISTERED)
        except TransientError as exc:
            logger.warning("gate.resolve.unresolved principal=%s error=%s", principal_id, exc.code)
            return Resolution(GateState.UNRESOLVED)
        except Exception as exc:
            logger.error("gate.resolve.unresolved principal=%s error=%s", principal_id, type(exc).__name__)
            return Resolution(GateState.UNRESOLVED)

        if profile is None:
            return Resolution(GateState.UNREGISTERED)
        if not profile.verified:
            return Resolution(GateState.PENDING_APPROVAL)
        if not claims.verified or claims.role != profile.role:
            logger.warning(
                "gate.resolve.claims_mismatch principal=%s claims_role=%s claims_verified=%s profile_role=%s",
                principal_id,
                claims.role,
                claims.verified,
                profile.role,
            )
            return Resolution(GateState.PENDING_APPROVAL)
        return Resolution(GateState.AUTHORIZED, profile.role)


__all__ = ["AuthorizationGate", "RevokeResult"]
