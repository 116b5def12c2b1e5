"""
Identity API routes: registration, approval, revocation and gate status.

Why:
    The mobile app drives the onboarding flow through these endpoints and the
    admin screens approve or revoke accounts. All state decisions live in
    `AuthorizationGate`; this module only translates HTTP to gate calls and
    gate errors to status codes.

Permissions:
    - register/status: any authenticated principal (bearer token).
    - approve/revoke: principals whose token carries the `admin` role claim.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, ValidationError

from backend.identity_access.domain import IdentityAccessError, Principal
from backend.web.wiring import get_services

identity_router = APIRouter(tags=["Identity"])
logger = logging.getLogger("brainplus.web.identity")

_STATUS_BY_CODE = {
    "unauthenticated": 401,
    "permission_denied": 403,
    "invalid_argument": 400,
    "already_exists": 409,
    "not_found": 404,
    "transient": 503,
    "internal": 500,
}


def _private_json(payload: dict, *, status_code: int = 200) -> JSONResponse:
    """Return a JSONResponse that browsers and shared caches must not store."""
    return JSONResponse(payload, status_code=status_code, headers={"Cache-Control": "private, no-store"})


def error_response(exc: IdentityAccessError) -> JSONResponse:
    status = _STATUS_BY_CODE.get(exc.code, 500)
    body = {"error": exc.code}
    # Internal details never leave the process.
    if status < 500 or exc.retryable:
        body["detail"] = exc.detail
    if status == 500:
        logger.error("web.identity.internal_error detail=%s", exc.detail)
    return _private_json(body, status_code=status)


def current_principal(request: Request) -> Optional[Principal]:
    return getattr(request.state, "principal", None)


class RegisterPayload(BaseModel):
    """Registration body: `role`, `name` and any role-specific fields."""

    model_config = ConfigDict(extra="allow")

    role: Optional[str] = None
    name: Optional[str] = None


@identity_router.post("/api/identity/register")
async def register(request: Request):
    principal = current_principal(request)
    if principal is None:
        return _private_json({"error": "unauthenticated"}, status_code=401)
    try:
        body = await request.json()
    except ValueError:
        return _private_json({"error": "invalid_argument", "detail": "invalid_json"}, status_code=400)
    if not isinstance(body, dict):
        return _private_json({"error": "invalid_argument", "detail": "body_must_be_object"}, status_code=400)
    try:
        payload = RegisterPayload.model_validate(body)
    except ValidationError:
        return _private_json({"error": "invalid_argument", "detail": "invalid_payload"}, status_code=400)

    fields = payload.model_dump(exclude={"role"})
    if fields.get("name") is None:
        fields.pop("name", None)
    gate = get_services().gate
    try:
        state = await asyncio.to_thread(gate.register, principal, payload.role, fields)
    except IdentityAccessError as exc:
        return error_response(exc)
    return _private_json({"state": state.value}, status_code=201)


@identity_router.post("/api/identity/users/{target_id}/approve")
async def approve(request: Request, target_id: str):
    gate = get_services().gate
    try:
        resolution = await asyncio.to_thread(gate.approve, current_principal(request), target_id)
    except IdentityAccessError as exc:
        return error_response(exc)
    return _private_json(resolution.to_dict())


@identity_router.delete("/api/identity/users/{target_id}")
async def revoke(request: Request, target_id: str):
    gate = get_services().gate
    try:
        result = await asyncio.to_thread(gate.revoke, current_principal(request), target_id)
    except IdentityAccessError as exc:
        return error_response(exc)
    return _private_json(
        {
            "state": result.state.value,
            "targetId": result.target_id,
            "outcome": result.outcome,
            "purgedEntries": result.purged_entries,
        }
    )


@identity_router.get("/api/identity/status")
async def status(request: Request):
    """Gate state of the caller; input of the app's role router.

    UNRESOLVED means a store read failed; clients route it like UNREGISTERED
    and may retry.
    """
    principal = current_principal(request)
    if principal is None:
        return _private_json({"error": "unauthenticated"}, status_code=401)
    resolution = await asyncio.to_thread(get_services().gate.resolve, principal.id)
    return _private_json(resolution.to_dict())


__all__ = ["identity_router", "error_response", "current_principal"]
