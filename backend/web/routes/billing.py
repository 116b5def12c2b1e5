"""Billing endpoints: manual trigger of the monthly ledger generation (admin only)."""
from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from backend.billing.ledger import LedgerRunError
from backend.web.routes.identity import current_principal
from backend.web.wiring import get_services

billing_router = APIRouter(tags=["Billing"])
logger = logging.getLogger("brainplus.web.billing")


def _private_response(body: dict, *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers={"Cache-Control": "private, no-store"})


@billing_router.post("/api/billing/ledgers/generate")
async def generate_ledgers(request: Request):
    """
    Create the missing fee and salary entries of the current month.

    Behavior:
        Same idempotent run the scheduled worker performs. Returns one report
        per ledger; 503 when a pipeline failed with a retryable error, 500
        otherwise. Reports are included in both cases.

    Permissions:
        Caller token must carry the `admin` role claim.
    """
    principal = current_principal(request)
    if principal is None:
        return _private_response({"error": "unauthenticated"}, status_code=401)
    if not principal.claims.is_admin:
        return _private_response({"error": "permission_denied", "detail": "admin_only"}, status_code=403)

    generator = get_services().generator
    try:
        reports = await asyncio.to_thread(generator.run)
    except LedgerRunError as exc:
        status_code = 503 if exc.retryable else 500
        body = {
            "error": "transient" if exc.retryable else "internal",
            "reports": [r.to_dict() for r in exc.reports],
        }
        return _private_response(body, status_code=status_code)
    logger.info("web.billing.generate admin=%s created=%s", principal.id, sum(r.created for r in reports))
    return _private_response({"reports": [r.to_dict() for r in reports]})


__all__ = ["billing_router"]
