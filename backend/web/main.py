"BrainPlus backend"
from __future__ import annotations

import logging
import os
import sys as _sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

from backend.identity_access.oidc import OIDCConfig, load_oidc_config
from backend.identity_access.tokens import IDTokenVerificationError, principal_from_claims, verify_id_token


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via BRAINPLUS_ENABLE_DOTENV (default true
      outside pytest).
    """
    if "pytest" in _sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("BRAINPLUS_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
from backend.web import config as _cfg

_cfg.ensure_secure_config_on_startup()

logger = logging.getLogger("brainplus.web")

app = FastAPI(title="BrainPlus backend", description="Authorization gate and monthly ledgers", version="0.1.0")

from backend.web.routes.billing import billing_router
from backend.web.routes.identity import identity_router

OIDC_CFG: OIDCConfig = load_oidc_config()


def _is_public_path(path: str) -> bool:
    return path in ("/health", "/favicon.ico", "/openapi.json", "/docs")


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    """Verify the bearer token and expose the caller as `request.state.principal`.

    Security:
        Only tokens signed by the realm (RS256, issuer, audience, expiry) yield
        a principal. API paths without a valid token are rejected with 401
        before any handler runs.
    """
    request.state.principal = None
    path = request.url.path
    if _is_public_path(path):
        return await call_next(request)

    token = _bearer_token(request)
    if token:
        try:
            claims = verify_id_token(id_token=token, cfg=OIDC_CFG)
            request.state.principal = principal_from_claims(claims)
        except IDTokenVerificationError as exc:
            logger.info("web.auth.rejected path=%s reason=%s", path, exc.code)

    if request.state.principal is None and path.startswith("/api/"):
        return JSONResponse(
            {"error": "unauthenticated"},
            status_code=401,
            headers={"Cache-Control": "private, no-store", "WWW-Authenticate": "Bearer"},
        )
    return await call_next(request)


app.include_router(identity_router)
app.include_router(billing_router)


@app.get("/health")
async def health_check():
    # Minimal health endpoint used by orchestrators and tests.
    return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})
