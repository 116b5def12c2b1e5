"""
Configuration and startup security checks for the BrainPlus backend.

Why: The backend holds admin credentials for the identity provider and a
service-role database connection. This module provides a single guard that
enforces minimal production safety constraints without burdening local
development.

Permissions: The caller needs no special privileges. The function simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - Keycloak admin client secret must be set and not a placeholder (no
      password grant in prod).
    - DATABASE_URL must be set and must not disable TLS.
    - Keycloak endpoints must use HTTPS.
    - The in-memory identity backend is forbidden.
    """

    env = os.getenv("BRAINPLUS_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    # 1) Keycloak admin client secret
    kc_secret = (os.getenv("KC_ADMIN_CLIENT_SECRET", "") or "").strip()
    if not kc_secret or kc_secret.upper().startswith("CHANGE_ME"):
        raise SystemExit(
            "Refusing to start: KC_ADMIN_CLIENT_SECRET is unset or a placeholder in production."
        )

    # 2) Postgres DSN present and TLS not explicitly disabled
    dsn = os.getenv("DATABASE_URL", "")
    if not dsn.strip():
        raise SystemExit("Refusing to start: DATABASE_URL is required in production.")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    # 3) Keycloak endpoints must use HTTPS in production-like environments
    base_url = (os.getenv("KC_BASE_URL", "") or "").strip().lower()
    if not base_url or base_url.startswith("http://"):
        raise SystemExit("Refusing to start: KC_BASE_URL must use https in production.")

    # 4) Durable stores only
    backend = (os.getenv("IDENTITY_BACKEND") or "keycloak").strip().lower()
    if backend == "memory":
        raise SystemExit(
            "Refusing to start: IDENTITY_BACKEND=memory is not allowed in production/staging."
        )
