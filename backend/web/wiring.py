"""
Shared wiring of the authorization gate and the ledger generator.

Why:
    The identity routes and the billing routes must see the same profile and
    ledger stores (revoke purges ledger entries the generator created). This
    module builds those stores once, lazily, and lets tests swap them.

Behavior:
    - `IDENTITY_BACKEND=memory` wires in-memory stores (local dev, tests).
    - `IDENTITY_BACKEND=keycloak` (default) wires the Keycloak admin adapter
      plus the Postgres profile and ledger stores. Outside prod-like envs a
      missing DSN degrades to in-memory stores with a warning; in prod it is
      fatal.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Optional

from backend.billing.config import load_ledger_config
from backend.billing.ledger import LedgerGenerator
from backend.billing.stores import InMemoryLedgerStore
from backend.identity_access.gate import AuthorizationGate
from backend.identity_access.oidc import load_oidc_config
from backend.identity_access.stores import InMemoryIdentityStore, InMemoryProfileStore

logger = logging.getLogger("brainplus.web")


@dataclass
class Services:
    gate: AuthorizationGate
    generator: LedgerGenerator


_SERVICES: Optional[Services] = None


def _is_prod_like() -> bool:
    return (os.getenv("BRAINPLUS_ENV", "dev") or "").lower() in {"prod", "production", "stage", "staging"}


def build_memory_services() -> Services:
    profiles = InMemoryProfileStore()
    ledger = InMemoryLedgerStore()
    gate = AuthorizationGate(InMemoryIdentityStore(), profiles, ledger=ledger)
    generator = LedgerGenerator(profiles, ledger, config=load_ledger_config())
    return Services(gate=gate, generator=generator)


def _build_keycloak_services() -> Services:
    from backend.billing.repo_db import DBLedgerRepo
    from backend.identity_access.admin_client import KeycloakIdentityStore
    from backend.identity_access.stores_db import DBProfileStore

    identity = KeycloakIdentityStore(load_oidc_config())
    try:
        profiles = DBProfileStore()
        ledger = DBLedgerRepo()
    except Exception as exc:
        if _is_prod_like():
            raise
        logger.warning("web.wiring.db_unavailable error=%s fallback=memory", exc)
        profiles = InMemoryProfileStore()
        ledger = InMemoryLedgerStore()
    gate = AuthorizationGate(identity, profiles, ledger=ledger)
    generator = LedgerGenerator(profiles, ledger, config=load_ledger_config())
    return Services(gate=gate, generator=generator)


def build_default_services() -> Services:
    backend = (os.getenv("IDENTITY_BACKEND") or "keycloak").strip().lower()
    if backend == "memory":
        if _is_prod_like():
            raise RuntimeError("IDENTITY_BACKEND=memory is not allowed in production")
        logger.info("web.wiring backend=memory")
        return build_memory_services()
    if backend != "keycloak":
        raise ValueError(f"IDENTITY_BACKEND must be 'keycloak' or 'memory', got: {backend!r}")
    logger.info("web.wiring backend=keycloak")
    return _build_keycloak_services()


def get_services() -> Services:
    global _SERVICES
    if _SERVICES is None:
        _SERVICES = build_default_services()
    return _SERVICES


def set_services(services: Optional[Services]) -> None:
    """Allow tests to swap the wired services (None rebuilds lazily)."""
    global _SERVICES
    _SERVICES = services


__all__ = ["Services", "build_default_services", "build_memory_services", "get_services", "set_services"]
