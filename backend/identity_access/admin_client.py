"""
Keycloak Admin client acting as the identity store (claims and identity deletion).

Design:
- Framework-agnostic, called by the authorization gate and operator tools.
- Claims live as user attributes `role` and `verified`; realm protocol mappers
  project them into the issued tokens.
- Uses requests under the hood; every call carries a bounded timeout.

Errors:
- 404 -> NotFound
- Timeouts, connection errors and 5xx -> TransientError (safe to retry)
- Anything else (401/403/unexpected payloads) -> InternalError

Security:
- Do not log credentials or tokens.
- Prefer client credentials; the password grant is refused in production.
"""

from __future__ import annotations

from typing import Any, Dict, Optional
import logging
import os

import requests

from .domain import Claims, InternalError, NotFound, TransientError
from .oidc import OIDCConfig

logger = logging.getLogger("brainplus.identity_access.keycloak")


def _timeout_seconds() -> float:
    raw = os.getenv("KC_HTTP_TIMEOUT_SECONDS", "10")
    try:
        value = float(raw)
    except ValueError:
        return 10.0
    return value if value > 0 else 10.0


def _is_prod_like() -> bool:
    env = (os.getenv("BRAINPLUS_ENV", "dev") or "").lower()
    return env in {"prod", "production", "stage", "staging"}


class KeycloakIdentityStore:
    def __init__(self, cfg: OIDCConfig, *, timeout: float | None = None) -> None:
        self.cfg = cfg
        self.timeout = timeout or _timeout_seconds()
        self._admin_realm = os.getenv("KC_ADMIN_REALM", "master")
        self._admin_client_id = os.getenv("KC_ADMIN_CLIENT_ID", "brainplus-admin-cli")
        self._admin_client_secret = os.getenv("KC_ADMIN_CLIENT_SECRET")
        # Legacy fallback (password grant), retained for dev only
        self._admin_username = os.getenv("KC_ADMIN_USERNAME")
        self._admin_password = os.getenv("KC_ADMIN_PASSWORD")
        ca = os.getenv("KEYCLOAK_CA_BUNDLE")
        self._verify: Any = ca if ca else True

    # ----------------------------------------------------------------- plumbing

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            resp = requests.request(method, url, timeout=self.timeout, verify=self._verify, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise TransientError("identity_store_unavailable") from exc
        except requests.RequestException as exc:
            raise InternalError("identity_store_request_failed") from exc
        if resp.status_code >= 500:
            raise TransientError("identity_store_unavailable")
        return resp

    def _token(self) -> str:
        """Obtain an admin bearer token.

        Prefers OAuth2 client_credentials using a confidential client. Falls
        back to the password grant only outside production.
        """
        url = f"{self.cfg.base_url}/realms/{self._admin_realm}/protocol/openid-connect/token"
        if self._admin_client_secret:
            data = {
                "grant_type": "client_credentials",
                "client_id": self._admin_client_id,
                "client_secret": self._admin_client_secret,
            }
        else:
            if _is_prod_like():
                raise InternalError("password_grant_disabled_in_prod")
            if not self._admin_username or not self._admin_password:
                raise InternalError("keycloak_admin_credentials_missing")
            data = {
                "grant_type": "password",
                "client_id": self._admin_client_id,
                "username": self._admin_username,
                "password": self._admin_password,
            }
        resp = self._request("POST", url, data=data)
        if resp.status_code != 200:
            raise InternalError("admin_token_failed")
        token = (resp.json() or {}).get("access_token")
        if not token:
            raise InternalError("admin_token_missing")
        return str(token)

    def _admin(self, token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    def _user_url(self, principal_id: str) -> str:
        return f"{self.cfg.base_url}/admin/realms/{self.cfg.realm}/users/{principal_id}"

    def _get_user(self, token: str, principal_id: str) -> Dict[str, Any]:
        resp = self._request("GET", self._user_url(principal_id), headers=self._admin(token))
        if resp.status_code == 404:
            raise NotFound("identity_not_found")
        if resp.status_code != 200:
            raise InternalError("user_lookup_failed")
        body = resp.json()
        if not isinstance(body, dict):
            raise InternalError("user_payload_invalid")
        return body

    # -------------------------------------------------------------- store port

    def get_claims(self, principal_id: str) -> Claims:
        user = self._get_user(self._token(), principal_id)
        return Claims.from_mapping(user.get("attributes") or {})

    def set_claims(self, principal_id: str, claims: Claims) -> None:
        """Merge `role`/`verified` into the user's attributes.

        Keycloak replaces the whole attribute map on update, so the current
        representation is read first and written back with the two keys set.
        """
        token = self._token()
        user = self._get_user(token, principal_id)
        attributes: Dict[str, Any] = dict(user.get("attributes") or {})
        if claims.role:
            attributes["role"] = [claims.role]
        else:
            attributes.pop("role", None)
        attributes["verified"] = ["true" if claims.verified else "false"]
        user["attributes"] = attributes
        resp = self._request("PUT", self._user_url(principal_id), headers=self._admin(token), json=user)
        if resp.status_code == 404:
            raise NotFound("identity_not_found")
        if resp.status_code not in (200, 204):
            raise InternalError("claims_update_failed")
        logger.info("keycloak.claims_set principal=%s role=%s verified=%s", principal_id, claims.role, claims.verified)

    def delete_identity(self, principal_id: str) -> None:
        token = self._token()
        resp = self._request("DELETE", self._user_url(principal_id), headers=self._admin(token))
        if resp.status_code == 404:
            raise NotFound("identity_not_found")
        if resp.status_code not in (200, 204):
            raise InternalError("identity_delete_failed")

    def find_user_id(self, email: str) -> Optional[str]:
        """Resolve a user id by exact email (operator tooling)."""
        token = self._token()
        url = f"{self.cfg.base_url}/admin/realms/{self.cfg.realm}/users"
        resp = self._request("GET", url, headers=self._admin(token), params={"email": email, "exact": True})
        if resp.status_code != 200:
            raise InternalError("user_lookup_failed")
        arr = resp.json() or []
        if not arr:
            return None
        user_id = arr[0].get("id")
        return str(user_id) if user_id else None


__all__ = ["KeycloakIdentityStore"]
