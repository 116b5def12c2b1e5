"""
OIDC realm configuration for Keycloak integration.

Why: Keep realm coordinates in one immutable value so token verification and
the admin adapter agree on base URL, realm and client.
"""

from __future__ import annotations

from dataclasses import dataclass
import os


@dataclass(frozen=True)
class OIDCConfig:
    base_url: str  # internal base URL (server-to-server), e.g., http://keycloak:8080
    realm: str  # e.g., brainplus
    client_id: str  # e.g., brainplus-mobile

    @property
    def issuer(self) -> str:
        return f"{self.base_url}/realms/{self.realm}"

    @property
    def jwks_endpoint(self) -> str:
        return f"{self.issuer}/protocol/openid-connect/certs"


def load_oidc_config() -> OIDCConfig:
    base_url = os.getenv("KC_BASE_URL", "http://localhost:8080").rstrip("/")
    realm = os.getenv("KC_REALM", "brainplus")
    client_id = os.getenv("KC_CLIENT_ID", "brainplus-mobile")
    return OIDCConfig(base_url=base_url, realm=realm, client_id=client_id)


__all__ = ["OIDCConfig", "load_oidc_config"]
