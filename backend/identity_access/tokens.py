"""
JWT verification helpers for the identity_access bounded context.

Why: The mobile app sends the identity provider's ID token as a bearer token.
Keeping signature validation outside the web adapter lets us unit test it and
turns verified claims into a `Principal` in one place.

Security: Validates the token signature with the realm's JWKS (RS256 only),
ensures issuer, audience and expiration are respected. The `role` and
`verified` claims are trusted only after this verification succeeded.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Tuple
import time

import requests
from jose import jwt
from jose.exceptions import JOSEError

from .domain import Claims, Principal
from .oidc import OIDCConfig


class IDTokenVerificationError(Exception):
    """Raised when the ID token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass
class _CacheEntry:
    jwks: Dict[str, object]
    expires_at: float


class JWKSCache:
    """Very small in-memory cache for JWKS responses."""

    def __init__(self, ttl_seconds: int = 300, timeout: float = 5.0):
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self._entries: Dict[Tuple[str, str], _CacheEntry] = {}

    def get(self, cfg: OIDCConfig) -> Dict[str, object]:
        key = (cfg.base_url, cfg.realm)
        now = time.time()
        entry = self._entries.get(key)
        if entry and entry.expires_at > now:
            return entry.jwks

        jwks = self._fetch(cfg)
        self._entries[key] = _CacheEntry(jwks=jwks, expires_at=now + self.ttl_seconds)
        return jwks

    def _fetch(self, cfg: OIDCConfig) -> Dict[str, object]:
        try:
            resp = requests.get(cfg.jwks_endpoint, timeout=self.timeout)
        except requests.RequestException as exc:
            raise IDTokenVerificationError("jwks_fetch_failed") from exc
        if resp.status_code != 200:
            raise IDTokenVerificationError("jwks_fetch_failed")
        try:
            jwks = resp.json()
        except ValueError as exc:
            raise IDTokenVerificationError("jwks_invalid") from exc
        if not isinstance(jwks, dict) or "keys" not in jwks:
            raise IDTokenVerificationError("jwks_invalid")
        return jwks


JWKS_CACHE = JWKSCache()

MAX_CLOCK_SKEW_SECONDS = 5  # Allow minimal skew between servers
ALLOWED_ALGORITHMS = ["RS256"]


def verify_id_token(
    *,
    id_token: str,
    cfg: OIDCConfig,
    cache: JWKSCache | None = None,
) -> Dict[str, object]:
    """Validate an ID token using the realm JWKS and return claims.

    Raises
    ------
    IDTokenVerificationError:
        When the token is invalid (signature, issuer, audience, expiry, kid).
    """
    cache = cache or JWKS_CACHE
    jwks = cache.get(cfg)
    try:
        header = jwt.get_unverified_header(id_token)
    except JOSEError as exc:
        raise IDTokenVerificationError("invalid_id_token") from exc
    kid = header.get("kid")
    if not kid:
        raise IDTokenVerificationError("missing_kid")
    key_dict = _find_key(jwks, kid)
    if not key_dict:
        raise IDTokenVerificationError("unknown_kid")

    try:
        claims = jwt.decode(
            id_token,
            key_dict,
            algorithms=list(ALLOWED_ALGORITHMS),
            audience=cfg.client_id,
            issuer=cfg.issuer,
            options={
                "verify_signature": True,
                "verify_aud": True,
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
                "verify_at_hash": False,
            },
        )
    except JOSEError as exc:
        raise IDTokenVerificationError("invalid_id_token") from exc

    _validate_temporal_claims(claims)
    return claims


def principal_from_claims(claims: Mapping[str, object]) -> Principal:
    """Build a Principal from verified token claims.

    `role`/`verified` come from protocol mappers on the user attributes the
    gate maintains. A token without `sub` is not an authenticated principal.
    """
    sub = claims.get("sub")
    if not isinstance(sub, str) or not sub:
        raise IDTokenVerificationError("missing_sub")
    phone = claims.get("phone_number")
    email = claims.get("email")
    return Principal(
        id=sub,
        phone=phone if isinstance(phone, str) else "",
        email=email if isinstance(email, str) else "",
        claims=Claims.from_mapping(claims),
    )


def _find_key(jwks: Dict[str, object], kid: str) -> Dict[str, object] | None:
    keys = jwks.get("keys")
    if not isinstance(keys, list):
        return None
    for key in keys:
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise IDTokenVerificationError("invalid_id_token")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise IDTokenVerificationError("invalid_id_token")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)):
        if iat - MAX_CLOCK_SKEW_SECONDS > now:
            raise IDTokenVerificationError("invalid_id_token")

    nbf = claims.get("nbf")
    if isinstance(nbf, (int, float)) and nbf - MAX_CLOCK_SKEW_SECONDS > now:
        raise IDTokenVerificationError("invalid_id_token")
