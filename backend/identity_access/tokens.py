"""
Session token verification for the identity provider's sign-in widget.

Why: The browser signs in with the hosted identity provider and hands its
short-lived session JWT to ``POST /auth/session``. Verifying that token here,
outside the web adapter, keeps the cryptography unit-testable.

Security: Signatures are checked against the provider's JWKS with RS256 only.
Issuer, audience (when configured), authorized party (when configured) and
the temporal claims are enforced. Nothing from an unverified token is trusted.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import requests
from jose import jwt
from jose.exceptions import JOSEError


class IDTokenVerificationError(Exception):
    """Raised when the session token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class TokenVerifierConfig:
    issuer: str  # e.g. https://clerk.campus.example
    jwks_url: str = ""
    audience: Optional[str] = None
    authorized_parties: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def resolved_jwks_url(self) -> str:
        return self.jwks_url or f"{self.issuer.rstrip('/')}/.well-known/jwks.json"


@dataclass
class _CacheEntry:
    jwks: Dict[str, object]
    expires_at: float


class JWKSCache:
    """Small in-memory cache for JWKS responses, keyed by URL."""

    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, _CacheEntry] = {}

    def get(self, cfg: TokenVerifierConfig) -> Dict[str, object]:
        url = cfg.resolved_jwks_url
        now = time.time()
        entry = self._entries.get(url)
        if entry and entry.expires_at > now:
            return entry.jwks

        jwks = self._fetch(url)
        self._entries[url] = _CacheEntry(jwks=jwks, expires_at=now + self.ttl_seconds)
        return jwks

    def _fetch(self, url: str) -> Dict[str, object]:
        try:
            resp = requests.get(url, timeout=5)
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

MAX_CLOCK_SKEW_SECONDS = 5


def verify_session_token(
    *,
    token: str,
    cfg: TokenVerifierConfig,
    cache: JWKSCache | None = None,
) -> Dict[str, object]:
    """Validate a provider session token and return its claims.

    Raises
    ------
    IDTokenVerificationError:
        When the token is malformed or fails signature, issuer, audience,
        authorized-party or expiry checks.
    """
    if not cfg.issuer:
        raise IDTokenVerificationError("verifier_not_configured")
    cache = cache or JWKS_CACHE
    try:
        header = jwt.get_unverified_header(token)
    except JOSEError as exc:
        raise IDTokenVerificationError("invalid_token") from exc
    kid = header.get("kid")
    if not kid:
        raise IDTokenVerificationError("missing_kid")
    key_dict = _find_key(cache.get(cfg), kid)
    if not key_dict:
        raise IDTokenVerificationError("unknown_kid")

    try:
        claims = jwt.decode(
            token,
            key_dict,
            algorithms=["RS256"],
            audience=cfg.audience,
            issuer=cfg.issuer,
            options={
                "verify_signature": True,
                "verify_aud": bool(cfg.audience),
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
                "verify_at_hash": False,
            },
        )
    except JOSEError as exc:
        raise IDTokenVerificationError("invalid_token") from exc

    _validate_temporal_claims(claims)
    if cfg.authorized_parties and claims.get("azp") not in cfg.authorized_parties:
        raise IDTokenVerificationError("invalid_azp")
    if not claims.get("sub"):
        raise IDTokenVerificationError("missing_sub")
    return claims


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
        raise IDTokenVerificationError("invalid_token")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise IDTokenVerificationError("token_expired")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)) and iat - MAX_CLOCK_SKEW_SECONDS > now:
        raise IDTokenVerificationError("invalid_token")

    nbf = claims.get("nbf")
    if isinstance(nbf, (int, float)) and nbf - MAX_CLOCK_SKEW_SECONDS > now:
        raise IDTokenVerificationError("invalid_token")


def identity_from_claims(claims: Dict[str, object]) -> Tuple[str, Optional[str], str]:
    """Return ``(sub, email, name)`` from verified claims.

    The provider's session-token template is expected to add ``email`` and
    ``name``; ``email_address`` and first/last name claims are accepted too.
    """
    sub = str(claims.get("sub") or "")
    email = claims.get("email") or claims.get("email_address") or claims.get("primary_email_address")
    email = str(email).strip().lower() if email else None
    name = claims.get("name") or claims.get("full_name")
    if not name:
        parts = [str(claims.get(k) or "").strip() for k in ("first_name", "last_name")]
        name = " ".join(p for p in parts if p)
    if not name:
        name = email.split("@")[0] if email else "User"
    return sub, email, str(name)


__all__ = [
    "IDTokenVerificationError",
    "JWKSCache",
    "TokenVerifierConfig",
    "identity_from_claims",
    "verify_session_token",
]
