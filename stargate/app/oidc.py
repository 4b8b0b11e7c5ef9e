"""OpenID Connect relying party: discovery, code exchange and ID token checks."""
from __future__ import annotations

import asyncio
import base64
import hmac
import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Iterable
from urllib.parse import urlencode

import httpx
import jwt
from jwt import InvalidTokenError

from .jwks import JWKSClient, JWKSFetchError, JWKSKeyNotFoundError
from .sessions import Session

logger = logging.getLogger(__name__)

DEFAULT_SCOPES: tuple[str, ...] = ("openid", "email")
DEFAULT_ALGORITHMS: tuple[str, ...] = ("RS256",)
STATE_KEY = "oauth_state"
CALLBACK_KEY = "oauth_callback"


class OIDCError(RuntimeError):
    """Base error for the OIDC flow; ``message_key`` is shown to the user."""

    message_key = "error.oidc_error"


class OIDCDiscoveryError(OIDCError):
    message_key = "error.oidc_not_configured"


class OIDCTokenExchangeError(OIDCError):
    message_key = "error.oidc_token_exchange_failed"


class OIDCTokenVerificationError(OIDCError):
    message_key = "error.oidc_token_verification_failed"


def generate_state() -> str:
    """128 random bits, URL-safe base64 encoded."""

    return base64.urlsafe_b64encode(secrets.token_bytes(16)).decode("ascii")


def store_state(session: Session, state: str, callback: str | None = None) -> None:
    session.set(STATE_KEY, state)
    if callback:
        session.set(CALLBACK_KEY, callback)
    else:
        session.delete(CALLBACK_KEY)


def validate_state(session: Session, state: str | None) -> bool:
    """Consume the stored state and compare it with ``state``.

    The stored value is removed before the comparison so a state can never be
    replayed, even when the comparison fails.
    """

    stored = session.pop(STATE_KEY)
    if not isinstance(stored, str) or not stored or not state:
        return False
    return hmac.compare_digest(stored, state)


@dataclass(frozen=True, slots=True)
class ProviderMetadata:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    id_token_signing_alg_values_supported: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ProviderMetadata":
        missing = [
            name
            for name in ("issuer", "authorization_endpoint", "token_endpoint", "jwks_uri")
            if not isinstance(payload.get(name), str) or not payload.get(name)
        ]
        if missing:
            raise OIDCDiscoveryError(f"discovery document is missing: {', '.join(missing)}")
        algorithms = payload.get("id_token_signing_alg_values_supported") or ()
        return cls(
            issuer=payload["issuer"],
            authorization_endpoint=payload["authorization_endpoint"],
            token_endpoint=payload["token_endpoint"],
            jwks_uri=payload["jwks_uri"],
            id_token_signing_alg_values_supported=tuple(str(item).upper() for item in algorithms),
        )


@dataclass(frozen=True, slots=True)
class OIDCClaims:
    subject: str
    email: str = ""
    name: str = ""


class OIDCProvider:
    """Relying party bound to one issuer and client.

    Discovery runs on first use and is cached for the life of the process.
    """

    def __init__(
        self,
        *,
        issuer_url: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        provider_name: str = "OIDC",
        scopes: Iterable[str] = DEFAULT_SCOPES,
        algorithms: Iterable[str] = DEFAULT_ALGORITHMS,
        timeout_seconds: float = 10.0,
        jwks_cache_ttl_seconds: int = 600,
    ) -> None:
        if not (issuer_url and client_id and client_secret):
            raise ValueError("OIDC issuer, client ID and client secret are required")
        self._issuer_url = issuer_url.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._provider_name = provider_name
        self._scopes = tuple(scopes)
        self._algorithms = tuple(alg.upper() for alg in algorithms)
        self._timeout_seconds = timeout_seconds
        self._jwks_cache_ttl_seconds = jwks_cache_ttl_seconds
        self._metadata: ProviderMetadata | None = None
        self._jwks: JWKSClient | None = None
        self._lock = asyncio.Lock()

    @property
    def provider_name(self) -> str:
        return self._provider_name

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def redirect_uri(self) -> str:
        return self._redirect_uri

    async def _fetch_discovery(self) -> dict[str, Any]:
        url = f"{self._issuer_url}/.well-known/openid-configuration"
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.get(url, headers={"Accept": "application/json"})
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise OIDCDiscoveryError(f"OIDC discovery failed for {self._issuer_url}") from exc
        if not isinstance(payload, dict):
            raise OIDCDiscoveryError("discovery document is not a JSON object")
        return payload

    async def discover(self) -> ProviderMetadata:
        if self._metadata is not None:
            return self._metadata
        async with self._lock:
            if self._metadata is not None:
                return self._metadata
            metadata = ProviderMetadata.from_payload(await self._fetch_discovery())
            if metadata.issuer.rstrip("/") != self._issuer_url:
                raise OIDCDiscoveryError(
                    f"issuer mismatch: expected {self._issuer_url}, got {metadata.issuer}"
                )
            self._jwks = JWKSClient(
                metadata.jwks_uri,
                cache_ttl_seconds=self._jwks_cache_ttl_seconds,
                request_timeout=self._timeout_seconds,
            )
            self._metadata = metadata
            logger.info("oidc provider discovered: %s", metadata.issuer)
        return metadata

    async def authorization_url(self, state: str) -> str:
        metadata = await self.discover()
        query = urlencode(
            {
                "response_type": "code",
                "client_id": self._client_id,
                "redirect_uri": self._redirect_uri,
                "scope": " ".join(self._scopes),
                "state": state,
            }
        )
        separator = "&" if "?" in metadata.authorization_endpoint else "?"
        return f"{metadata.authorization_endpoint}{separator}{query}"

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Trade an authorization code for the provider's token response."""

        metadata = await self.discover()
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._redirect_uri,
            "client_id": self._client_id,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.post(
                    metadata.token_endpoint,
                    data=data,
                    auth=(self._client_id, self._client_secret),
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise OIDCTokenExchangeError("token endpoint unreachable") from exc
        if response.status_code != 200:
            raise OIDCTokenExchangeError(f"token endpoint returned {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise OIDCTokenExchangeError("token response is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise OIDCTokenExchangeError("token response is not a JSON object")
        return payload

    def _allowed_algorithms(self, metadata: ProviderMetadata) -> tuple[str, ...]:
        if not metadata.id_token_signing_alg_values_supported:
            return self._algorithms
        advertised = set(metadata.id_token_signing_alg_values_supported)
        return tuple(alg for alg in self._algorithms if alg in advertised) or self._algorithms

    async def verify_id_token(self, token: str) -> OIDCClaims:
        """Check signature, issuer, audience and expiry of ``token``."""

        metadata = await self.discover()
        try:
            header = jwt.get_unverified_header(token)
        except InvalidTokenError as exc:
            raise OIDCTokenVerificationError("invalid token header") from exc

        algorithm = str(header.get("alg") or "").upper()
        if algorithm not in self._allowed_algorithms(metadata):
            raise OIDCTokenVerificationError(f"unsupported signing algorithm: {algorithm or 'none'}")

        kid = header.get("kid")
        if self._jwks is None:  # pragma: no cover - discover() always sets it
            raise OIDCTokenVerificationError("JWKS client unavailable")
        try:
            jwk_entry = await self._jwks.get_signing_key_async(kid if isinstance(kid, str) else None)
        except (JWKSFetchError, JWKSKeyNotFoundError) as exc:
            raise OIDCTokenVerificationError("signing key unavailable") from exc

        try:
            key = jwt.algorithms.get_default_algorithms()[algorithm].from_jwk(json.dumps(jwk_entry))
        except Exception as exc:
            raise OIDCTokenVerificationError("failed to construct verification key") from exc

        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[algorithm],
                audience=self._client_id,
                issuer=metadata.issuer,
                options={"require": ["sub", "exp", "iss", "aud"]},
            )
        except InvalidTokenError as exc:
            raise OIDCTokenVerificationError(f"id token rejected: {exc}") from exc

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise OIDCTokenVerificationError("id token has no subject")
        email = claims.get("email")
        name = claims.get("name")
        return OIDCClaims(
            subject=subject,
            email=email.strip().lower() if isinstance(email, str) else "",
            name=name.strip() if isinstance(name, str) else "",
        )


__all__ = [
    "CALLBACK_KEY",
    "OIDCClaims",
    "OIDCDiscoveryError",
    "OIDCError",
    "OIDCProvider",
    "OIDCTokenExchangeError",
    "OIDCTokenVerificationError",
    "ProviderMetadata",
    "STATE_KEY",
    "generate_state",
    "store_state",
    "validate_state",
]
