"""Fetching and caching the OIDC provider's JSON Web Key Set."""
from __future__ import annotations

import threading
import time
from typing import Any

import anyio
import httpx

__all__ = ["JWKSClient", "JWKSFetchError", "JWKSKeyNotFoundError"]


class JWKSFetchError(RuntimeError):
    """Raised when the JWKS endpoint cannot be reached or parsed."""


class JWKSKeyNotFoundError(RuntimeError):
    """Raised when a requested key identifier is not present in the JWKS payload."""


class JWKSClient:
    """Download and cache signing keys from a JWKS endpoint."""

    def __init__(
        self,
        jwks_url: str,
        *,
        cache_ttl_seconds: int = 600,
        request_timeout: float = 10.0,
    ) -> None:
        if not jwks_url:
            raise ValueError("JWKS URL must be provided")
        self._jwks_url = jwks_url
        self._cache_ttl_seconds = max(cache_ttl_seconds, 1)
        self._request_timeout = max(request_timeout, 0.1)
        self._lock = threading.Lock()
        self._cached_keys: dict[str, dict[str, Any]] | None = None
        self._cache_expiry: float = 0.0

    def _refresh_cache(self) -> dict[str, dict[str, Any]]:
        """Fetch the latest JWKS payload from the identity provider."""

        try:
            response = httpx.get(
                self._jwks_url,
                headers={"Accept": "application/json"},
                timeout=self._request_timeout,
            )
        except httpx.HTTPError as exc:  # pragma: no cover - network failures depend on runtime
            raise JWKSFetchError("Unable to fetch JWKS payload") from exc
        if response.status_code != 200:
            raise JWKSFetchError(f"Unexpected JWKS status code: {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise JWKSFetchError("JWKS response is not valid JSON") from exc

        keys = data.get("keys") if isinstance(data, dict) else None
        if not isinstance(keys, list) or not keys:
            raise JWKSFetchError("JWKS payload does not contain signing keys")

        mapping: dict[str, dict[str, Any]] = {}
        for index, entry in enumerate(keys):
            if not isinstance(entry, dict):
                continue
            if entry.get("use") not in (None, "sig"):
                continue
            kid = entry.get("kid")
            if not isinstance(kid, str) or not kid:
                # Providers with a single key often omit ``kid``.
                kid = f"__index_{index}"
            mapping[kid] = entry

        if not mapping:
            raise JWKSFetchError("No usable signing keys were found in the JWKS payload")

        self._cached_keys = mapping
        self._cache_expiry = time.time() + self._cache_ttl_seconds
        return mapping

    def _get_cached_keys(self, *, force_refresh: bool = False) -> dict[str, dict[str, Any]]:
        with self._lock:
            now = time.time()
            if force_refresh or self._cached_keys is None or now >= self._cache_expiry:
                return self._refresh_cache()
            return self._cached_keys

    async def _get_cached_keys_async(self, *, force_refresh: bool = False) -> dict[str, dict[str, Any]]:
        """Run :meth:`_get_cached_keys` in a worker thread to keep the loop free."""

        return await anyio.to_thread.run_sync(lambda: self._get_cached_keys(force_refresh=force_refresh))

    async def get_signing_key_async(self, kid: str | None) -> dict[str, Any]:
        """Return the JWK matching ``kid``.

        The cache is refreshed once when ``kid`` is unknown, which covers key
        rotation on the provider side. A token without ``kid`` is accepted only
        when the set holds exactly one key.
        """

        keys = await self._get_cached_keys_async()
        key = self._select(keys, kid)
        if key is not None:
            return key

        keys = await self._get_cached_keys_async(force_refresh=True)
        key = self._select(keys, kid)
        if key is None:
            raise JWKSKeyNotFoundError(f"Signing key with kid '{kid}' was not found")
        return key

    @staticmethod
    def _select(keys: dict[str, dict[str, Any]], kid: str | None) -> dict[str, Any] | None:
        if kid:
            return keys.get(kid)
        if len(keys) == 1:
            return next(iter(keys.values()))
        return None
