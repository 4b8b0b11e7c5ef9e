"""Client for the Warden allowlist directory."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from .logging import mask_email, mask_phone
from .metrics import record_warden_call

logger = logging.getLogger(__name__)

DEFAULT_MAX_CACHE_ENTRIES = 1024


class WardenError(RuntimeError):
    """Raised when the directory cannot be reached or answers unexpectedly."""


@dataclass(frozen=True, slots=True)
class WardenUser:
    """Directory record; immutable so cached values can be shared safely."""

    user_id: str
    phone: str = ""
    mail: str = ""
    name: str = ""
    status: str = ""
    scope: tuple[str, ...] = ()
    role: str = ""

    @property
    def active(self) -> bool:
        return self.status == "active"

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "WardenUser":
        raw_scope = payload.get("scope") or ()
        if isinstance(raw_scope, str):
            raw_scope = raw_scope.split(",")
        scope = tuple(str(item).strip() for item in raw_scope if str(item).strip())
        return cls(
            user_id=str(payload.get("user_id") or "").strip(),
            phone=str(payload.get("phone") or "").strip(),
            mail=str(payload.get("mail") or "").strip().lower(),
            name=str(payload.get("name") or "").strip(),
            status=str(payload.get("status") or "").strip().lower(),
            scope=scope,
            role=str(payload.get("role") or "").strip(),
        )


def _lookup_key(*, phone: str | None, mail: str | None, user_id: str | None) -> tuple[str, str] | None:
    """Pick the single identifier used for a lookup: user_id, then phone, then mail."""

    if user_id and user_id.strip():
        return "user_id", user_id.strip()
    if phone and phone.strip():
        return "phone", phone.strip()
    if mail and mail.strip():
        return "mail", mail.strip().lower()
    return None


class WardenClient:
    """Look users up in the directory with a short lived in-memory cache.

    Cached entries are never served past ``cache_ttl_seconds``. Lookup
    failures are not cached.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        cache_ttl_seconds: int = 300,
        timeout_seconds: float = 10.0,
        max_cache_entries: int = DEFAULT_MAX_CACHE_ENTRIES,
    ) -> None:
        if not base_url:
            raise ValueError("Warden URL must be provided")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._cache_ttl_seconds = max(cache_ttl_seconds, 0)
        self._timeout_seconds = timeout_seconds
        self._max_cache_entries = max(max_cache_entries, 1)
        self._lock = asyncio.Lock()
        self._entries: dict[tuple[str, str], tuple[WardenUser | None, float]] = {}
        self._snapshot: tuple[WardenUser, ...] | None = None
        self._snapshot_expiry: float = 0.0

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["X-API-Key"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _get(self, path: str, params: dict[str, str] | None = None) -> httpx.Response:
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.get(
                    f"{self._base_url}{path}",
                    params=params,
                    headers=self._headers(),
                )
        except httpx.HTTPError as exc:
            record_warden_call("error", time.perf_counter() - started)
            raise WardenError(f"warden request to {path} failed") from exc
        record_warden_call(
            "success" if response.status_code in (200, 404) else "error",
            time.perf_counter() - started,
        )
        return response

    def _remember(self, key: tuple[str, str], record: WardenUser | None) -> None:
        now = time.monotonic()
        for stale in [k for k, (_, expiry) in self._entries.items() if expiry <= now]:
            del self._entries[stale]
        self._entries.pop(key, None)
        while len(self._entries) >= self._max_cache_entries:
            # insertion order, oldest first
            del self._entries[next(iter(self._entries))]
        self._entries[key] = (record, now + self._cache_ttl_seconds)

    @property
    def cache_size(self) -> int:
        return len(self._entries)

    def clear_cache(self) -> None:
        self._entries.clear()
        self._snapshot = None
        self._snapshot_expiry = 0.0

    async def list_users(self, *, force_refresh: bool = False) -> list[WardenUser]:
        """Return the full user list, refreshing the snapshot when stale."""

        now = time.monotonic()
        snapshot = self._snapshot
        if not force_refresh and snapshot is not None and now < self._snapshot_expiry:
            return list(snapshot)

        response = await self._get("/")
        if response.status_code != 200:
            raise WardenError(f"unexpected warden status code: {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise WardenError("warden response is not valid JSON") from exc
        if not isinstance(payload, list):
            raise WardenError("warden user list must be a JSON array")

        users = tuple(WardenUser.from_payload(entry) for entry in payload if isinstance(entry, dict))
        async with self._lock:
            self._snapshot = users
            self._snapshot_expiry = time.monotonic() + self._cache_ttl_seconds
        return list(users)

    async def warm_cache(self) -> int:
        """Seed per-identifier entries from the full list; returns the user count.

        Startup must not depend on the directory, so failures are only logged.
        """

        try:
            users = await self.list_users(force_refresh=True)
        except WardenError:
            logger.warning("warden cache warm-up failed", exc_info=True)
            return 0
        if not self._cache_ttl_seconds:
            return len(users)
        async with self._lock:
            for user in users:
                for key in (("user_id", user.user_id), ("phone", user.phone), ("mail", user.mail)):
                    if key[1]:
                        self._remember(key, user)
        logger.info("warden cache warmed with %d users", len(users))
        return len(users)

    async def lookup_user(
        self,
        *,
        phone: str | None = None,
        mail: str | None = None,
        user_id: str | None = None,
    ) -> WardenUser | None:
        """Return the active user matching the identifier.

        Raises :class:`WardenError` when the directory cannot answer.
        """

        key = _lookup_key(phone=phone, mail=mail, user_id=user_id)
        if key is None:
            return None

        cached = self._entries.get(key)
        if cached is not None and time.monotonic() < cached[1]:
            record = cached[0]
            return record if record is not None and record.active else None

        response = await self._get("/user", params={key[0]: key[1]})
        if response.status_code == 404:
            record = None
        elif response.status_code == 200:
            try:
                payload = response.json()
            except ValueError as exc:
                raise WardenError("warden response is not valid JSON") from exc
            if not isinstance(payload, dict):
                raise WardenError("warden user record must be a JSON object")
            record = WardenUser.from_payload(payload)
        else:
            raise WardenError(f"unexpected warden status code: {response.status_code}")

        if self._cache_ttl_seconds:
            async with self._lock:
                self._remember(key, record)

        if record is None or not record.active:
            return None
        return record

    async def get_user(
        self,
        *,
        phone: str | None = None,
        mail: str | None = None,
        user_id: str | None = None,
    ) -> WardenUser | None:
        """Like :meth:`lookup_user` but treats directory failures as not found."""

        try:
            return await self.lookup_user(phone=phone, mail=mail, user_id=user_id)
        except WardenError:
            logger.warning(
                "warden lookup failed for phone=%s mail=%s",
                mask_phone(phone),
                mask_email(mail),
                exc_info=True,
            )
            return None

    async def check_in_list(self, phone: str | None, mail: str | None) -> bool:
        return await self.get_user(phone=phone, mail=mail) is not None

    async def health(self) -> None:
        response = await self._get("/health")
        if response.status_code >= 400:
            raise WardenError(f"warden health returned {response.status_code}")


__all__ = ["WardenClient", "WardenError", "WardenUser"]
