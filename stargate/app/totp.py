"""Client for the TOTP service (enrollment, verification and revocation)."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .herald import DEFAULT_SERVICE_NAME, DEFAULT_TIMEOUT_SECONDS, HeraldError, signed_headers

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TOTPStatus:
    subject: str
    totp_enabled: bool


@dataclass(frozen=True, slots=True)
class Enrollment:
    enroll_id: str
    otpauth_uri: str
    secret_base32: str = ""


@dataclass(frozen=True, slots=True)
class EnrollmentConfirmation:
    subject: str
    totp_enabled: bool
    backup_codes: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TOTPVerifyResult:
    ok: bool
    reason: str = ""


class HeraldTOTPClient:
    """Thin JSON client; every request carries the broker's auth headers."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        hmac_secret: str | None = None,
        service_name: str = DEFAULT_SERVICE_NAME,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if not base_url:
            raise ValueError("TOTP base URL must be provided")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._hmac_secret = hmac_secret
        self._service_name = service_name or DEFAULT_SERVICE_NAME
        self._timeout_seconds = timeout_seconds

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _request(
        self,
        method: str,
        path: str,
        *,
        payload: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> tuple[int, dict[str, Any]]:
        body = json.dumps(payload, separators=(",", ":")).encode("utf-8") if payload is not None else None
        headers = {"Accept": "application/json"}
        if body is not None:
            headers["Content-Type"] = "application/json"
        headers.update(
            signed_headers(
                api_key=self._api_key,
                hmac_secret=self._hmac_secret,
                service=self._service_name,
                body=body,
            )
        )
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.request(
                    method,
                    f"{self._base_url}{path}",
                    content=body,
                    params=params,
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            logger.warning("totp %s %s failed", method, path, exc_info=True)
            raise HeraldError(0, "connection_failed", str(exc) or type(exc).__name__) from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        return response.status_code, data

    @staticmethod
    def _raise_for(status_code: int, data: dict[str, Any], operation: str) -> None:
        if status_code != 200:
            reason = str(data.get("reason") or data.get("error") or "unknown_error")
            raise HeraldError(status_code, reason, f"{operation} returned {status_code}")

    async def status(self, subject: str) -> TOTPStatus:
        status_code, data = await self._request("GET", "/v1/status", params={"subject": subject})
        self._raise_for(status_code, data, "status")
        return TOTPStatus(
            subject=str(data.get("subject") or subject),
            totp_enabled=bool(data.get("totp_enabled")),
        )

    async def enroll_start(self, *, subject: str, label: str) -> Enrollment:
        status_code, data = await self._request(
            "POST",
            "/v1/enroll/start",
            payload={"subject": subject, "label": label},
        )
        self._raise_for(status_code, data, "enroll/start")
        return Enrollment(
            enroll_id=str(data.get("enroll_id") or ""),
            otpauth_uri=str(data.get("otpauth_uri") or ""),
            secret_base32=str(data.get("secret_base32") or ""),
        )

    async def enroll_confirm(self, *, enroll_id: str, code: str) -> EnrollmentConfirmation:
        status_code, data = await self._request(
            "POST",
            "/v1/enroll/confirm",
            payload={"enroll_id": enroll_id, "code": code},
        )
        self._raise_for(status_code, data, "enroll/confirm")
        return EnrollmentConfirmation(
            subject=str(data.get("subject") or ""),
            totp_enabled=bool(data.get("totp_enabled")),
            backup_codes=tuple(str(item) for item in data.get("backup_codes") or ()),
        )

    async def verify(self, *, subject: str, code: str, challenge_id: str | None = None) -> TOTPVerifyResult:
        """Verify ``code`` for ``subject``.

        A rejected code is a normal result with ``ok=False``; only transport
        failures and server errors raise.
        """

        payload: dict[str, Any] = {"subject": subject, "code": code}
        if challenge_id:
            payload["challenge_id"] = challenge_id
        status_code, data = await self._request("POST", "/v1/verify", payload=payload)
        result = TOTPVerifyResult(ok=bool(data.get("ok")), reason=str(data.get("reason") or ""))
        if status_code >= 500:
            self._raise_for(status_code, data, "verify")
        if status_code != 200:
            return TOTPVerifyResult(ok=False, reason=result.reason or "invalid")
        return result

    async def revoke(self, subject: str) -> None:
        status_code, data = await self._request("POST", "/v1/revoke", payload={"subject": subject})
        self._raise_for(status_code, data, "revoke")


__all__ = [
    "Enrollment",
    "EnrollmentConfirmation",
    "HeraldTOTPClient",
    "TOTPStatus",
    "TOTPVerifyResult",
]
