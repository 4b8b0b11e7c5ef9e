"""Client for the Herald credential broker (one-time codes over SMS/e-mail)."""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import ssl
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from .metrics import record_herald_call

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "stargate"
DEFAULT_TIMEOUT_SECONDS = 10.0


def _body_text(body: bytes | str | None) -> str:
    if body is None:
        return ""
    if isinstance(body, bytes):
        return body.decode("utf-8")
    return body


def compute_signature(secret: str, timestamp: str, service: str, body: bytes | str | None) -> str:
    """Hex HMAC-SHA256 over ``"<timestamp>:<service>:<body>"``."""

    message = f"{timestamp}:{service}:{_body_text(body)}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(
    secret: str,
    timestamp: str,
    service: str,
    body: bytes | str | None,
    signature: str,
) -> bool:
    expected = compute_signature(secret, timestamp, service, body)
    return hmac.compare_digest(expected, signature.strip().lower())


def signed_headers(
    *,
    api_key: str | None,
    hmac_secret: str | None,
    service: str,
    body: bytes | str | None,
    timestamp: int | None = None,
) -> dict[str, str]:
    """Authentication headers shared by the broker and the TOTP service."""

    headers: dict[str, str] = {}
    if api_key:
        headers["X-API-Key"] = api_key
    if hmac_secret:
        ts = str(timestamp if timestamp is not None else int(time.time()))
        headers["X-Timestamp"] = ts
        headers["X-Service"] = service
        headers["X-Signature"] = compute_signature(hmac_secret, ts, service, body)
    return headers


class HeraldError(RuntimeError):
    """Failure reported by the broker; ``status_code`` 0 means no response."""

    def __init__(
        self,
        status_code: int,
        reason: str,
        message: str = "",
        *,
        result: "VerifyResult | None" = None,
    ) -> None:
        self.status_code = status_code
        self.reason = reason
        self.message = message or reason
        self.result = result
        super().__init__(f"herald error (status={status_code}, reason={reason}): {self.message}")

    @property
    def is_connection_error(self) -> bool:
        return self.status_code == 0 or self.reason == "connection_failed"


@dataclass(frozen=True, slots=True)
class Challenge:
    challenge_id: str
    expires_in: int = 0
    next_resend_in: int = 0


@dataclass(frozen=True, slots=True)
class VerifyResult:
    ok: bool
    user_id: str = ""
    amr: tuple[str, ...] = ()
    issued_at: int = 0
    reason: str = ""
    remaining_attempts: int | None = None
    next_resend_in: int | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "VerifyResult":
        amr = payload.get("amr") or ()
        return cls(
            ok=bool(payload.get("ok")),
            user_id=str(payload.get("user_id") or ""),
            amr=tuple(str(item) for item in amr),
            issued_at=int(payload.get("issued_at") or 0),
            reason=str(payload.get("reason") or ""),
            remaining_attempts=payload.get("remaining_attempts"),
            next_resend_in=payload.get("next_resend_in"),
        )


@dataclass(slots=True)
class TLSOptions:
    ca_cert_file: str | None = None
    client_cert_file: str | None = None
    client_key_file: str | None = None
    server_name: str | None = None
    insecure_skip_verify: bool = False
    _context: ssl.SSLContext | None = field(default=None, repr=False)

    @property
    def configured(self) -> bool:
        return bool(
            self.ca_cert_file
            or self.client_cert_file
            or self.server_name
            or self.insecure_skip_verify
        )

    def verify(self) -> ssl.SSLContext | bool:
        if self.insecure_skip_verify:
            return False
        if self._context is None:
            context = ssl.create_default_context(cafile=self.ca_cert_file)
            if self.client_cert_file and self.client_key_file:
                context.load_cert_chain(self.client_cert_file, self.client_key_file)
            self._context = context
        return self._context


def _json_body(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def _error_reason(response: httpx.Response) -> tuple[str, str]:
    try:
        data = response.json()
    except ValueError:
        return "unknown_error", response.text[:200]
    if not isinstance(data, dict):
        return "unknown_error", ""
    reason = str(data.get("reason") or data.get("error") or "unknown_error")
    message = str(data.get("message") or data.get("error") or reason)
    return reason, message


class HeraldClient:
    """Create and verify OTP challenges on the broker."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        hmac_secret: str | None = None,
        service_name: str = DEFAULT_SERVICE_NAME,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        tls: TLSOptions | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("Herald URL must be provided")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._hmac_secret = hmac_secret
        self._service_name = service_name or DEFAULT_SERVICE_NAME
        self._timeout_seconds = timeout_seconds
        self._tls = tls or TLSOptions()

    @property
    def base_url(self) -> str:
        return self._base_url

    def _client(self) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {"timeout": self._timeout_seconds}
        if self._tls.configured:
            kwargs["verify"] = self._tls.verify()
        return httpx.AsyncClient(**kwargs)

    async def _post(
        self,
        operation: str,
        path: str,
        payload: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> httpx.Response:
        body = _json_body(payload)
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        headers.update(
            signed_headers(
                api_key=self._api_key,
                hmac_secret=self._hmac_secret,
                service=self._service_name,
                body=body,
            )
        )
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        extensions = {"sni_hostname": self._tls.server_name} if self._tls.server_name else None

        started = time.perf_counter()
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self._base_url}{path}",
                    content=body,
                    headers=headers,
                    extensions=extensions,
                )
        except httpx.HTTPError as exc:
            record_herald_call(operation, "error", time.perf_counter() - started)
            logger.warning("herald %s request failed", operation, exc_info=True)
            raise HeraldError(0, "connection_failed", str(exc) or type(exc).__name__) from exc
        record_herald_call(
            operation,
            "success" if response.status_code == 200 else "failure",
            time.perf_counter() - started,
        )
        return response

    async def create_challenge(
        self,
        *,
        user_id: str,
        channel: str,
        destination: str,
        purpose: str = "login",
        locale: str = "en-US",
        client_ip: str = "",
        user_agent: str = "",
        idempotency_key: str | None = None,
    ) -> Challenge:
        payload = {
            "user_id": user_id,
            "channel": channel,
            "destination": destination,
            "purpose": purpose,
            "locale": locale,
            "client_ip": client_ip,
            "ua": user_agent,
        }
        response = await self._post(
            "create_challenge",
            "/v1/otp/challenges",
            payload,
            idempotency_key=idempotency_key,
        )
        if response.status_code != 200:
            reason, message = _error_reason(response)
            raise HeraldError(response.status_code, reason, message)
        try:
            data = response.json()
        except ValueError as exc:
            raise HeraldError(response.status_code, "invalid_response", "response is not JSON") from exc
        return Challenge(
            challenge_id=str(data.get("challenge_id") or ""),
            expires_in=int(data.get("expires_in") or 0),
            next_resend_in=int(data.get("next_resend_in") or 0),
        )

    async def verify_challenge(
        self,
        *,
        challenge_id: str,
        code: str,
        client_ip: str = "",
        idempotency_key: str | None = None,
    ) -> VerifyResult:
        """Verify ``code``; a non-200 answer raises with the parsed result attached."""

        payload = {"challenge_id": challenge_id, "code": code, "client_ip": client_ip}
        response = await self._post(
            "verify_challenge",
            "/v1/otp/verifications",
            payload,
            idempotency_key=idempotency_key,
        )
        try:
            data = response.json()
        except ValueError as exc:
            raise HeraldError(response.status_code, "invalid_response", "response is not JSON") from exc
        if not isinstance(data, dict):
            raise HeraldError(response.status_code, "invalid_response", "response is not an object")

        result = VerifyResult.from_payload(data)
        if response.status_code != 200:
            reason = result.reason or "unknown_error"
            raise HeraldError(
                response.status_code,
                reason,
                str(data.get("message") or reason),
                result=result,
            )
        return result

    async def health(self) -> None:
        try:
            async with self._client() as client:
                response = await client.get(f"{self._base_url}/healthz", timeout=2.0)
        except httpx.HTTPError as exc:
            raise HeraldError(0, "connection_failed", str(exc)) from exc
        if response.status_code >= 400:
            raise HeraldError(response.status_code, "unhealthy")


__all__ = [
    "Challenge",
    "HeraldClient",
    "HeraldError",
    "TLSOptions",
    "VerifyResult",
    "compute_signature",
    "signed_headers",
    "verify_signature",
]
