"""Exception hierarchy surfaced to clients through the error renderer."""
from __future__ import annotations

from typing import Any

from fastapi import status


class StargateError(Exception):
    """Base error carrying an HTTP status and a translatable message key."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message_key: str = "error.internal"
    reason: str | None = None

    def __init__(
        self,
        message_key: str | None = None,
        *,
        status_code: int | None = None,
        values: dict[str, Any] | None = None,
        detail: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.message_key = message_key or self.message_key
        self.reason = reason or self.reason
        if status_code is not None:
            self.status_code = status_code
        self.values = dict(values or {})
        self.detail = detail
        super().__init__(detail or self.message_key)


class BadInput(StargateError):
    status_code = status.HTTP_400_BAD_REQUEST
    message_key = "error.missing_fields"


class AuthDenied(StargateError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message_key = "error.auth_required"


class StepUpRequired(StargateError):
    status_code = status.HTTP_403_FORBIDDEN
    message_key = "error.step_up_required"


class RateLimited(StargateError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    message_key = "error.verify_code_rate_limited"
    reason = "rate_limited"


class SessionStoreError(StargateError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message_key = "error.session_store_failed"


class UpstreamUnavailable(StargateError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    message_key = "error.herald_unavailable"


__all__ = [
    "AuthDenied",
    "BadInput",
    "RateLimited",
    "SessionStoreError",
    "StargateError",
    "StepUpRequired",
    "UpstreamUnavailable",
]
