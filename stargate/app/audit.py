"""Utilities for recording audit trail events."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from .logging import get_logger, mask_email, mask_phone

logger = get_logger("stargate.audit")

EVENT_LOGIN = "login"
EVENT_LOGIN_FAILURE = "login_failure"
EVENT_LOGOUT = "logout"
EVENT_VERIFY_CODE_SEND = "verify_code_send"
EVENT_VERIFY_CODE_CHECK = "verify_code_check"
EVENT_SESSION_CREATE = "session_create"
EVENT_SESSION_DESTROY = "session_destroy"

RESULT_SUCCESS = "success"
RESULT_FAILURE = "failure"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class AuditEvent:
    event_type: str
    result: str
    ip: str = ""
    user_id: str = ""
    method: str = ""
    channel: str = ""
    destination: str = ""
    reason: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_utc_now)

    def as_dict(self) -> dict[str, Any]:
        """Event fields with empty optional values left out."""

        payload: dict[str, Any] = {
            "timestamp": self.timestamp,
            "event_type": self.event_type,
            "result": self.result,
            "ip": self.ip,
        }
        for key in ("user_id", "method", "channel", "destination", "reason"):
            value = getattr(self, key)
            if value:
                payload[key] = value
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload


AuditSink = Callable[[AuditEvent], None]


def _text_value(value: Any) -> str:
    text = value if isinstance(value, str) else json.dumps(value, separators=(",", ":"), sort_keys=True)
    if not text or any(char.isspace() or char in '"=' for char in text):
        return json.dumps(text)
    return text


def format_text(event: AuditEvent) -> str:
    """Render ``event`` as a single ``key=value`` line."""

    return " ".join(f"{key}={_text_value(value)}" for key, value in event.as_dict().items())


def _mask_destination(channel: str, destination: str) -> str:
    if channel == "sms":
        return mask_phone(destination)
    return mask_email(destination)


class AuditLogger:
    """Emit audit events to a sink; the default sink is the structured log."""

    def __init__(self, *, enabled: bool = True, format: str = "json", sink: AuditSink | None = None) -> None:
        self._enabled = enabled
        self._format = format
        self._sink = sink or self._write

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _write(self, event: AuditEvent) -> None:
        if self._format == "text":
            logger.info(format_text(event))
            return
        fields = event.as_dict()
        # structlog stamps its own timestamp on every record
        fields.pop("timestamp", None)
        logger.info("audit_event", **fields)

    def emit(self, event: AuditEvent) -> None:
        if not self._enabled:
            return
        self._sink(event)

    def log_login(
        self,
        *,
        user_id: str,
        method: str,
        ip: str,
        success: bool,
        reason: str = "",
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        self.emit(
            AuditEvent(
                event_type=EVENT_LOGIN if success else EVENT_LOGIN_FAILURE,
                result=RESULT_SUCCESS if success else RESULT_FAILURE,
                ip=ip,
                user_id=user_id,
                method=method,
                reason=reason,
                metadata=dict(metadata or {}),
            )
        )

    def log_logout(self, *, user_id: str, ip: str) -> None:
        self.emit(AuditEvent(event_type=EVENT_LOGOUT, result=RESULT_SUCCESS, ip=ip, user_id=user_id))

    def log_verify_code_send(
        self,
        *,
        user_id: str,
        channel: str,
        destination: str,
        ip: str,
        success: bool,
        reason: str = "",
    ) -> None:
        self.emit(
            AuditEvent(
                event_type=EVENT_VERIFY_CODE_SEND,
                result=RESULT_SUCCESS if success else RESULT_FAILURE,
                ip=ip,
                user_id=user_id,
                channel=channel,
                destination=_mask_destination(channel, destination),
                reason=reason,
            )
        )

    def log_verify_code_check(self, *, user_id: str, ip: str, success: bool, reason: str = "") -> None:
        self.emit(
            AuditEvent(
                event_type=EVENT_VERIFY_CODE_CHECK,
                result=RESULT_SUCCESS if success else RESULT_FAILURE,
                ip=ip,
                user_id=user_id,
                reason=reason,
            )
        )

    def log_session_create(self, *, user_id: str, ip: str, method: str = "") -> None:
        self.emit(
            AuditEvent(
                event_type=EVENT_SESSION_CREATE,
                result=RESULT_SUCCESS,
                ip=ip,
                user_id=user_id,
                method=method,
            )
        )

    def log_session_destroy(self, *, user_id: str, ip: str) -> None:
        self.emit(AuditEvent(event_type=EVENT_SESSION_DESTROY, result=RESULT_SUCCESS, ip=ip, user_id=user_id))


__all__ = [
    "AuditEvent",
    "AuditLogger",
    "AuditSink",
    "EVENT_LOGIN",
    "EVENT_LOGIN_FAILURE",
    "EVENT_LOGOUT",
    "EVENT_SESSION_CREATE",
    "EVENT_SESSION_DESTROY",
    "EVENT_VERIFY_CODE_CHECK",
    "EVENT_VERIFY_CODE_SEND",
    "format_text",
]
