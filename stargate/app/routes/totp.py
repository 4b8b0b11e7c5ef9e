"""Authenticator enrollment and revocation pages."""
from __future__ import annotations

import logging
from html import escape
from typing import Any

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from ..dependencies import get_session_store, get_totp_client
from ..herald import HeraldError
from ..responses import error_response, html_page, t
from ..sessions import Session, SessionStore, is_authenticated
from ..totp import HeraldTOTPClient

router = APIRouter(prefix="/totp", tags=["totp"])

logger = logging.getLogger(__name__)


def _fail(status_code: int, error: str) -> JSONResponse:
    return JSONResponse({"ok": False, "error": error}, status_code=status_code)


async def _read_fields(request: Request) -> dict[str, str]:
    """Accept either a JSON object or a form body."""

    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            payload: Any = await request.json()
        except ValueError:
            return {}
        if not isinstance(payload, dict):
            return {}
        return {str(key): str(value).strip() for key, value in payload.items() if value is not None}
    form = await request.form()
    return {key: value.strip() for key, value in form.items() if isinstance(value, str)}


def _enrollment_label(session: Session, user_id: str) -> str:
    return session.get_str("user_mail") or session.get_str("user_phone") or user_id


@router.get("/enroll")
async def enroll_start(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    totp: HeraldTOTPClient | None = Depends(get_totp_client),
) -> Response:
    session = await store.load(request)
    if not is_authenticated(session):
        return RedirectResponse(url="/_login", status_code=status.HTTP_302_FOUND)
    user_id = session.get_str("user_id")
    if not user_id:
        return error_response(request, status.HTTP_400_BAD_REQUEST, "error.user_id_missing")
    if totp is None:
        return error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, "error.totp_not_configured")

    try:
        enrollment = await totp.enroll_start(subject=user_id, label=_enrollment_label(session, user_id))
    except HeraldError:
        logger.warning("totp enrollment start failed for %s", user_id, exc_info=True)
        return error_response(request, status.HTTP_502_BAD_GATEWAY, "error.totp_enroll_failed")

    uri = escape(enrollment.otpauth_uri, quote=True)
    body = (
        f"<h1>{escape(t(request, 'totp.enroll_title'))}</h1>"
        f"<p>{escape(t(request, 'totp.enroll_prompt'))}</p>"
        f'<p><a href="{uri}">{uri}</a></p>'
        '<form method="post" action="/totp/enroll/confirm">'
        f'<input type="hidden" name="enroll_id" value="{escape(enrollment.enroll_id, quote=True)}">'
        '<input type="text" name="code" inputmode="numeric" autocomplete="one-time-code" required>'
        f'<button type="submit">{escape(t(request, "common.confirm"))}</button>'
        "</form>"
    )
    return html_page(t(request, "totp.enroll_title"), body)


@router.post("/enroll/confirm")
async def enroll_confirm(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    totp: HeraldTOTPClient | None = Depends(get_totp_client),
) -> Response:
    """Confirm enrollment; the backup codes are handed out exactly once."""

    session = await store.load(request)
    if not is_authenticated(session):
        return _fail(status.HTTP_401_UNAUTHORIZED, "unauthorized")

    fields = await _read_fields(request)
    enroll_id = fields.get("enroll_id", "")
    code = fields.get("code", "")
    if not (enroll_id and code):
        return _fail(status.HTTP_400_BAD_REQUEST, "enroll_id and code required")
    if totp is None:
        return _fail(status.HTTP_503_SERVICE_UNAVAILABLE, "TOTP service unavailable")

    try:
        confirmation = await totp.enroll_confirm(enroll_id=enroll_id, code=code)
    except HeraldError as exc:
        logger.info("totp enrollment confirm rejected: %s", exc.reason)
        return _fail(status.HTTP_400_BAD_REQUEST, "invalid_code")

    return JSONResponse(
        {
            "ok": True,
            "subject": confirmation.subject,
            "totp_enabled": confirmation.totp_enabled,
            "backup_codes": list(confirmation.backup_codes),
        }
    )


@router.get("/revoke")
async def revoke_page(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    totp: HeraldTOTPClient | None = Depends(get_totp_client),
) -> Response:
    session = await store.load(request)
    if not is_authenticated(session):
        return RedirectResponse(url="/_login", status_code=status.HTTP_302_FOUND)
    if totp is None:
        return error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, "error.totp_not_configured")
    if not session.get_str("user_id"):
        return error_response(request, status.HTTP_400_BAD_REQUEST, "error.user_id_missing")

    body = (
        f"<h1>{escape(t(request, 'totp.revoke_title'))}</h1>"
        f"<p>{escape(t(request, 'totp.revoke_prompt'))}</p>"
        '<form method="post" action="/totp/revoke">'
        f'<button type="submit">{escape(t(request, "common.confirm"))}</button>'
        "</form>"
    )
    return html_page(t(request, "totp.revoke_title"), body)


@router.post("/revoke")
async def revoke(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    totp: HeraldTOTPClient | None = Depends(get_totp_client),
) -> Response:
    session = await store.load(request)
    if not is_authenticated(session):
        return _fail(status.HTTP_401_UNAUTHORIZED, "unauthorized")
    if totp is None:
        return _fail(status.HTTP_503_SERVICE_UNAVAILABLE, "TOTP service unavailable")
    user_id = session.get_str("user_id")
    if not user_id:
        return _fail(status.HTTP_400_BAD_REQUEST, "user_id not in session")

    try:
        await totp.revoke(user_id)
    except HeraldError:
        logger.warning("totp revoke failed for %s", user_id, exc_info=True)
        return _fail(status.HTTP_502_BAD_GATEWAY, "revoke_failed")
    return JSONResponse({"ok": True, "subject": user_id})


__all__ = ["router"]
