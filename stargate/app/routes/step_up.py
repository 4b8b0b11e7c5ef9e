"""Step-up verification with the authenticator app."""
from __future__ import annotations

import logging
from html import escape

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from ..dependencies import get_session_store, get_totp_client
from ..forwarding import build_callback_url, extract_client_ip, forwarded_proto, is_secure, safe_callback
from ..herald import HeraldError
from ..metrics import record_auth_request
from ..responses import error_response, html_page, is_html_request, t
from ..sessions import STEP_UP_KEY, Session, SessionStore, is_authenticated
from ..totp import HeraldTOTPClient

router = APIRouter(tags=["step-up"])

logger = logging.getLogger(__name__)


def safe_next_path(value: str | None) -> str:
    """Return ``value`` when it is a local absolute path, else ``""``."""

    if not value:
        return ""
    value = value.strip()
    if not value.startswith("/") or value.startswith("//") or "\\" in value:
        return ""
    return value


async def _require_subject(
    request: Request,
    store: SessionStore,
    totp: HeraldTOTPClient | None,
) -> tuple[Session, str, HeraldTOTPClient] | Response:
    session = await store.load(request)
    if not is_authenticated(session):
        if is_html_request(request):
            return RedirectResponse(url=build_callback_url(request), status_code=status.HTTP_302_FOUND)
        return error_response(request, status.HTTP_401_UNAUTHORIZED, "error.auth_required")
    user_id = session.get_str("user_id")
    if not user_id:
        return error_response(request, status.HTTP_400_BAD_REQUEST, "error.user_id_missing")
    if totp is None:
        return error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, "error.totp_not_configured")
    return session, user_id, totp


@router.get("/_step_up")
async def step_up_page(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    totp: HeraldTOTPClient | None = Depends(get_totp_client),
) -> Response:
    outcome = await _require_subject(request, store, totp)
    if isinstance(outcome, Response):
        return outcome

    callback = safe_callback(request.query_params.get("callback"))
    next_path = safe_next_path(request.query_params.get("next"))
    hidden = ""
    if callback:
        hidden += f'<input type="hidden" name="callback" value="{escape(callback, quote=True)}">'
    if next_path:
        hidden += f'<input type="hidden" name="next" value="{escape(next_path, quote=True)}">'
    body = (
        f"<h1>{escape(t(request, 'step_up.title'))}</h1>"
        f"<p>{escape(t(request, 'step_up.prompt'))}</p>"
        f'<form method="post" action="/_step_up">{hidden}'
        '<input type="text" name="code" inputmode="numeric" autocomplete="one-time-code" required>'
        f'<button type="submit">{escape(t(request, "login.submit"))}</button>'
        "</form>"
    )
    return html_page(t(request, "step_up.title"), body)


@router.post("/_step_up")
async def step_up_verify(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    totp: HeraldTOTPClient | None = Depends(get_totp_client),
) -> Response:
    """Verify an authenticator code and mark the session as stepped up."""

    outcome = await _require_subject(request, store, totp)
    if isinstance(outcome, Response):
        return outcome
    session, user_id, client = outcome

    form = await request.form()
    code = form.get("code")
    code = code.strip() if isinstance(code, str) else ""
    if not code:
        return error_response(request, status.HTTP_400_BAD_REQUEST, "error.missing_fields")

    try:
        result = await client.verify(subject=user_id, code=code)
    except HeraldError:
        logger.warning("step-up verification unavailable for %s", user_id, exc_info=True)
        return error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, "error.totp_unavailable")
    if not result.ok:
        record_auth_request("step_up", "failure")
        logger.info("step-up rejected for %s from %s: %s", user_id, extract_client_ip(request), result.reason)
        return error_response(request, status.HTTP_401_UNAUTHORIZED, "error.step_up_failed")

    session.set(STEP_UP_KEY, True)
    session.append_unique("user_amr", ["totp"])
    record_auth_request("step_up", "success")

    raw_callback = form.get("callback")
    raw_next = form.get("next")
    callback = safe_callback(raw_callback if isinstance(raw_callback, str) else None)
    next_path = safe_next_path(raw_next if isinstance(raw_next, str) else None)

    response: Response
    if callback:
        response = RedirectResponse(
            url=f"{forwarded_proto(request)}://{callback}{next_path or '/'}",
            status_code=status.HTTP_302_FOUND,
        )
    elif is_html_request(request):
        response = RedirectResponse(url=next_path or "/", status_code=status.HTTP_302_FOUND)
    else:
        response = JSONResponse({"ok": True})
    await store.save(session, response, secure=is_secure(request))
    return response


__all__ = ["router", "safe_next_path"]
