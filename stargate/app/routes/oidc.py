"""OpenID Connect login: redirect to the provider and handle its callback."""
from __future__ import annotations

import logging
from html import escape

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import RedirectResponse

from ..audit import AuditLogger
from ..dependencies import get_audit_logger, get_oidc_provider, get_session_store
from ..errors import SessionStoreError
from ..forwarding import (
    CALLBACK_COOKIE_NAME,
    clear_callback_cookie,
    extract_client_ip,
    forwarded_proto,
    is_secure,
    safe_callback,
    session_exchange_url,
)
from ..metrics import record_auth_request, record_session_created
from ..oidc import (
    CALLBACK_KEY,
    OIDCError,
    OIDCProvider,
    generate_state,
    store_state,
    validate_state,
)
from ..responses import error_response, html_page, is_html_request, t
from ..sessions import SessionStore, authenticate

router = APIRouter(prefix="/_oidc", tags=["oidc"])

logger = logging.getLogger(__name__)

METHOD_OIDC = "oidc"


def _oidc_error(request: Request, key: str) -> Response:
    """Error page with a retry link for browsers, negotiated 400 otherwise."""

    message = t(request, key)
    if is_html_request(request):
        body = (
            f"<h1>{escape(t(request, 'error.oidc_error'))}</h1>"
            f"<p>{escape(message)}</p>"
            f'<p><a href="/_login">{escape(t(request, "common.retry"))}</a></p>'
        )
        return html_page(t(request, "error.oidc_error"), body, status_code=status.HTTP_400_BAD_REQUEST)
    return error_response(request, status.HTTP_400_BAD_REQUEST, key)


@router.get("/login")
async def oidc_login(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    provider: OIDCProvider | None = Depends(get_oidc_provider),
) -> Response:
    if provider is None:
        return error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, "error.oidc_not_configured")

    session = await store.load(request)
    state = generate_state()
    callback = safe_callback(request.query_params.get("callback")) or safe_callback(
        request.cookies.get(CALLBACK_COOKIE_NAME)
    )
    store_state(session, state, callback)

    try:
        target = await provider.authorization_url(state)
    except OIDCError:
        logger.warning("oidc authorization url unavailable", exc_info=True)
        return error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, "error.oidc_not_configured")

    response = RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)
    await store.save(session, response, secure=is_secure(request))
    return response


@router.get("/callback")
async def oidc_callback(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    provider: OIDCProvider | None = Depends(get_oidc_provider),
    audit: AuditLogger = Depends(get_audit_logger),
) -> Response:
    if provider is None:
        return error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, "error.oidc_not_configured")

    try:
        session = await store.load(request)
    except SessionStoreError:
        logger.warning("session store unavailable during oidc callback", exc_info=True)
        return _oidc_error(request, "error.session_store_failed")

    ip = extract_client_ip(request)
    code = request.query_params.get("code", "").strip()
    state = request.query_params.get("state", "").strip()
    if not code or not state:
        return _oidc_error(request, "error.oidc_missing_code")

    state_ok = validate_state(session, state)
    stored_callback = session.pop(CALLBACK_KEY)
    callback = safe_callback(stored_callback if isinstance(stored_callback, str) else None)
    if not session.fresh:
        # the consumed state must not survive a failed comparison
        await store.save(session)
    if not state_ok:
        record_auth_request(METHOD_OIDC, "failure")
        audit.log_login(user_id="", method=METHOD_OIDC, ip=ip, success=False, reason="invalid_state")
        return _oidc_error(request, "error.oidc_invalid_state")

    try:
        tokens = await provider.exchange_code(code)
    except OIDCError:
        logger.warning("oidc code exchange failed", exc_info=True)
        record_auth_request(METHOD_OIDC, "failure")
        return _oidc_error(request, "error.oidc_token_exchange_failed")

    id_token = tokens.get("id_token")
    if not isinstance(id_token, str) or not id_token:
        record_auth_request(METHOD_OIDC, "failure")
        return _oidc_error(request, "error.oidc_missing_id_token")

    try:
        claims = await provider.verify_id_token(id_token)
    except OIDCError:
        logger.warning("oidc id token rejected", exc_info=True)
        record_auth_request(METHOD_OIDC, "failure")
        audit.log_login(user_id="", method=METHOD_OIDC, ip=ip, success=False, reason="token_verification_failed")
        return _oidc_error(request, "error.oidc_token_verification_failed")

    session.clear_user()
    session.set_user(user_id=claims.subject, mail=claims.email, name=claims.name, amr=[METHOD_OIDC])
    session.set("provider", METHOD_OIDC)
    authenticate(session)

    if callback:
        target = session_exchange_url(forwarded_proto(request), callback, session.id)
    else:
        target = f"/_session_exchange?id={session.id}"
    response = RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)
    await store.save(session, response, secure=is_secure(request))
    clear_callback_cookie(response, request)

    record_auth_request(METHOD_OIDC, "success")
    record_session_created()
    audit.log_login(user_id=claims.subject, method=METHOD_OIDC, ip=ip, success=True)
    audit.log_session_create(user_id=claims.subject, ip=ip, method=METHOD_OIDC)
    return response


__all__ = ["router"]
