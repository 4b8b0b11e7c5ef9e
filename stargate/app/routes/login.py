"""Login endpoints: the login page, form submission and code delivery."""
from __future__ import annotations

import hashlib
import logging
from html import escape
from typing import Any

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.datastructures import FormData

from ..audit import AuditLogger
from ..config import settings
from ..dependencies import (
    get_audit_logger,
    get_herald_client,
    get_oidc_provider,
    get_password_set,
    get_session_store,
    get_totp_client,
    get_warden_client,
)
from ..errors import RateLimited, UpstreamUnavailable
from ..forwarding import (
    CALLBACK_COOKIE_NAME,
    clear_callback_cookie,
    extract_client_ip,
    forwarded_host,
    forwarded_proto,
    is_different_domain,
    is_secure,
    safe_callback,
    session_exchange_url,
    set_callback_cookie,
)
from ..herald import HeraldClient, HeraldError
from ..i18n import herald_locale
from ..logging import mask_email, mask_phone
from ..metrics import record_auth_request, record_session_created
from ..oidc import OIDCProvider
from ..passwords import PasswordSet
from ..responses import error_response, html_page, is_html_request, language_for, t
from ..sessions import Session, SessionStore, authenticate, is_authenticated
from ..totp import HeraldTOTPClient
from ..warden import WardenClient, WardenError, WardenUser

router = APIRouter(tags=["login"])

logger = logging.getLogger(__name__)

METHOD_PASSWORD = "password"
METHOD_WARDEN = "warden"


def derive_user_id(phone: str | None, mail: str | None) -> str:
    """Stable identifier for directory users that carry no ``user_id``."""

    source = (phone or "").strip() or (mail or "").strip().lower()
    return "u_" + hashlib.sha256(source.encode("utf-8")).hexdigest()[:16]


def _form_value(form: FormData, name: str) -> str:
    value = form.get(name)
    return value.strip() if isinstance(value, str) else ""


_VERIFY_REASONS = frozenset(
    {"expired", "invalid", "locked", "too_many_attempts", "rate_limited", "send_failed", "unauthorized"}
)


def _herald_verify_error(request: Request, exc: HeraldError) -> Response:
    """Translate a rejected verification into the caller facing 401."""

    result = exc.result
    reason = exc.reason
    if reason == "expired":
        return error_response(request, status.HTTP_401_UNAUTHORIZED, "error.verify_code_expired")
    if reason == "invalid":
        if result is not None and result.remaining_attempts is not None:
            return error_response(
                request,
                status.HTTP_401_UNAUTHORIZED,
                "error.verify_code_invalid_remaining",
                remaining=result.remaining_attempts,
            )
        return error_response(request, status.HTTP_401_UNAUTHORIZED, "error.verify_code_invalid")
    if reason == "locked":
        return error_response(request, status.HTTP_401_UNAUTHORIZED, "error.verify_code_locked")
    if reason == "too_many_attempts":
        return error_response(request, status.HTTP_401_UNAUTHORIZED, "error.verify_code_too_many_attempts")
    if reason == "rate_limited":
        if result is not None and result.next_resend_in:
            return error_response(
                request,
                status.HTTP_401_UNAUTHORIZED,
                "error.verify_code_rate_limited_wait",
                seconds=result.next_resend_in,
            )
        return error_response(request, status.HTTP_401_UNAUTHORIZED, "error.verify_code_rate_limited")
    if reason == "send_failed":
        return error_response(request, status.HTTP_401_UNAUTHORIZED, "error.verify_code_send_failed")
    if reason == "unauthorized":
        return error_response(request, status.HTTP_401_UNAUTHORIZED, "error.verify_code_unauthorized")
    return error_response(request, status.HTTP_401_UNAUTHORIZED, "error.verify_code_failed")


def _herald_unavailable(request: Request, totp: HeraldTOTPClient | None) -> Response:
    key = "error.herald_unavailable_totp" if totp is not None else "error.herald_unavailable"
    return error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, key)


async def _lookup_directory_user(
    request: Request,
    warden: WardenClient,
    audit: AuditLogger,
    *,
    phone: str,
    mail: str,
) -> WardenUser | Response:
    ip = extract_client_ip(request)
    try:
        user = await warden.lookup_user(phone=phone or None, mail=mail or None)
    except WardenError as exc:
        logger.warning(
            "warden lookup failed for phone=%s mail=%s",
            mask_phone(phone),
            mask_email(mail),
            exc_info=True,
        )
        raise UpstreamUnavailable("error.warden_unavailable", detail=str(exc)) from exc
    if user is None:
        record_auth_request(METHOD_WARDEN, "failure")
        audit.log_login(user_id="", method=METHOD_WARDEN, ip=ip, success=False, reason="user_not_in_list")
        return error_response(request, status.HTTP_401_UNAUTHORIZED, "error.user_not_in_list")
    return user


async def _warden_login(
    request: Request,
    form: FormData,
    *,
    warden: WardenClient | None,
    herald: HeraldClient | None,
    totp: HeraldTOTPClient | None,
    audit: AuditLogger,
) -> tuple[WardenUser, str, list[str]] | Response:
    """Run the directory plus one-time code branch.

    Returns the directory record, the resolved user id and the AMR values,
    or the error response to send.
    """

    phone = _form_value(form, "phone")
    mail = _form_value(form, "mail")
    ip = extract_client_ip(request)
    if not (phone or mail):
        return error_response(request, status.HTTP_400_BAD_REQUEST, "error.missing_identifier")
    if warden is None:
        return error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, "error.warden_unavailable")

    found = await _lookup_directory_user(request, warden, audit, phone=phone, mail=mail)
    if isinstance(found, Response):
        return found
    user = found
    user_id = user.user_id or derive_user_id(user.phone or phone, user.mail or mail)

    totp_code = _form_value(form, "totp_code")
    if totp_code and totp is not None:
        try:
            result = await totp.verify(subject=user_id, code=totp_code)
        except HeraldError:
            logger.warning("totp verification unavailable for user %s", user_id, exc_info=True)
            return error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, "error.totp_unavailable")
        if not result.ok:
            record_auth_request("warden_totp", "failure")
            audit.log_login(user_id=user_id, method="warden_totp", ip=ip, success=False, reason=result.reason or "invalid")
            return error_response(request, status.HTTP_401_UNAUTHORIZED, "error.totp_invalid_code")
        return user, user_id, ["totp"]

    if herald is None:
        return error_response(request, status.HTTP_400_BAD_REQUEST, "error.herald_not_configured")

    challenge_id = _form_value(form, "challenge_id")
    verify_code = _form_value(form, "verify_code")
    if not (challenge_id and verify_code):
        return error_response(request, status.HTTP_400_BAD_REQUEST, "error.verify_code_required")

    try:
        verified = await herald.verify_challenge(
            challenge_id=challenge_id,
            code=verify_code,
            client_ip=ip,
            idempotency_key=request.headers.get("idempotency-key") or None,
        )
    except HeraldError as exc:
        audit.log_verify_code_check(user_id=user_id, ip=ip, success=False, reason=exc.reason)
        if exc.is_connection_error:
            return _herald_unavailable(request, totp)
        record_auth_request(METHOD_WARDEN, "failure")
        if exc.status_code == status.HTTP_401_UNAUTHORIZED and exc.reason not in _VERIFY_REASONS:
            return error_response(request, status.HTTP_401_UNAUTHORIZED, "error.verify_code_unauthorized")
        return _herald_verify_error(request, exc)

    if not verified.ok:
        audit.log_verify_code_check(user_id=user_id, ip=ip, success=False, reason=verified.reason)
        record_auth_request(METHOD_WARDEN, "failure")
        return _herald_verify_error(request, HeraldError(200, verified.reason or "unknown_error", result=verified))

    audit.log_verify_code_check(user_id=user_id, ip=ip, success=True)
    if verified.user_id != user_id:
        logger.warning("user id mismatch between directory (%s) and broker (%s)", user_id, verified.user_id)
        record_auth_request(METHOD_WARDEN, "failure")
        return error_response(request, status.HTTP_401_UNAUTHORIZED, "error.authentication_failed")

    return user, user_id, list(verified.amr) or ["otp"]


def resolve_login_callback(request: Request, form: FormData | None = None) -> tuple[str, bool]:
    """Post-login callback host and whether it came from the callback cookie.

    The cookie wins over the form field, which wins over the query string.
    Without any of them the forwarded host is used when it is not the login
    host.
    """

    from_cookie = safe_callback(request.cookies.get(CALLBACK_COOKIE_NAME))
    if from_cookie:
        return from_cookie, True
    if form is not None:
        from_form = safe_callback(_form_value(form, "callback"))
        if from_form:
            return from_form, False
    from_query = safe_callback(request.query_params.get("callback"))
    if from_query:
        return from_query, False
    if is_different_domain(request):
        return safe_callback(forwarded_host(request)), False
    return "", False


def _redirect_page(request: Request, target: str) -> HTMLResponse:
    message = escape(t(request, "success.login"))
    href = escape(target, quote=True)
    body = (
        f"<h1>{message}</h1>"
        f'<p><a href="{href}">{escape(t(request, "login.redirecting"))}</a></p>'
    )
    return html_page(
        t(request, "success.login"),
        body,
        head=f'<meta http-equiv="refresh" content="0;url={href}">',
    )


async def complete_login(
    request: Request,
    session: Session,
    store: SessionStore,
    audit: AuditLogger,
    *,
    method: str,
    callback: str,
    clear_cookie: bool = False,
) -> Response:
    """Authenticate ``session``, persist it and send the caller onwards."""

    authenticate(session)
    ip = extract_client_ip(request)
    user_id = session.get_str("user_id")
    secure = is_secure(request)

    if callback:
        response: Response = RedirectResponse(
            url=session_exchange_url(forwarded_proto(request), callback, session.id),
            status_code=status.HTTP_302_FOUND,
        )
    elif is_html_request(request):
        response = _redirect_page(request, "/")
    else:
        response = JSONResponse(
            {"success": True, "message": t(request, "success.login"), "session_id": session.id}
        )

    await store.save(session, response, secure=secure)
    if clear_cookie:
        clear_callback_cookie(response, request)

    record_auth_request(method, "success")
    record_session_created()
    audit.log_login(user_id=user_id, method=method, ip=ip, success=True)
    audit.log_session_create(user_id=user_id, ip=ip, method=method)
    return response


def _login_form(request: Request, callback: str, oidc: OIDCProvider | None) -> HTMLResponse:
    callback_field = (
        f'<input type="hidden" name="callback" value="{escape(callback, quote=True)}">' if callback else ""
    )
    sections: list[str] = [f"<h1>{escape(settings.login_page_title)}</h1>"]

    if settings.password_set is not None:
        sections.append(
            '<form method="post" action="/_login">'
            f'<input type="hidden" name="auth_method" value="{METHOD_PASSWORD}">{callback_field}'
            f'<label>{escape(t(request, "login.password"))}'
            '<input type="password" name="password" autocomplete="current-password" required></label>'
            f'<button type="submit">{escape(t(request, "login.submit"))}</button>'
            "</form>"
        )

    if settings.warden.enabled:
        sections.append(
            '<form method="post" action="/_login">'
            f'<input type="hidden" name="auth_method" value="{METHOD_WARDEN}">{callback_field}'
            f'<label>{escape(t(request, "login.phone_or_mail"))}'
            '<input type="text" name="phone" autocomplete="username"></label>'
            '<input type="hidden" name="challenge_id">'
            f'<button type="submit" formaction="/_send_verify_code">{escape(t(request, "login.send_code"))}</button>'
            f'<label>{escape(t(request, "login.verify_code"))}'
            '<input type="text" name="verify_code" inputmode="numeric" autocomplete="one-time-code"></label>'
            f'<button type="submit">{escape(t(request, "login.submit"))}</button>'
            "</form>"
        )

    if oidc is not None:
        label = t(request, "login.oidc_button", provider=oidc.provider_name)
        sections.append(f'<p><a href="/_oidc/login">{escape(label)}</a></p>')

    return html_page(settings.login_page_title, "".join(sections))


@router.get("/_login")
async def login_page(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    oidc: OIDCProvider | None = Depends(get_oidc_provider),
) -> Response:
    """Render the login page, or skip it for an authenticated session."""

    query_callback = safe_callback(request.query_params.get("callback"))
    callback = query_callback or safe_callback(request.cookies.get(CALLBACK_COOKIE_NAME))

    session = await store.load(request)
    if is_authenticated(session):
        proto = forwarded_proto(request)
        if callback:
            target = session_exchange_url(proto, callback, session.id)
        else:
            target = f"{proto}://{forwarded_host(request)}/"
        return RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)

    response = _login_form(request, callback, oidc)
    if query_callback:
        set_callback_cookie(response, request, query_callback)
    return response


@router.post("/_login")
async def login_submit(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    passwords: PasswordSet | None = Depends(get_password_set),
    warden: WardenClient | None = Depends(get_warden_client),
    herald: HeraldClient | None = Depends(get_herald_client),
    totp: HeraldTOTPClient | None = Depends(get_totp_client),
    audit: AuditLogger = Depends(get_audit_logger),
) -> Response:
    form = await request.form()
    auth_method = _form_value(form, "auth_method").lower() or METHOD_PASSWORD
    session = await store.load(request)

    if auth_method == METHOD_WARDEN:
        outcome = await _warden_login(request, form, warden=warden, herald=herald, totp=totp, audit=audit)
        if isinstance(outcome, Response):
            return outcome
        user, user_id, amr = outcome
        session.clear_user()
        session.set_user(
            user_id=user_id,
            phone=user.phone,
            mail=user.mail,
            name=user.name,
            status=user.status,
            scope=user.scope,
            role=user.role,
            amr=amr,
        )
        method = "warden_totp" if amr == ["totp"] else METHOD_WARDEN
    else:
        if passwords is None or not passwords.check(_form_value(form, "password")):
            record_auth_request(METHOD_PASSWORD, "failure")
            audit.log_login(
                user_id="",
                method=METHOD_PASSWORD,
                ip=extract_client_ip(request),
                success=False,
                reason="invalid_password",
            )
            return error_response(request, status.HTTP_401_UNAUTHORIZED, "error.invalid_password")
        session.clear_user()
        session.set_user(amr=["pwd"])
        method = METHOD_PASSWORD

    callback, from_cookie = resolve_login_callback(request, form)
    return await complete_login(
        request,
        session,
        store,
        audit,
        method=method,
        callback=callback,
        clear_cookie=from_cookie,
    )


@router.post("/_send_verify_code")
async def send_verify_code(
    request: Request,
    warden: WardenClient | None = Depends(get_warden_client),
    herald: HeraldClient | None = Depends(get_herald_client),
    totp: HeraldTOTPClient | None = Depends(get_totp_client),
    audit: AuditLogger = Depends(get_audit_logger),
) -> Response:
    """Ask the broker to deliver a one-time code to a directory user."""

    form = await request.form()
    phone = _form_value(form, "phone")
    mail = _form_value(form, "mail")
    ip = extract_client_ip(request)

    if not (phone or mail):
        return error_response(request, status.HTTP_400_BAD_REQUEST, "error.missing_identifier")
    if herald is None:
        return error_response(request, status.HTTP_400_BAD_REQUEST, "error.herald_not_configured")
    if warden is None:
        return error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, "error.warden_unavailable")

    found = await _lookup_directory_user(request, warden, audit, phone=phone, mail=mail)
    if isinstance(found, Response):
        return found
    user = found
    user_id = user.user_id or derive_user_id(user.phone or phone, user.mail or mail)

    if user.phone:
        channel, destination = "sms", user.phone
    else:
        channel, destination = "email", user.mail
    if not destination:
        return error_response(request, status.HTTP_400_BAD_REQUEST, "error.missing_identifier")

    try:
        challenge = await herald.create_challenge(
            user_id=user_id,
            channel=channel,
            destination=destination,
            purpose="login",
            locale=herald_locale(language_for(request), request.headers.get("accept-language")),
            client_ip=ip,
            user_agent=request.headers.get("user-agent", ""),
            idempotency_key=request.headers.get("idempotency-key") or None,
        )
    except HeraldError as exc:
        audit.log_verify_code_send(
            user_id=user_id,
            channel=channel,
            destination=destination,
            ip=ip,
            success=False,
            reason=exc.reason,
        )
        if exc.is_connection_error:
            return _herald_unavailable(request, totp)
        if exc.status_code == status.HTTP_429_TOO_MANY_REQUESTS:
            raise RateLimited(detail=exc.message) from exc
        logger.warning("verification code delivery failed: %s", exc)
        return error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "error.verify_code_send_failed",
            reason=exc.reason,
        )

    audit.log_verify_code_send(user_id=user_id, channel=channel, destination=destination, ip=ip, success=True)
    payload: dict[str, Any] = {
        "success": True,
        "message": t(request, "success.verify_code_sent"),
        "challenge_id": challenge.challenge_id,
        "expires_in": challenge.expires_in,
    }
    if challenge.next_resend_in:
        payload["next_resend_in"] = challenge.next_resend_in
    return JSONResponse(payload)


__all__ = ["complete_login", "derive_user_id", "resolve_login_callback", "router"]
