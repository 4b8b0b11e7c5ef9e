"""The ``/_auth`` decision endpoint consulted by the reverse proxy."""
from __future__ import annotations

import logging
import time
from typing import Iterable
from urllib.parse import quote

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import RedirectResponse

from ..config import settings
from ..dependencies import (
    get_password_set,
    get_session_store,
    get_step_up_matcher,
    get_warden_client,
)
from ..errors import AuthDenied, SessionStoreError, StepUpRequired
from ..forwarding import (
    build_callback_url,
    forwarded_host,
    forwarded_path,
    forwarded_uri,
    remember_callback,
    safe_callback,
)
from ..logging import mask_email, mask_phone
from ..metrics import record_auth_refresh, record_auth_request
from ..passwords import PasswordSet
from ..responses import is_html_request
from ..sessions import Session, SessionStore, is_authenticated, is_step_up_verified
from ..stepup import StepUpMatcher
from ..warden import WardenClient, WardenUser

router = APIRouter(tags=["forward-auth"])

logger = logging.getLogger(__name__)

AUTH_REFRESHED_AT_KEY = "auth_refreshed_at"


def _apply_identity_headers(
    response: Response,
    *,
    user_id: str,
    mail: str = "",
    name: str = "",
    scopes: Iterable[str] = (),
    role: str = "",
    amr: Iterable[str] = (),
) -> None:
    response.headers[settings.user_header_name] = user_id or "authenticated"
    if user_id:
        response.headers["X-Auth-User"] = user_id
    if mail:
        response.headers["X-Auth-Email"] = mail
    if name:
        response.headers["X-Auth-Name"] = name
    scope_list = [item for item in scopes if item]
    if scope_list:
        response.headers["X-Auth-Scopes"] = ",".join(scope_list)
    if role:
        response.headers["X-Auth-Role"] = role
    amr_list = [item for item in amr if item]
    if amr_list:
        response.headers["X-Auth-AMR"] = ",".join(amr_list)


def _directory_response(user: WardenUser) -> Response:
    response = Response(status_code=status.HTTP_200_OK)
    _apply_identity_headers(
        response,
        user_id=user.user_id,
        mail=user.mail,
        name=user.name,
        scopes=user.scope,
        role=user.role,
    )
    return response


def _session_response(session: Session) -> Response:
    response = Response(status_code=status.HTTP_200_OK)
    _apply_identity_headers(
        response,
        user_id=session.get_str("user_id"),
        mail=session.get_str("user_mail"),
        name=session.get_str("user_name"),
        scopes=session.get_list("user_scope"),
        role=session.get_str("user_role"),
        amr=session.get_list("user_amr"),
    )
    return response


def _not_authenticated(request: Request) -> Response:
    if is_html_request(request):
        response = RedirectResponse(url=build_callback_url(request), status_code=status.HTTP_302_FOUND)
        remember_callback(request, response)
        return response
    raise AuthDenied()


def _step_up_redirect(request: Request) -> Response:
    target = "/_step_up"
    params: list[str] = []
    host = safe_callback(forwarded_host(request))
    if host:
        params.append(f"callback={quote(host, safe=':')}")
    params.append(f"next={quote(forwarded_uri(request), safe='/')}")
    return RedirectResponse(url=f"{target}?{'&'.join(params)}", status_code=status.HTTP_302_FOUND)


def _refresh_due(session: Session) -> bool:
    last = session.get(AUTH_REFRESHED_AT_KEY)
    if not isinstance(last, (int, float)) or isinstance(last, bool):
        return True
    return time.time() - last > settings.auth_refresh.interval_seconds


async def _refresh_from_directory(session: Session, store: SessionStore, warden: WardenClient) -> None:
    """Re-read scope and role from the directory; failures keep the session as is."""

    phone = session.get_str("user_phone")
    mail = session.get_str("user_mail")
    if not (phone or mail):
        return

    started = time.perf_counter()
    user = await warden.get_user(phone=phone or None, mail=mail or None)
    if user is None:
        record_auth_refresh("failure", time.perf_counter() - started)
        logger.warning(
            "auth refresh failed, user not found: phone=%s mail=%s",
            mask_phone(phone),
            mask_email(mail),
        )
        return

    if user.scope:
        session.set("user_scope", list(user.scope))
    if user.role:
        session.set("user_role", user.role)
    session.set(AUTH_REFRESHED_AT_KEY, int(time.time()))
    try:
        await store.save(session)
    except SessionStoreError:
        record_auth_refresh("failure", time.perf_counter() - started)
        logger.warning("failed to save session after auth refresh", exc_info=True)
        return
    record_auth_refresh("success", time.perf_counter() - started)


@router.get("/_auth")
async def forward_auth(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    passwords: PasswordSet | None = Depends(get_password_set),
    warden: WardenClient | None = Depends(get_warden_client),
    step_up: StepUpMatcher = Depends(get_step_up_matcher),
) -> Response:
    """Decide whether the proxied request may pass."""

    header_password = request.headers.get("stargate-password", "")
    if header_password:
        if passwords is None or not passwords.check(header_password):
            record_auth_request("password_header", "failure")
            raise AuthDenied("error.invalid_password")
        record_auth_request("password_header", "success")
        response = Response(status_code=status.HTTP_200_OK)
        response.headers[settings.user_header_name] = "authenticated"
        return response

    phone = request.headers.get("x-user-phone", "").strip()
    mail = request.headers.get("x-user-mail", "").strip()
    if (phone or mail) and warden is not None:
        user = await warden.get_user(phone=phone or None, mail=mail or None)
        if user is not None:
            record_auth_request("warden_header", "success")
            return _directory_response(user)
        record_auth_request("warden_header", "failure")

    session = await store.load(request)
    if not is_authenticated(session):
        return _not_authenticated(request)

    if not is_step_up_verified(session) and step_up.matches(forwarded_path(request)):
        if is_html_request(request):
            return _step_up_redirect(request)
        raise StepUpRequired()

    if (
        settings.auth_refresh.enabled
        and warden is not None
        and _refresh_due(session)
    ):
        await _refresh_from_directory(session, store, warden)

    return _session_response(session)


__all__ = ["AUTH_REFRESHED_AT_KEY", "router"]
