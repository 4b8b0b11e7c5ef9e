"""Session lifecycle endpoints: index, logout and cross-domain exchange."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import PlainTextResponse, RedirectResponse

from ..audit import AuditLogger
from ..dependencies import get_audit_logger, get_session_store
from ..errors import BadInput
from ..forwarding import extract_client_ip, is_secure
from ..metrics import record_session_destroyed
from ..responses import t
from ..sessions import SessionStore, is_authenticated, is_opaque_session_id, unauthenticate

router = APIRouter(tags=["session"])


@router.get("/")
async def index(request: Request, store: SessionStore = Depends(get_session_store)) -> Response:
    session = await store.load(request)
    key = "success.authenticated" if is_authenticated(session) else "success.not_authenticated"
    return PlainTextResponse(t(request, key))


@router.get("/_logout")
async def logout(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    audit: AuditLogger = Depends(get_audit_logger),
) -> Response:
    session = await store.load(request)
    user_id = session.get_str("user_id")
    ip = extract_client_ip(request)

    response = PlainTextResponse(t(request, "success.logout"))
    await unauthenticate(store, session, response, secure=is_secure(request))

    record_session_destroyed()
    audit.log_logout(user_id=user_id, ip=ip)
    audit.log_session_destroy(user_id=user_id, ip=ip)
    return response


@router.get("/_session_exchange")
async def session_exchange(request: Request, store: SessionStore = Depends(get_session_store)) -> Response:
    """Plant the session cookie issued on the login host on this host."""

    session_id = request.query_params.get("id", "").strip()
    if not is_opaque_session_id(session_id):
        raise BadInput("error.missing_session_id")

    response = RedirectResponse(url="/", status_code=status.HTTP_302_FOUND)
    store.set_cookie(response, session_id, secure=is_secure(request))
    return response


__all__ = ["router"]
