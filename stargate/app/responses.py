"""Content negotiated error rendering."""
from __future__ import annotations

import logging
from html import escape as html_escape
from xml.sax.saxutils import escape as xml_escape

from fastapi import Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse

from .config import settings
from .errors import StargateError
from .i18n import request_language, translate, translate_format

logger = logging.getLogger(__name__)


def _accept_parts(request: Request) -> list[str]:
    header = request.headers.get("accept", "")
    return [part.split(";", 1)[0].strip() for part in header.split(",")]


def is_html_request(request: Request) -> bool:
    """Return ``True`` when the caller is a browser expecting HTML.

    An empty ``Accept`` header counts as HTML, as does any ``text/html`` entry
    or a leading ``*/*``.
    """

    if not request.headers.get("accept", ""):
        return True
    for index, media_type in enumerate(_accept_parts(request)):
        if media_type == "text/html" or (index == 0 and media_type == "*/*"):
            return True
    return False


def preferred_error_format(request: Request) -> str:
    for media_type in _accept_parts(request):
        if media_type.startswith("application/json"):
            return "json"
        if media_type.startswith("application/xml"):
            return "xml"
    return "text"


def language_for(request: Request) -> str:
    return request_language(request, settings.language)


def t(request: Request, key: str, **values: object) -> str:
    """Translate ``key`` in the language negotiated for ``request``."""

    lang = language_for(request)
    if values:
        return translate_format(key, lang, **values)
    return translate(key, lang)


def render_error(request: Request, status_code: int, message: str, *, reason: str | None = None) -> Response:
    """Render ``message`` as JSON, XML or plain text depending on ``Accept``.

    ``reason`` is a machine readable code added to the JSON and XML forms.
    """

    fmt = preferred_error_format(request)
    if fmt == "json":
        payload: dict[str, object] = {"error": message, "code": status_code}
        if reason:
            payload["reason"] = reason
        return JSONResponse(payload, status_code=status_code)
    if fmt == "xml":
        reason_attr = f' reason="{xml_escape(reason)}"' if reason else ""
        body = f'<errors><error code="{status_code}"{reason_attr}>{xml_escape(message)}</error></errors>'
        return Response(body, status_code=status_code, media_type="application/xml")
    return PlainTextResponse(message, status_code=status_code)


def error_response(
    request: Request,
    status_code: int,
    key: str,
    *,
    reason: str | None = None,
    **values: object,
) -> Response:
    return render_error(request, status_code, t(request, key, **values), reason=reason)


def html_page(title: str, body: str, *, status_code: int = 200, head: str = "") -> HTMLResponse:
    """Wrap ``body`` in the minimal page layout shared by the login surface."""

    document = (
        "<!DOCTYPE html>\n"
        '<html><head><meta charset="utf-8">'
        '<meta name="viewport" content="width=device-width, initial-scale=1">'
        f"{head}<title>{html_escape(title)}</title></head>"
        f"<body><main>{body}</main>"
        f"<footer>{html_escape(settings.login_page_footer_text)}</footer>"
        "</body></html>"
    )
    return HTMLResponse(document, status_code=status_code)


async def stargate_error_handler(request: Request, exc: StargateError) -> Response:
    if exc.detail:
        logger.info("request failed: %s (%s)", exc.message_key, exc.detail)
    return error_response(request, exc.status_code, exc.message_key, reason=exc.reason, **exc.values)


__all__ = [
    "error_response",
    "html_page",
    "is_html_request",
    "language_for",
    "preferred_error_format",
    "render_error",
    "stargate_error_handler",
    "t",
]
