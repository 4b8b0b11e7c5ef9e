"""Helpers for reading the reverse proxy's forwarded request and callbacks."""
from __future__ import annotations

from urllib.parse import quote

from fastapi import Request, Response

from .config import settings

CALLBACK_COOKIE_NAME = "stargate_callback"
CALLBACK_COOKIE_MAX_AGE = 600

_FORBIDDEN_HOST_CHARS = ("/", "\\", "?", "#", "@")


def extract_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",", 1)[0].strip()
        if candidate:
            return candidate
    client = request.client
    if client and client.host:
        return client.host
    return "unknown"


def forwarded_host(request: Request) -> str:
    host = request.headers.get("x-forwarded-host", "").strip()
    if host:
        return host
    return request.headers.get("host", "") or request.url.netloc


def forwarded_uri(request: Request) -> str:
    uri = request.headers.get("x-forwarded-uri", "").strip()
    if uri:
        return uri
    path = request.url.path
    if request.url.query:
        return f"{path}?{request.url.query}"
    return path


def forwarded_path(request: Request) -> str:
    """Path component of the forwarded URI, without its query string."""

    return forwarded_uri(request).split("?", 1)[0].split("#", 1)[0] or "/"


def forwarded_proto(request: Request) -> str:
    proto = request.headers.get("x-forwarded-proto", "").strip().lower()
    if proto:
        return proto.split(",", 1)[0].strip()
    return request.url.scheme


def is_secure(request: Request) -> bool:
    return forwarded_proto(request) == "https"


def _strip_port(host: str) -> str:
    host = host.strip().lower()
    if host.startswith("["):
        return host.split("]", 1)[0] + "]"
    return host.split(":", 1)[0]


def is_different_domain(request: Request) -> bool:
    """Return ``True`` when the forwarded host is not the login host."""

    return _strip_port(forwarded_host(request)) != _strip_port(settings.auth_host or "")


def normalize_callback_host(value: str | None) -> str:
    """Return ``value`` as a bare host, or ``""`` when it is not one."""

    if not value:
        return ""
    cleaned = value.strip()
    if not cleaned or "://" in cleaned:
        return ""
    if any(char in cleaned for char in _FORBIDDEN_HOST_CHARS):
        return ""
    if any(char.isspace() for char in cleaned):
        return ""
    return cleaned.lower()


def validate_callback_host(host: str) -> bool:
    """Accept the login host itself or hosts under ``COOKIE_DOMAIN``."""

    if not host:
        return False
    bare = _strip_port(host)
    if bare == _strip_port(settings.auth_host or ""):
        return True
    suffix = settings.cookie_domain_suffix
    if not suffix:
        return False
    return bare == suffix or bare.endswith(f".{suffix}")


def safe_callback(value: str | None) -> str:
    """Normalise and validate ``value`` in one step; ``""`` when rejected."""

    host = normalize_callback_host(value)
    if host and validate_callback_host(host):
        return host
    return ""


def set_callback_cookie(response: Response, request: Request, host: str) -> None:
    response.set_cookie(
        CALLBACK_COOKIE_NAME,
        host,
        max_age=CALLBACK_COOKIE_MAX_AGE,
        path="/",
        domain=settings.cookie_domain or None,
        secure=is_secure(request),
        httponly=True,
        samesite="lax",
    )


def clear_callback_cookie(response: Response, request: Request) -> None:
    response.delete_cookie(
        CALLBACK_COOKIE_NAME,
        path="/",
        domain=settings.cookie_domain or None,
        secure=is_secure(request),
        httponly=True,
        samesite="lax",
    )


def build_callback_url(request: Request) -> str:
    """Login URL on ``AUTH_HOST`` that returns to the forwarded host afterwards."""

    proto = forwarded_proto(request)
    base = f"{proto}://{settings.auth_host}/_login"
    host = safe_callback(forwarded_host(request))
    if not host:
        return base
    return f"{base}?callback={quote(host, safe=':')}"


def remember_callback(request: Request, response: Response) -> None:
    """Keep the forwarded host in a short lived cookie when it is not the login host."""

    host = safe_callback(forwarded_host(request))
    if host and is_different_domain(request):
        set_callback_cookie(response, request, host)


def session_exchange_url(proto: str, host: str, session_id: str) -> str:
    return f"{proto}://{host}/_session_exchange?id={quote(session_id, safe='')}"


__all__ = [
    "CALLBACK_COOKIE_MAX_AGE",
    "CALLBACK_COOKIE_NAME",
    "build_callback_url",
    "clear_callback_cookie",
    "extract_client_ip",
    "forwarded_host",
    "forwarded_path",
    "forwarded_proto",
    "forwarded_uri",
    "is_different_domain",
    "is_secure",
    "normalize_callback_host",
    "remember_callback",
    "safe_callback",
    "session_exchange_url",
    "set_callback_cookie",
    "validate_callback_host",
]
