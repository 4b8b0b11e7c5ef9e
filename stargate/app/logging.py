"""Logging configuration helpers for the Stargate gateway."""
from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars


def _resolve_log_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return logging.INFO


def setup_logging(*, level: str | int | None = None) -> None:
    """Route stdlib logging and structlog to stdout at ``level``.

    ``LOG_LEVEL`` is consulted when no explicit level is passed.
    """

    env_level = os.getenv("LOG_LEVEL")
    resolved = _resolve_log_level(level or env_level)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=resolved, force=True)
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.JSONRenderer(),
    ]
    structlog.configure(
        processors=processors,
        context_class=dict,
        cache_logger_on_first_use=True,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        wrapper_class=structlog.make_filtering_bound_logger(resolved),
    )


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def mask_phone(phone: str | None) -> str:
    """Keep the first three and last four digits of ``phone``.

    ``"13812345678"`` becomes ``"138****5678"``; anything shorter than seven
    characters is fully masked.
    """

    if not phone:
        return ""
    phone = phone.strip()
    if len(phone) < 7:
        return "****"
    if len(phone) == 7:
        return f"{phone[:3]}****"
    return phone[:3] + "*" * (len(phone) - 7) + phone[-4:]


def mask_email(email: str | None) -> str:
    """Keep the first character of the local part and the domain."""

    if not email:
        return ""
    email = email.strip()
    parts = email.split("@")
    if len(parts) != 2:
        return "***@***"
    local, domain = parts
    if not local:
        return f"***@{domain}"
    if len(local) == 1:
        return f"{local}***@{domain}"
    return local[0] + "*" * (len(local) - 1) + f"@{domain}"


__all__ = [
    "bind_contextvars",
    "clear_contextvars",
    "get_logger",
    "mask_email",
    "mask_phone",
    "setup_logging",
]
